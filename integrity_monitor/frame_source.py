"""
Frame Sources - Async producers of frames for the scan loop
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Iterable, Iterator, Optional

import cv2

from .exceptions import FrameSourceExhausted
from .types import Frame

logger = logging.getLogger(__name__)


class FrameSource(ABC):
    """Supplies frames one at a time; raises FrameSourceExhausted when done"""

    @abstractmethod
    async def next_frame(self) -> Frame:
        pass

    async def close(self) -> None:
        pass


class IterableFrameSource(FrameSource):
    """Frames from an in-memory iterable (tests, replays)"""

    def __init__(self, frames: Iterable[Frame]):
        self._frames: Iterator[Frame] = iter(frames)

    async def next_frame(self) -> Frame:
        try:
            return next(self._frames)
        except StopIteration:
            raise FrameSourceExhausted("Frame iterable exhausted") from None


class QueueFrameSource(FrameSource):
    """
    Frames pushed by a producer, e.g. an HTTP endpoint.

    close() lets already queued frames drain, then reports exhaustion.
    """

    _CLOSED = object()

    def __init__(self, maxsize: int = 0):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return self._queue.qsize()

    async def put(self, frame: Frame) -> None:
        if self._closed:
            raise FrameSourceExhausted("Frame source is closed")
        await self._queue.put(frame)

    def put_nowait(self, frame: Frame) -> None:
        if self._closed:
            raise FrameSourceExhausted("Frame source is closed")
        self._queue.put_nowait(frame)

    async def next_frame(self) -> Frame:
        item = await self._queue.get()
        if item is self._CLOSED:
            # keep the marker for any later reader
            self._queue.put_nowait(self._CLOSED)
            raise FrameSourceExhausted("Frame source closed by producer")
        return item

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(self._CLOSED)
        except asyncio.QueueFull:
            # nobody may be reading any more; drop the oldest frame
            self._queue.get_nowait()
            self._queue.put_nowait(self._CLOSED)


class VideoFileFrameSource(FrameSource):
    """Frames decoded from a video file with OpenCV"""

    def __init__(self, path: str):
        self.path = path
        self._capture: Optional[cv2.VideoCapture] = None
        self._index = 0
        self._fps = 0.0
        self._started = time.monotonic()

    def _open(self) -> cv2.VideoCapture:
        if self._capture is None:
            capture = cv2.VideoCapture(self.path)
            if not capture.isOpened():
                raise FrameSourceExhausted(f"Cannot open video: {self.path}")
            self._capture = capture
            self._fps = capture.get(cv2.CAP_PROP_FPS) or 0.0
            logger.info(f"Opened video {self.path} at {self._fps:.1f} fps")
        return self._capture

    def _read(self) -> Frame:
        capture = self._open()
        ok, image = capture.read()
        if not ok or image is None:
            raise FrameSourceExhausted(f"End of video: {self.path}")
        timestamp = self._index / self._fps if self._fps > 0 else time.monotonic() - self._started
        self._index += 1
        return Frame.from_bgr(image, timestamp)

    async def next_frame(self) -> Frame:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._read)

    async def close(self) -> None:
        if self._capture is not None:
            self._capture.release()
            self._capture = None
