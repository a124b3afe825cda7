"""
Integrity Monitor API - FastAPI endpoints for monitoring scans

Endpoints:
- POST /api/integrity/start - Start a monitoring scan
- POST /api/integrity/stream - Push a frame into a running scan
- POST /api/integrity/stop - Stop a scan and get its result
- POST /api/integrity/re-enroll - Replace the enrolled identity
- GET /api/integrity/status/{scan_id} - Get scan status
- GET /api/integrity/violations/{scan_id} - Get violations so far
- GET /api/integrity/models-status - Vision backend availability
"""

import asyncio
import base64
import binascii
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import cv2
import numpy as np
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from .calibration import CalibrationProfile, IdentityProfile
from .config import settings
from .detectors import build_default_plugins
from .exceptions import ConfigValidationError, FrameSourceExhausted, InitializationError, IntegrityMonitorError
from .frame_source import QueueFrameSource
from .models import check_models
from .orchestrator import ScanOrchestrator
from .scoring import RiskAggregator
from .types import Frame, ScanResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/integrity", tags=["Integrity"])


@dataclass
class _ScanSession:
    orchestrator: ScanOrchestrator
    source: QueueFrameSource
    task: "asyncio.Task"
    started_at: float


# In-memory scan storage, one event loop per process
_sessions: Dict[str, _ScanSession] = {}

FRAME_QUEUE_SIZE = 64

# Finished scans stay readable through /stop, /status and /violations this long
FINISHED_SCAN_TTL_S = 300.0


# ============== Request/Response Models ==============

class StartScanRequest(BaseModel):
    """Request to start a monitoring scan"""
    calibration: CalibrationProfile = Field(..., description="Candidate calibration profile")
    duration_ms: Optional[float] = Field(None, gt=0, description="Scan length; open-ended when omitted")
    config: Dict[str, Any] = Field(default_factory=dict, description="Threshold overrides")
    identity_id: Optional[str] = Field(None, description="Enrolled candidate ID")
    enrolled_landmarks: Optional[List[Tuple[float, float]]] = Field(
        None, description="68-point landmarks captured at enrollment"
    )


class StartScanResponse(BaseModel):
    scan_id: str
    status: str
    plugins: List[str]


class StreamFrameRequest(BaseModel):
    """Request to push a webcam frame"""
    scan_id: str = Field(..., description="Scan ID from /start")
    frame_base64: str = Field(..., description="Base64 encoded JPEG or PNG frame")
    timestamp: Optional[float] = Field(None, description="Capture time in seconds")


class StreamFrameResponse(BaseModel):
    accepted: bool
    queued: int
    frames_processed: int
    violation_count: int


class StopScanRequest(BaseModel):
    scan_id: str


class ReEnrollRequest(BaseModel):
    scan_id: str
    identity_id: str
    landmarks: List[Tuple[float, float]]


class ScanStatusResponse(BaseModel):
    scan_id: str
    state: str
    progress: float
    frames_processed: int
    violation_count: int
    risk_score: int
    risk_level: str
    signals: Dict[str, Dict[str, Any]]


class ModelStatusResponse(BaseModel):
    dlib: bool
    dlib_predictor: bool
    ultralytics: bool
    yolo_weights: bool


# ============== Helpers ==============

def _get_session(scan_id: str) -> _ScanSession:
    session = _sessions.get(scan_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Scan not found")
    return session


def _decode_frame(frame_base64: str, timestamp: float) -> Frame:
    try:
        frame_bytes = base64.b64decode(frame_base64, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="Frame is not valid base64")

    image = cv2.imdecode(np.frombuffer(frame_bytes, dtype=np.uint8), cv2.IMREAD_COLOR)
    if image is None:
        raise HTTPException(status_code=400, detail="Invalid frame data")
    return Frame.from_bgr(image, timestamp)


async def _release(scan_id: str, session: _ScanSession) -> None:
    try:
        await session.orchestrator.close()
    except IntegrityMonitorError as e:
        logger.error(f"Failed to release scan {scan_id}: {e}")


def _evict(scan_id: str, task: "asyncio.Task") -> None:
    session = _sessions.get(scan_id)
    if session is None or session.task is not task:
        return
    del _sessions[scan_id]
    asyncio.ensure_future(_release(scan_id, session))
    logger.info(f"Evicted finished scan: {scan_id}")


def _schedule_eviction(scan_id: str, task: "asyncio.Task") -> None:
    """Drop a scan that finished without /stop once its results have been readable for a while"""
    def on_done(done: "asyncio.Task") -> None:
        if not done.cancelled() and done.exception() is not None:
            logger.warning(f"Scan {scan_id} ended with {type(done.exception()).__name__}: {done.exception()}")
        done.get_loop().call_later(FINISHED_SCAN_TTL_S, _evict, scan_id, done)

    task.add_done_callback(on_done)


# ============== API Endpoints ==============

@router.post("/start", response_model=StartScanResponse)
async def start_scan(request: StartScanRequest):
    """
    Start a new monitoring scan.

    The scan consumes frames pushed through /stream and runs until its
    duration elapses or /stop is called.
    """
    enrolled = None
    if request.enrolled_landmarks is not None:
        try:
            enrolled = IdentityProfile(
                identity_id=request.identity_id or "enrolled",
                landmarks=tuple(request.enrolled_landmarks),
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=f"Invalid enrollment: {e}")

    source = QueueFrameSource(maxsize=FRAME_QUEUE_SIZE)
    orchestrator = ScanOrchestrator()
    try:
        orchestrator.initialize(
            source,
            build_default_plugins(request.calibration, model_dir=settings.MODEL_DIR),
            config=request.config,
            calibration=request.calibration,
            enrolled_identity=enrolled,
        )
    except (InitializationError, ConfigValidationError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    scan_id = f"SCAN_{uuid.uuid4().hex[:6].upper()}"
    task = asyncio.create_task(orchestrator.start_scan(duration_ms=request.duration_ms, scan_id=scan_id))
    _sessions[scan_id] = _ScanSession(orchestrator, source, task, time.monotonic())
    _schedule_eviction(scan_id, task)
    # let the scan enter its loop so an early /stop is not lost
    await asyncio.sleep(0)

    logger.info(f"Started monitoring scan: {scan_id}")

    return StartScanResponse(
        scan_id=scan_id,
        status="scanning",
        plugins=[p.name for p in orchestrator.plugins],
    )


@router.post("/stream", response_model=StreamFrameResponse)
async def stream_frame(request: StreamFrameRequest):
    """
    Push a single webcam frame into a running scan.

    Frames beyond the queue capacity are dropped rather than delaying
    the caller.
    """
    session = _get_session(request.scan_id)
    if session.task.done():
        raise HTTPException(status_code=409, detail="Scan is not running")

    timestamp = request.timestamp
    if timestamp is None:
        timestamp = time.monotonic() - session.started_at
    frame = _decode_frame(request.frame_base64, timestamp)

    accepted = True
    try:
        session.source.put_nowait(frame)
    except asyncio.QueueFull:
        logger.warning(f"Frame queue full for {request.scan_id}, dropping frame")
        accepted = False
    except FrameSourceExhausted:
        raise HTTPException(status_code=409, detail="Scan is not accepting frames")

    orchestrator = session.orchestrator
    return StreamFrameResponse(
        accepted=accepted,
        queued=session.source.qsize(),
        frames_processed=orchestrator.frames_processed,
        violation_count=len(orchestrator.get_violations()),
    )


@router.post("/stop")
async def stop_scan(request: StopScanRequest) -> Dict[str, Any]:
    """
    Stop a scan and return its final result.

    Frames still queued are discarded; the scan finishes at the next
    frame boundary.
    """
    session = _get_session(request.scan_id)
    orchestrator = session.orchestrator

    orchestrator.stop()
    result: Optional[ScanResult] = None
    try:
        result = await session.task
    except FrameSourceExhausted as e:
        logger.warning(f"Scan {request.scan_id} ended early: {e}")
    except Exception as e:
        logger.error(f"Scan {request.scan_id} failed: {e}")

    if result is None:
        result = orchestrator.last_result
    if result is None:
        raise HTTPException(status_code=500, detail="Scan produced no result")

    await orchestrator.close()
    _sessions.pop(request.scan_id, None)
    return result.to_dict()


@router.post("/re-enroll")
async def re_enroll(request: ReEnrollRequest) -> Dict[str, Any]:
    """Replace the enrolled identity of a running scan"""
    session = _get_session(request.scan_id)
    try:
        identity = IdentityProfile(identity_id=request.identity_id, landmarks=tuple(request.landmarks))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid enrollment: {e}")

    session.orchestrator.re_enroll(identity)
    return {"scan_id": request.scan_id, "identity_id": identity.identity_id, "re_enrolled": True}


@router.get("/status/{scan_id}", response_model=ScanStatusResponse)
async def get_scan_status(scan_id: str):
    """
    Get current status of a scan.
    """
    orchestrator = _get_session(scan_id).orchestrator
    violations = orchestrator.get_violations()
    risk = RiskAggregator().assess(violations)

    signals = {
        kind.value: {
            "confidence": signal.confidence,
            "absent": signal.absent,
            "reason": signal.reason,
            "timestamp": signal.timestamp,
        }
        for kind, signal in orchestrator.get_current_signals().items()
    }

    return ScanStatusResponse(
        scan_id=scan_id,
        state=orchestrator.state.value,
        progress=orchestrator.get_progress(),
        frames_processed=orchestrator.frames_processed,
        violation_count=len(violations),
        risk_score=risk.score,
        risk_level=risk.level.value,
        signals=signals,
    )


@router.get("/violations/{scan_id}")
async def get_scan_violations(scan_id: str) -> List[Dict[str, Any]]:
    """Violations recorded so far, oldest first"""
    orchestrator = _get_session(scan_id).orchestrator
    return [v.to_dict() for v in orchestrator.get_violations()]


@router.get("/models-status", response_model=ModelStatusResponse)
async def get_models_status():
    """
    Check which vision backends are available.
    """
    return ModelStatusResponse(**check_models(settings.MODEL_DIR))


@router.get("/health")
async def health():
    return {"status": "healthy", "active_scans": len(_sessions)}
