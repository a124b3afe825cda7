"""
Scan Orchestrator - Drives the frame loop for one monitoring session
"""

import asyncio
import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from .calibration import CalibrationProfile, IdentityProfile
from .config import MonitorSettings, build_settings
from .detectors.base import DetectorPlugin
from .exceptions import (
    ConfigValidationError,
    ErrorKind,
    FrameSourceExhausted,
    InitializationError,
    IntegrityMonitorError,
    PluginTimeout,
    ScanInProgress,
)
from .frame_source import FrameSource
from .metrics import ScanMetrics
from .scoring import RiskAggregator, ViolationDecisionEngine
from .temporal import TemporalConsistencyAnalyzer
from .types import Frame, ScanCallbacks, ScanResult, ScanState, Signal, SignalKind, Violation
from .utils.logging import log_plugin_degraded, log_scan_end, log_scan_start, log_violation

logger = logging.getLogger(__name__)


def _consume_exception(future: "asyncio.Future") -> None:
    # results of abandoned plugin calls are never awaited
    if not future.cancelled():
        future.exception()


class ScanOrchestrator:
    """
    Manages scans for a single monitoring session.

    Runs detector plugins concurrently on an orchestrator-owned thread
    pool for each frame, feeds their signals through temporal analysis
    and the decision engine, and accumulates violations.

    States: idle -> scanning -> completed | failed. Only one scan runs
    at a time; a new scan may start once the previous one finished.
    """

    def __init__(self, callbacks: Optional[ScanCallbacks] = None):
        """
        Initialize an orchestrator.

        Args:
            callbacks: Optional progress/violation/complete/error observers
        """
        self.callbacks = callbacks or ScanCallbacks()
        self.settings: Optional[MonitorSettings] = None
        self.calibration: Optional[CalibrationProfile] = None
        self.scan_id: Optional[str] = None
        self.metrics: Optional[ScanMetrics] = None
        self.last_result: Optional[ScanResult] = None

        self._state = ScanState.IDLE
        self._initialized = False
        self._frame_source: Optional[FrameSource] = None
        self._plugins: List[DetectorPlugin] = []

        self._analyzer: Optional[TemporalConsistencyAnalyzer] = None
        self._engine: Optional[ViolationDecisionEngine] = None
        self._risk = RiskAggregator()

        # Snapshot-guarded session state
        self._lock = threading.Lock()
        self._violations: List[Violation] = []
        self._current_signals: Dict[SignalKind, Signal] = {}
        self._progress = 0.0
        self._frames_processed = 0

        # Loop-owned scan state
        self._started_at = 0.0
        self._start_time = 0.0
        self._stop_requested = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._pending: Dict[str, asyncio.Future] = {}
        self._last_signals: Dict[str, Signal] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def state(self) -> ScanState:
        return self._state

    @property
    def plugins(self) -> List[DetectorPlugin]:
        return list(self._plugins)

    def initialize(
        self,
        frame_source: Optional[FrameSource],
        detector_plugins: Optional[Sequence[DetectorPlugin]],
        config: Union[MonitorSettings, Mapping[str, Any], None] = None,
        calibration: Optional[CalibrationProfile] = None,
        enrolled_identity: Optional[IdentityProfile] = None
    ) -> ScanState:
        """
        Validate and install the scan inputs.

        Args:
            frame_source: Source of frames
            detector_plugins: Plugins owned by this orchestrator from now on
            config: MonitorSettings or a mapping of overrides
            calibration: Candidate calibration profile (required)
            enrolled_identity: Landmark profile for identity checks

        Returns:
            ScanState.IDLE when ready

        Raises:
            InitializationError: Missing source, plugins or calibration
            ConfigValidationError: Invalid configuration values
            ScanInProgress: Called while a scan is running
        """
        if self._state is ScanState.SCANNING:
            raise ScanInProgress("Cannot re-initialize while scanning")
        if frame_source is None:
            raise InitializationError("A frame source is required")

        plugins = list(detector_plugins or [])
        if not plugins:
            raise InitializationError("At least one detector plugin is required")
        for plugin in plugins:
            if not isinstance(plugin, DetectorPlugin):
                raise InitializationError(f"{plugin!r} is not a DetectorPlugin")
        names = [p.name for p in plugins]
        if len(set(names)) != len(names):
            raise InitializationError(f"Plugin names must be unique: {names}")
        kinds = [p.kind for p in plugins]
        if len(set(kinds)) != len(kinds):
            raise InitializationError("Each signal kind may be served by only one plugin")

        if calibration is None:
            raise InitializationError("A calibration profile is required")

        if config is None:
            settings = build_settings()
        elif isinstance(config, MonitorSettings):
            settings = config
        else:
            settings = build_settings(**dict(config))

        self.settings = settings
        self.calibration = calibration
        self._frame_source = frame_source
        self._plugins = plugins
        self._analyzer = TemporalConsistencyAnalyzer(settings, enrolled_identity)
        self._engine = ViolationDecisionEngine(settings)
        self._initialized = True
        self._state = ScanState.IDLE

        logger.info(f"Orchestrator initialized with plugins: {', '.join(names)}")
        return self._state

    def stop(self) -> None:
        """
        Request the running scan to finish.

        Safe to call from any thread. Takes effect before the next frame
        boundary; a plugin fan-out already in flight completes first.
        """
        if self._state is not ScanState.SCANNING:
            return
        self._stop_requested = True
        loop, event = self._loop, self._stop_event
        if loop is not None and event is not None and not loop.is_closed():
            loop.call_soon_threadsafe(event.set)

    def re_enroll(self, identity: IdentityProfile) -> None:
        """Replace the enrolled identity used for drift checks"""
        if self._analyzer is None:
            raise InitializationError("Orchestrator is not initialized")
        self._analyzer.re_enroll(identity)

    async def close(self) -> None:
        """Release plugins and the frame source"""
        if self._state is ScanState.SCANNING:
            raise ScanInProgress("Stop the scan before closing")
        for plugin in self._plugins:
            plugin.close()
        if self._frame_source is not None:
            await self._frame_source.close()

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def get_current_signals(self) -> Dict[SignalKind, Signal]:
        with self._lock:
            return dict(self._current_signals)

    def get_violations(self) -> List[Violation]:
        with self._lock:
            return list(self._violations)

    def get_progress(self) -> float:
        with self._lock:
            return self._progress

    @property
    def frames_processed(self) -> int:
        with self._lock:
            return self._frames_processed

    # ------------------------------------------------------------------
    # Scan loop
    # ------------------------------------------------------------------

    async def start_scan(self, duration_ms: Optional[float] = None, scan_id: Optional[str] = None) -> ScanResult:
        """
        Run a scan until its duration elapses or stop() is called.

        Args:
            duration_ms: Scan length; defaults to settings.scan_duration_ms,
                         unbounded when both are None
            scan_id: Optional custom scan ID (auto-generated if not provided)

        Returns:
            ScanResult of the completed scan

        Raises:
            ScanInProgress: A scan is already running
            InitializationError: initialize() was not called
            FrameSourceExhausted: The source ran dry mid-scan (state -> failed)
        """
        if self._state is ScanState.SCANNING:
            raise ScanInProgress(f"Scan {self.scan_id} is already running")
        if not self._initialized:
            raise InitializationError("Orchestrator is not initialized")

        if duration_ms is None:
            duration_ms = self.settings.scan_duration_ms
        if duration_ms is not None and duration_ms <= 0:
            raise ConfigValidationError(f"Scan duration must be positive, got {duration_ms}")

        self._state = ScanState.SCANNING
        self._begin(scan_id)
        self._loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()
        executor = ThreadPoolExecutor(
            max_workers=max(2, 2 * len(self._plugins)),
            thread_name_prefix=f"detector-{self.scan_id}"
        )

        log_scan_start(self.scan_id, [p.name for p in self._plugins], duration_ms, self.settings.frame_rate)

        try:
            await self._run(executor, duration_ms)
        except asyncio.CancelledError:
            self._fail(ErrorKind.SCAN_FAILED, "Scan cancelled", duration_ms)
            raise
        except IntegrityMonitorError as e:
            self._fail(e.kind, str(e), duration_ms)
            raise
        except Exception as e:
            logger.exception(f"Scan {self.scan_id} failed")
            self._fail(ErrorKind.SCAN_FAILED, str(e), duration_ms)
            raise
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
            self._pending.clear()
            self._stop_event = None
            self._loop = None

        result = self._build_result(ScanState.COMPLETED, duration_ms)
        self.last_result = result
        self._set_progress(1.0)
        self._state = ScanState.COMPLETED
        log_scan_end(self.scan_id, result.state.value, result.risk_score.score,
                     len(result.violations), result.frames_processed)
        self._notify("on_scan_complete", result)
        return result

    def _begin(self, scan_id: Optional[str]) -> None:
        self.scan_id = scan_id or f"SCN_{uuid.uuid4().hex[:6].upper()}"
        self.metrics = ScanMetrics(scan_id=self.scan_id)
        self._stop_requested = False
        self._pending = {}
        self._last_signals = {}
        self._analyzer.reset()
        self._engine.reset()
        for plugin in self._plugins:
            plugin.reset()
        with self._lock:
            self._violations = []
            self._current_signals = {}
            self._progress = 0.0
            self._frames_processed = 0
        self._start_time = time.time()
        self._started_at = time.monotonic()

    async def _run(self, executor: ThreadPoolExecutor, duration_ms: Optional[float]) -> None:
        interval = self.settings.frame_interval_s
        start = self._started_at

        duration_s = None
        expected = None
        deadline = None
        if duration_ms is not None:
            duration_s = duration_ms / 1000.0
            expected = self._expected_frames(duration_ms)
            deadline = start + duration_s + interval

        slot = 0
        while not self._stop_requested:
            if expected is not None and self.frames_processed >= expected:
                break
            now = time.monotonic()
            if deadline is not None and now >= deadline:
                logger.info(f"Scan {self.scan_id} reached its deadline after {self.frames_processed} frames")
                break

            target = start + slot * interval
            if target > now and await self._wait_for_stop(target - now):
                break

            frame = await self._next_frame(deadline)
            if frame is None or self._stop_requested:
                break

            await self._process(frame, executor, deadline)

            slot = max(slot + 1, int((time.monotonic() - start) / interval))
            if duration_s is not None:
                self._set_progress((time.monotonic() - start) / duration_s)

    async def _wait_for_stop(self, delay: float) -> bool:
        """Sleep for delay; True if stop() interrupted the wait"""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            return True
        except asyncio.TimeoutError:
            return False

    async def _next_frame(self, deadline: Optional[float]) -> Optional[Frame]:
        """Next frame, or None when stopped or out of time"""
        fetch = asyncio.ensure_future(self._frame_source.next_frame())
        stopper = asyncio.ensure_future(self._stop_event.wait())
        timeout = None if deadline is None else max(0.0, deadline - time.monotonic())
        try:
            done, _ = await asyncio.wait({fetch, stopper}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopper.cancel()
        if fetch in done:
            return fetch.result()
        fetch.cancel()
        return None

    async def _process(self, frame: Frame, executor: ThreadPoolExecutor, deadline: Optional[float]) -> None:
        timeout = self.settings.plugin_timeout_s
        if deadline is not None:
            timeout = max(0.0, min(timeout, deadline - time.monotonic()))

        signals = list(await asyncio.gather(*(
            self._invoke(plugin, frame, executor, timeout) for plugin in self._plugins
        )))

        enriched = [self._analyzer.analyze(signal) for signal in signals]
        frame_index = self.frames_processed
        violations = self._engine.decide(enriched, frame.timestamp, frame_index)

        with self._lock:
            self._violations.extend(violations)
            for signal in signals:
                self._current_signals[signal.kind] = signal
            self._frames_processed += 1

        self.metrics.update(signals)
        self.metrics.record_violations(violations)
        for violation in violations:
            log_violation(self.scan_id, violation.type, violation.severity.value,
                          violation.confidence, violation.auto_block)
            self._notify("on_violation", violation)

    async def _invoke(self, plugin: DetectorPlugin, frame: Frame,
                      executor: ThreadPoolExecutor, timeout: float) -> Signal:
        """Run one plugin with a time limit; never raises"""
        pending = self._pending.get(plugin.name)
        if pending is not None and not pending.done():
            return self._degraded(plugin, frame, "busy")

        future = self._loop.run_in_executor(executor, plugin.analyze, frame, self._last_signals.get(plugin.name))
        future.add_done_callback(_consume_exception)
        self._pending[plugin.name] = future

        try:
            signal = await asyncio.wait_for(asyncio.shield(future), timeout=timeout)
        except asyncio.TimeoutError:
            return self._degraded(plugin, frame, "timeout", str(PluginTimeout(plugin.name, timeout)))
        except Exception as e:
            return self._degraded(plugin, frame, "error", f"{type(e).__name__}: {e}")

        if not isinstance(signal, Signal) or signal.kind is not plugin.kind:
            return self._degraded(plugin, frame, "error", "invalid signal")

        self._last_signals[plugin.name] = signal
        return signal

    def _degraded(self, plugin: DetectorPlugin, frame: Frame, reason: str, detail: Optional[str] = None) -> Signal:
        self.metrics.record_degraded(plugin.name, reason)
        if reason == "busy":
            logger.debug(f"Plugin {plugin.name} still busy, skipped frame")
        else:
            log_plugin_degraded(self.scan_id, plugin.name, detail or reason)
        return Signal.degraded(plugin.kind, frame.timestamp, plugin.name, detail or reason)

    # ------------------------------------------------------------------
    # Results and observers
    # ------------------------------------------------------------------

    def _expected_frames(self, duration_ms: float) -> int:
        return max(1, int(round(duration_ms / 1000.0 * self.settings.frame_rate)))

    def _build_result(self, state: ScanState, duration_ms: Optional[float], error: Optional[str] = None) -> ScanResult:
        elapsed = time.monotonic() - self._started_at
        violations = self.get_violations()
        frames = self.frames_processed

        if duration_ms is not None:
            expected = self._expected_frames(duration_ms)
        else:
            expected = max(1, frames, int(round(elapsed * self.settings.frame_rate)))
        completeness = min(1.0, frames / expected)

        summary = self.metrics.get_summary()
        summary["active_episodes"] = self._engine.active_episodes()
        summary["latest"] = {
            kind.value: {"confidence": s.confidence, "absent": s.absent}
            for kind, s in self.get_current_signals().items()
        }

        return ScanResult(
            scan_id=self.scan_id,
            start_time=self._start_time,
            duration_ms=elapsed * 1000.0,
            state=state,
            frames_processed=frames,
            expected_frames=expected,
            signals_summary=summary,
            violations=tuple(violations),
            quality_score=0.2 + 0.8 * completeness * self.metrics.acceptance_ratio(),
            confidence_score=self.metrics.mean_confidence(),
            completeness_score=completeness,
            risk_score=self._risk.assess(violations, elapsed),
            error=error,
        )

    def _fail(self, kind: ErrorKind, message: str, duration_ms: Optional[float]) -> None:
        self.last_result = self._build_result(ScanState.FAILED, duration_ms, error=message)
        self._state = ScanState.FAILED
        log_scan_end(self.scan_id, ScanState.FAILED.value, self.last_result.risk_score.score,
                     len(self.last_result.violations), self.last_result.frames_processed)
        self._notify("on_error", kind, message)

    def _set_progress(self, fraction: float) -> None:
        fraction = min(1.0, max(0.0, fraction))
        with self._lock:
            if fraction <= self._progress and self._progress > 0.0:
                return
            self._progress = fraction
        self._notify("on_progress", fraction)

    def _notify(self, name: str, *args) -> None:
        callback = getattr(self.callbacks, name)
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception(f"Scan callback {name} raised")
