"""
Frame Scheduler / Orchestrator
==============================

Runs one capture job end to end:

    session -> clock install -> navigate -> encoder spawn
    -> for each frame: step clock, seek page timeline, gate, fingerprint,
       capture, encode
    -> finalize encoder -> CaptureStats

The job advances virtual time to exact frame instants, so output timing
does not depend on how long rendering, capture or encoding take.
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Union

from vtcapture.cancellation import CancellationToken
from vtcapture.capture.encoder import StreamingEncoderBridge
from vtcapture.capture.fingerprint import FINGERPRINT_SCRIPT, FrameDeduplicator, fingerprint_state
from vtcapture.capture.pixels import png_to_rgba
from vtcapture.capture.recording import CONTROL_FUNCTION_NAME, RecordingControl
from vtcapture.capture.session import RenderSession
from vtcapture.clock import VirtualClock
from vtcapture.config import CaptureSettings
from vtcapture.errors import CaptureError, ConfigurationError, SignalTimeoutError
from vtcapture.metrics import CaptureMetrics, get_metrics
from vtcapture.schemas import (
    CaptureJobConfig,
    CaptureStats,
    RecordingState,
    StopReason,
    load_job_config,
)
from vtcapture.tracing import ErrorCodes, get_job_logger, new_job_id, reset_job_id, set_job_id

logger = logging.getLogger(__name__)

# Returns the region's viewport rectangle, or null when it is missing.
BOUNDS_SCRIPT = """
(selector) => {
  const region = document.querySelector(selector);
  if (!region) {
    return null;
  }
  const rect = region.getBoundingClientRect();
  return { x: rect.left, y: rect.top, width: rect.width, height: rect.height };
}
"""

TRANSPARENT_BACKGROUND_SCRIPT = """
(selector) => {
  document.documentElement.style.background = 'transparent';
  if (document.body) {
    document.body.style.background = 'transparent';
  }
  const region = document.querySelector(selector);
  if (region) {
    region.style.background = 'transparent';
  }
  return true;
}
"""

# Calls the page's seekToTime(seconds) hook when it defines one. A returned
# promise usually settles on the next animation frame, which only arrives
# with the next clock step, so it is not awaited.
SEEK_TIME_SCRIPT = """
(seconds) => {
  if (typeof window.seekToTime !== 'function') {
    return false;
  }
  const result = window.seekToTime(seconds);
  if (result && typeof result.catch === 'function') {
    result.catch((e) => console.error('seekToTime failed:', e));
  }
  return true;
}
"""


@dataclass(frozen=True)
class FrameRequest:
    """One clock step. target_timestamp_ms is relative to the job's origin."""
    frame_index: int
    target_timestamp_ms: float
    origin_ms: float = 0.0

    @classmethod
    def for_index(cls, frame_index: int, fps: int, origin_ms: float = 0.0) -> "FrameRequest":
        return cls(frame_index, frame_index * 1000.0 / fps, origin_ms)

    @property
    def clock_time_ms(self) -> float:
        return self.origin_ms + self.target_timestamp_ms


@dataclass
class _JobContext:
    config: CaptureJobConfig
    session: Any
    clock: VirtualClock
    dedup: FrameDeduplicator
    recording: Optional[RecordingControl]
    deadline: float
    encoder: Optional[StreamingEncoderBridge] = None
    origin_ms: float = 0.0
    stats: CaptureStats = field(default_factory=CaptureStats)


class CaptureOrchestrator:
    """
    Drives capture jobs.

    Each run() owns its own render session, virtual clock and encoder
    process; nothing is shared between jobs except settings and metrics.

    Example:
        orchestrator = CaptureOrchestrator()
        stats = await orchestrator.run(CaptureJobConfig(
            url="file:///tmp/animation.html",
            output_path="/tmp/animation.webm",
            duration_seconds=2,
            fps=30,
        ))
        print(stats.total_frames, stats.duplicate_frames)
    """

    def __init__(
        self,
        settings: Optional[CaptureSettings] = None,
        session_factory: Optional[Callable[..., Any]] = None,
        encoder_factory: Optional[Callable[..., Any]] = None,
        time_source: Callable[[], float] = time.monotonic,
        cancellation: Optional[CancellationToken] = None,
        metrics: Optional[CaptureMetrics] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            settings: Pipeline settings. Defaults read from environment.
            session_factory: Callable(config, settings) returning a render session
            encoder_factory: Callable(config, settings) returning an encoder bridge
            time_source: Wall clock for the safety deadline and signal wait
            cancellation: Token checked between frames
            metrics: Metrics collector. Defaults to the global one.
        """
        self.settings = settings or CaptureSettings()
        self._metrics = metrics or get_metrics()
        self._session_factory = session_factory or RenderSession
        self._encoder_factory = encoder_factory or (
            lambda config, settings: StreamingEncoderBridge(config, settings, metrics=self._metrics)
        )
        self._time_source = time_source
        self._cancellation = cancellation
        self._job_logger = get_job_logger()

    async def run(self, config: Union[CaptureJobConfig, Dict[str, Any]]) -> CaptureStats:
        """
        Capture one job to its output file.

        Returns:
            CaptureStats for the finished job

        Raises:
            CaptureJobError: Any fatal pipeline failure, after cleanup
        """
        if not isinstance(config, CaptureJobConfig):
            config = load_job_config(config)

        job_id = new_job_id()
        job_token = set_job_id(job_id)
        self._job_logger.job_start(
            job_id,
            url=config.url,
            fps=config.fps,
            duration_seconds=config.duration_seconds,
            codec=config.codec.value,
            recording_control=config.enable_recording_control,
        )

        started = time.perf_counter()
        ctx = self._new_context(config)
        try:
            await self._setup(ctx)
            await self._frame_loop(ctx)
            stats = await self._finish(ctx, started)
        except Exception as e:
            self._metrics.record_job(False, ErrorCodes.categorize(e))
            self._job_logger.job_error(job_id, e, frames=ctx.stats.total_frames)
            raise
        finally:
            if ctx.encoder is not None:
                await ctx.encoder.abort()
            await ctx.session.close()
            reset_job_id(job_token)

        self._metrics.record_job(True)
        self._job_logger.job_complete(job_id, stats.to_metadata(config))
        return stats

    def _new_context(self, config: CaptureJobConfig) -> _JobContext:
        session = self._session_factory(config, self.settings)
        recording = None
        if config.enable_recording_control:
            recording = RecordingControl(config.max_duration_seconds, time_source=self._time_source)
        return _JobContext(
            config=config,
            session=session,
            clock=VirtualClock(session),
            dedup=FrameDeduplicator(enabled=config.enable_dedup),
            recording=recording,
            deadline=self._time_source() + config.max_duration_seconds,
            stats=CaptureStats(output_path=config.output_path),
        )

    async def _setup(self, ctx: _JobContext) -> None:
        config = ctx.config
        await ctx.session.start()
        await ctx.clock.install()

        if ctx.recording is not None:
            await ctx.session.expose_function(CONTROL_FUNCTION_NAME, ctx.recording.handle_signal)
            ctx.session.on_console(ctx.recording.handle_console)

        await ctx.session.navigate(config.url)
        if self.settings.start_delay > 0:
            await asyncio.sleep(self.settings.start_delay)

        if config.transparent_background:
            await ctx.session.evaluate(TRANSPARENT_BACKGROUND_SCRIPT, config.capture_selector)
        await self._region_bounds(ctx)

        ctx.encoder = self._encoder_factory(config, self.settings)
        await ctx.encoder.start()

        if config.wait_for_start_signal:
            await self._wait_for_start(ctx)
        ctx.origin_ms = ctx.clock.current_time

        logger.info(
            f"[SCHEDULER] Capturing {config.url} at {config.fps}fps "
            f"({config.total_frames} frames, origin {ctx.origin_ms:.3f}ms)"
        )

    async def _wait_for_start(self, ctx: _JobContext) -> None:
        """Nudge the clock forward until the page sends a start signal."""
        timeout = self.settings.start_signal_timeout
        waited_from = self._time_source()
        logger.info(f"[SCHEDULER] Waiting up to {timeout}s for start signal")

        while ctx.recording.state == RecordingState.NOT_STARTED:
            if self._cancelled() or ctx.recording.check_deadline():
                return
            if self._time_source() - waited_from >= timeout:
                raise SignalTimeoutError(timeout)
            await ctx.clock.advance(self.settings.start_signal_step_ms)
            await asyncio.sleep(self.settings.start_signal_poll_ms / 1000)

        logger.info(f"[SCHEDULER] Start signal received at {ctx.clock.current_time:.3f}ms")

    async def _frame_loop(self, ctx: _JobContext) -> None:
        config = ctx.config
        budget = config.total_frames
        fixed_length = ctx.recording is None
        frame_index = 0

        while True:
            if fixed_length and frame_index >= budget:
                break
            if not fixed_length and budget and ctx.stats.total_frames >= budget:
                break
            stop_reason = self._stop_reason(ctx)
            if stop_reason is not None:
                ctx.stats.stop_reason = stop_reason
                logger.info(f"[SCHEDULER] Frame loop ended: {stop_reason.value}")
                break

            request = FrameRequest.for_index(frame_index, config.fps, ctx.origin_ms)
            final = fixed_length and frame_index == budget - 1
            await self._process_frame(ctx, request, final)
            frame_index += 1

            if frame_index % config.fps == 0:
                logger.info(
                    f"[SCHEDULER] {frame_index} steps, {ctx.stats.total_frames} frames out "
                    f"({ctx.stats.duplicate_frames} repeats, {ctx.stats.skipped_frames} skipped)"
                )

        if ctx.recording is not None:
            ctx.stats.recording_state = ctx.recording.state

    def _stop_reason(self, ctx: _JobContext) -> Optional[StopReason]:
        if self._cancelled():
            return StopReason.CANCELLED
        if ctx.recording is not None:
            if ctx.recording.check_deadline():
                return StopReason.DEADLINE
            if ctx.recording.is_stopped:
                return StopReason.STOPPED
            return None
        if self._time_source() >= ctx.deadline:
            logger.warning("[SCHEDULER] Safety deadline reached, stopping early")
            return StopReason.DEADLINE
        return None

    def _cancelled(self) -> bool:
        return self._cancellation is not None and self._cancellation.is_cancelled

    async def _process_frame(self, ctx: _JobContext, request: FrameRequest, final: bool) -> None:
        config = ctx.config
        ctx.stats.scheduled_frames += 1

        await ctx.clock.go_to(request.clock_time_ms)
        await ctx.session.evaluate(SEEK_TIME_SCRIPT, request.target_timestamp_ms / 1000)
        if self.settings.paint_settle_ms > 0:
            await asyncio.sleep(self.settings.paint_settle_ms / 1000)
        ctx.encoder.raise_if_failed()

        if ctx.recording is not None and not ctx.recording.should_forward:
            ctx.stats.excluded_frames += 1
            self._metrics.record_excluded()
            return

        bounds = await self._region_bounds(ctx)
        fingerprint = None
        try:
            if config.enable_dedup:
                fingerprint = await self._fingerprint(ctx)
                if ctx.dedup.classify(fingerprint):
                    await ctx.encoder.repeat(request.frame_index)
                    ctx.stats.duplicate_frames += 1
                    self._count_output(ctx)
                    return
            pixels = await self._capture(ctx, bounds)
        except CaptureError as e:
            if e.frame_index is None:
                e.frame_index = request.frame_index
            if final:
                raise
            self._skip(ctx, request, e)
            return

        await ctx.encoder.write(pixels, request.frame_index)
        ctx.dedup.commit(fingerprint)
        ctx.stats.unique_frames += 1
        self._count_output(ctx)

    async def _region_bounds(self, ctx: _JobContext) -> Dict[str, float]:
        selector = ctx.config.capture_selector
        bounds = await ctx.session.evaluate(BOUNDS_SCRIPT, selector)
        if bounds is None:
            raise ConfigurationError(f"Capture region '{selector}' not found in page")
        return bounds

    async def _fingerprint(self, ctx: _JobContext) -> Optional[str]:
        state = await ctx.session.evaluate(FINGERPRINT_SCRIPT, ctx.config.capture_selector)
        if state is None:
            return None
        return fingerprint_state(state)

    async def _capture(self, ctx: _JobContext, bounds: Dict[str, float]) -> bytes:
        config = ctx.config
        left = math.floor(bounds["x"])
        top = math.floor(bounds["y"])
        x = max(0, left)
        y = max(0, top)
        # Off-screen parts of the region are cut from the clip size too
        clip = {
            "x": x,
            "y": y,
            "width": min(config.width - x, math.ceil(bounds["width"]) + min(0, left)),
            "height": min(config.height - y, math.ceil(bounds["height"]) + min(0, top)),
        }
        if clip["width"] < 1 or clip["height"] < 1:
            raise CaptureError(f"Capture region has no visible area ({clip})")

        started = time.perf_counter()
        png = await ctx.session.screenshot(clip)
        pixels = png_to_rgba(png, config.width, config.height)
        self._metrics.record_capture((time.perf_counter() - started) * 1000)
        return pixels

    def _skip(self, ctx: _JobContext, request: FrameRequest, error: CaptureError) -> None:
        ctx.stats.skipped_frames += 1
        ctx.dedup.reset()
        self._metrics.record_skip()
        logger.warning(f"[SCHEDULER] Skipping frame {request.frame_index}: {error}")

    def _count_output(self, ctx: _JobContext) -> None:
        ctx.stats.total_frames += 1
        if ctx.recording is not None:
            ctx.recording.record_frame()

    async def _finish(self, ctx: _JobContext, started: float) -> CaptureStats:
        stats = ctx.stats
        if stats.total_frames == 0:
            logger.warning("[SCHEDULER] No frames were recorded; no output written")
            await ctx.encoder.abort()
        else:
            report = await ctx.encoder.finalize()
            stats.output_path = report.output_path
            stats.output_size_bytes = report.output_size_bytes

        elapsed = time.perf_counter() - started
        stats.processing_time_seconds = elapsed
        stats.average_fps = stats.total_frames / elapsed if elapsed > 0 else 0.0
        logger.info(
            f"[SCHEDULER] Done: {stats.total_frames} frames ({stats.unique_frames} unique, "
            f"{stats.duplicate_frames} repeats, {stats.skipped_frames} skipped, "
            f"{stats.excluded_frames} excluded) in {elapsed:.2f}s"
        )
        return stats


async def capture_video(
    config: Union[CaptureJobConfig, Dict[str, Any]],
    settings: Optional[CaptureSettings] = None,
    cancellation: Optional[CancellationToken] = None,
) -> CaptureStats:
    """Capture a single job with default session and encoder."""
    orchestrator = CaptureOrchestrator(settings=settings, cancellation=cancellation)
    return await orchestrator.run(config)
