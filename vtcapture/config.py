"""
Process-level settings for the capture pipeline.

Per-job parameters live in CaptureJobConfig. CaptureSettings holds the
tuning knobs that stay the same across jobs: encoder binary and timeouts,
browser launch options, and real-time delays.
"""

import os
from dataclasses import dataclass, field

DEFAULT_BROWSER_ARGS = [
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
    "--disable-dev-shm-usage",
    "--disable-extensions",
    "--disable-sync",
    "--no-first-run",
    "--enable-webgl",
    "--disable-features=TranslateUI",
]


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


@dataclass
class CaptureSettings:
    """
    Tuning for the capture pipeline.

    Reads overrides from environment variables for any field left at None.

    Environment Variables:
        VTCAPTURE_FFMPEG_PATH: Encoder binary (default: ffmpeg)
        VTCAPTURE_WRITE_TIMEOUT: Seconds a single frame write may wait for drain (default: 10)
        VTCAPTURE_DRAIN_TIMEOUT: Seconds finalize waits for the write queue (default: 10)
        VTCAPTURE_FINALIZE_TIMEOUT: Seconds finalize waits for encoder exit (default: 30)
        VTCAPTURE_KILL_GRACE: Seconds between SIGTERM and SIGKILL (default: 5)
        VTCAPTURE_QUEUE_SIZE: Encoder queue capacity in frames (default: 4)
        VTCAPTURE_PAINT_SETTLE_MS: Real-time pause after each clock step (default: 5)
        VTCAPTURE_NAVIGATION_TIMEOUT: Page load timeout in seconds (default: 30)
        VTCAPTURE_EVALUATE_TIMEOUT: Seconds per page round-trip (default: 15)
        VTCAPTURE_CAPTURE_TIMEOUT: Seconds per screenshot (default: 15)
        VTCAPTURE_START_DELAY: Real seconds to wait after load (default: 1)
        VTCAPTURE_START_SIGNAL_TIMEOUT: Seconds to wait for a start signal (default: 60)
        VTCAPTURE_HEADLESS: Run the browser headless (default: true)

    Example:
        # From environment
        settings = CaptureSettings()

        # Explicit values (override env)
        settings = CaptureSettings(paint_settle_ms=0, start_delay=0)
    """

    ffmpeg_path: str | None = None
    write_timeout: float | None = None
    drain_timeout: float | None = None
    finalize_timeout: float | None = None
    kill_grace: float | None = None
    encoder_queue_size: int | None = None
    stderr_tail_lines: int = 40
    paint_settle_ms: float | None = None
    navigation_timeout: float | None = None
    evaluate_timeout: float | None = None
    capture_timeout: float | None = None
    start_delay: float | None = None
    start_signal_timeout: float | None = None
    start_signal_step_ms: float = 100.0
    start_signal_poll_ms: float = 50.0
    headless: bool | None = None
    browser_args: list[str] = field(default_factory=lambda: list(DEFAULT_BROWSER_ARGS))

    def __post_init__(self):
        """Load from environment if not provided."""
        if self.ffmpeg_path is None:
            self.ffmpeg_path = os.getenv("VTCAPTURE_FFMPEG_PATH", "ffmpeg")
        if self.write_timeout is None:
            self.write_timeout = _env_float("VTCAPTURE_WRITE_TIMEOUT", 10.0)
        if self.drain_timeout is None:
            self.drain_timeout = _env_float("VTCAPTURE_DRAIN_TIMEOUT", 10.0)
        if self.finalize_timeout is None:
            self.finalize_timeout = _env_float("VTCAPTURE_FINALIZE_TIMEOUT", 30.0)
        if self.kill_grace is None:
            self.kill_grace = _env_float("VTCAPTURE_KILL_GRACE", 5.0)
        if self.encoder_queue_size is None:
            self.encoder_queue_size = _env_int("VTCAPTURE_QUEUE_SIZE", 4)
        if self.paint_settle_ms is None:
            self.paint_settle_ms = _env_float("VTCAPTURE_PAINT_SETTLE_MS", 5.0)
        if self.navigation_timeout is None:
            self.navigation_timeout = _env_float("VTCAPTURE_NAVIGATION_TIMEOUT", 30.0)
        if self.evaluate_timeout is None:
            self.evaluate_timeout = _env_float("VTCAPTURE_EVALUATE_TIMEOUT", 15.0)
        if self.capture_timeout is None:
            self.capture_timeout = _env_float("VTCAPTURE_CAPTURE_TIMEOUT", 15.0)
        if self.start_delay is None:
            self.start_delay = _env_float("VTCAPTURE_START_DELAY", 1.0)
        if self.start_signal_timeout is None:
            self.start_signal_timeout = _env_float("VTCAPTURE_START_SIGNAL_TIMEOUT", 60.0)
        if self.headless is None:
            self.headless = os.getenv("VTCAPTURE_HEADLESS", "true").lower() == "true"
        if self.encoder_queue_size < 1:
            raise ValueError("encoder_queue_size must be at least 1")
