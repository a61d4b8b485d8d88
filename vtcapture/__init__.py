"""
vtcapture
=========

Deterministic video capture of web animations. A virtual clock replaces
the page's time sources, the capture loop steps it to exact frame
instants, and frames stream straight into ffmpeg.
"""

from vtcapture.cancellation import CancellationToken
from vtcapture.capture import CaptureOrchestrator, FrameRequest, capture_video
from vtcapture.clock import VirtualClock
from vtcapture.config import CaptureSettings
from vtcapture.errors import (
    CaptureError,
    CaptureJobError,
    ConfigurationError,
    EncoderError,
    EncoderExitError,
    EncoderOutputError,
    EncoderSpawnError,
    EncoderTimeoutError,
    EncoderWriteError,
    EngineCommunicationError,
    SignalTimeoutError,
)
from vtcapture.schemas import (
    CaptureJobConfig,
    CaptureStats,
    Codec,
    RecordingState,
    StopReason,
    load_job_config,
)
from vtcapture.tracing import setup_structured_logging

__version__ = "0.1.0"

__all__ = [
    # Schemas
    "CaptureJobConfig",
    "CaptureStats",
    "Codec",
    "RecordingState",
    "StopReason",
    "load_job_config",
    # Config
    "CaptureSettings",
    "CancellationToken",
    "setup_structured_logging",
    # Pipeline
    "CaptureOrchestrator",
    "FrameRequest",
    "VirtualClock",
    "capture_video",
    # Errors
    "CaptureJobError",
    "ConfigurationError",
    "EngineCommunicationError",
    "CaptureError",
    "EncoderError",
    "EncoderSpawnError",
    "EncoderWriteError",
    "EncoderTimeoutError",
    "EncoderExitError",
    "EncoderOutputError",
    "SignalTimeoutError",
]
