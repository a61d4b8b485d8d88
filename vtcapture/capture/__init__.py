"""
Capture Pipeline
================

Frame scheduling, fingerprint dedup, recording control, the Playwright
render session and the streaming ffmpeg bridge.
"""

from vtcapture.capture.encoder import (
    BridgeState,
    EncoderQueueEntry,
    EncoderReport,
    EntryKind,
    StreamingEncoderBridge,
    build_ffmpeg_args,
)
from vtcapture.capture.fingerprint import (
    FINGERPRINT_SCRIPT,
    DedupStats,
    FrameDeduplicator,
    fingerprint_state,
)
from vtcapture.capture.pixels import png_to_rgba
from vtcapture.capture.recording import (
    CONSOLE_PREFIX,
    CONTROL_FUNCTION_NAME,
    RecordingControl,
)
from vtcapture.capture.scheduler import CaptureOrchestrator, FrameRequest, capture_video
from vtcapture.capture.session import RenderSession

__all__ = [
    # Encoder
    "BridgeState",
    "EncoderQueueEntry",
    "EncoderReport",
    "EntryKind",
    "StreamingEncoderBridge",
    "build_ffmpeg_args",
    # Dedup
    "FINGERPRINT_SCRIPT",
    "DedupStats",
    "FrameDeduplicator",
    "fingerprint_state",
    "png_to_rgba",
    # Recording control
    "CONSOLE_PREFIX",
    "CONTROL_FUNCTION_NAME",
    "RecordingControl",
    # Orchestration
    "CaptureOrchestrator",
    "FrameRequest",
    "capture_video",
    "RenderSession",
]
