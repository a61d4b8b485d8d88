"""
Pydantic schemas for the capture pipeline.

Defines data models for:
- Job configuration (resolution, FPS, codec, quality, recording control)
- Recording control state
- Capture statistics and the machine-readable metadata record
"""

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from vtcapture.errors import ConfigurationError


class Codec(str, Enum):
    """Supported output codecs."""

    VP9 = "vp9"
    VP8 = "vp8"
    H264 = "h264"

    @property
    def supports_alpha(self) -> bool:
        return self in (Codec.VP9, Codec.VP8)

    @property
    def default_pixel_format(self) -> str:
        return "yuva420p" if self.supports_alpha else "yuv420p"

    @property
    def container(self) -> str:
        return "webm" if self.supports_alpha else "mp4"


class RecordingState(str, Enum):
    """Recording control states. STOPPED is terminal."""

    NOT_STARTED = "NOT_STARTED"
    RECORDING = "RECORDING"
    PAUSED = "PAUSED"
    STOPPED = "STOPPED"


class StopReason(str, Enum):
    """Why the frame loop ended."""

    COMPLETED = "completed"
    STOPPED = "stopped"
    DEADLINE = "deadline"
    CANCELLED = "cancelled"


class CaptureJobConfig(BaseModel):
    """
    Configuration for a single capture job. Immutable once created.

    Defaults match a full HD transparent WebM capture:
    - 1920x1080 @ 60fps
    - VP9, CRF 23, yuva420p
    - Frame deduplication on, recording control off
    - 300 second wall-clock safety limit

    Example:
        config = CaptureJobConfig(
            url="file:///tmp/animation.html",
            output_path="/tmp/animation.webm",
            duration_seconds=5,
            fps=30,
        )
    """

    model_config = ConfigDict(frozen=True)

    url: str = Field(..., min_length=1, description="Page to capture")
    output_path: str = Field(..., min_length=1, description="Encoded video file path")
    fps: int = Field(default=60, ge=1, le=240, description="Frames per second")
    duration_seconds: float = Field(..., gt=0, description="Animation duration in seconds")
    width: int = Field(default=1920, ge=2, le=7680, description="Frame width in pixels")
    height: int = Field(default=1080, ge=2, le=4320, description="Frame height in pixels")
    capture_selector: str = Field(
        default="#stage",
        min_length=1,
        description="CSS selector of the capture region",
    )
    quality_level: int = Field(
        default=23,
        ge=0,
        le=63,
        description="CRF value (lower = better quality)",
    )
    codec: Codec = Field(default=Codec.VP9, description="Output codec")
    pixel_format: str = Field(default="", description="Encoder pixel format (codec default if empty)")
    transparent_background: bool = Field(
        default=True,
        description="Clear page and stage backgrounds before capture",
    )
    enable_dedup: bool = Field(default=True, description="Repeat visually unchanged frames")
    enable_recording_control: bool = Field(
        default=False,
        description="Let the page start/pause/resume/stop recording",
    )
    wait_for_start_signal: bool = Field(
        default=False,
        description="Idle until the page sends a start signal",
    )
    max_duration_seconds: float = Field(
        default=300,
        gt=0,
        description="Wall-clock safety limit for the whole frame loop",
    )

    @model_validator(mode="before")
    @classmethod
    def _fill_pixel_format(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("pixel_format"):
            codec = Codec(data.get("codec", Codec.VP9))
            data = {**data, "pixel_format": codec.default_pixel_format}
        return data

    @model_validator(mode="after")
    def _check_consistency(self) -> "CaptureJobConfig":
        if self.wait_for_start_signal and not self.enable_recording_control:
            raise ValueError("wait_for_start_signal requires enable_recording_control")
        if self.pixel_format.endswith("420p") and (self.width % 2 or self.height % 2):
            raise ValueError(
                f"{self.pixel_format} needs even dimensions, got {self.width}x{self.height}"
            )
        if self.codec == Codec.H264 and self.quality_level > 51:
            raise ValueError(f"h264 quality_level must be 0-51, got {self.quality_level}")
        if not self.enable_recording_control and self.total_frames < 1:
            raise ValueError("duration_seconds * fps must yield at least one frame")
        return self

    @property
    def total_frames(self) -> int:
        """Fixed frame budget: floor(duration_seconds * fps)."""
        return math.floor(round(self.duration_seconds * self.fps, 6))

    @property
    def frame_interval_ms(self) -> float:
        return 1000.0 / self.fps


def load_job_config(data: dict[str, Any]) -> CaptureJobConfig:
    """
    Build a CaptureJobConfig from raw job parameters.

    Raises:
        ConfigurationError: If any parameter is missing or invalid
    """
    try:
        return CaptureJobConfig(**data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigurationError(f"Invalid capture job config ({problems})", cause=e) from e


class CaptureStats(BaseModel):
    """
    Result of a finished capture job.

    total_frames is the output frame counter: unique writes plus repeats.
    """

    total_frames: int = Field(default=0, ge=0, description="Frames in the output video")
    unique_frames: int = Field(default=0, ge=0, description="Frames written with fresh pixels")
    duplicate_frames: int = Field(default=0, ge=0, description="Frames emitted as repeats")
    skipped_frames: int = Field(default=0, ge=0, description="Frames lost to capture failures")
    scheduled_frames: int = Field(default=0, ge=0, description="Clock steps taken")
    excluded_frames: int = Field(
        default=0,
        ge=0,
        description="Clock steps not forwarded because recording was inactive",
    )
    processing_time_seconds: float = Field(default=0.0, ge=0)
    average_fps: float = Field(default=0.0, ge=0)
    output_path: str = Field(default="")
    output_size_bytes: int = Field(default=0, ge=0)
    stop_reason: StopReason = Field(default=StopReason.COMPLETED)
    recording_state: RecordingState | None = Field(default=None)

    @property
    def file_size_mb(self) -> float:
        return self.output_size_bytes / (1024 * 1024)

    def to_metadata(self, config: CaptureJobConfig) -> dict[str, Any]:
        """Machine-readable record of frame counts, timing and size."""
        if config.enable_recording_control:
            duration = self.total_frames / config.fps
        else:
            duration = config.duration_seconds
        return {
            "generation_time": round(self.processing_time_seconds, 3),
            "processing_speed": round(self.average_fps, 2),
            "total_frames": self.total_frames,
            "captured_frames": self.unique_frames,
            "duplicate_frames": self.duplicate_frames,
            "skipped_frames": self.skipped_frames,
            "duration": duration,
            "recording_control_enabled": config.enable_recording_control,
            "stop_reason": self.stop_reason.value,
            "fps": config.fps,
            "width": config.width,
            "height": config.height,
            "file_size_mb": round(self.file_size_mb, 3),
            "file_size_bytes": self.output_size_bytes,
            "codec": config.codec.value,
            "quality": config.quality_level,
            "output_file": self.output_path,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
