"""
Capture Job Error Taxonomy

Every failure raised by the capture pipeline derives from CaptureJobError
and records which stage failed and the underlying cause, so configuration
mistakes can be told apart from transient or environment failures.
"""

from __future__ import annotations


class CaptureJobError(Exception):
    """Base error for a capture job.

    Attributes:
        stage: Pipeline stage that failed (config, engine, capture, encoder, recording)
        cause: Underlying exception, if any
        recoverable: Whether the frame loop may absorb this error
    """

    stage = "job"
    recoverable = False

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        self.cause = cause
        super().__init__(message)

    def __str__(self) -> str:
        message = super().__str__()
        if self.cause is not None:
            return f"[{self.stage}] {message}: {self.cause}"
        return f"[{self.stage}] {message}"


class ConfigurationError(CaptureJobError):
    """Missing capture target or invalid job parameters."""

    stage = "config"


class EngineCommunicationError(CaptureJobError):
    """A round-trip to the rendering session failed or timed out."""

    stage = "engine"


class CaptureError(CaptureJobError):
    """A single frame could not be captured. The frame loop skips it."""

    stage = "capture"
    recoverable = True

    def __init__(
        self,
        message: str,
        frame_index: int | None = None,
        cause: BaseException | None = None,
    ) -> None:
        self.frame_index = frame_index
        super().__init__(message, cause)


class EncoderError(CaptureJobError):
    """Base for encoder subprocess failures."""

    stage = "encoder"


class EncoderSpawnError(EncoderError):
    """The encoder subprocess could not be started."""


class EncoderWriteError(EncoderError):
    """Writing a frame to the encoder's input stream failed."""


class EncoderTimeoutError(EncoderError):
    """A write or the finalization step was not acknowledged in time."""

    def __init__(
        self,
        timeout: float,
        operation: str = "Encoder write",
        cause: BaseException | None = None,
    ) -> None:
        self.timeout = timeout
        self.operation = operation
        super().__init__(f"{operation} timed out after {timeout} seconds", cause)


class EncoderExitError(EncoderError):
    """The encoder exited with a non-zero code."""

    def __init__(self, returncode: int | None, diagnostics: str = "") -> None:
        self.returncode = returncode
        self.diagnostics = diagnostics
        message = f"Encoder exited with code {returncode}"
        if diagnostics:
            message = f"{message}\n{diagnostics}"
        super().__init__(message)


class EncoderOutputError(EncoderError):
    """The encoder exited cleanly but the output artifact is missing or empty."""


class SignalTimeoutError(CaptureJobError):
    """Waited too long for the page to send a recording start signal."""

    stage = "recording"

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(f"No recording start signal within {timeout} seconds")
