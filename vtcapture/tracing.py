"""
Job Tracing & Structured Logging Module

Provides job-scoped correlation IDs, structured JSON logging, and error
categorization for capture jobs.
"""

import os
import sys
import asyncio
import json
import logging
import uuid
from typing import Optional
from datetime import datetime, timezone
from contextvars import ContextVar

from vtcapture.errors import (
    CaptureError,
    CaptureJobError,
    ConfigurationError,
    EncoderExitError,
    EncoderOutputError,
    EncoderSpawnError,
    EncoderTimeoutError,
    EncoderWriteError,
    EngineCommunicationError,
    SignalTimeoutError,
)

# Context variable for the job being processed
_job_id: ContextVar[str] = ContextVar("job_id", default="")

_RESERVED_ATTRS = {
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "thread", "threadName", "exc_info", "exc_text",
    "message", "taskName",
}


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Output format:
    {
        "timestamp": "2024-01-15T10:30:00.000Z",
        "level": "INFO",
        "message": "[SCHEDULER] Frame loop finished",
        "job_id": "3f2a9c1e",
        "extra": {...}
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        job_id = _job_id.get()
        if job_id:
            log_entry["job_id"] = job_id

        # Add source location for errors
        if record.levelno >= logging.ERROR:
            log_entry["source"] = {
                "file": record.filename,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
            }

        extra_fields = {
            key: value for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS
        }
        if extra_fields:
            log_entry["extra"] = extra_fields

        return json.dumps(log_entry, default=str)


def new_job_id() -> str:
    return uuid.uuid4().hex[:8]


def set_job_id(job_id: str):
    """Set the job ID for the current task context"""
    return _job_id.set(job_id)


def get_job_id() -> str:
    return _job_id.get()


def reset_job_id(token) -> None:
    _job_id.reset(token)


class JobLogger:
    """
    Job-scoped logger with standard start/complete/error records.

    Usage:
        job_logger = JobLogger()
        job_logger.job_start(job_id, url=config.url, fps=config.fps)
        job_logger.job_complete(job_id, stats.to_metadata(config))
    """

    def __init__(self, name: str = "vtcapture.job"):
        self.logger = logging.getLogger(name)

    def _log(self, level: int, message: str, **kwargs):
        self.logger.log(level, message, extra=kwargs)

    def job_start(self, job_id: str, **kwargs):
        """Log job start with standard fields"""
        self._log(logging.INFO, "[JOB] Capture job started", job=job_id, **kwargs)

    def job_complete(self, job_id: str, metadata: dict, **kwargs):
        """Log job completion with the metadata record"""
        self._log(
            logging.INFO,
            f"[JOB] Capture job completed: {metadata.get('total_frames', 0)} frames "
            f"in {metadata.get('generation_time', 0)}s",
            job=job_id,
            **metadata,
            **kwargs,
        )

    def job_error(self, job_id: str, error: BaseException, **kwargs):
        """Log job failure with categorization"""
        stage = getattr(error, "stage", "unknown")
        self._log(
            logging.ERROR,
            f"[JOB] Capture job failed at stage '{stage}': {error}",
            job=job_id,
            error_code=ErrorCodes.categorize(error),
            stage=stage,
            **kwargs,
        )


# Error codes for categorization
class ErrorCodes:
    # Job input errors
    INVALID_CONFIG = "INVALID_CONFIG"

    # Environment and runtime errors
    ENGINE_ERROR = "ENGINE_ERROR"
    CAPTURE_FAILED = "CAPTURE_FAILED"
    ENCODER_UNAVAILABLE = "ENCODER_UNAVAILABLE"
    ENCODER_WRITE_FAILED = "ENCODER_WRITE_FAILED"
    ENCODER_EXITED = "ENCODER_EXITED"
    ENCODER_NO_OUTPUT = "ENCODER_NO_OUTPUT"
    SIGNAL_TIMEOUT = "SIGNAL_TIMEOUT"
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    _BY_TYPE = (
        (ConfigurationError, INVALID_CONFIG),
        (EngineCommunicationError, ENGINE_ERROR),
        (CaptureError, CAPTURE_FAILED),
        (EncoderSpawnError, ENCODER_UNAVAILABLE),
        (EncoderTimeoutError, TIMEOUT),
        (EncoderWriteError, ENCODER_WRITE_FAILED),
        (EncoderExitError, ENCODER_EXITED),
        (EncoderOutputError, ENCODER_NO_OUTPUT),
        (SignalTimeoutError, SIGNAL_TIMEOUT),
    )

    @staticmethod
    def categorize(error: BaseException) -> str:
        """Map an exception to a stable error code"""
        for error_type, code in ErrorCodes._BY_TYPE:
            if isinstance(error, error_type):
                return code
        if isinstance(error, CaptureJobError):
            return ErrorCodes.INTERNAL_ERROR
        if isinstance(error, asyncio.TimeoutError):
            return ErrorCodes.TIMEOUT
        if isinstance(error, asyncio.CancelledError):
            return ErrorCodes.CANCELLED
        return ErrorCodes.INTERNAL_ERROR


def setup_structured_logging(
    level: str = "INFO",
    json_format: bool = True
):
    """
    Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: If True, output JSON; otherwise use standard format
    """
    log_level = os.getenv("LOG_LEVEL", level).upper()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level))
    root_logger.handlers = []

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, log_level))

    use_json = os.getenv("LOG_FORMAT", "json" if json_format else "text").lower() == "json"

    if use_json:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
        ))

    root_logger.addHandler(handler)

    return root_logger


# Global logger instance
_job_logger: Optional[JobLogger] = None


def get_job_logger() -> JobLogger:
    """Get or create the global job logger"""
    global _job_logger
    if _job_logger is None:
        _job_logger = JobLogger()
    return _job_logger
