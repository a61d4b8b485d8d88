"""
Recording Control State Machine

Lets the captured page decide which instants end up in the video. The page
calls ``window.__recordingControl(action)`` (or logs ``RECORDING:<ACTION>``
to the console); the orchestrator keeps stepping the clock in every state
but only forwards frames while RECORDING.
"""

import logging
import time
from typing import Any, Callable, Dict, Optional

from vtcapture.schemas import RecordingState

logger = logging.getLogger(__name__)

CONTROL_FUNCTION_NAME = "__recordingControl"
CONSOLE_PREFIX = "RECORDING:"

# action -> (allowed source states, target state, response status)
_TRANSITIONS = {
    "start": ({RecordingState.NOT_STARTED}, RecordingState.RECORDING, "started"),
    "pause": ({RecordingState.RECORDING}, RecordingState.PAUSED, "paused"),
    "resume": ({RecordingState.PAUSED}, RecordingState.RECORDING, "resumed"),
    "stop": ({RecordingState.RECORDING, RecordingState.PAUSED}, RecordingState.STOPPED, "stopped"),
}


def _epoch_ms() -> int:
    return int(time.time() * 1000)


class RecordingControl:
    """
    Recording session for one capture job.

    States:
    - NOT_STARTED: Clock runs, frames are not forwarded
    - RECORDING: Frames are forwarded to the encoder
    - PAUSED: Clock runs, frames are not forwarded
    - STOPPED: Terminal; the frame loop ends

    A safety deadline of max_duration_seconds after creation forces STOPPED
    regardless of signals. Invalid transitions are answered with an
    "ignored" status rather than an error.

    Example:
        control = RecordingControl(max_duration_seconds=300)
        await session.expose_function(CONTROL_FUNCTION_NAME, control.handle_signal)
        ...
        if control.check_deadline():
            break
        if control.should_forward:
            ...
    """

    def __init__(
        self,
        max_duration_seconds: float,
        time_source: Callable[[], float] = time.monotonic,
    ):
        self._time_source = time_source
        self._state = RecordingState.NOT_STARTED
        self.started_at = time_source()
        self.deadline = self.started_at + max_duration_seconds
        self.frames_captured = 0
        self.deadline_reached = False

    @property
    def state(self) -> RecordingState:
        return self._state

    @property
    def should_forward(self) -> bool:
        return self._state == RecordingState.RECORDING

    @property
    def is_stopped(self) -> bool:
        return self._state == RecordingState.STOPPED

    def handle_signal(self, action: str, data: Any = None) -> Dict[str, Any]:
        """
        Apply a signal from the page.

        Args:
            action: One of start, stop, pause, resume, status
            data: Optional payload from the page (logged only)

        Returns:
            {status, timestamp} for transitions, or
            {state, timestamp, framesCaptured} for status
        """
        action = str(action or "").strip().lower()
        logger.debug(f"[RECORDING] Signal '{action}' received (data={data!r})")

        if action == "status":
            return self.status()

        if action not in _TRANSITIONS:
            logger.warning(f"[RECORDING] Unknown action '{action}'")
            return {"status": "unknown_action", "timestamp": _epoch_ms()}

        self.check_deadline()
        sources, target, status = _TRANSITIONS[action]
        if self._state not in sources:
            logger.info(f"[RECORDING] Ignoring '{action}' in state {self._state.value}")
            return {"status": "ignored", "state": self._state.value, "timestamp": _epoch_ms()}

        self._transition(target)
        return {"status": status, "timestamp": _epoch_ms()}

    def handle_console(self, text: str) -> Optional[Dict[str, Any]]:
        """Handle a ``RECORDING:<ACTION>`` console message; other text is ignored."""
        if not text.startswith(CONSOLE_PREFIX):
            return None
        return self.handle_signal(text[len(CONSOLE_PREFIX):])

    def status(self) -> Dict[str, Any]:
        return {
            "state": self._state.value,
            "timestamp": _epoch_ms(),
            "framesCaptured": self.frames_captured,
        }

    def start(self) -> bool:
        """Start recording from the host side. Returns False if not NOT_STARTED."""
        return self.handle_signal("start")["status"] == "started"

    def check_deadline(self) -> bool:
        """Force STOPPED once the safety deadline passes. Returns True when stopped by it."""
        if self._state == RecordingState.STOPPED:
            return self.deadline_reached
        if self._time_source() >= self.deadline:
            self.deadline_reached = True
            logger.warning("[RECORDING] Safety deadline reached, forcing STOPPED")
            self._transition(RecordingState.STOPPED)
            return True
        return False

    def record_frame(self) -> None:
        self.frames_captured += 1

    def _transition(self, target: RecordingState) -> None:
        previous = self._state
        self._state = target
        logger.info(f"[RECORDING] {previous.value} -> {target.value}")
