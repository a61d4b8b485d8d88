"""
Tests for the recording control state machine.
"""

import pytest

from vtcapture.capture.recording import RecordingControl
from vtcapture.schemas import RecordingState


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def control(clock):
    return RecordingControl(max_duration_seconds=10, time_source=clock)


class TestTransitions:
    """Tests for signal handling."""

    def test_starts_not_started(self, control):
        """A new session waits for a start signal."""
        assert control.state == RecordingState.NOT_STARTED
        assert control.should_forward is False

    def test_full_cycle(self, control):
        """start, pause, resume and stop move through every state."""
        assert control.handle_signal("start")["status"] == "started"
        assert control.should_forward

        assert control.handle_signal("pause")["status"] == "paused"
        assert control.state == RecordingState.PAUSED
        assert not control.should_forward

        assert control.handle_signal("resume")["status"] == "resumed"
        assert control.state == RecordingState.RECORDING

        response = control.handle_signal("stop")
        assert response["status"] == "stopped"
        assert isinstance(response["timestamp"], int)
        assert control.is_stopped

    def test_stop_before_start_is_ignored(self, control):
        """stop from NOT_STARTED is an invalid transition."""
        response = control.handle_signal("stop")

        assert response["status"] == "ignored"
        assert response["state"] == "NOT_STARTED"
        assert control.state == RecordingState.NOT_STARTED

    def test_stopped_is_terminal(self, control):
        """Nothing leaves STOPPED."""
        control.handle_signal("start")
        control.handle_signal("stop")

        for action in ("start", "resume", "pause", "stop"):
            assert control.handle_signal(action)["status"] == "ignored"
        assert control.state == RecordingState.STOPPED

    def test_stop_from_paused(self, control):
        control.handle_signal("start")
        control.handle_signal("pause")

        assert control.handle_signal("stop")["status"] == "stopped"

    def test_unknown_action(self, control):
        """Unknown actions leave the state alone."""
        response = control.handle_signal("rewind")

        assert response["status"] == "unknown_action"
        assert control.state == RecordingState.NOT_STARTED

    def test_actions_are_case_insensitive(self, control):
        assert control.handle_signal("START")["status"] == "started"

    def test_status_reports_frames(self, control):
        """status returns state and frames captured."""
        control.handle_signal("start")
        control.record_frame()
        control.record_frame()

        status = control.handle_signal("status")

        assert status["state"] == "RECORDING"
        assert status["framesCaptured"] == 2
        assert "timestamp" in status

    def test_host_start(self, control):
        """start() starts once and reports later attempts as rejected."""
        assert control.start() is True
        assert control.start() is False


class TestConsoleSignals:
    """Tests for RECORDING:<ACTION> console messages."""

    def test_console_message_drives_state(self, control):
        assert control.handle_console("RECORDING:START")["status"] == "started"
        assert control.state == RecordingState.RECORDING

    def test_other_console_text_is_ignored(self, control):
        assert control.handle_console("hello world") is None
        assert control.state == RecordingState.NOT_STARTED


class TestDeadline:
    """Tests for the safety deadline."""

    def test_deadline_forces_stopped(self, control, clock):
        """Passing the deadline stops recording regardless of signals."""
        control.handle_signal("start")
        clock.now = 9.9
        assert control.check_deadline() is False

        clock.now = 10.0
        assert control.check_deadline() is True
        assert control.state == RecordingState.STOPPED
        assert control.deadline_reached

    def test_deadline_from_not_started(self, control, clock):
        """The deadline also ends a session that never started."""
        clock.now = 11
        assert control.check_deadline() is True
        assert control.is_stopped

    def test_signal_after_deadline_is_ignored(self, control, clock):
        """Signals arriving after the deadline see STOPPED."""
        clock.now = 20
        assert control.handle_signal("start")["status"] == "ignored"
        assert control.state == RecordingState.STOPPED

    def test_manual_stop_is_not_deadline(self, control, clock):
        control.handle_signal("start")
        control.handle_signal("stop")
        clock.now = 20

        assert control.check_deadline() is False
