"""
Tests for CaptureSettings environment loading.
"""

import pytest

from vtcapture.config import DEFAULT_BROWSER_ARGS, CaptureSettings


class TestCaptureSettings:
    """Tests for CaptureSettings."""

    def test_defaults(self, monkeypatch):
        for name in ("VTCAPTURE_FFMPEG_PATH", "VTCAPTURE_QUEUE_SIZE", "VTCAPTURE_HEADLESS"):
            monkeypatch.delenv(name, raising=False)

        settings = CaptureSettings()

        assert settings.ffmpeg_path == "ffmpeg"
        assert settings.encoder_queue_size == 4
        assert settings.headless is True
        assert settings.browser_args == DEFAULT_BROWSER_ARGS

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("VTCAPTURE_FFMPEG_PATH", "/opt/ffmpeg/bin/ffmpeg")
        monkeypatch.setenv("VTCAPTURE_WRITE_TIMEOUT", "2.5")
        monkeypatch.setenv("VTCAPTURE_QUEUE_SIZE", "8")
        monkeypatch.setenv("VTCAPTURE_HEADLESS", "false")

        settings = CaptureSettings()

        assert settings.ffmpeg_path == "/opt/ffmpeg/bin/ffmpeg"
        assert settings.write_timeout == 2.5
        assert settings.encoder_queue_size == 8
        assert settings.headless is False

    def test_explicit_values_override_environment(self, monkeypatch):
        monkeypatch.setenv("VTCAPTURE_PAINT_SETTLE_MS", "50")

        assert CaptureSettings(paint_settle_ms=0).paint_settle_ms == 0

    def test_browser_args_are_not_shared(self):
        first = CaptureSettings()
        first.browser_args.append("--mute-audio")

        assert "--mute-audio" not in CaptureSettings().browser_args

    def test_queue_size_must_be_positive(self):
        with pytest.raises(ValueError, match="encoder_queue_size"):
            CaptureSettings(encoder_queue_size=0)
