"""
Shared fakes for the capture pipeline tests.

FakeRenderSession stands in for the Playwright page: it keeps its own
virtual time, answers the clock/bounds/fingerprint scripts and returns
solid-color PNG screenshots. FakeEncoderProcess stands in for ffmpeg.
"""

import asyncio
import random
from io import BytesIO
from pathlib import Path
from typing import Callable, Optional

import pytest
from PIL import Image

from vtcapture.capture.fingerprint import FINGERPRINT_SCRIPT
from vtcapture.capture.scheduler import BOUNDS_SCRIPT, SEEK_TIME_SCRIPT, TRANSPARENT_BACKGROUND_SCRIPT
from vtcapture.clock.script import GET_TIME_EXPRESSION, GO_TO_EXPRESSION
from vtcapture.config import CaptureSettings
from vtcapture.errors import CaptureError


def make_png(width: int, height: int, color=(255, 0, 0, 255)) -> bytes:
    buffer = BytesIO()
    Image.new("RGBA", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


class FakeRenderSession:
    """In-memory render session with a controllable page."""

    def __init__(
        self,
        width: int = 8,
        height: int = 8,
        fps: int = 10,
        region: Optional[dict] = None,
        state_for_frame: Optional[Callable[[int], Optional[str]]] = None,
        fail_capture_frames: Optional[set] = None,
        capture_latency: Optional[Callable[[], float]] = None,
        on_time: Optional[Callable[["FakeRenderSession"], None]] = None,
    ):
        self.width = width
        self.height = height
        self.fps = fps
        self.region = region if region is not None else {"x": 0, "y": 0, "width": width, "height": height}
        self.state_for_frame = state_for_frame or (lambda index: f"state-{index}")
        self.fail_capture_frames = fail_capture_frames or set()
        self.capture_latency = capture_latency
        self.on_time = on_time

        self.time = 0.0
        self.started = False
        self.closed = False
        self.navigated_to = None
        self.init_scripts = []
        self.exposed = {}
        self.console_handlers = []
        self.clock_targets = []
        self.screenshots = []
        self.clips = []
        self.seeks = []
        self.fingerprint_calls = 0

    @property
    def frame_index(self) -> int:
        return round(self.time * self.fps / 1000)

    def signal(self, action: str):
        """Call the exposed recording control function like the page would."""
        return self.exposed["__recordingControl"](action)

    async def start(self):
        self.started = True

    async def add_init_script(self, script: str):
        self.init_scripts.append(script)

    async def expose_function(self, name, handler):
        self.exposed[name] = handler

    def on_console(self, handler):
        self.console_handlers.append(handler)

    async def navigate(self, url: str):
        self.navigated_to = url

    async def evaluate(self, expression, arg=None):
        if expression == GO_TO_EXPRESSION:
            return self._step(arg)
        if expression == GET_TIME_EXPRESSION:
            return self.time
        if expression == BOUNDS_SCRIPT:
            return self.region
        if expression == TRANSPARENT_BACKGROUND_SCRIPT:
            return True
        if expression == SEEK_TIME_SCRIPT:
            self.seeks.append(arg)
            return False
        if expression == FINGERPRINT_SCRIPT:
            self.fingerprint_calls += 1
            if self.region is None:
                return None
            return self.state_for_frame(self.frame_index)
        raise AssertionError(f"Unexpected script: {expression[:40]}")

    def _step(self, target: float) -> dict:
        if target < self.time:
            return {"ok": False, "time": self.time, "fired": 0, "errors": 0}
        self.time = target
        self.clock_targets.append(target)
        if self.on_time is not None:
            self.on_time(self)
        return {"ok": True, "time": self.time, "fired": 0, "errors": 0}

    async def screenshot(self, clip):
        if self.capture_latency is not None:
            await asyncio.sleep(self.capture_latency())
        index = self.frame_index
        self.screenshots.append(index)
        self.clips.append(dict(clip))
        if index in self.fail_capture_frames:
            raise CaptureError("Screenshot failed")
        # Red channel carries the capture order
        return make_png(clip["width"], clip["height"], (len(self.screenshots) % 256, 0, 0, 255))

    async def close(self):
        self.closed = True


class FakeStdin:
    def __init__(self, process: "FakeEncoderProcess"):
        self._process = process
        self._closing = False

    def write(self, data: bytes):
        self._process.frames.append(bytes(data))

    async def drain(self):
        process = self._process
        if process.never_drain:
            await asyncio.Event().wait()
        if process.fail_after is not None and len(process.frames) > process.fail_after:
            process.stderr.feed(b"Error while encoding frame\n")
            process.exit(1)
            raise BrokenPipeError("Broken pipe")
        await asyncio.sleep(0)

    def close(self):
        self._closing = True
        self._process.on_stdin_closed()

    def is_closing(self) -> bool:
        return self._closing

    async def wait_closed(self):
        return None


class FakeStderr:
    def __init__(self):
        self._chunks: asyncio.Queue = asyncio.Queue()

    def feed(self, data: bytes):
        self._chunks.put_nowait(data)

    def feed_eof(self):
        self._chunks.put_nowait(b"")

    async def read(self, n: int = -1) -> bytes:
        return await self._chunks.get()


class FakeEncoderProcess:
    """ffmpeg stand-in recording every frame written to stdin."""

    def __init__(
        self,
        output_path: str,
        fail_after: Optional[int] = None,
        exit_code: int = 0,
        never_drain: bool = False,
        hang_on_close: bool = False,
        write_output: bool = True,
        stderr_on_close: bytes = b"",
    ):
        self.output_path = output_path
        self.fail_after = fail_after
        self.exit_code = exit_code
        self.never_drain = never_drain
        self.hang_on_close = hang_on_close
        self.write_output = write_output
        self.stderr_on_close = stderr_on_close

        self.pid = 4242
        self.args = ()
        self.frames = []
        self.returncode = None
        self.terminated = False
        self.killed = False
        self.stdin = FakeStdin(self)
        self.stderr = FakeStderr()
        self._exited = asyncio.Event()

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode

    def exit(self, code: int):
        if self.returncode is not None:
            return
        self.returncode = code
        self.stderr.feed_eof()
        self._exited.set()

    def terminate(self):
        self.terminated = True
        self.exit(-15)

    def kill(self):
        self.killed = True
        self.exit(-9)

    def on_stdin_closed(self):
        if self.hang_on_close:
            return
        if self.stderr_on_close:
            self.stderr.feed(self.stderr_on_close)
        if self.write_output and self.exit_code == 0:
            Path(self.output_path).write_bytes(b"\x1a\x45\xdf\xa3" + b"\x00" * 64)
        self.exit(self.exit_code)


@pytest.fixture
def fast_settings():
    """Settings with no real-time delays and short timeouts."""
    return CaptureSettings(
        ffmpeg_path="ffmpeg",
        write_timeout=2.0,
        drain_timeout=2.0,
        finalize_timeout=2.0,
        kill_grace=0.1,
        encoder_queue_size=2,
        paint_settle_ms=0,
        navigation_timeout=5.0,
        evaluate_timeout=2.0,
        capture_timeout=2.0,
        start_delay=0,
        start_signal_timeout=5.0,
        start_signal_step_ms=100.0,
        start_signal_poll_ms=0.0,
        headless=True,
    )


@pytest.fixture
def fake_session_cls():
    return FakeRenderSession


@pytest.fixture
def fake_process_cls():
    return FakeEncoderProcess


@pytest.fixture
def png_factory():
    return make_png


@pytest.fixture
def seeded_random():
    return random.Random(1234)
