"""
Streaming Encoder Bridge
========================

Owns the ffmpeg subprocess and its input stream. Frames are pushed as raw
RGBA onto a bounded queue; a single writer task feeds them to ffmpeg's
stdin and waits for the pipe to drain before taking the next one, so a
slow encoder throttles the frame loop instead of growing memory.

States:
    UNINITIALIZED -> READY -> WRITING <-> READY -> DRAINING -> CLOSED
    FAILED from any non-terminal state. CLOSED and FAILED are terminal.
"""

import asyncio
import logging
import re
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from vtcapture.config import CaptureSettings
from vtcapture.errors import (
    EncoderError,
    EncoderExitError,
    EncoderOutputError,
    EncoderSpawnError,
    EncoderTimeoutError,
    EncoderWriteError,
)
from vtcapture.metrics import CaptureMetrics, get_metrics
from vtcapture.schemas import CaptureJobConfig, Codec

logger = logging.getLogger(__name__)

_LINE_SPLIT = re.compile(rb"[\r\n]")


class BridgeState(str, Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    WRITING = "writing"
    DRAINING = "draining"
    CLOSED = "closed"
    FAILED = "failed"


class EntryKind(str, Enum):
    WRITE = "write"
    REPEAT = "repeat"


@dataclass(frozen=True)
class EncoderQueueEntry:
    """One output frame, in frame-index order. Repeats carry no pixels."""
    kind: EntryKind
    frame_index: Optional[int] = None
    data: Optional[bytes] = None


@dataclass
class EncoderReport:
    """Summary of a finalized encoder run"""
    frames_written: int = 0
    unique_frames: int = 0
    repeated_frames: int = 0
    elapsed_seconds: float = 0.0
    output_size_bytes: int = 0
    output_path: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "frames_written": self.frames_written,
            "unique_frames": self.unique_frames,
            "repeated_frames": self.repeated_frames,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "output_size_bytes": self.output_size_bytes,
            "output_path": self.output_path,
        }


def build_ffmpeg_args(config: CaptureJobConfig, ffmpeg_path: str = "ffmpeg") -> list[str]:
    """
    Build the ffmpeg command line for a job.

    Input is raw RGBA on stdin at the job's size and frame rate. VP9 and
    VP8 write WebM with alpha metadata; H.264 writes MP4 with faststart.
    """
    quality = str(config.quality_level)
    args = [
        ffmpeg_path,
        "-hide_banner",
        "-nostats",
        "-loglevel", "warning",
        "-y",
        "-f", "rawvideo",
        "-pixel_format", "rgba",
        "-video_size", f"{config.width}x{config.height}",
        "-framerate", str(config.fps),
        "-i", "pipe:0",
    ]

    if config.codec == Codec.VP9:
        args += [
            "-c:v", "libvpx-vp9",
            "-pix_fmt", config.pixel_format,
            "-crf", quality,
            "-b:v", "0",
            "-deadline", "realtime",
            "-cpu-used", "8",
            "-row-mt", "1",
            "-threads", "0",
            "-auto-alt-ref", "0",
            "-lag-in-frames", "0",
        ]
    elif config.codec == Codec.VP8:
        args += [
            "-c:v", "libvpx",
            "-pix_fmt", config.pixel_format,
            "-crf", quality,
            "-b:v", "0",
            "-deadline", "realtime",
            "-cpu-used", "16",
            "-threads", "0",
            "-auto-alt-ref", "0",
            "-lag-in-frames", "0",
        ]
    else:
        args += [
            "-c:v", "libx264",
            "-pix_fmt", config.pixel_format,
            "-crf", quality,
            "-preset", "medium",
            "-threads", "0",
            "-movflags", "+faststart",
        ]

    if config.codec.supports_alpha:
        args += ["-metadata:s:v:0", "alpha_mode=1", "-f", "webm"]
    else:
        args += ["-f", "mp4"]

    args.append(config.output_path)
    return args


class StreamingEncoderBridge:
    """
    Bridge between the frame loop and one ffmpeg process.

    write() and repeat() suspend while the queue is full; that is the
    pipeline's only throttle. Once the bridge fails every call raises the
    stored error.

    Example:
        bridge = StreamingEncoderBridge(config)
        await bridge.start()
        await bridge.write(rgba_bytes, frame_index=0)
        await bridge.repeat(frame_index=1)
        report = await bridge.finalize()
    """

    def __init__(
        self,
        config: CaptureJobConfig,
        settings: Optional[CaptureSettings] = None,
        process_factory: Optional[Callable[..., Any]] = None,
        metrics: Optional[CaptureMetrics] = None,
    ):
        """
        Initialize the bridge.

        Args:
            config: Job configuration (size, fps, codec, output path)
            settings: Pipeline settings. Defaults read from environment.
            process_factory: Coroutine function with the signature of
                asyncio.create_subprocess_exec (used by tests)
            metrics: Metrics collector. Defaults to the global one.
        """
        self.config = config
        self.settings = settings or CaptureSettings()
        self._process_factory = process_factory or asyncio.create_subprocess_exec
        self._metrics = metrics or get_metrics()

        self._state = BridgeState.UNINITIALIZED
        self._error: Optional[EncoderError] = None
        self._accepting = False
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=self.settings.encoder_queue_size)
        self._process = None
        self._writer_task: Optional[asyncio.Task] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._exit_task: Optional[asyncio.Task] = None
        self._stderr_tail: deque = deque(maxlen=self.settings.stderr_tail_lines)
        self._last_frame: Optional[bytes] = None
        self._started_at = 0.0
        self._aborted = False

        self.frames_submitted = 0
        self.frames_written = 0
        self.unique_frames = 0
        self.repeated_frames = 0

    @property
    def state(self) -> BridgeState:
        return self._state

    @property
    def failed(self) -> bool:
        return self._state == BridgeState.FAILED

    @property
    def error(self) -> Optional[EncoderError]:
        return self._error

    @property
    def pending(self) -> int:
        """Entries queued but not yet taken by the writer."""
        return self._queue.qsize()

    @property
    def diagnostics(self) -> str:
        """Last lines ffmpeg wrote to stderr."""
        return "\n".join(self._stderr_tail)

    async def start(self) -> None:
        """
        Spawn ffmpeg and the writer, stderr reader and exit watcher tasks.

        Raises:
            EncoderSpawnError: If the binary is missing or cannot be started
        """
        if self._state != BridgeState.UNINITIALIZED:
            raise EncoderWriteError(f"Encoder already started (state={self._state.value})")

        args = build_ffmpeg_args(self.config, self.settings.ffmpeg_path)
        Path(self.config.output_path).parent.mkdir(parents=True, exist_ok=True)
        logger.debug(f"[ENCODER] Spawning: {' '.join(args)}")

        try:
            self._process = await self._process_factory(
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            self._state = BridgeState.FAILED
            self._error = EncoderSpawnError(
                f"Encoder binary not found: {self.settings.ffmpeg_path}", cause=e
            )
            raise self._error from e
        except OSError as e:
            self._state = BridgeState.FAILED
            self._error = EncoderSpawnError("Encoder could not be started", cause=e)
            raise self._error from e

        self._started_at = time.perf_counter()
        self._state = BridgeState.READY
        self._accepting = True
        self._writer_task = asyncio.create_task(self._writer_loop())
        self._stderr_task = asyncio.create_task(self._read_stderr())
        self._exit_task = asyncio.create_task(self._watch_exit())

        logger.info(
            f"[ENCODER] Started {self.config.codec.value} encoder "
            f"{self.config.width}x{self.config.height}@{self.config.fps} -> {self.config.output_path}"
        )

    async def write(self, data: bytes, frame_index: Optional[int] = None) -> None:
        """Queue one frame of raw RGBA pixels."""
        expected = self.config.width * self.config.height * 4
        if len(data) != expected:
            raise EncoderWriteError(
                f"Frame {frame_index} has {len(data)} bytes, expected {expected}"
            )
        await self._enqueue(EncoderQueueEntry(EntryKind.WRITE, frame_index, data))

    async def repeat(self, frame_index: Optional[int] = None) -> None:
        """Queue a repeat of the previously written frame."""
        await self._enqueue(EncoderQueueEntry(EntryKind.REPEAT, frame_index))

    def raise_if_failed(self) -> None:
        if self._error is not None:
            raise self._error

    async def finalize(self) -> EncoderReport:
        """
        Flush queued frames, close the input stream and wait for ffmpeg.

        Raises:
            EncoderTimeoutError: If the queue does not drain or ffmpeg does not exit in time
            EncoderExitError: If ffmpeg exits non-zero
            EncoderOutputError: If the output file is missing or empty
        """
        self.raise_if_failed()
        if self._state in (BridgeState.UNINITIALIZED, BridgeState.CLOSED):
            raise EncoderWriteError(f"Cannot finalize encoder in state {self._state.value}")

        self._accepting = False
        self._state = BridgeState.DRAINING
        logger.info(f"[ENCODER] Draining {self.pending} queued frame(s)")

        try:
            await asyncio.wait_for(self._drain_queue(), timeout=self.settings.drain_timeout)
        except asyncio.TimeoutError as e:
            await self._fail_and_terminate(
                EncoderTimeoutError(self.settings.drain_timeout, "Encoder queue drain", cause=e)
            )
        self.raise_if_failed()

        await self._close_stdin()

        try:
            returncode = await asyncio.wait_for(
                self._process.wait(), timeout=self.settings.finalize_timeout
            )
        except asyncio.TimeoutError as e:
            await self._fail_and_terminate(
                EncoderTimeoutError(self.settings.finalize_timeout, "Encoder finalization", cause=e)
            )

        await self._finish_stderr()
        if returncode != 0:
            self._fail(EncoderExitError(returncode, self.diagnostics))
        self.raise_if_failed()

        output = Path(self.config.output_path)
        if not output.exists() or output.stat().st_size == 0:
            self._fail(EncoderOutputError(f"Encoder produced no output at {output}"))
            self.raise_if_failed()

        self._state = BridgeState.CLOSED
        await self._reap_tasks()

        report = EncoderReport(
            frames_written=self.frames_written,
            unique_frames=self.unique_frames,
            repeated_frames=self.repeated_frames,
            elapsed_seconds=time.perf_counter() - self._started_at,
            output_size_bytes=output.stat().st_size,
            output_path=str(output),
        )
        logger.info(
            f"[ENCODER] Finalized {report.frames_written} frames "
            f"({report.unique_frames} unique, {report.repeated_frames} repeats) "
            f"in {report.elapsed_seconds:.2f}s"
        )
        return report

    async def abort(self) -> None:
        """Terminate ffmpeg and cancel the bridge's tasks. Safe to call repeatedly."""
        if self._state == BridgeState.CLOSED or self._aborted:
            return
        self._aborted = True
        if self._state != BridgeState.FAILED:
            self._fail(EncoderWriteError("Encoder aborted"), log=False)
        await self._terminate()
        await self._reap_tasks()
        logger.info("[ENCODER] Aborted")

    async def _enqueue(self, entry: EncoderQueueEntry) -> None:
        self.raise_if_failed()
        if not self._accepting:
            raise EncoderWriteError(f"Encoder is not accepting frames (state={self._state.value})")
        await self._queue.put(entry)
        # The writer may have failed while this producer was blocked
        self.raise_if_failed()
        self.frames_submitted += 1

    async def _drain_queue(self) -> None:
        await self._queue.put(None)
        await asyncio.wait({self._writer_task})

    async def _writer_loop(self) -> None:
        try:
            while True:
                entry = await self._queue.get()
                try:
                    if entry is None:
                        return
                    await self._write_entry(entry)
                finally:
                    self._queue.task_done()
        except EncoderError as e:
            self._fail(e)

    async def _write_entry(self, entry: EncoderQueueEntry) -> None:
        if entry.kind == EntryKind.WRITE:
            payload = entry.data
            self._last_frame = payload
        else:
            if self._last_frame is None:
                raise EncoderWriteError(
                    f"Repeat of frame {entry.frame_index} requested before any frame was written"
                )
            payload = self._last_frame

        if self._state == BridgeState.READY:
            self._state = BridgeState.WRITING
        started = time.perf_counter()
        try:
            self._process.stdin.write(payload)
            await asyncio.wait_for(
                self._process.stdin.drain(), timeout=self.settings.write_timeout
            )
        except asyncio.TimeoutError as e:
            raise EncoderTimeoutError(self.settings.write_timeout, "Encoder write", cause=e) from e
        except (BrokenPipeError, ConnectionResetError) as e:
            raise await self._pipe_error(e) from e

        if self._state == BridgeState.WRITING:
            self._state = BridgeState.READY
        self.frames_written += 1
        if entry.kind == EntryKind.WRITE:
            self.unique_frames += 1
        else:
            self.repeated_frames += 1
        self._metrics.record_write(
            (time.perf_counter() - started) * 1000, repeat=entry.kind == EntryKind.REPEAT
        )

    async def _pipe_error(self, cause: BaseException) -> EncoderError:
        try:
            returncode = await asyncio.wait_for(
                self._process.wait(), timeout=self.settings.kill_grace
            )
        except asyncio.TimeoutError:
            returncode = None
        if returncode:
            await self._finish_stderr()
            return EncoderExitError(returncode, self.diagnostics)
        return EncoderWriteError("Encoder input stream closed", cause=cause)

    async def _read_stderr(self) -> None:
        stream = self._process.stderr
        if stream is None:
            return
        buffer = b""
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                break
            buffer += chunk
            *lines, buffer = _LINE_SPLIT.split(buffer)
            for line in lines:
                self._record_stderr(line)
        self._record_stderr(buffer)

    def _record_stderr(self, raw: bytes) -> None:
        line = raw.decode("utf-8", errors="replace").strip()
        if line:
            self._stderr_tail.append(line)
            logger.debug(f"[ENCODER] ffmpeg: {line}")

    async def _finish_stderr(self) -> None:
        if self._stderr_task is None or self._stderr_task.done():
            return
        try:
            await asyncio.wait_for(asyncio.shield(self._stderr_task), timeout=1.0)
        except asyncio.TimeoutError:
            logger.debug("[ENCODER] stderr still open after exit")

    async def _watch_exit(self) -> None:
        returncode = await self._process.wait()
        if returncode != 0 and self._state not in (BridgeState.CLOSED, BridgeState.FAILED):
            await self._finish_stderr()
            self._fail(EncoderExitError(returncode, self.diagnostics))

    async def _close_stdin(self) -> None:
        stdin = self._process.stdin
        if stdin is None or stdin.is_closing():
            return
        stdin.close()
        try:
            await stdin.wait_closed()
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.debug(f"[ENCODER] stdin closed with {e!r}")

    def _fail(self, error: EncoderError, log: bool = True) -> None:
        if self._state in (BridgeState.CLOSED, BridgeState.FAILED):
            return
        self._error = error
        self._state = BridgeState.FAILED
        self._accepting = False
        if log:
            logger.error(f"[ENCODER] {error}")

        if self._writer_task is not None and self._writer_task is not asyncio.current_task():
            self._writer_task.cancel()

        # Discard queued entries so blocked producers wake up
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._queue.task_done()

    async def _fail_and_terminate(self, error: EncoderError) -> None:
        self._fail(error)
        await self._terminate()
        raise self._error

    async def _terminate(self) -> None:
        process = self._process
        if process is None or process.returncode is not None:
            return
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=self.settings.kill_grace)
            return
        except asyncio.TimeoutError:
            logger.warning("[ENCODER] Encoder ignored SIGTERM, killing")
        try:
            process.kill()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=self.settings.kill_grace)
        except asyncio.TimeoutError:
            logger.error(f"[ENCODER] Encoder pid {process.pid} did not exit after SIGKILL")

    async def _reap_tasks(self) -> None:
        tasks = [
            task for task in (self._writer_task, self._stderr_task, self._exit_task)
            if task is not None and not task.done()
        ]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
