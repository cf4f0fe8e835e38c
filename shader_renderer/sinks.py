"""
Pixel Sinks - Imperative Shell

Sequential consumers of rendered frames. A sink receives one frame per
call, in frame order, and must fully consume it before returning: the
caller overwrites the same buffer for the next frame.

A write that is not fully accepted is fatal (SinkError); frames are never
truncated or buffered across calls.

Sinks:
- StreamSink: raw bytes to a binary stream (stdout by default)
- FileSink: raw bytes to a file
- FFmpegPipeSink: raw bytes into an ffmpeg process's stdin
- PngSequenceSink: one PNG per frame (debugging)
"""

import shutil
import subprocess
import sys
from pathlib import Path
from typing import BinaryIO, List, Optional

import numpy as np
from PIL import Image

from .core import flip_rows, frame_size_bytes
from .errors import SinkError


class PixelSink:
    """Base class for frame consumers

    Subclasses implement consume(). Sinks are context managers; close()
    releases whatever the sink holds open, and abort() does the same when
    the render failed.
    """

    def __init__(self):
        self.frames_written = 0

    def consume(self, frame: memoryview) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass

    def abort(self) -> None:
        """Release the sink after a failed render

        Frames already consumed stay written. The render error that is
        propagating is the one reported, so cleanup failures are dropped.
        """
        try:
            self.close()
        except SinkError:
            pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            self.close()
        else:
            self.abort()
        return False  # Don't suppress exceptions


# ============================================================================
# Raw Byte Streams
# ============================================================================

class StreamSink(PixelSink):
    """Writes each frame's bytes to a binary stream

    Args:
        stream: Binary writable stream (defaults to sys.stdout.buffer)
        flush_every_frame: Flush after each frame so a downstream reader
            sees complete frames as soon as they are rendered
    """

    def __init__(self, stream: Optional[BinaryIO] = None, flush_every_frame: bool = False):
        super().__init__()
        self.stream = stream if stream is not None else sys.stdout.buffer
        self.flush_every_frame = flush_every_frame

    def consume(self, frame: memoryview) -> None:
        expected = frame.nbytes
        try:
            written = self.stream.write(frame)
            if self.flush_every_frame:
                self.stream.flush()
        except (OSError, ValueError) as e:
            raise SinkError(
                f"Failed to write frame {self.frames_written}: {e}"
            ) from e

        # Buffered streams return the full length or raise; raw streams may not
        if written is not None and written != expected:
            raise SinkError(
                f"Short write on frame {self.frames_written}: "
                f"{written} of {expected} bytes accepted"
            )
        self.frames_written += 1

    def close(self) -> None:
        try:
            self.stream.flush()
        except (OSError, ValueError) as e:
            raise SinkError(f"Failed to flush output stream: {e}") from e


class FileSink(StreamSink):
    """Writes raw frames to a file (truncates an existing file)"""

    def __init__(self, path: str, flush_every_frame: bool = False):
        self.path = Path(path)
        try:
            stream = open(self.path, 'wb')
        except OSError as e:
            raise SinkError(f"Cannot open output file {self.path}: {e}") from e
        super().__init__(stream, flush_every_frame)

    def close(self) -> None:
        if self.stream.closed:
            return
        try:
            super().close()
        finally:
            self.stream.close()


# ============================================================================
# FFmpeg Pipe
# ============================================================================

class FFmpegPipeSink(PixelSink):
    """Streams raw frames into an ffmpeg subprocess

    Encoding is done entirely by ffmpeg; this sink only feeds its stdin.
    Rows arrive bottom-up (OpenGL origin), so the vflip filter is applied
    by default.

    ffmpeg is started by the first consume() (or start()), so a render
    that fails during setup never creates an output file.

    Side effects:
    - Spawns ffmpeg on the first frame
    - Writes frame data to its stdin pipe
    - ffmpeg creates the output video file
    """

    def __init__(
        self,
        output_path: str,
        width: int,
        height: int,
        fps: int,
        preset: str = "medium",
        crf: int = 23,
        pix_fmt: str = "yuv420p",
        flip: bool = True,
        ffmpeg_binary: str = "ffmpeg"
    ):
        super().__init__()
        self.output_path = output_path
        self.width = width
        self.height = height
        self.fps = fps
        self.preset = preset
        self.crf = crf
        self.pix_fmt = pix_fmt
        self.flip = flip
        self.ffmpeg_binary = ffmpeg_binary
        self.frame_size = frame_size_bytes(width, height)

        self.process: Optional[subprocess.Popen] = None
        self.closed = False

        if shutil.which(self.ffmpeg_binary) is None:
            raise SinkError(self._not_found_message())

    def _not_found_message(self) -> str:
        return (
            f"ffmpeg not found ({self.ffmpeg_binary}). Please install FFmpeg:\n"
            "  macOS: brew install ffmpeg\n"
            "  Linux: apt-get install ffmpeg\n"
            "  Windows: Download from https://ffmpeg.org/"
        )

    def build_command(self) -> List[str]:
        """ffmpeg arguments for raw RGB24 input on stdin"""
        cmd = [
            self.ffmpeg_binary,
            '-y',  # Overwrite output
            '-loglevel', 'error',
            '-f', 'rawvideo',
            '-vcodec', 'rawvideo',
            '-s', f'{self.width}x{self.height}',
            '-pix_fmt', 'rgb24',
            '-r', str(self.fps),
            '-i', '-',  # Read video from stdin
            '-an',
        ]
        if self.flip:
            cmd.extend(['-vf', 'vflip'])
        cmd.extend([
            '-vcodec', 'libx264',
            '-preset', self.preset,
            '-crf', str(self.crf),
            '-pix_fmt', self.pix_fmt,
            '-movflags', '+faststart',
            self.output_path,
        ])
        return cmd

    def start(self) -> None:
        """Spawn ffmpeg

        Raises:
            SinkError: If the sink is closed or ffmpeg cannot be started
        """
        if self.closed:
            raise SinkError("ffmpeg sink already closed")
        if self.process is not None:
            return

        try:
            self.process = subprocess.Popen(
                self.build_command(),
                stdin=subprocess.PIPE,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE
            )
        except FileNotFoundError as e:
            raise SinkError(self._not_found_message()) from e
        except OSError as e:
            raise SinkError(f"Failed to start ffmpeg: {e}") from e

    def consume(self, frame: memoryview) -> None:
        if frame.nbytes != self.frame_size:
            raise SinkError(
                f"Frame size mismatch: expected {self.frame_size} bytes, got {frame.nbytes}"
            )
        self.start()

        try:
            self.process.stdin.write(frame)
        except (BrokenPipeError, OSError) as e:
            stderr = self._drain_stderr()
            raise SinkError(f"ffmpeg process failed:\n{stderr}") from e
        self.frames_written += 1

    def close(self) -> None:
        """Close stdin and wait for ffmpeg to finish

        A render with no frames still runs ffmpeg once, so it reports
        its own verdict on the empty input.

        Raises:
            SinkError: If ffmpeg exits with a non-zero status
        """
        if self.closed:
            return
        self.start()
        process, self.process = self.process, None
        self.closed = True

        try:
            process.stdin.close()
        except OSError:
            pass  # Reported via the exit status below
        stderr = process.stderr.read().decode('utf-8', errors='replace')
        returncode = process.wait()
        if returncode != 0:
            raise SinkError(f"ffmpeg exited with code {returncode}:\n{stderr}")

    def abort(self) -> None:
        """Stop ffmpeg without finishing the video"""
        self.closed = True
        if self.process is None:
            return
        process, self.process = self.process, None
        process.kill()
        process.wait()
        for pipe in (process.stdin, process.stderr):
            try:
                pipe.close()
            except OSError:
                pass  # Broken stdin pipe; the process is already gone

    def _drain_stderr(self) -> str:
        try:
            return self.process.stderr.read().decode('utf-8', errors='replace')
        except (OSError, ValueError):
            return ''


# ============================================================================
# PNG Sequence
# ============================================================================

class PngSequenceSink(PixelSink):
    """Saves each frame as <directory>/frame_00000.png, top-left origin

    The driver's buffer is copied before flipping, never modified.
    """

    def __init__(self, directory: str, width: int, height: int, pattern: str = "frame_{:05d}.png"):
        super().__init__()
        self.directory = Path(directory)
        self.width = width
        self.height = height
        self.pattern = pattern
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SinkError(f"Cannot create frame directory {self.directory}: {e}") from e

    def consume(self, frame: memoryview) -> None:
        pixels = np.frombuffer(frame, dtype=np.uint8)
        if pixels.size != frame_size_bytes(self.width, self.height):
            raise SinkError(
                f"Frame size mismatch: expected "
                f"{frame_size_bytes(self.width, self.height)} bytes, got {pixels.size}"
            )

        path = self.directory / self.pattern.format(self.frames_written)
        img = Image.fromarray(flip_rows(pixels, self.width, self.height))
        try:
            img.save(path)
        except OSError as e:
            raise SinkError(f"Failed to save frame {path}: {e}") from e
        self.frames_written += 1
