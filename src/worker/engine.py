"""FFmpeg transcoding engine.

Runs FFmpeg as a subprocess with machine-readable progress on stdout
(``-progress pipe:1``) and reports fractional completion to a callback.
Duration for the fraction comes from FFprobe; when it is unknown, progress
is only reported at the end.

The engine is a black box to the pipeline: input file + options in, output
file out, progress callbacks in between, and ``TranscodeEngineError`` on
failure.
"""

import json
import subprocess
import tempfile
import threading
from pathlib import Path
from typing import Callable, Protocol

from aws_lambda_powertools import Logger

from ..shared.exceptions import TranscodeEngineError
from ..shared.models import TranscodeOptions

logger = Logger(service="transcode-engine")

# (fraction 0.0-1.0, media timemark such as "00:01:02.50")
EngineProgressCallback = Callable[[float, str | None], None]

STDERR_TAIL_CHARS = 2000


class TranscodeEngine(Protocol):
    """Contract for anything that can transcode a local file."""

    def transcode(
        self,
        input_path: Path,
        output_path: Path,
        options: TranscodeOptions,
        on_progress: EngineProgressCallback,
    ) -> None: ...


def build_ffmpeg_command(
    input_path: str | Path,
    output_path: str | Path,
    options: TranscodeOptions,
    ffmpeg_binary: str = "ffmpeg",
) -> list[str]:
    """Build the FFmpeg argument list for one job.

    Example:
        >>> build_ffmpeg_command("in.mp4", "out.mp4", TranscodeOptions())[:6]
        ['ffmpeg', '-hide_banner', '-nostdin', '-y', '-i', 'in.mp4']
    """
    return [
        ffmpeg_binary,
        "-hide_banner",
        "-nostdin",
        "-y",
        "-i", str(input_path),
        "-c:v", options.video_codec,
        "-c:a", options.audio_codec,
        "-s", options.resolution,
        "-b:v", options.video_bitrate,
        "-b:a", options.audio_bitrate,
        "-r", f"{options.fps:g}",
        "-preset", options.preset,
        "-crf", options.crf,
        "-progress", "pipe:1",
        "-nostats",
        str(output_path),
    ]


def format_timemark(out_time: str) -> str:
    """Trim FFmpeg's microsecond timestamp to centiseconds.

    Example:
        >>> format_timemark("00:01:02.503000")
        '00:01:02.50'
    """
    if "." in out_time:
        head, fraction = out_time.split(".", 1)
        return f"{head}.{fraction[:2]}"
    return out_time


class ProgressParser:
    """Accumulate ``key=value`` lines from ``-progress`` output.

    FFmpeg writes a block of keys followed by ``progress=continue`` (or
    ``progress=end`` for the final block). ``feed`` returns the block's
    position once the block is complete.
    """

    def __init__(self) -> None:
        self._block: dict[str, str] = {}
        self.finished = False

    def feed(self, line: str) -> tuple[float, str | None] | None:
        """Consume one line.

        Returns:
            ``(seconds_processed, timemark)`` at the end of a block, else None
        """
        line = line.strip()
        if "=" not in line:
            return None

        key, value = line.split("=", 1)
        self._block[key] = value
        if key != "progress":
            return None

        block, self._block = self._block, {}
        self.finished = value == "end"

        seconds = _out_time_seconds(block)
        if seconds is None:
            return (0.0, None) if self.finished else None
        out_time = block.get("out_time")
        return seconds, format_timemark(out_time) if out_time else None


def _out_time_seconds(block: dict[str, str]) -> float | None:
    # out_time_ms is in microseconds despite its name; out_time_us is the newer alias
    for key in ("out_time_us", "out_time_ms"):
        raw = block.get(key)
        if raw and raw.lstrip("-").isdigit():
            return max(int(raw), 0) / 1_000_000
    return None


def probe_duration(file_path: str | Path, ffprobe_binary: str = "ffprobe") -> float | None:
    """Read container duration in seconds with FFprobe.

    Returns:
        Duration in seconds, or None if it cannot be determined
    """
    try:
        result = subprocess.run(
            [
                ffprobe_binary,
                "-v", "quiet",
                "-print_format", "json",
                "-show_format",
                str(file_path),
            ],
            capture_output=True,
            text=True,
            timeout=60,
        )
    except (subprocess.TimeoutExpired, FileNotFoundError) as e:
        logger.warning("FFprobe unavailable, progress will be coarse", extra={"error": str(e)})
        return None

    if result.returncode != 0:
        return None

    try:
        duration = float(json.loads(result.stdout)["format"]["duration"])
    except (ValueError, KeyError, TypeError):
        return None
    return duration if duration > 0 else None


class FFmpegEngine:
    """Transcode local files with FFmpeg.

    Example:
        >>> engine = FFmpegEngine()
        >>> engine.transcode(Path("in.mp4"), Path("out.mp4"), TranscodeOptions(),
        ...                  lambda fraction, timemark: print(fraction))
    """

    def __init__(
        self,
        ffmpeg_binary: str = "ffmpeg",
        ffprobe_binary: str = "ffprobe",
        timeout_seconds: int | None = None,
    ) -> None:
        self.ffmpeg_binary = ffmpeg_binary
        self.ffprobe_binary = ffprobe_binary
        self.timeout_seconds = timeout_seconds

    def transcode(
        self,
        input_path: Path,
        output_path: Path,
        options: TranscodeOptions,
        on_progress: EngineProgressCallback,
    ) -> None:
        """Run FFmpeg to completion.

        Raises:
            TranscodeEngineError: If FFmpeg is missing, times out or exits non-zero
        """
        duration = probe_duration(input_path, self.ffprobe_binary)
        command = build_ffmpeg_command(input_path, output_path, options, self.ffmpeg_binary)
        logger.info("Starting FFmpeg", extra={"command": " ".join(command), "duration_seconds": duration})

        with tempfile.TemporaryFile(mode="w+") as stderr_file:
            try:
                process = subprocess.Popen(
                    command,
                    stdout=subprocess.PIPE,
                    stderr=stderr_file,
                    text=True,
                )
            except FileNotFoundError:
                raise TranscodeEngineError(
                    "FFmpeg not found - ensure FFmpeg is installed",
                    {"ffmpeg_binary": self.ffmpeg_binary},
                )

            timed_out = threading.Event()
            timer = None
            if self.timeout_seconds:
                timer = threading.Timer(self.timeout_seconds, _kill, args=(process, timed_out))
                timer.daemon = True
                timer.start()

            parser = ProgressParser()
            last_timemark = None
            try:
                if process.stdout is None:
                    raise TranscodeEngineError(
                        "FFmpeg progress stream unavailable",
                        {"ffmpeg_binary": self.ffmpeg_binary},
                    )
                for line in process.stdout:
                    position = parser.feed(line)
                    if position is None:
                        continue
                    seconds, last_timemark = position
                    if parser.finished:
                        on_progress(1.0, last_timemark)
                    elif duration:
                        on_progress(min(seconds / duration, 1.0), last_timemark)
                returncode = process.wait()
            finally:
                if timer:
                    timer.cancel()
                if process.poll() is None:
                    process.kill()
                    process.wait()

            stderr_file.seek(0)
            stderr_tail = stderr_file.read()[-STDERR_TAIL_CHARS:]

        if timed_out.is_set():
            raise TranscodeEngineError(
                f"FFmpeg timed out after {self.timeout_seconds}s",
                {"timeout_seconds": self.timeout_seconds, "stderr": stderr_tail},
            )
        if returncode != 0:
            raise TranscodeEngineError(
                f"FFmpeg exited with code {returncode}",
                {"returncode": returncode, "stderr": stderr_tail},
            )

        logger.info("FFmpeg finished", extra={"output_path": str(output_path), "timemark": last_timemark})


def _kill(process: subprocess.Popen, timed_out: threading.Event) -> None:
    timed_out.set()
    process.kill()
