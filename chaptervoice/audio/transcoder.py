"""ffmpeg-backed transcoding, probing, and concatenation.

Responsibilities:
- Run `ffmpeg` as a cancellable subprocess and normalize its failures.
- Convert synthesized chapter audio into the target container with tempo and title tag.
- Probe duration and embedded title from an existing file.
- Concatenate chapter files with either stream copy or a fixed-bitrate re-encode.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
import re
import subprocess
from typing import Sequence

from ..cancellation import CancellationToken, check_cancelled
from ..errors import GenerationCancelledError, TranscodeError
from ..runtime_tools import resolve_ffmpeg

ENCODE_BITRATE = "64k"
MIN_POST_SPEED = 0.5
MAX_POST_SPEED = 3.0

_DURATION_RE = re.compile(r"Duration:\s*(\d+):(\d+):(\d+(?:\.\d+)?)")
_STDERR_TAIL_CHARS = 400


@dataclass(frozen=True, slots=True)
class FfmpegResult:
    """Captured output of one successful ffmpeg invocation."""

    stdout: str
    stderr: str


@dataclass(frozen=True, slots=True)
class ProbeResult:
    """Duration and title tag read back from an audio file."""

    duration: float | None
    title_tag: str | None


class ConcatStrategy(Enum):
    """Concatenation strategies tried in order by the assembler."""

    STREAM_COPY = "stream_copy"
    REENCODE = "reencode"


class FfmpegRunner:
    """Spawn ffmpeg and poll for cancellation while it runs."""

    _POLL_SECONDS = 0.1

    def __init__(self, executable: str | None = None) -> None:
        self._executable = executable

    @property
    def executable(self) -> str:
        if self._executable is None:
            self._executable = resolve_ffmpeg()
        return self._executable

    def run(
        self,
        args: Sequence[str],
        *,
        cancel_token: CancellationToken | None = None,
    ) -> FfmpegResult:
        """Run ffmpeg with `args`; kill it and raise when cancellation is requested."""

        check_cancelled(cancel_token)
        command = [self.executable, *args]
        try:
            process = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except FileNotFoundError as exc:
            raise TranscodeError(
                "ffmpeg executable not found. Install ffmpeg or set `FFMPEG_BIN`."
            ) from exc
        except OSError as exc:
            raise TranscodeError(f"Could not start ffmpeg: {exc}") from exc

        while True:
            try:
                stdout, stderr = process.communicate(timeout=self._POLL_SECONDS)
                break
            except subprocess.TimeoutExpired:
                if cancel_token is not None and cancel_token.cancelled:
                    process.kill()
                    process.communicate()
                    raise GenerationCancelledError()

        if process.returncode != 0:
            tail = stderr.strip()[-_STDERR_TAIL_CHARS:]
            raise TranscodeError(
                f"ffmpeg exited with code {process.returncode}: {tail or 'no output'}",
                stderr=stderr,
            )
        return FfmpegResult(stdout=stdout, stderr=stderr)


def clamp_post_speed(speed: float) -> float:
    return max(MIN_POST_SPEED, min(speed, MAX_POST_SPEED))


def build_atempo_filter(speed: float) -> str:
    """Build an `atempo` chain; a single stage only accepts factors up to 2."""

    clamped = clamp_post_speed(speed)
    if clamped <= 2:
        return f"atempo={clamped:.3f}"
    return f"atempo=2.0,atempo={clamped / 2:.3f}"


def parse_duration(stderr: str) -> float | None:
    """Parse `Duration: HH:MM:SS.ss` from ffmpeg's input banner."""

    match = _DURATION_RE.search(stderr)
    if match is None:
        return None
    hours, minutes, seconds = match.groups()
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def parse_title_tag(stdout: str) -> str | None:
    """Return the first `title=` value from ffmetadata output."""

    for line in stdout.splitlines():
        if line.startswith("title="):
            value = line[len("title="):].strip()
            return value or None
    return None


class ChapterTranscoder:
    """Build and run the ffmpeg commands used by commit and assembly."""

    def __init__(self, runner: FfmpegRunner | None = None) -> None:
        self.runner = runner or FfmpegRunner()

    def transcode(
        self,
        *,
        input_path: Path,
        output_path: Path,
        audio_format: str,
        post_speed: float,
        title_tag: str,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        """Re-encode one synthesized chapter into its stored container."""

        args = ["-y", "-hide_banner", "-loglevel", "error", "-i", str(input_path)]
        if post_speed != 1:
            args.extend(["-filter:a", build_atempo_filter(post_speed)])
        args.extend(self._codec_args(audio_format))
        args.extend(["-metadata", f"title={title_tag}"])
        if audio_format == "m4b":
            args.extend(["-f", "mp4"])
        args.append(str(output_path))
        self.runner.run(args, cancel_token=cancel_token)

    def probe(
        self,
        path: Path,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> ProbeResult:
        """Read duration and embedded title from `path`."""

        result = self.runner.run(
            ["-i", str(path), "-f", "ffmetadata", "-"],
            cancel_token=cancel_token,
        )
        return ProbeResult(
            duration=parse_duration(result.stderr),
            title_tag=parse_title_tag(result.stdout),
        )

    def concat(
        self,
        *,
        list_path: Path,
        output_path: Path,
        audio_format: str,
        strategy: ConcatStrategy,
        metadata_path: Path | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        """Concatenate the files named in a concat list into `output_path`."""

        args = ["-y", "-hide_banner", "-loglevel", "error"]
        args.extend(["-f", "concat", "-safe", "0", "-i", str(list_path)])
        if audio_format == "m4b" and metadata_path is not None:
            args.extend(["-i", str(metadata_path), "-map_metadata", "1"])
        else:
            args.extend(["-map_metadata", "-1"])
        if strategy is ConcatStrategy.STREAM_COPY:
            args.extend(["-c:a", "copy"])
        else:
            args.extend(self._codec_args(audio_format))
        if audio_format == "m4b":
            args.extend(["-f", "mp4"])
        args.append(str(output_path))
        self.runner.run(args, cancel_token=cancel_token)

    @staticmethod
    def _codec_args(audio_format: str) -> list[str]:
        if audio_format == "mp3":
            return ["-c:a", "libmp3lame", "-b:a", ENCODE_BITRATE]
        if audio_format == "m4b":
            return ["-c:a", "aac", "-b:a", ENCODE_BITRATE]
        raise TranscodeError(f"Unsupported output format `{audio_format}`.")
