"""Combine one video input and one audio input into an MP4 with ffmpeg."""
from __future__ import annotations

import logging
import math
import re
import subprocess
import threading
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from models.merge_models import MergeParameters
from utils.errors import MergeError, ValidationError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[dict[str, str]], None]

VIDEO_CODEC = "libx264"
VIDEO_PRESET = "veryfast"
AUDIO_CODEC = "aac"
OUTPUT_TAIL_LINES = 200

_BITRATE_PATTERN = re.compile(r"^\d+(\.\d+)?[kKmM]?$")


def validate_audio_bitrate(value: str) -> str:
    token = (value or "").strip()
    if not _BITRATE_PATTERN.match(token):
        raise ValidationError(
            f"Invalid audio_bitrate {value!r}; expected a value like '192k'"
        )
    return token


def validate_audio_offset(value: float) -> float:
    if not math.isfinite(value):
        raise ValidationError(
            f"Invalid audio_offset_sec {value!r}; expected a finite number of seconds"
        )
    return value


def _format_seconds(value: float) -> str:
    text = f"{abs(value):.6f}".rstrip("0").rstrip(".")
    return text or "0"


@dataclass
class MergeInput:
    path: str
    options: list[str] = field(default_factory=list)

    def to_args(self) -> list[str]:
        return [*self.options, "-i", self.path]


@dataclass
class MergeCommand:
    inputs: list[MergeInput]
    maps: list[str]
    output_options: list[str]
    output_path: str

    def to_args(self, ffmpeg_bin: str = "ffmpeg") -> list[str]:
        cmd = [ffmpeg_bin, "-y"]
        for entry in self.inputs:
            cmd.extend(entry.to_args())
        for stream in self.maps:
            cmd.extend(["-map", stream])
        cmd.extend(self.output_options)
        cmd.append(self.output_path)
        return cmd


class FFmpegMerger:
    def __init__(self, ffmpeg_bin: str = "ffmpeg"):
        self.ffmpeg_bin = ffmpeg_bin

    def build_command(
        self,
        video_path: str | Path,
        audio_path: str | Path,
        params: MergeParameters,
        output_path: str | Path,
    ) -> MergeCommand:
        """Translate merge parameters into ffmpeg inputs, maps and options.

        Video is always input 0 and audio input 1. A non-zero offset adds a
        third input: a copy of whichever stream must start later, preceded by
        ``-itsoffset``. The delayed copy is mapped in place of the stream it
        shifts so the engine never picks a stream implicitly.
        """
        inputs = [MergeInput(str(video_path)), MergeInput(str(audio_path))]
        video_stream = "0:v:0"
        audio_stream = "1:a:0"

        offset = validate_audio_offset(params.audio_offset_sec)
        if offset:
            delay = ["-itsoffset", _format_seconds(offset)]
            if offset > 0:
                inputs.append(MergeInput(str(audio_path), delay))
                audio_stream = "2:a:0"
            else:
                inputs.append(MergeInput(str(video_path), delay))
                video_stream = "2:v:0"

        output_options: list[str] = []
        if params.trim_to_shortest:
            output_options.append("-shortest")

        if params.reencode_video:
            output_options.extend(
                [
                    "-c:v",
                    VIDEO_CODEC,
                    "-preset",
                    VIDEO_PRESET,
                    "-movflags",
                    "+faststart",
                ]
            )
        else:
            output_options.extend(["-c:v", "copy"])

        output_options.extend(
            ["-c:a", AUDIO_CODEC, "-b:a", validate_audio_bitrate(params.audio_bitrate)]
        )

        return MergeCommand(
            inputs=inputs,
            maps=[video_stream, audio_stream],
            output_options=output_options,
            output_path=str(output_path),
        )

    def merge(
        self,
        video_path: str | Path,
        audio_path: str | Path,
        params: MergeParameters,
        output_path: str | Path,
        progress_callback: ProgressCallback | None = None,
    ) -> Path:
        command = self.build_command(video_path, audio_path, params, output_path)
        self._execute(command.to_args(self.ffmpeg_bin), progress_callback)

        output = Path(output_path)
        if not output.exists():
            raise MergeError(f"ffmpeg finished but produced no output at {output}")
        logger.info("ffmpeg.done out_file=%s", output)
        return output

    def _execute(
        self,
        cmd: list[str],
        progress_callback: ProgressCallback | None = None,
    ) -> None:
        cmd_with_progress = cmd[:-1] + ["-progress", "pipe:1", "-nostats", cmd[-1]]
        logger.info("ffmpeg.start command_line=%s", " ".join(cmd_with_progress))

        try:
            process = subprocess.Popen(
                cmd_with_progress,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                bufsize=1,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            logger.error("ffmpeg.error err=%s", exc)
            raise MergeError(f"Failed to execute ffmpeg: {exc}") from exc

        if process.stdout is None or process.stderr is None:
            process.kill()
            raise MergeError("ffmpeg did not provide output streams")

        stdout_tail: deque[str] = deque(maxlen=OUTPUT_TAIL_LINES)
        stderr_tail: deque[str] = deque(maxlen=OUTPUT_TAIL_LINES)

        def _drain_stderr() -> None:
            for raw in process.stderr:
                line = raw.rstrip()
                if line:
                    stderr_tail.append(line)

        stderr_reader = threading.Thread(target=_drain_stderr, daemon=True)
        stderr_reader.start()

        block: dict[str, str] = {}
        try:
            for raw in process.stdout:
                line = raw.strip()
                if not line:
                    continue
                stdout_tail.append(line)
                key, sep, value = line.partition("=")
                if not sep:
                    continue
                block[key] = value
                if key == "progress":
                    logger.debug(
                        "ffmpeg.progress out_time=%s speed=%s",
                        block.get("out_time"),
                        block.get("speed"),
                    )
                    if progress_callback:
                        progress_callback(dict(block))
                    block = {}
        except BaseException:
            logger.warning("ffmpeg.abort killing child process")
            process.kill()
            process.wait()
            stderr_reader.join()
            raise

        returncode = process.wait()
        stderr_reader.join()

        if returncode != 0:
            stdout_text = "\n".join(stdout_tail)
            stderr_text = "\n".join(stderr_tail)
            last_line = stderr_tail[-1] if stderr_tail else "no diagnostic output"
            logger.error(
                "ffmpeg.error returncode=%s stderr=%s", returncode, stderr_text[-4000:]
            )
            raise MergeError(
                f"ffmpeg exited with code {returncode}: {last_line}",
                returncode=returncode,
                stdout=stdout_text,
                stderr=stderr_text,
            )
