from __future__ import annotations

import os
import shutil
import subprocess

import soundfile as sf

from radio.errors import AudioProcessingError

PRIMARY_VOLUME = 1.9


def _binary() -> str:
    return os.environ.get("FFMPEG_BINARY", "ffmpeg").strip() or "ffmpeg"


def ensure_available() -> None:
    if shutil.which(_binary()) is None:
        raise AudioProcessingError(f"{_binary()} is required but not found in PATH")


def _run(args: list[str]) -> subprocess.CompletedProcess[str]:
    command = [_binary(), "-hide_banner", "-loglevel", "error", "-y", *args]
    try:
        proc = subprocess.run(command, check=False, text=True, capture_output=True)
    except OSError as exc:
        raise AudioProcessingError(f"Failed to start {command[0]}: {exc}") from exc
    if proc.returncode != 0:
        tail = (proc.stderr or "")[-1000:]
        print(f"[ffmpeg] command_failed returncode={proc.returncode} stderr={tail!r}")
        raise AudioProcessingError(f"Command failed ({proc.returncode}): {' '.join(command)}\n{tail}")
    return proc


def probe_duration(path: str) -> float:
    try:
        info = sf.info(path)
    except Exception as exc:
        raise AudioProcessingError(f"Failed to read duration of {path}: {exc}") from exc
    return float(info.frames) / float(info.samplerate) if info.samplerate else 0.0


def concatenate(input_paths: list[str], output_path: str) -> str:
    if not input_paths:
        raise AudioProcessingError("No audio files to concatenate.")
    args: list[str] = []
    for path in input_paths:
        args += ["-i", path]
    streams = "".join(f"[{i}:a]" for i in range(len(input_paths)))
    args += [
        "-filter_complex",
        f"{streams}concat=n={len(input_paths)}:v=0:a=1[out]",
        "-map",
        "[out]",
        output_path,
    ]
    _run(args)
    return output_path


def loop_and_trim(input_path: str, duration: float, output_path: str) -> str:
    """Loop `input_path` indefinitely and cut it at `duration` seconds."""
    _run(
        [
            "-stream_loop",
            "-1",
            "-i",
            input_path,
            "-t",
            f"{max(0.0, duration):.3f}",
            output_path,
        ]
    )
    return output_path


def mix(primary_path: str, secondary_path: str, secondary_volume: float, output_path: str) -> str:
    """Mix the secondary track under the primary one; output length follows the primary."""
    graph = (
        f"[0:a]volume={PRIMARY_VOLUME}[a0];"
        f"[1:a]volume={secondary_volume}[a1];"
        "[a0][a1]amix=inputs=2:duration=first"
    )
    _run(["-i", primary_path, "-i", secondary_path, "-filter_complex", graph, output_path])
    return output_path


def transcode(input_path: str, output_path: str, codec: str = "libmp3lame") -> str:
    _run(["-i", input_path, "-c:a", codec, output_path])
    return output_path
