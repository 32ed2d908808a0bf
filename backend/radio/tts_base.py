from __future__ import annotations

from abc import ABC, abstractmethod

import numpy as np
import soundfile as sf

from radio.errors import AudioProcessingError


class TtsProvider(ABC):
    name: str

    @abstractmethod
    def synthesize(self, text: str, voice: str) -> bytes:
        raise NotImplementedError


def combine_audio_files(input_paths: list[str], output_path: str) -> None:
    """Concatenate WAV files in the given order. Fails on a sample rate mismatch."""
    segments: list[np.ndarray] = []
    out_sr: int | None = None
    channels: int | None = None
    for path in input_paths:
        try:
            samples, sr = sf.read(path, dtype="float32", always_2d=True)
        except Exception as exc:
            raise AudioProcessingError(f"Failed to read audio segment {path}: {exc}") from exc
        if out_sr is None:
            out_sr = int(sr)
            channels = int(samples.shape[1])
        if int(sr) != out_sr:
            raise AudioProcessingError(f"Sample rate mismatch while combining audio: {sr} != {out_sr}")
        if samples.shape[1] != channels:
            samples = np.repeat(samples.mean(axis=1, keepdims=True), channels, axis=1)
        segments.append(np.asarray(samples, dtype=np.float32))
    if not segments or out_sr is None:
        raise AudioProcessingError("No audio segments to combine.")
    merged = np.concatenate(segments, axis=0)
    sf.write(output_path, merged, out_sr, subtype="PCM_16")
