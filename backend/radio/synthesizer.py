from __future__ import annotations

import glob
import os
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from radio import ffmpeg
from radio.errors import AudioProcessingError, PipelineCancelled, SynthesisError, is_retryable_error
from radio.retry import RetryPolicy
from radio.tts_base import TtsProvider, combine_audio_files
from radio.tts_types import normalize_voice
from radio.worker_pool import run_bounded

SEGMENT_PREFIX = "speech_"
SEGMENT_SUFFIX = ".wav"
SEGMENT_INDEX_WIDTH = 4
MAX_SEGMENTS = 10 ** SEGMENT_INDEX_WIDTH


def segment_filename(index: int) -> str:
    if index < 0 or index >= MAX_SEGMENTS:
        raise SynthesisError(f"Segment index {index} is outside 0..{MAX_SEGMENTS - 1}")
    return f"{SEGMENT_PREFIX}{index:0{SEGMENT_INDEX_WIDTH}d}{SEGMENT_SUFFIX}"


@dataclass(frozen=True)
class FinishedProgram:
    path: str
    filename: str
    duration: float
    segment_count: int


class AudioAssembler:
    """Turns an ordered script into one distribution-ready audio file."""

    def __init__(
        self,
        tts: TtsProvider,
        output_dir: str,
        *,
        output_name: str = "output",
        segments_dir: str | None = None,
        bgm_path: str | None = None,
        bgm_volume: float = 0.25,
        tts_concurrency: int = 20,
        retry: RetryPolicy | None = None,
        cancel_event: threading.Event | None = None,
        on_progress: Callable[[dict[str, Any]], None] | None = None,
    ) -> None:
        if tts_concurrency < 1:
            raise ValueError("tts_concurrency must be >= 1")
        self.tts = tts
        self.output_dir = output_dir
        self.segments_dir = segments_dir or os.path.join(output_dir, "segments")
        self.output_name = output_name
        self.bgm_path = bgm_path
        self.bgm_volume = bgm_volume
        self.tts_concurrency = tts_concurrency
        self.retry = (retry or RetryPolicy(name="tts")).with_predicate(is_retryable_error)
        self.cancel_event = cancel_event
        self.on_progress = on_progress
        self._done = 0
        self._lock = threading.Lock()

    def _synthesize_one(self, item: tuple[int, Any]) -> str:
        index, turn = item
        text = str(_turn_field(turn, "text") or "").strip()
        voice = normalize_voice(_turn_field(turn, "voice"))
        path = os.path.join(self.segments_dir, segment_filename(index))
        audio = self.retry.call(self.tts.synthesize, text, voice, cancel_event=self.cancel_event)
        with open(path, "wb") as fh:
            fh.write(audio)
        with self._lock:
            self._done += 1
            done = self._done
        if self.on_progress:
            self.on_progress({"synthesized": done, "segment": os.path.basename(path)})
        return path

    def synthesize_all(self, turns: Sequence[Any]) -> list[str]:
        """Synthesize every turn to speech_NNNN.wav. The first failure aborts the batch."""
        if not turns:
            raise SynthesisError("No script turns to synthesize.")
        if len(turns) > MAX_SEGMENTS:
            raise SynthesisError(f"Too many turns to synthesize: {len(turns)} > {MAX_SEGMENTS}")
        os.makedirs(self.segments_dir, exist_ok=True)
        for stale in glob.glob(os.path.join(self.segments_dir, f"{SEGMENT_PREFIX}*{SEGMENT_SUFFIX}")):
            os.remove(stale)
        self._done = 0

        t0 = time.perf_counter()
        try:
            results = run_bounded(
                list(enumerate(turns)),
                self._synthesize_one,
                concurrency=self.tts_concurrency,
                fail_fast=True,
                cancel_event=self.cancel_event,
                name="tts",
            )
        except (PipelineCancelled, SynthesisError):
            raise
        except Exception as exc:
            raise SynthesisError(f"Speech synthesis failed: {exc}") from exc
        print(
            f"[synthesizer] segments={len(results)} concurrency={self.tts_concurrency} "
            f"seconds={round(time.perf_counter() - t0, 3)}"
        )
        return [str(r.value) for r in results]

    def segment_paths(self) -> list[str]:
        # Zero-padded names make lexical order equal to playback order.
        return sorted(glob.glob(os.path.join(self.segments_dir, f"{SEGMENT_PREFIX}*{SEGMENT_SUFFIX}")))

    def assemble(self) -> FinishedProgram:
        segments = self.segment_paths()
        if not segments:
            raise AudioProcessingError("No synthesized segments to assemble.")
        os.makedirs(self.output_dir, exist_ok=True)
        concat_path = os.path.join(self.output_dir, f"{self.output_name}.concat.wav")
        try:
            combine_audio_files(segments, concat_path)
        except AudioProcessingError as exc:
            print(f"[synthesizer] combine_fallback reason={exc}")
            ffmpeg.concatenate(segments, concat_path)
        duration = ffmpeg.probe_duration(concat_path)
        print(f"[synthesizer] concatenated segments={len(segments)} duration={round(duration, 3)}")

        mixed_path = concat_path
        if self.bgm_path:
            if not os.path.exists(self.bgm_path):
                raise AudioProcessingError(f"Background track not found: {self.bgm_path}")
            looped_path = os.path.join(self.output_dir, f"{self.output_name}.bgm.wav")
            ffmpeg.loop_and_trim(self.bgm_path, duration, looped_path)
            mixed_path = os.path.join(self.output_dir, f"{self.output_name}.mixed.wav")
            ffmpeg.mix(concat_path, looped_path, self.bgm_volume, mixed_path)
            print(f"[synthesizer] mixed bgm={os.path.basename(self.bgm_path)} volume={self.bgm_volume}")

        filename = f"{self.output_name}.mp3"
        final_path = os.path.join(self.output_dir, filename)
        ffmpeg.transcode(mixed_path, final_path)
        print(f"[synthesizer] finished path={final_path}")
        return FinishedProgram(
            path=final_path,
            filename=filename,
            duration=duration,
            segment_count=len(segments),
        )

    def generate(self, turns: Sequence[Any]) -> FinishedProgram:
        self.synthesize_all(turns)
        return self.assemble()


def _turn_field(turn: Any, key: str) -> Any:
    if isinstance(turn, dict):
        return turn.get(key)
    return getattr(turn, key, None)
