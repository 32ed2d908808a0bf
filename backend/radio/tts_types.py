from __future__ import annotations

from dataclasses import dataclass

VOICES: tuple[str, ...] = ("alloy", "echo", "fable", "onyx", "nova", "shimmer")
GUEST_VOICES: tuple[str, ...] = ("alloy", "echo", "fable", "nova", "shimmer")
DEFAULT_HOST_VOICE = "onyx"
DEFAULT_GUEST_VOICE = "fable"


def normalize_voice(value: str | None, default: str = DEFAULT_GUEST_VOICE) -> str:
    voice = str(value or "").strip().lower()
    return voice if voice in VOICES else default


@dataclass(frozen=True)
class TtsConfig:
    model: str = "tts-1"
    response_format: str = "wav"
    speed: float | None = None
