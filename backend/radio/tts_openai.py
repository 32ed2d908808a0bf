from __future__ import annotations

import os

import requests

from radio.errors import SynthesisError, TransportError
from radio.tts_base import TtsProvider
from radio.tts_types import TtsConfig, normalize_voice


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except Exception:
        return default


class OpenAISpeechProvider(TtsProvider):
    name = "openai"

    def __init__(self, api_key: str, base_url: str, config: TtsConfig | None = None) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.config = config or TtsConfig()
        self.connect_timeout = _env_float("TTS_CONNECT_TIMEOUT_SECONDS", 10.0)
        self.request_timeout = _env_float("TTS_REQUEST_TIMEOUT_SECONDS", 120.0)

    def synthesize(self, text: str, voice: str) -> bytes:
        text = (text or "").strip()
        if not text:
            raise SynthesisError("Speech text is empty.")
        body: dict[str, object] = {
            "model": self.config.model,
            "input": text,
            "voice": normalize_voice(voice),
            "response_format": self.config.response_format,
        }
        if self.config.speed is not None:
            body["speed"] = max(0.25, min(4.0, float(self.config.speed)))
        try:
            response = requests.post(
                f"{self.base_url}/audio/speech",
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json=body,
                timeout=(self.connect_timeout, self.request_timeout),
            )
        except requests.RequestException as exc:
            raise TransportError(f"Speech request failed: {exc}") from exc
        if response.status_code >= 400:
            raise TransportError(
                f"Speech HTTP {response.status_code}: {response.text[:300]}",
                status=response.status_code,
            )
        if not response.content:
            raise SynthesisError("Speech response is empty.")
        return response.content


def get_speech_provider(model: str = "tts-1") -> OpenAISpeechProvider:
    api_key = os.environ.get("OPENAI_API_KEY", "").strip()
    if not api_key:
        raise RuntimeError("OPENAI_API_KEY is not set.")
    base_url = os.environ.get("OPENAI_BASE_URL", "").strip() or "https://api.openai.com/v1"
    return OpenAISpeechProvider(api_key, base_url, TtsConfig(model=model))
