from __future__ import annotations

import json
import re
import threading
from dataclasses import dataclass
from typing import Any, Callable

import json_repair

from radio.chat import ChatCompletion
from radio.errors import UnrecoverableParseError
from radio.llm_base import CompletionProvider
from radio.prompts import JSON_FIXER_INSTRUCTIONS, json_fixer_request
from radio.retry import RetryPolicy

# Greedy on purpose: first "{" through last "}" across lines.
_OBJECT_SPAN = re.compile(r"\{[\s\S]*\}")

JsonFixer = Callable[[str], str]


@dataclass
class TierResult:
    value: dict[str, Any] | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.value is not None


@dataclass
class ParseOutcome:
    value: dict[str, Any]
    tier: str


def extract_json_span(text: str) -> str | None:
    match = _OBJECT_SPAN.search(text or "")
    return match.group(0) if match else None


def _as_object(loaded: Any) -> TierResult:
    if isinstance(loaded, dict):
        return TierResult(value=loaded)
    return TierResult(error=f"expected a JSON object, got {type(loaded).__name__}")


def parse_direct(text: str) -> TierResult:
    try:
        return _as_object(json.loads(text))
    except ValueError as exc:
        return TierResult(error=str(exc))


def parse_span(text: str) -> TierResult:
    span = extract_json_span(text)
    if span is None:
        return TierResult(error="no JSON object found in text")
    return parse_direct(span)


def parse_repaired(text: str) -> TierResult:
    span = extract_json_span(text)
    if span is None:
        return TierResult(error="no JSON object to repair")
    try:
        repaired = json_repair.repair_json(span, return_objects=True)
    except Exception as exc:
        return TierResult(error=f"repair failed: {exc}")
    return _as_object(repaired)


def make_json_fixer(
    provider: CompletionProvider,
    *,
    model: str = "gpt-4o-mini",
    temperature: float = 0.25,
    retry: RetryPolicy | None = None,
    cancel_event: threading.Event | None = None,
) -> JsonFixer:
    def _fix(text: str) -> str:
        chat = ChatCompletion(
            JSON_FIXER_INSTRUCTIONS,
            provider,
            model=model,
            temperature=temperature,
            json_mode=True,
            retry=retry,
            cancel_event=cancel_event,
        )
        return chat.completion(json_fixer_request(text))

    return _fix


class StructuredOutputParser:
    """
    Recover one JSON object from model output.

    Tiers run in order and stop at the first success: direct parse, the
    extracted {...} span, json_repair on that span, then a corrective
    completion through `fixer` when one is configured.
    """

    def __init__(self, fixer: JsonFixer | None = None, *, name: str = "structured") -> None:
        self.fixer = fixer
        self.name = name

    def _parse_fixed(self, text: str) -> TierResult:
        if self.fixer is None:
            return TierResult(error="no fixer configured")
        try:
            fixed = self.fixer(text)
        except Exception as exc:
            return TierResult(error=f"fixer failed: {exc}")
        result = parse_direct(fixed)
        if result.ok:
            return result
        return parse_span(fixed)

    def parse(self, text: str) -> ParseOutcome:
        tiers: list[tuple[str, Callable[[str], TierResult]]] = [
            ("direct", parse_direct),
            ("span", parse_span),
            ("repair", parse_repaired),
            ("fixer", self._parse_fixed),
        ]
        errors: list[str] = []
        for tier, attempt in tiers:
            result = attempt(text)
            if result.ok:
                if errors:
                    print(f"[{self.name}] recovered tier={tier} after={len(errors)}")
                assert result.value is not None
                return ParseOutcome(value=result.value, tier=tier)
            errors.append(f"{tier}: {result.error}")
        print(f"[{self.name}] unrecoverable errors={errors}")
        raise UnrecoverableParseError(
            "Could not recover a JSON object: " + "; ".join(errors),
            text=text,
        )
