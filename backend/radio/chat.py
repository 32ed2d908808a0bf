from __future__ import annotations

import threading

from radio.errors import is_retryable_error
from radio.llm_base import CompletionProvider, Message
from radio.retry import RetryPolicy


class ChatCompletion:
    """System prompt plus message history over plain chat completion. Not file-aware."""

    def __init__(
        self,
        system_prompt: str,
        provider: CompletionProvider,
        *,
        model: str,
        temperature: float | None = None,
        json_mode: bool = False,
        retry: RetryPolicy | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.system_prompt = system_prompt
        self.provider = provider
        self.model = model
        self.temperature = temperature
        self.json_mode = json_mode
        self.retry = (retry or RetryPolicy(name="chat")).with_predicate(is_retryable_error)
        self.cancel_event = cancel_event
        self.messages: list[Message] = []
        self.reset()

    def reset(self) -> None:
        self.messages = [Message(role="system", content=self.system_prompt)]

    def completion(self, message: str) -> str:
        self.messages.append(Message(role="user", content=message))
        text = self.retry.call(
            self.provider.complete,
            list(self.messages),
            model=self.model,
            temperature=self.temperature,
            json_mode=self.json_mode,
            cancel_event=self.cancel_event,
        )
        self.messages.append(Message(role="assistant", content=text))
        return text
