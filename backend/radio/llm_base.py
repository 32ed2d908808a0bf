from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterator, Literal

Role = Literal["user", "assistant", "system"]

StreamEventKind = Literal[
    "text_delta",
    "tool_call_created",
    "run_step_done",
    "message_done",
    "error",
    "end",
]


@dataclass
class Message:
    role: str
    content: str
    id: str | None = None
    incomplete_reason: str | None = None

    @property
    def incomplete(self) -> bool:
        return self.incomplete_reason is not None

    def to_payload(self) -> dict[str, Any]:
        return {"role": self.role, "content": self.content}


@dataclass
class StreamEvent:
    kind: StreamEventKind
    text: str = ""
    status: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    incomplete_reason: str | None = None
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class IndexStatus:
    total: int = 0
    in_progress: int = 0
    completed: int = 0
    failed: int = 0


@dataclass(frozen=True)
class RemoteResource:
    id: str
    name: str = ""


class CompletionProvider(ABC):
    """Operations the pipeline needs from a generative-completion service."""

    @abstractmethod
    def upload_document(self, path: str) -> str:
        raise NotImplementedError

    @abstractmethod
    def delete_document(self, document_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def create_index(self, name: str, document_ids: list[str]) -> str:
        raise NotImplementedError

    @abstractmethod
    def index_status(self, index_id: str) -> IndexStatus:
        raise NotImplementedError

    @abstractmethod
    def delete_index(self, index_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def create_assistant(
        self,
        *,
        name: str,
        instructions: str,
        index_id: str,
        model: str,
        temperature: float | None = None,
        top_p: float | None = None,
    ) -> str:
        raise NotImplementedError

    @abstractmethod
    def delete_assistant(self, assistant_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def create_thread(self, messages: list[Message]) -> str:
        raise NotImplementedError

    @abstractmethod
    def delete_thread(self, thread_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def stream_run(self, thread_id: str, *, assistant_id: str, model: str) -> Iterator[StreamEvent]:
        raise NotImplementedError

    @abstractmethod
    def list_messages(self, thread_id: str) -> list[Message]:
        raise NotImplementedError

    @abstractmethod
    def complete(
        self,
        messages: list[Message],
        *,
        model: str,
        temperature: float | None = None,
        json_mode: bool = False,
    ) -> str:
        raise NotImplementedError

    def list_assistants(self) -> list[RemoteResource]:
        return []

    def list_indexes(self) -> list[RemoteResource]:
        return []

    def list_index_documents(self, index_id: str) -> list[str]:
        return []
