from __future__ import annotations

import os
import threading
import time
import warnings
from collections import deque
from enum import Enum
from typing import Any, Callable, Iterable, Iterator, Sequence, TypeVar
from uuid import uuid4

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from radio.errors import (
    ContinuationError,
    GenerationFailedError,
    IndexBuildTimeoutError,
    InitializationError,
    MalformedResponseError,
    NoMessageError,
    PipelineCancelled,
    ResourceLeakWarning,
    TransportError,
    ValidationError,
    is_retryable_error,
)
from radio.llm_base import CompletionProvider, Message, StreamEvent
from radio.retry import RetryPolicy
from radio.structured import StructuredOutputParser
from radio.worker_pool import run_bounded

ASSISTANT_NAME_PREFIX = "llm-radio-file-search"
CONTEXT_WINDOW = 30
CONTINUATION_LIMIT = 30

M = TypeVar("M", bound=BaseModel)


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except Exception:
        return default


_TERMINAL_FAILURES = frozenset({"failed", "expired", "cancelled"})


class StreamState(str, Enum):
    STARTED = "started"
    TEXT_STREAMING = "text_streaming"
    TOOL_CALL = "tool_call"
    RUN_STEP_DONE = "run_step_done"
    COMPLETE = "complete"
    FAILED = "failed"


class StreamConsumer:
    """Consumes one generation stream and resolves to COMPLETE or raises."""

    def __init__(self, label: str, on_progress: Callable[[str], None] | None = None) -> None:
        self.label = label
        self.on_progress = on_progress
        self.state = StreamState.STARTED
        self.text = ""
        self.tool_calls: list[str] = []
        self.incomplete_reasons: list[str] = []

    def feed(self, event: StreamEvent) -> StreamState:
        if self.state in (StreamState.COMPLETE, StreamState.FAILED):
            return self.state
        kind = event.kind
        if kind == "text_delta":
            self.state = StreamState.TEXT_STREAMING
            self.text += event.text
            if self.on_progress:
                self.on_progress(self.text)
        elif kind == "tool_call_created":
            self.state = StreamState.TOOL_CALL
            self.tool_calls.append(event.text)
            print(f"[session] tool_call label={self.label} type={event.text}")
        elif kind == "run_step_done":
            if event.status in _TERMINAL_FAILURES:
                self.state = StreamState.FAILED
                raise GenerationFailedError(event.error_code, event.error_message)
            self.state = StreamState.RUN_STEP_DONE
        elif kind == "message_done":
            if event.incomplete_reason:
                self.incomplete_reasons.append(event.incomplete_reason)
                print(f"[session] message_incomplete label={self.label} reason={event.incomplete_reason}")
        elif kind == "error":
            self.state = StreamState.FAILED
            raise TransportError(f"Stream error {event.error_code}: {event.error_message}")
        elif kind == "end":
            self.state = StreamState.COMPLETE
        return self.state

    def consume(
        self,
        events: Iterable[StreamEvent],
        cancel_event: threading.Event | None = None,
    ) -> StreamState:
        iterator: Iterator[StreamEvent] = iter(events)
        try:
            for event in iterator:
                if cancel_event is not None and cancel_event.is_set():
                    raise PipelineCancelled(f"stream {self.label} cancelled")
                if self.feed(event) == StreamState.COMPLETE:
                    break
        finally:
            close = getattr(iterator, "close", None)
            if callable(close):
                close()
        # An exhausted stream without an explicit end event still resolves.
        if self.state != StreamState.FAILED:
            self.state = StreamState.COMPLETE
        return self.state


class CompletionSession:
    """
    One remote assistant bound to a knowledge index over `documents`.

    Lifecycle is init() -> run()* -> deinit(). Use it as a context manager so
    deinit() runs on every exit path. A session is not safe for concurrent
    use: run() calls share the rolling context.
    """

    def __init__(
        self,
        provider: CompletionProvider,
        documents: Sequence[str],
        instructions: str,
        *,
        model: str,
        name: str | None = None,
        temperature: float | None = None,
        top_p: float | None = None,
        retry: RetryPolicy | None = None,
        parser: StructuredOutputParser | None = None,
        continuation_limit: int = CONTINUATION_LIMIT,
        context_window: int = CONTEXT_WINDOW,
        index_poll_interval: float | None = None,
        index_build_timeout: float = 600.0,
        upload_concurrency: int | None = None,
        cancel_event: threading.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if continuation_limit < 1:
            raise ValueError("continuation_limit must be >= 1")
        self.provider = provider
        self.documents = list(documents)
        self.instructions = instructions
        self.model = model
        self.name = f"{ASSISTANT_NAME_PREFIX}_{name or f'file_search_{uuid4().hex}'}"
        self.temperature = temperature
        self.top_p = top_p
        self.retry = (retry or RetryPolicy(name="session")).with_predicate(is_retryable_error)
        self.parser = parser or StructuredOutputParser(name=f"structured:{name or 'session'}")
        self.continuation_limit = continuation_limit
        self.context: deque[Message] = deque(maxlen=context_window)
        if index_poll_interval is None:
            index_poll_interval = _env_float("INDEX_POLL_INTERVAL_SECONDS", 0.5)
        self.index_poll_interval = max(0.0, index_poll_interval)
        self.index_build_timeout = index_build_timeout
        self.upload_concurrency = upload_concurrency
        self.cancel_event = cancel_event
        self._clock = clock

        self.document_ids: list[str] = []
        self.index_id: str | None = None
        self.assistant_id: str | None = None
        self.thread_ids: list[str] = []
        self.leaked_resources: list[tuple[str, str]] = []
        self._deinitialized = False

    def __enter__(self) -> CompletionSession:
        try:
            self.init()
        except BaseException:
            self.deinit()
            raise
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.deinit()

    def _call(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        return self.retry.call(func, *args, cancel_event=self.cancel_event, **kwargs)

    def _check_cancelled(self, where: str) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise PipelineCancelled(f"{self.name} cancelled during {where}")

    def init(self) -> None:
        if self.assistant_id is not None:
            return
        if not self.documents:
            raise ValidationError(f"{self.name} requires at least one document")
        t0 = time.perf_counter()
        try:
            self._upload_documents()
            self._check_cancelled("index creation")
            self.index_id = self._call(self.provider.create_index, self.name, list(self.document_ids))
            print(f"[session] index_created name={self.name} id={self.index_id}")
            self._wait_for_index()
            self.assistant_id = self._call(
                self.provider.create_assistant,
                name=self.name,
                instructions=self.instructions,
                index_id=self.index_id,
                model=self.model,
                temperature=self.temperature,
                top_p=self.top_p,
            )
        except (PipelineCancelled, InitializationError, ValidationError):
            raise
        except Exception as exc:
            raise InitializationError(f"{self.name} failed to initialize: {exc}") from exc
        print(
            f"[session] ready name={self.name} assistant={self.assistant_id} "
            f"documents={len(self.document_ids)} seconds={round(time.perf_counter() - t0, 3)}"
        )

    def _upload_documents(self) -> None:
        lock = threading.Lock()

        def _upload(path: str) -> str:
            document_id = self._call(self.provider.upload_document, path)
            with lock:
                self.document_ids.append(document_id)
            print(f"[session] uploaded name={self.name} path={os.path.basename(path)} id={document_id}")
            return document_id

        workers = self.upload_concurrency or len(self.documents)
        results = run_bounded(
            self.documents,
            _upload,
            concurrency=max(1, min(workers, len(self.documents))),
            cancel_event=self.cancel_event,
            name="upload",
        )
        failed = [r for r in results if not r.ok]
        if failed:
            first = failed[0].error
            if isinstance(first, PipelineCancelled):
                raise first
            raise InitializationError(
                f"{self.name} failed to upload {len(failed)}/{len(self.documents)} documents: {first}"
            ) from first

    def _wait_for_index(self) -> None:
        assert self.index_id is not None
        deadline = self._clock() + self.index_build_timeout
        while True:
            status = self._call(self.provider.index_status, self.index_id)
            if status.in_progress <= 0:
                if status.failed:
                    print(f"[session] index_partial name={self.name} failed={status.failed} total={status.total}")
                return
            if self._clock() >= deadline:
                raise IndexBuildTimeoutError(
                    f"Index {self.index_id} still has {status.in_progress}/{status.total} documents "
                    f"in progress after {self.index_build_timeout}s"
                )
            if self.cancel_event is not None:
                if self.cancel_event.wait(self.index_poll_interval):
                    raise PipelineCancelled(f"{self.name} cancelled while waiting for index")
            else:
                time.sleep(self.index_poll_interval)

    def run(self, new_messages: Sequence[Message] | str) -> list[Message]:
        if self.assistant_id is None:
            raise InitializationError(f"{self.name} is not initialized")
        if isinstance(new_messages, str):
            new_messages = [Message(role="user", content=new_messages)]
        sent = list(self.context) + list(new_messages)

        thread_id = self._call(self.provider.create_thread, sent)
        self.thread_ids.append(thread_id)
        print(f"[session] thread_created name={self.name} thread={thread_id} messages={len(sent)}")

        for attempt in range(1, self.continuation_limit + 1):
            self._check_cancelled("generation")
            events = self._call(
                self.provider.stream_run,
                thread_id,
                assistant_id=self.assistant_id,
                model=self.model,
            )
            StreamConsumer(label=thread_id).consume(events, self.cancel_event)

            transcript = self._call(self.provider.list_messages, thread_id)
            produced = [m for m in transcript[len(sent):] if m.role == "assistant"]
            if not produced:
                raise NoMessageError(f"{self.name} run on thread {thread_id} ended without an assistant reply")
            self.context = deque(transcript, maxlen=self.context.maxlen)
            if not produced[-1].incomplete:
                return produced
            print(
                f"[session] continuation name={self.name} thread={thread_id} "
                f"attempt={attempt}/{self.continuation_limit} reason={produced[-1].incomplete_reason}"
            )

        raise ContinuationError(
            f"{self.name} output still incomplete after {self.continuation_limit} continuations"
        )

    def latest_message(self, offset: int = -1) -> Message:
        replies = [m for m in self.context if m.role == "assistant"]
        try:
            message = replies[offset]
        except IndexError:
            raise NoMessageError(f"{self.name} has no assistant message at offset {offset}") from None
        if not message.content.strip():
            raise NoMessageError(f"{self.name} assistant message at offset {offset} is empty")
        return message

    def parse_latest(self, offset: int = -1, model: type[M] | None = None) -> Any:
        message = self.latest_message(offset)
        outcome = self.parser.parse(message.content)
        if model is None:
            return outcome.value
        try:
            return model.model_validate(outcome.value)
        except PydanticValidationError as exc:
            raise MalformedResponseError(f"{self.name} response does not match {model.__name__}: {exc}") from exc

    def _release(self, kind: str, resource_id: str, delete: Callable[[str], None]) -> None:
        try:
            delete(resource_id)
        except Exception as exc:
            self.leaked_resources.append((kind, resource_id))
            print(f"[session] leak kind={kind} id={resource_id} error={exc}")
            warnings.warn(
                f"Failed to delete {kind} {resource_id}: {exc}",
                ResourceLeakWarning,
                stacklevel=3,
            )

    def deinit(self) -> None:
        if self._deinitialized:
            return
        self._deinitialized = True
        if self.index_id is not None:
            self._release("index", self.index_id, self.provider.delete_index)
        for document_id in list(self.document_ids):
            self._release("document", document_id, self.provider.delete_document)
        for thread_id in list(self.thread_ids):
            self._release("thread", thread_id, self.provider.delete_thread)
        if self.assistant_id is not None:
            self._release("assistant", self.assistant_id, self.provider.delete_assistant)
        print(f"[session] deinit name={self.name} leaked={len(self.leaked_resources)}")
        self.index_id = None
        self.document_ids = []
        self.thread_ids = []
        self.assistant_id = None
