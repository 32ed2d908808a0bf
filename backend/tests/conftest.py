from __future__ import annotations

import io
import json
import shutil
import threading
from itertools import count
from typing import Any, Callable, Iterator

import numpy as np
import pytest
import soundfile as sf

from radio import ffmpeg
from radio.llm_base import CompletionProvider, IndexStatus, Message, RemoteResource, StreamEvent
from radio.retry import RetryPolicy
from radio.tts_base import TtsProvider

SAMPLE_RATE = 24000

# responder(assistant_name, thread_messages) -> text or (text, incomplete_reason)
Responder = Callable[[str, list[Message]], Any]


def no_sleep_retry(attempts: int = 3, name: str = "test") -> RetryPolicy:
    return RetryPolicy(attempts, max_delay=0.0, initial_delay=0.0, sleep=lambda _: None, name=name)


class FakeProvider(CompletionProvider):
    """In-memory completion service. Records every create/delete call."""

    def __init__(
        self,
        responder: Responder | None = None,
        *,
        completer: Callable[[list[Message]], str] | None = None,
        fail_deletes: tuple[str, ...] = (),
        index_polls_in_progress: int = 0,
    ) -> None:
        self.responder = responder or (lambda name, messages: '{"result": "ok"}')
        self.completer = completer
        self.fail_deletes = set(fail_deletes)
        self.index_polls_in_progress = index_polls_in_progress
        self._ids = count(1)
        self._lock = threading.Lock()
        self.documents: dict[str, str] = {}
        self.indexes: dict[str, dict[str, Any]] = {}
        self.assistants: dict[str, dict[str, Any]] = {}
        self.threads: dict[str, list[Message]] = {}
        self.deleted: list[tuple[str, str]] = []
        self.runs: list[str] = []
        self.completions: list[list[Message]] = []

    def _new_id(self, prefix: str) -> str:
        with self._lock:
            return f"{prefix}_{next(self._ids)}"

    def _delete(self, kind: str, resource_id: str, store: dict[str, Any]) -> None:
        with self._lock:
            self.deleted.append((kind, resource_id))
        if kind in self.fail_deletes:
            raise RuntimeError(f"cannot delete {kind} {resource_id}")
        store.pop(resource_id, None)

    def upload_document(self, path: str) -> str:
        document_id = self._new_id("file")
        self.documents[document_id] = path
        return document_id

    def delete_document(self, document_id: str) -> None:
        self._delete("document", document_id, self.documents)

    def create_index(self, name: str, document_ids: list[str]) -> str:
        index_id = self._new_id("vs")
        self.indexes[index_id] = {"name": name, "documents": list(document_ids), "polls": 0}
        return index_id

    def index_status(self, index_id: str) -> IndexStatus:
        index = self.indexes[index_id]
        index["polls"] += 1
        total = len(index["documents"])
        if index["polls"] <= self.index_polls_in_progress:
            return IndexStatus(total=total, in_progress=total)
        return IndexStatus(total=total, completed=total)

    def delete_index(self, index_id: str) -> None:
        self._delete("index", index_id, self.indexes)

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
        assistant_id = self._new_id("asst")
        self.assistants[assistant_id] = {
            "name": name,
            "instructions": instructions,
            "index_id": index_id,
            "model": model,
            "temperature": temperature,
        }
        return assistant_id

    def delete_assistant(self, assistant_id: str) -> None:
        self._delete("assistant", assistant_id, self.assistants)

    def create_thread(self, messages: list[Message]) -> str:
        thread_id = self._new_id("thread")
        self.threads[thread_id] = [Message(role=m.role, content=m.content) for m in messages]
        return thread_id

    def delete_thread(self, thread_id: str) -> None:
        self._delete("thread", thread_id, self.threads)

    def stream_run(self, thread_id: str, *, assistant_id: str, model: str) -> Iterator[StreamEvent]:
        name = self.assistants[assistant_id]["name"]
        self.runs.append(name)
        reply = self.responder(name, list(self.threads[thread_id]))
        if isinstance(reply, list):
            return iter(reply)
        text, reason = reply if isinstance(reply, tuple) else (reply, None)
        self.threads[thread_id].append(Message(role="assistant", content=text, incomplete_reason=reason))
        return iter(
            [
                StreamEvent(kind="tool_call_created", text="file_search"),
                StreamEvent(kind="text_delta", text=text),
                StreamEvent(kind="message_done", incomplete_reason=reason),
                StreamEvent(kind="run_step_done", status="completed"),
                StreamEvent(kind="end"),
            ]
        )

    def list_messages(self, thread_id: str) -> list[Message]:
        return list(self.threads[thread_id])

    def complete(
        self,
        messages: list[Message],
        *,
        model: str,
        temperature: float | None = None,
        json_mode: bool = False,
    ) -> str:
        self.completions.append(list(messages))
        if self.completer is None:
            raise RuntimeError("no completer configured")
        return self.completer(messages)

    def list_assistants(self) -> list[RemoteResource]:
        return [RemoteResource(id=k, name=v["name"]) for k, v in self.assistants.items()]

    def list_indexes(self) -> list[RemoteResource]:
        return [RemoteResource(id=k, name=v["name"]) for k, v in self.indexes.items()]

    def list_index_documents(self, index_id: str) -> list[str]:
        return list(self.indexes[index_id]["documents"])


def wav_bytes(seconds: float = 0.05, sample_rate: int = SAMPLE_RATE, value: float = 0.1) -> bytes:
    buf = io.BytesIO()
    samples = np.full(int(seconds * sample_rate), value, dtype=np.float32)
    sf.write(buf, samples, sample_rate, format="WAV", subtype="PCM_16")
    return buf.getvalue()


class FakeTts(TtsProvider):
    name = "fake"

    def __init__(self, *, fail_texts: tuple[str, ...] = (), seconds: float = 0.05) -> None:
        self.fail_texts = set(fail_texts)
        self.seconds = seconds
        self.calls: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def synthesize(self, text: str, voice: str) -> bytes:
        with self._lock:
            self.calls.append((text, voice))
        if text in self.fail_texts:
            raise ValueError(f"cannot synthesize {text!r}")
        return wav_bytes(self.seconds)


def script_responder(
    *,
    sections: list[tuple[str, int]],
    author: str = "Ada Lovelace",
    title: str = "Notes on the Analytical Engine",
    guest_voice: str = "nova",
) -> Responder:
    """Answers outline, extraction and script prompts the way a well-behaved model would."""

    def _respond(name: str, messages: list[Message]) -> str:
        last = messages[-1].content
        if "program_writer" in name:
            return json.dumps(
                {
                    "totalTurns": sum(t for _, t in sections),
                    "program": [
                        {"title": t, "conversationTurns": n, "contents": [f"about {t}"]} for t, n in sections
                    ],
                }
            )
        if "extractor_0" in name:
            return json.dumps({"result": author})
        if "extractor_1" in name:
            return json.dumps({"result": title})
        if "extractor_2" in name:
            return json.dumps({"result": guest_voice})
        if "script_writer" in name:
            request = json.loads(last)
            section = request["currentSection"]
            turns = []
            for i in range(int(section["conversationTurns"])):
                host = i % 2 == 0
                turns.append(
                    {
                        "speaker": "onyx" if host else author,
                        "voice": "onyx" if host else guest_voice,
                        "text": f"{section['title']} line {i}",
                    }
                )
            return json.dumps(
                {
                    "title": section["title"],
                    "conversationTurns": section["conversationTurns"],
                    "script": turns,
                }
            )
        raise AssertionError(f"unexpected assistant {name}")

    return _respond


@pytest.fixture
def fake_ffmpeg(monkeypatch: pytest.MonkeyPatch) -> list[tuple[str, tuple]]:
    calls: list[tuple[str, tuple]] = []

    def _transcode(input_path: str, output_path: str, codec: str = "libmp3lame") -> str:
        calls.append(("transcode", (input_path, output_path)))
        shutil.copyfile(input_path, output_path)
        return output_path

    def _loop_and_trim(input_path: str, duration: float, output_path: str) -> str:
        calls.append(("loop_and_trim", (input_path, duration, output_path)))
        shutil.copyfile(input_path, output_path)
        return output_path

    def _mix(primary: str, secondary: str, volume: float, output_path: str) -> str:
        calls.append(("mix", (primary, secondary, volume, output_path)))
        shutil.copyfile(primary, output_path)
        return output_path

    def _concatenate(input_paths: list[str], output_path: str) -> str:
        calls.append(("concatenate", (list(input_paths), output_path)))
        shutil.copyfile(input_paths[0], output_path)
        return output_path

    monkeypatch.setattr(ffmpeg, "transcode", _transcode)
    monkeypatch.setattr(ffmpeg, "concatenate", _concatenate)
    monkeypatch.setattr(ffmpeg, "loop_and_trim", _loop_and_trim)
    monkeypatch.setattr(ffmpeg, "mix", _mix)
    return calls


@pytest.fixture
def document(tmp_path) -> str:
    path = tmp_path / "paper.pdf"
    path.write_bytes(b"%PDF-1.4 fake")
    return str(path)
