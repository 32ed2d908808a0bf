from __future__ import annotations

import json
import os
from functools import lru_cache
from typing import Any, Iterator

import requests

from radio.errors import TransportError
from radio.llm_base import CompletionProvider, IndexStatus, Message, RemoteResource, StreamEvent

DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"
MAX_FILE_SEARCH_RESULTS = 50


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except Exception:
        return default


def _extract_text_from_chat(payload: dict[str, Any]) -> str:
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        raise TransportError("Chat completion response missing choices.")

    message = choices[0].get("message") if isinstance(choices[0], dict) else None
    if not isinstance(message, dict):
        raise TransportError("Chat completion response missing message.")

    content = message.get("content")
    if isinstance(content, str):
        return content.strip()

    # Some models return structured content arrays.
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict):
                text = item.get("text")
                if isinstance(text, str) and text.strip():
                    parts.append(text.strip())
        if parts:
            return "\n".join(parts)

    raise TransportError("Chat completion response does not contain text content.")


def _message_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""
    parts: list[str] = []
    for item in content:
        if not isinstance(item, dict):
            continue
        if item.get("type") == "text":
            text = item.get("text")
            if isinstance(text, dict):
                parts.append(str(text.get("value") or ""))
            elif isinstance(text, str):
                parts.append(text)
        else:
            parts.append(json.dumps(item, ensure_ascii=False))
    return "\n".join(parts)


def _message_from_payload(item: dict[str, Any]) -> Message:
    details = item.get("incomplete_details")
    reason: str | None = None
    if isinstance(details, dict):
        reason = str(details.get("reason") or "unknown")
    elif item.get("status") == "incomplete":
        reason = "unknown"
    return Message(
        role=str(item.get("role") or "assistant"),
        content=_message_text(item.get("content")),
        id=item.get("id"),
        incomplete_reason=reason,
    )


def _event_from_sse(event: str, data: dict[str, Any]) -> StreamEvent | None:
    if event == "thread.message.delta":
        delta = data.get("delta") or {}
        text = "".join(
            str((part.get("text") or {}).get("value") or "")
            for part in delta.get("content") or []
            if isinstance(part, dict) and part.get("type") == "text"
        )
        return StreamEvent(kind="text_delta", text=text, data=data)
    if event == "thread.run.step.created":
        details = data.get("step_details") or {}
        if details.get("type") != "tool_calls":
            return None
        calls = details.get("tool_calls") or []
        tool = str(calls[0].get("type")) if calls and isinstance(calls[0], dict) else "tool_calls"
        return StreamEvent(kind="tool_call_created", text=tool, data=data)
    if event in {
        "thread.run.step.completed",
        "thread.run.step.failed",
        "thread.run.step.cancelled",
        "thread.run.step.expired",
        "thread.run.failed",
        "thread.run.expired",
        "thread.run.cancelled",
        "thread.run.incomplete",
    }:
        last_error = data.get("last_error") or {}
        return StreamEvent(
            kind="run_step_done",
            status=str(data.get("status") or ""),
            error_code=last_error.get("code"),
            error_message=last_error.get("message"),
            data=data,
        )
    if event in {"thread.message.completed", "thread.message.incomplete"}:
        message = _message_from_payload(data)
        return StreamEvent(
            kind="message_done",
            text=message.content,
            incomplete_reason=message.incomplete_reason,
            data=data,
        )
    if event == "error":
        return StreamEvent(
            kind="error",
            error_code=str(data.get("code") or "") or None,
            error_message=str(data.get("message") or data),
            data=data,
        )
    if event == "done":
        return StreamEvent(kind="end")
    return None


class OpenAIClient(CompletionProvider):
    def __init__(self, api_key: str, base_url: str, *, timeout: float = 90.0) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = requests.Session()

    def _headers(self, *, json_body: bool = True) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "OpenAI-Beta": "assistants=v2",
        }
        if json_body:
            headers["Content-Type"] = "application/json"
        return headers

    def _request(
        self,
        method: str,
        path: str,
        *,
        json_payload: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        files: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        stream: bool = False,
    ) -> requests.Response:
        url = f"{self._base_url}{path}"
        try:
            response = self._session.request(
                method,
                url,
                json=json_payload,
                params=params,
                files=files,
                data=data,
                headers=self._headers(json_body=files is None),
                timeout=self._timeout,
                stream=stream,
            )
        except requests.RequestException as exc:
            raise TransportError(f"OpenAI {method} {path} failed: {exc}") from exc

        if response.status_code >= 400:
            raise TransportError(
                f"OpenAI HTTP {response.status_code} {method} {path}: {response.text[:500]}",
                status=response.status_code,
            )
        return response

    def _json(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        response = self._request(method, path, **kwargs)
        try:
            payload = response.json()
        except ValueError as exc:
            raise TransportError(f"OpenAI response for {path} is not valid JSON.") from exc
        if not isinstance(payload, dict):
            raise TransportError(f"OpenAI response for {path} is not an object.")
        return payload

    def _list_all(self, path: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        query = dict(params or {})
        query.setdefault("limit", 100)
        items: list[dict[str, Any]] = []
        while True:
            payload = self._json("GET", path, params=query)
            page = [x for x in payload.get("data") or [] if isinstance(x, dict)]
            items.extend(page)
            if not payload.get("has_more") or not page:
                return items
            query["after"] = page[-1].get("id")

    def upload_document(self, path: str) -> str:
        absolute = os.path.abspath(path)
        with open(absolute, "rb") as fh:
            payload = self._json(
                "POST",
                "/files",
                files={"file": (os.path.basename(absolute), fh)},
                data={"purpose": "assistants"},
            )
        return str(payload["id"])

    def delete_document(self, document_id: str) -> None:
        self._request("DELETE", f"/files/{document_id}")

    def create_index(self, name: str, document_ids: list[str]) -> str:
        payload = self._json(
            "POST",
            "/vector_stores",
            json_payload={"name": name, "file_ids": list(document_ids)},
        )
        return str(payload["id"])

    def index_status(self, index_id: str) -> IndexStatus:
        payload = self._json("GET", f"/vector_stores/{index_id}")
        counts = payload.get("file_counts") or {}
        return IndexStatus(
            total=int(counts.get("total", 0) or 0),
            in_progress=int(counts.get("in_progress", 0) or 0),
            completed=int(counts.get("completed", 0) or 0),
            failed=int(counts.get("failed", 0) or 0),
        )

    def delete_index(self, index_id: str) -> None:
        self._request("DELETE", f"/vector_stores/{index_id}")

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
        body: dict[str, Any] = {
            "name": name,
            "instructions": instructions,
            "model": model,
            "tools": [
                {
                    "type": "file_search",
                    "file_search": {"max_num_results": MAX_FILE_SEARCH_RESULTS},
                }
            ],
            "tool_resources": {"file_search": {"vector_store_ids": [index_id]}},
        }
        if temperature is not None:
            body["temperature"] = temperature
        if top_p is not None:
            body["top_p"] = top_p
        payload = self._json("POST", "/assistants", json_payload=body)
        return str(payload["id"])

    def delete_assistant(self, assistant_id: str) -> None:
        self._request("DELETE", f"/assistants/{assistant_id}")

    def create_thread(self, messages: list[Message]) -> str:
        payload = self._json(
            "POST",
            "/threads",
            json_payload={"messages": [m.to_payload() for m in messages]},
        )
        return str(payload["id"])

    def delete_thread(self, thread_id: str) -> None:
        self._request("DELETE", f"/threads/{thread_id}")

    def stream_run(self, thread_id: str, *, assistant_id: str, model: str) -> Iterator[StreamEvent]:
        response = self._request(
            "POST",
            f"/threads/{thread_id}/runs",
            json_payload={
                "assistant_id": assistant_id,
                "model": model,
                "stream": True,
                "tool_choice": {"type": "file_search"},
                "response_format": {"type": "text"},
            },
            stream=True,
        )
        return self._iter_sse(response)

    def _iter_sse(self, response: requests.Response) -> Iterator[StreamEvent]:
        event_name = "message"
        data_lines: list[str] = []
        with response:
            for raw in response.iter_lines(decode_unicode=True):
                line = raw if isinstance(raw, str) else raw.decode("utf-8", errors="ignore")
                if line.startswith(":"):
                    continue
                if line.startswith("event:"):
                    event_name = line[len("event:") :].strip()
                    continue
                if line.startswith("data:"):
                    data_lines.append(line[len("data:") :].strip())
                    continue
                if line.strip() or not data_lines:
                    continue
                blob = "\n".join(data_lines)
                data_lines = []
                if blob == "[DONE]":
                    yield StreamEvent(kind="end")
                    return
                try:
                    data = json.loads(blob)
                except ValueError:
                    data = {"message": blob}
                if not isinstance(data, dict):
                    data = {"value": data}
                mapped = _event_from_sse(event_name, data)
                event_name = "message"
                if mapped is not None:
                    yield mapped
                    if mapped.kind == "end":
                        return

    def list_messages(self, thread_id: str) -> list[Message]:
        items = self._list_all(f"/threads/{thread_id}/messages", {"order": "asc"})
        return [_message_from_payload(item) for item in items]

    def complete(
        self,
        messages: list[Message],
        *,
        model: str,
        temperature: float | None = None,
        json_mode: bool = False,
    ) -> str:
        body: dict[str, Any] = {
            "model": model,
            "messages": [m.to_payload() for m in messages],
        }
        if temperature is not None:
            body["temperature"] = temperature
        if json_mode:
            body["response_format"] = {"type": "json_object"}
        payload = self._json("POST", "/chat/completions", json_payload=body)
        return _extract_text_from_chat(payload)

    def list_assistants(self) -> list[RemoteResource]:
        return [
            RemoteResource(id=str(x.get("id")), name=str(x.get("name") or ""))
            for x in self._list_all("/assistants")
        ]

    def list_indexes(self) -> list[RemoteResource]:
        return [
            RemoteResource(id=str(x.get("id")), name=str(x.get("name") or ""))
            for x in self._list_all("/vector_stores")
        ]

    def list_index_documents(self, index_id: str) -> list[str]:
        return [str(x.get("id")) for x in self._list_all(f"/vector_stores/{index_id}/files")]


def get_client() -> OpenAIClient:
    api_key = os.environ.get("OPENAI_API_KEY", "").strip()
    if not api_key:
        raise RuntimeError("OPENAI_API_KEY is not set.")
    base_url = os.environ.get("OPENAI_BASE_URL", DEFAULT_OPENAI_BASE_URL).strip()
    if not base_url:
        base_url = DEFAULT_OPENAI_BASE_URL
    timeout = _env_float("OPENAI_REQUEST_TIMEOUT_SECONDS", 90.0)
    return OpenAIClient(api_key=api_key, base_url=base_url, timeout=timeout)


@lru_cache(maxsize=1)
def resolve_model_name() -> str:
    preferred = os.environ.get("OPENAI_MODEL", "").strip()
    if preferred:
        return preferred
    return DEFAULT_OPENAI_MODEL
