from __future__ import annotations

import os
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable

from pipeline import resolve_inputs, run_pipeline
from radio import storage
from radio.errors import PipelineError
from schemas import RecordingOptions

Runner = Callable[..., dict[str, Any]]


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or str(raw).strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def collection_id() -> str:
    return os.environ.get("EPISODES_COLLECTION_ID", "").strip() or "episodes"


def should_process(data: dict[str, Any] | None) -> bool:
    """Only fresh episodes: both flags present and still False."""
    if not data:
        return False
    return data.get("isRecordingCompleted") is False and data.get("isRecordingFailed") is False


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def process_episode(
    doc_ref: Any,
    data: dict[str, Any],
    *,
    output_dir: str,
    runner: Runner = run_pipeline,
    resolver: Callable[[RecordingOptions, str | None], RecordingOptions] = resolve_inputs,
    uploader: Callable[[str, str], str] | None = storage.upload_file,
    cancel_event: threading.Event | None = None,
) -> bool:
    """Record one episode document and write the outcome back to it. Never raises."""
    episode_id = getattr(doc_ref, "id", "?")
    raw_options = data.get("recordingOptions")
    if not raw_options:
        print(f"[listener] episode={episode_id} skipped=no_recording_options")
        doc_ref.update({"isRecordingFailed": True, "status": "failed", "updatedAt": _utc_now()})
        return False

    try:
        options = RecordingOptions.parse(raw_options)
    except PipelineError as exc:
        print(f"[listener] episode={episode_id} invalid_options error={exc}")
        doc_ref.update({"isRecordingFailed": True, "status": "failed", "updatedAt": _utc_now()})
        return False

    doc_ref.update({"status": "processing", "updatedAt": _utc_now()})
    print(f"[listener] episode={episode_id} stage=processing documents={len(options.documents)}")

    def on_stage(stage: str, payload: dict[str, Any] | None = None) -> None:
        print(f"[listener] episode={episode_id} stage={stage}")

    try:
        resolved = resolver(options, os.path.join(output_dir, f"inputs-{episode_id}"))
        result = runner(
            resolved,
            output_dir=output_dir,
            uploader=uploader,
            on_stage=on_stage,
            cancel_event=cancel_event,
        )
    except Exception as exc:
        print(f"[listener] episode={episode_id} stage=failed error={type(exc).__name__}: {exc}")
        doc_ref.update({"isRecordingFailed": True, "status": "failed", "updatedAt": _utc_now()})
        return False

    update: dict[str, Any] = {
        "isRecordingCompleted": True,
        "isRecordingFailed": False,
        "status": "completed",
        "contentUrl": str(result["audio_url"]),
        "contentDurationSeconds": result["duration_seconds"],
        "updatedAt": _utc_now(),
    }
    if result.get("script_url"):
        update["transcriptUrl"] = result["script_url"]
    doc_ref.update(update)
    print(f"[listener] episode={episode_id} stage=completed url={result['audio_url']}")
    return True


class EpisodeListener:
    """
    Watches the episodes collection and records each newly added episode.
    - Snapshot callbacks only enqueue work; recordings run on a bounded pool.
    - Each document is processed at most once per listener process.
    """

    def __init__(
        self,
        client: Any,
        *,
        collection: str | None = None,
        output_dir: str,
        max_workers: int | None = None,
        runner: Runner = run_pipeline,
        uploader: Callable[[str, str], str] | None = storage.upload_file,
    ) -> None:
        self.client = client
        self.collection = collection or collection_id()
        self.output_dir = output_dir
        self.runner = runner
        self.uploader = uploader
        self.cancel_event = threading.Event()
        self._executor = ThreadPoolExecutor(max_workers=max_workers or _env_int("LISTENER_CONCURRENCY", 2))
        self._seen: set[str] = set()
        self._lock = threading.Lock()
        self._watch: Any | None = None

    def _claim(self, doc_id: str) -> bool:
        with self._lock:
            if doc_id in self._seen:
                return False
            self._seen.add(doc_id)
            return True

    def on_snapshot(self, _docs: Any, changes: list[Any], _read_time: Any) -> None:
        for change in changes:
            if getattr(change.type, "name", str(change.type)).upper() != "ADDED":
                continue
            doc = change.document
            data = doc.to_dict() or {}
            if not should_process(data) or not self._claim(doc.id):
                continue
            print(f"[listener] episode={doc.id} event=added")
            self._executor.submit(
                process_episode,
                doc.reference,
                data,
                output_dir=self.output_dir,
                runner=self.runner,
                uploader=self.uploader,
                cancel_event=self.cancel_event,
            )

    def start(self) -> None:
        print(f"[listener] listening collection={self.collection}")
        self._watch = self.client.collection(self.collection).on_snapshot(self.on_snapshot)

    def stop(self) -> None:
        self.cancel_event.set()
        if self._watch is not None:
            self._watch.unsubscribe()
            self._watch = None
        self._executor.shutdown(wait=True)
        print("[listener] stopped")


def get_firestore_client() -> Any:
    from google.cloud import firestore  # type: ignore

    project_id = os.environ.get("FIRESTORE_PROJECT_ID")
    return firestore.Client(project=project_id or None)


def serve(output_dir: str) -> None:
    os.makedirs(output_dir, exist_ok=True)
    listener = EpisodeListener(get_firestore_client(), output_dir=output_dir)
    listener.start()
    stop = threading.Event()
    try:
        while not stop.wait(1.0):
            pass
    except KeyboardInterrupt:
        print("[listener] interrupted")
    finally:
        listener.stop()
