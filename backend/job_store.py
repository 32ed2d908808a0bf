from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any

from schemas import RecordingOptions


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _env_true(name: str, default: bool = False) -> bool:
    raw = str(os.environ.get(name, str(default))).strip().lower()
    return raw in {"1", "true", "yes", "on"}


@dataclass
class RecordingJob:
    job_id: str
    options: dict[str, Any]
    status: str = "queued"
    stage: str = "queued"
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    stages: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None
    result: dict[str, Any] | None = None
    metrics: dict[str, Any] = field(default_factory=dict)

    @property
    def finished(self) -> bool:
        return self.status in ("completed", "failed")


class JobStore:
    """
    Recording jobs for the API, keyed by job id.
    - Options are stored in their camelCase wire form so a job can be re-run as submitted.
    - Every stage transition is appended to `stages` with its payload.
    - With USE_FIRESTORE set, each change is merged into the `recording_jobs` collection.
    """

    collection = "recording_jobs"

    def __init__(self, firestore_client: Any | None = None) -> None:
        self._lock = Lock()
        self._jobs: dict[str, RecordingJob] = {}
        self._client = firestore_client
        if self._client is None and _env_true("USE_FIRESTORE", default=False):
            self._client = self._connect()

    @staticmethod
    def _connect() -> Any | None:
        try:
            from google.cloud import firestore  # type: ignore

            project_id = os.environ.get("FIRESTORE_PROJECT_ID")
            client = firestore.Client(project=project_id or None)
            print("[job_store] Firestore enabled.")
            return client
        except Exception as exc:
            print(f"[job_store] Firestore disabled, fallback to in-memory: {exc}")
            return None

    @property
    def backend(self) -> str:
        return "firestore" if self._client is not None else "in-memory"

    def _mirror(self, job_id: str, payload: dict[str, Any], merge: bool = True) -> None:
        if self._client is None:
            return
        self._client.collection(self.collection).document(job_id).set(payload, merge=merge)

    def create(self, job_id: str, options: RecordingOptions) -> RecordingJob:
        job = RecordingJob(job_id=job_id, options=options.model_dump(by_alias=True, mode="json"))
        with self._lock:
            self._jobs[job_id] = job
        self._mirror(job_id, asdict(job), merge=False)
        return job

    def advance(self, job_id: str, stage: str, payload: dict[str, Any] | None = None) -> RecordingJob:
        now = utc_now()
        with self._lock:
            job = self._jobs[job_id]
            if job.finished:
                return job
            job.stage = stage
            if job.status == "queued":
                job.status = "running"
            job.stages.append({"stage": stage, "at": now, "payload": dict(payload or {})})
            if payload:
                job.metrics.update(payload)
            job.updated_at = now
            snapshot = {
                "status": job.status,
                "stage": stage,
                "stages": list(job.stages),
                "metrics": dict(job.metrics),
                "updated_at": now,
            }
        self._mirror(job_id, snapshot)
        return job

    def complete(self, job_id: str, result: dict[str, Any], metrics: dict[str, Any] | None = None) -> RecordingJob:
        return self._finish(job_id, "completed", result=result, metrics=metrics)

    def fail(self, job_id: str, error: str) -> RecordingJob:
        return self._finish(job_id, "failed", error=error)

    def _finish(
        self,
        job_id: str,
        status: str,
        *,
        result: dict[str, Any] | None = None,
        error: str | None = None,
        metrics: dict[str, Any] | None = None,
    ) -> RecordingJob:
        now = utc_now()
        with self._lock:
            job = self._jobs[job_id]
            if job.finished:
                return job
            job.status = status
            job.stage = status
            job.stages.append({"stage": status, "at": now, "payload": {}})
            job.result = result
            job.error = error
            if metrics:
                job.metrics.update(metrics)
            job.updated_at = now
            snapshot = asdict(job)
        self._mirror(job_id, snapshot)
        return job

    def get(self, job_id: str) -> RecordingJob | None:
        with self._lock:
            job = self._jobs.get(job_id)
        if job is not None or self._client is None:
            return job
        snap = self._client.collection(self.collection).document(job_id).get()
        if not snap.exists:
            return None
        data = snap.to_dict() or {}
        created_at = data.get("created_at") or utc_now()
        job = RecordingJob(
            job_id=job_id,
            options=data.get("options") or {},
            status=data.get("status", "queued"),
            stage=data.get("stage", "queued"),
            created_at=created_at,
            updated_at=data.get("updated_at") or created_at,
            stages=list(data.get("stages") or []),
            error=data.get("error"),
            result=data.get("result"),
            metrics=data.get("metrics") or {},
        )
        with self._lock:
            self._jobs.setdefault(job_id, job)
        return job
