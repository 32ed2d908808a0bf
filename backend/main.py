from __future__ import annotations

import asyncio
import os
import threading
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

load_dotenv()

from job_store import JobStore, _env_true
from pipeline import resolve_inputs, run_pipeline
from radio import ffmpeg
from radio.errors import PipelineError
from schemas import JobCreateResponse, JobStatusResponse, RecordingOptions

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
AUDIO_DIR = os.environ.get("RADIO_OUTPUT_DIR", "").strip() or os.path.join(BASE_DIR, "audio_output")
os.makedirs(AUDIO_DIR, exist_ok=True)

app = FastAPI(
    title="LLM Radio API",
    description="Backend for LLM Radio: turning documents into two-voice audio programs",
    version="0.1.0",
)

cors_origins_raw = os.environ.get("CORS_ALLOW_ORIGINS", "*").strip()
if cors_origins_raw == "*":
    allow_origins = ["*"]
else:
    allow_origins = [o.strip() for o in cors_origins_raw.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

jobs = JobStore()

app.mount("/audio", StaticFiles(directory=AUDIO_DIR), name="audio")


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@app.on_event("startup")
async def _check_ffmpeg() -> None:
    try:
        ffmpeg.ensure_available()
    except PipelineError as exc:
        print(f"[{_utc_now_iso()}] startup ffmpeg=missing error={exc}")


def _record(options: RecordingOptions, job_id: str, on_stage: Any, cancel_event: threading.Event) -> dict[str, Any]:
    uploader = None
    if _env_true("UPLOAD_RESULTS", default=False):
        from radio.storage import upload_file

        uploader = upload_file
    on_stage("downloading", {"document_count": len(options.documents)})
    resolved = resolve_inputs(options, os.path.join(AUDIO_DIR, f"inputs-{job_id}"))
    return run_pipeline(
        resolved,
        output_dir=AUDIO_DIR,
        uploader=uploader,
        on_stage=on_stage,
        cancel_event=cancel_event,
    )


async def _execute_job(job_id: str, options: RecordingOptions) -> None:
    jobs.advance(job_id, "running")
    print(f"[{_utc_now_iso()}] job={job_id} stage=running documents={len(options.documents)}")
    cancel_event = threading.Event()
    timeout_seconds = int(os.environ.get("JOB_TIMEOUT_SECONDS", "900"))
    try:

        def on_stage(stage: str, metrics_update: dict | None = None) -> None:
            jobs.advance(job_id, stage, metrics_update)
            print(f"[{_utc_now_iso()}] job={job_id} stage={stage}")

        result = await asyncio.wait_for(
            asyncio.to_thread(_record, options, job_id, on_stage, cancel_event),
            timeout=timeout_seconds,
        )
        audio_url = result.get("audio_url") or result["audio_filename"]
        if audio_url == result["audio_filename"]:
            audio_url = f"/audio/{result['audio_filename']}"
        api_result = {
            "name": result["name"],
            "title": result["title"],
            "author": result["author"],
            "audio_url": audio_url,
            "audio_filename": result["audio_filename"],
            "script_url": result.get("script_url") or f"/audio/{result['script_filename']}",
            "script_filename": result["script_filename"],
            "duration_seconds": result["duration_seconds"],
            "section_count": result["section_count"],
            "turn_count": result["turn_count"],
            "guest_voice": result.get("guest_voice"),
        }
        jobs.complete(job_id, api_result, result["metrics"])
        print(f"[{_utc_now_iso()}] job={job_id} stage=completed")
    except asyncio.TimeoutError:
        cancel_event.set()
        msg = f"Job timed out after {timeout_seconds}s"
        jobs.fail(job_id, msg)
        print(f"[{_utc_now_iso()}] job={job_id} stage=failed error={msg}")
    except Exception as exc:
        jobs.fail(job_id, f"{type(exc).__name__}: {exc}")
        print(f"[{_utc_now_iso()}] job={job_id} stage=failed error={exc}")


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "storage": jobs.backend}


@app.post("/jobs/create", response_model=JobCreateResponse)
async def create_job(req: RecordingOptions) -> JobCreateResponse:
    job_id = str(uuid4())
    record = jobs.create(job_id, req)
    asyncio.create_task(_execute_job(job_id, req))
    return JobCreateResponse(
        job_id=record.job_id,
        status=record.status,  # type: ignore[arg-type]
        created_at=record.created_at,
    )


@app.get("/jobs/{job_id}", response_model=JobStatusResponse)
async def get_job(job_id: str) -> JobStatusResponse:
    record = jobs.get(job_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return JobStatusResponse(
        job_id=record.job_id,
        status=record.status,  # type: ignore[arg-type]
        stage=record.stage,
        created_at=record.created_at,
        updated_at=record.updated_at,
        error=record.error,
        result=record.result,  # type: ignore[arg-type]
        metrics=record.metrics,
        stages=record.stages,  # type: ignore[arg-type]
        options=record.options,
    )
