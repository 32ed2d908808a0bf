from __future__ import annotations

import argparse
import json
import time
from typing import Any

import requests


def _log(title: str, payload: Any) -> None:
    print(f"\n=== {title} ===")
    if isinstance(payload, (dict, list)):
        print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))
    else:
        print(payload)


def run(
    base_url: str,
    documents: list[str],
    minute: float,
    language: str,
    with_job: bool,
    poll_max: int,
    poll_interval: float,
) -> int:
    base = base_url.rstrip("/")
    session = requests.Session()
    ok = True

    r = session.get(f"{base}/health", timeout=15)
    _log("GET /health", {"status_code": r.status_code, "body": r.json()})
    ok = ok and r.status_code == 200

    # Invalid options must be rejected before a job is created.
    r = session.post(f"{base}/jobs/create", json={"documents": []}, timeout=20)
    _log("POST /jobs/create (invalid)", {"status_code": r.status_code})
    ok = ok and r.status_code == 422

    r = session.get(f"{base}/jobs/does-not-exist", timeout=20)
    _log("GET /jobs/{job_id} (unknown)", {"status_code": r.status_code})
    ok = ok and r.status_code == 404

    if with_job:
        job_payload = {"documents": documents, "minute": minute, "language": language}
        r = session.post(f"{base}/jobs/create", json=job_payload, timeout=20)
        body = r.json()
        _log("POST /jobs/create", {"status_code": r.status_code, "body": body})
        ok = ok and r.status_code == 200

        if r.status_code == 200 and body.get("job_id"):
            job_id = body["job_id"]
            final = None
            last_stage = None
            for _ in range(poll_max):
                rr = session.get(f"{base}/jobs/{job_id}", timeout=20)
                final = rr.json()
                if final.get("stage") != last_stage:
                    last_stage = final.get("stage")
                    print(f"[smoke] stage={last_stage}")
                if final.get("status") in ("completed", "failed"):
                    break
                time.sleep(poll_interval)
            _log("GET /jobs/{job_id} (final)", final)
            ok = ok and bool(final) and final.get("status") in ("completed", "failed")

    return 0 if ok else 1


def main() -> int:
    parser = argparse.ArgumentParser(description="LLM Radio API smoke test")
    parser.add_argument("--base-url", default="http://127.0.0.1:8000", help="API base URL")
    parser.add_argument(
        "--document",
        action="append",
        default=[],
        help="Document path or URL for the job test. Repeatable.",
    )
    parser.add_argument("--minute", type=float, default=5, help="Requested program length in minutes.")
    parser.add_argument("--language", default="en", choices=["en", "ja", "ko"])
    parser.add_argument(
        "--with-job",
        action="store_true",
        help="Run /jobs/create and polling (can take long).",
    )
    parser.add_argument(
        "--poll-max",
        type=int,
        default=300,
        help="Max number of polling attempts for /jobs/{job_id}.",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=3.0,
        help="Polling interval seconds for /jobs/{job_id}.",
    )
    args = parser.parse_args()
    if args.with_job and not args.document:
        parser.error("--with-job requires at least one --document")
    return run(
        base_url=args.base_url,
        documents=args.document,
        minute=args.minute,
        language=args.language,
        with_job=args.with_job,
        poll_max=args.poll_max,
        poll_interval=args.poll_interval,
    )


if __name__ == "__main__":
    raise SystemExit(main())
