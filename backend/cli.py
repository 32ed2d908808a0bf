from __future__ import annotations

import argparse
import json
import os
from typing import Any

from dotenv import load_dotenv

from radio.errors import PipelineError
from radio.llm_base import CompletionProvider
from radio.session import ASSISTANT_NAME_PREFIX
from radio.worker_pool import run_bounded

CLEAN_CONCURRENCY = 30


def clean_remote_resources(
    provider: CompletionProvider,
    *,
    prefix: str = ASSISTANT_NAME_PREFIX,
    concurrency: int = CLEAN_CONCURRENCY,
) -> dict[str, int]:
    """
    Delete indexes and assistants left behind by interrupted sessions.
    Only names starting with `prefix` are touched. Documents attached to a
    matching index are deleted before the index itself.
    """
    counts = {"indexes": 0, "documents": 0, "assistants": 0, "failed": 0}

    def _clean_index(index: Any) -> int:
        document_ids = provider.list_index_documents(index.id)
        for document_id in document_ids:
            print(f"[clean] delete_document id={document_id} index={index.id}")
            provider.delete_document(document_id)
        print(f"[clean] delete_index id={index.id} name={index.name}")
        provider.delete_index(index.id)
        return len(document_ids)

    def _clean_assistant(assistant: Any) -> int:
        print(f"[clean] delete_assistant id={assistant.id} name={assistant.name}")
        provider.delete_assistant(assistant.id)
        return 0

    indexes = []
    for index in provider.list_indexes():
        if index.name.startswith(prefix):
            indexes.append(index)
        else:
            print(f"[clean] skip_index id={index.id} name={index.name}")
    for slot in run_bounded(indexes, _clean_index, concurrency=concurrency, name="clean"):
        if slot.ok:
            counts["indexes"] += 1
            counts["documents"] += int(slot.value or 0)
        else:
            counts["failed"] += 1

    assistants = []
    for assistant in provider.list_assistants():
        if assistant.name.startswith(prefix):
            assistants.append(assistant)
        else:
            print(f"[clean] skip_assistant id={assistant.id} name={assistant.name}")
    for slot in run_bounded(assistants, _clean_assistant, concurrency=concurrency, name="clean"):
        if slot.ok:
            counts["assistants"] += 1
        else:
            counts["failed"] += 1

    print(
        f"[clean] done indexes={counts['indexes']} documents={counts['documents']} "
        f"assistants={counts['assistants']} failed={counts['failed']}"
    )
    return counts


def _record_options(args: argparse.Namespace) -> dict[str, Any]:
    options: dict[str, Any] = {
        "documents": args.papers,
        "minute": args.minute,
        "language": args.language,
        "bgm": args.bgm,
        "bgm_volume": args.bgm_volume,
        "llm_model": args.llm_model,
        "tts_model": args.tts_model,
        "assistant_concurrency": args.assistant_concurrency,
        "tts_concurrency": args.tts_concurrency,
        "retry_count": args.retry_count,
        "retry_max_delay": args.retry_max_delay,
    }
    return {k: v for k, v in options.items() if v is not None}


def cmd_record(args: argparse.Namespace) -> int:
    from pipeline import resolve_inputs, run_pipeline
    from schemas import RecordingOptions

    options = RecordingOptions.parse(_record_options(args))
    os.makedirs(args.output_dir, exist_ok=True)
    resolved = resolve_inputs(options, os.path.join(args.output_dir, "inputs"))
    result = run_pipeline(resolved, output_dir=args.output_dir)
    summary = {k: v for k, v in result.items() if k != "sections"}
    print(json.dumps(summary, ensure_ascii=False, indent=2, default=str))
    return 0


def cmd_clean(args: argparse.Namespace) -> int:
    from radio.llm import get_client

    counts = clean_remote_resources(get_client(), prefix=args.prefix)
    return 1 if counts["failed"] else 0


def cmd_listen(args: argparse.Namespace) -> int:
    from listener import serve

    serve(args.output_dir)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="LLM Radio: turn documents into a two-voice audio program")
    sub = parser.add_subparsers(dest="command", required=True)
    default_output = os.environ.get("RADIO_OUTPUT_DIR", "").strip() or "out"

    record = sub.add_parser("record", help="Record one program from local or remote documents.")
    record.add_argument("-p", "--papers", nargs="+", required=True, help="Document paths or URLs.")
    record.add_argument("-m", "--minute", type=float, default=None, help="Requested length in minutes.")
    record.add_argument("--language", default=None, choices=["en", "ja", "ko"])
    record.add_argument("-b", "--bgm", default=None, help="Background track path or URL.")
    record.add_argument("--bgm-volume", type=float, default=None)
    record.add_argument("-g", "--llm-model", default=None)
    record.add_argument("-t", "--tts-model", default=None, choices=["tts-1", "tts-1-hd"])
    record.add_argument("--assistant-concurrency", type=int, default=None)
    record.add_argument("--tts-concurrency", type=int, default=None)
    record.add_argument("--retry-count", type=int, default=None)
    record.add_argument("--retry-max-delay", type=int, default=None, help="Milliseconds.")
    record.add_argument("-o", "--output-dir", default=default_output)
    record.set_defaults(func=cmd_record)

    clean = sub.add_parser("clean", help="Delete leaked remote assistants, indexes and their documents.")
    clean.add_argument("--prefix", default=ASSISTANT_NAME_PREFIX)
    clean.set_defaults(func=cmd_clean)

    listen = sub.add_parser("listen", help="Record episodes added to the document database.")
    listen.add_argument("-o", "--output-dir", default=default_output)
    listen.set_defaults(func=cmd_listen)
    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except PipelineError as exc:
        print(f"[cli] command={args.command} failed error={type(exc).__name__}: {exc}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
