from __future__ import annotations

import json
import os
import re
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Sequence
from uuid import uuid4

from radio import prompts
from radio.errors import (
    MalformedResponseError,
    PipelineCancelled,
    PipelineError,
    ScriptGenerationError,
    ValidationError,
)
from radio.llm_base import CompletionProvider
from radio.retry import RetryPolicy
from radio.session import CompletionSession
from radio.structured import StructuredOutputParser, make_json_fixer
from radio.synthesizer import AudioAssembler, FinishedProgram
from radio.tts_base import TtsProvider
from radio.tts_types import DEFAULT_GUEST_VOICE, DEFAULT_HOST_VOICE, GUEST_VOICES, VOICES
from radio.worker_pool import TaskResult, run_bounded
from schemas import (
    ExtractionResult,
    ProgramOutline,
    RecordingOptions,
    ScriptChunkRecord,
    ScriptTurn,
    ScriptWriterInput,
    ScriptWriterOutput,
)

UNKNOWN_AUTHOR = "Unknown author"
UNKNOWN_TITLE = "Unknown title"

StageCallback = Callable[[str, dict[str, Any] | None], None]
SessionFactory = Callable[..., CompletionSession]
Uploader = Callable[[str, str], str]


def _safe_stem(text: str) -> str:
    cleaned = re.sub(r'[\\/:*?"<>|\x00-\x1f.\s]+', "_", (text or "").strip())
    return cleaned.strip("_")[:40] or "output"


def output_name(title: str, now: datetime | None = None) -> str:
    stamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
    return f"{_safe_stem(title)}_{stamp}"


@dataclass
class ProgramMetadata:
    author: str = UNKNOWN_AUTHOR
    title: str = UNKNOWN_TITLE
    guest_voice: str = DEFAULT_GUEST_VOICE
    failures: dict[str, str] = field(default_factory=dict)


@dataclass
class ProgramScript:
    outline: ProgramOutline
    metadata: ProgramMetadata
    chunks: list[list[ScriptTurn]]
    host_voice: str = DEFAULT_HOST_VOICE

    @property
    def turns(self) -> list[ScriptTurn]:
        return [turn for chunk in self.chunks for turn in chunk]

    def to_records(self) -> list[dict[str, Any]]:
        return [
            ScriptChunkRecord(section=section.title, script=chunk).model_dump()
            for section, chunk in zip(self.outline.program, self.chunks)
        ]


class PipelineScheduler:
    """
    Drives outline -> metadata extraction -> script generation.

    Extraction tasks run in parallel, each on its own session, and fall back
    to defaults on failure. Script generation runs section by section on one
    long-lived session so the rolling context carries continuity forward.
    """

    def __init__(
        self,
        options: RecordingOptions,
        provider: CompletionProvider,
        *,
        cancel_event: threading.Event | None = None,
        on_stage: StageCallback | None = None,
        session_factory: SessionFactory | None = None,
        parser: StructuredOutputParser | None = None,
        run_id: str | None = None,
    ) -> None:
        self.options = options
        self.provider = provider
        self.cancel_event = cancel_event
        self.on_stage = on_stage
        self.run_id = run_id or uuid4().hex[:12]
        self.parser = parser or StructuredOutputParser(
            make_json_fixer(
                provider,
                model=options.fixer_model,
                retry=RetryPolicy.from_options(options, name="fixer"),
                cancel_event=cancel_event,
            )
        )
        self._session_factory = session_factory or self._default_session
        self.metrics: dict[str, Any] = {}

    def _stage(self, stage: str, payload: dict[str, Any] | None = None) -> None:
        print(f"[pipeline] stage={stage} run={self.run_id}")
        if self.on_stage:
            self.on_stage(stage, payload)

    def _check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise PipelineCancelled(f"run {self.run_id} cancelled")

    def _default_session(
        self,
        instructions: str,
        *,
        stage: str,
        name: str,
        temperature: float | None = None,
    ) -> CompletionSession:
        return CompletionSession(
            self.provider,
            self.options.documents,
            instructions,
            model=self.options.model_for(stage),
            name=f"{name}_{self.run_id}",
            temperature=temperature,
            retry=RetryPolicy.from_options(self.options, name=stage),
            parser=self.parser,
            continuation_limit=self.options.continuation_limit,
            index_build_timeout=self.options.index_build_timeout,
            cancel_event=self.cancel_event,
        )

    def generate_outline(self) -> ProgramOutline:
        self._check_cancelled()
        total_turns = prompts.minutes_to_turns(self.options.minute)
        self._stage("outline_generating", {"requested_turns": total_turns})
        t0 = time.perf_counter()
        with self._session_factory(
            prompts.outline_instructions(self.options.language),
            stage="outline",
            name="program_writer",
            temperature=0.1,
        ) as session:
            session.run(prompts.outline_request(total_turns))
            outline: ProgramOutline = session.parse_latest(-1, ProgramOutline)
        planned = outline.planned_turns
        # Drift between planned and requested turns is expected.
        if planned != total_turns:
            print(f"[pipeline] outline_drift requested={total_turns} planned={planned}")
        self.metrics["outline_seconds"] = round(time.perf_counter() - t0, 3)
        self.metrics["requested_turns"] = total_turns
        self.metrics["planned_turns"] = planned
        self.metrics["section_count"] = len(outline.program)
        self._stage(
            "outline_completed",
            {
                "section_count": len(outline.program),
                "requested_turns": total_turns,
                "planned_turns": planned,
                "sections": [s.title for s in outline.program],
            },
        )
        return outline

    def _extract_one(self, item: tuple[int, str]) -> str:
        index, task = item
        with self._session_factory(
            prompts.EXTRACTOR_INSTRUCTIONS,
            stage="extraction",
            name=f"extractor_{index}",
            temperature=0.0,
        ) as session:
            session.run(task)
            extracted: ExtractionResult = session.parse_latest(-1, ExtractionResult)
        if not extracted.result:
            raise MalformedResponseError(f"Extraction task {index} returned an empty result")
        return extracted.result

    def run_extractions(self, tasks: Sequence[str] = prompts.EXTRACTION_TASKS) -> list[TaskResult[str]]:
        return run_bounded(
            list(enumerate(tasks)),
            self._extract_one,
            concurrency=self.options.assistant_concurrency,
            cancel_event=self.cancel_event,
            name="extract",
        )

    def extract_metadata(self) -> ProgramMetadata:
        self._check_cancelled()
        self._stage("metadata_extracting", {"task_count": len(prompts.EXTRACTION_TASKS)})
        t0 = time.perf_counter()
        author_slot, title_slot, voice_slot = self.run_extractions()

        metadata = ProgramMetadata()
        for key, slot in (("author", author_slot), ("title", title_slot), ("guest_voice", voice_slot)):
            if not slot.ok:
                metadata.failures[key] = str(slot.error)
        if author_slot.ok and author_slot.value:
            metadata.author = author_slot.value
        if title_slot.ok and title_slot.value:
            metadata.title = title_slot.value
        voice = str(voice_slot.value or "").strip().lower() if voice_slot.ok else ""
        if voice in GUEST_VOICES:
            metadata.guest_voice = voice
        else:
            print(f"[pipeline] invalid_guest_voice value={voice_slot.value!r} fallback={DEFAULT_GUEST_VOICE}")
            if voice_slot.ok:
                metadata.failures["guest_voice"] = f"invalid voice {voice_slot.value!r}"

        self.metrics["extraction_seconds"] = round(time.perf_counter() - t0, 3)
        self.metrics["extraction_failures"] = dict(metadata.failures)
        self._stage(
            "metadata_completed",
            {
                "author": metadata.author,
                "title": metadata.title,
                "guest_voice": metadata.guest_voice,
                "failures": dict(metadata.failures),
            },
        )
        return metadata

    def _normalize_turns(self, turns: list[ScriptTurn], guest_voice: str) -> list[ScriptTurn]:
        normalized: list[ScriptTurn] = []
        for turn in turns:
            text = turn.text.strip()
            if not text:
                continue
            voice = turn.voice.strip().lower()
            if voice not in VOICES:
                is_host = turn.speaker.strip().lower() in {DEFAULT_HOST_VOICE, "host"}
                voice = DEFAULT_HOST_VOICE if is_host else guest_voice
            normalized.append(ScriptTurn(speaker=turn.speaker or voice, voice=voice, text=text))
        return normalized

    def _generate_section(
        self,
        session: CompletionSession,
        outline: ProgramOutline,
        index: int,
        metadata: ProgramMetadata,
    ) -> list[ScriptTurn]:
        sections = outline.program
        request = ScriptWriterInput(
            author=metadata.author,
            current_section=sections[index],
            next_section=sections[index + 1] if index + 1 < len(sections) else None,
        )
        payload = request.model_dump_json(by_alias=True, exclude_none=True)
        self._stage(
            "script_generating_section",
            {"section_index": index, "section_title": sections[index].title, "section_total": len(sections)},
        )

        last_error: BaseException | None = None
        for attempt in range(1, self.options.retry_count + 1):
            self._check_cancelled()
            try:
                session.run(payload)
                output: ScriptWriterOutput = session.parse_latest(-1, ScriptWriterOutput)
                turns = self._normalize_turns(output.script, metadata.guest_voice)
                if not turns:
                    raise MalformedResponseError(f"Section {index} script has no spoken turns")
                return turns
            except PipelineCancelled:
                raise
            except PipelineError as exc:
                last_error = exc
                print(
                    f"[pipeline] script_retry section={index} attempt={attempt}/{self.options.retry_count} "
                    f"error={exc}"
                )
        raise ScriptGenerationError(
            f"Section {index} ({sections[index].title}) failed after {self.options.retry_count} attempts: {last_error}"
        ) from last_error

    def generate_script(self, outline: ProgramOutline, metadata: ProgramMetadata) -> list[list[ScriptTurn]]:
        self._check_cancelled()
        t0 = time.perf_counter()
        instructions = prompts.script_instructions(
            self.options.language,
            host_voice=DEFAULT_HOST_VOICE,
            guest_voice=metadata.guest_voice,
        )
        with self._session_factory(instructions, stage="script", name="script_writer") as session:
            # One worker: each section reads the previous sections from the session context.
            results = run_bounded(
                list(range(len(outline.program))),
                lambda index: self._generate_section(session, outline, index, metadata),
                concurrency=1,
                fail_fast=True,
                cancel_event=self.cancel_event,
                name="script",
            )
        chunks = [list(r.value or []) for r in results]
        total = sum(len(c) for c in chunks)
        self.metrics["script_seconds"] = round(time.perf_counter() - t0, 3)
        self.metrics["turn_count"] = total
        self._stage("script_completed", {"section_count": len(chunks), "turn_count": total})
        return chunks

    def run(self) -> ProgramScript:
        outline = self.generate_outline()
        metadata = self.extract_metadata()
        chunks = self.generate_script(outline, metadata)
        return ProgramScript(outline=outline, metadata=metadata, chunks=chunks)


def resolve_inputs(options: RecordingOptions, dest_dir: str | None = None) -> RecordingOptions:
    """Download remote document and background references; local paths must exist."""
    from radio import storage

    documents = [storage.download_file(ref, dest_dir) for ref in options.documents]
    bgm = storage.download_file(options.bgm, dest_dir) if options.bgm else None
    return options.model_copy(update={"documents": documents, "bgm": bgm})


def _validate_local_inputs(options: RecordingOptions) -> None:
    missing = [p for p in options.documents if not os.path.isfile(p)]
    if options.bgm and not os.path.isfile(options.bgm):
        missing.append(options.bgm)
    if missing:
        raise ValidationError(f"Input files not found: {missing}")


def write_script(program: ProgramScript, path: str) -> str:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(program.to_records(), f, ensure_ascii=False, indent=2)
    return path


def run_pipeline(
    options: RecordingOptions | dict[str, Any],
    *,
    output_dir: str,
    provider: CompletionProvider | None = None,
    tts: TtsProvider | None = None,
    uploader: Uploader | None = None,
    on_stage: StageCallback | None = None,
    cancel_event: threading.Event | None = None,
    session_factory: SessionFactory | None = None,
) -> dict[str, Any]:
    opts = RecordingOptions.parse(options)
    _validate_local_inputs(opts)
    if provider is None:
        from radio.llm import get_client

        provider = get_client()
    if tts is None:
        from radio.tts_openai import get_speech_provider

        tts = get_speech_provider(opts.tts_model)

    metrics: dict[str, Any] = {}

    def set_stage(stage: str, payload: dict[str, Any] | None = None) -> None:
        if on_stage:
            on_stage(stage, dict(payload or {}))

    t0 = time.perf_counter()
    os.makedirs(output_dir, exist_ok=True)
    scheduler = PipelineScheduler(
        opts,
        provider,
        cancel_event=cancel_event,
        on_stage=set_stage,
        session_factory=session_factory,
    )
    program = scheduler.run()
    metrics.update(scheduler.metrics)

    name = output_name(program.metadata.title)
    script_filename = f"script-{name}.json"
    script_path = write_script(program, os.path.join(output_dir, script_filename))
    script_url: str | None = None
    if uploader:
        script_url = uploader(script_path, "script")

    turns = program.turns
    set_stage("synthesizing", {"turn_count": len(turns), "tts_concurrency": opts.tts_concurrency})
    t_audio = time.perf_counter()
    assembler = AudioAssembler(
        tts,
        output_dir,
        output_name=f"radio-{name}",
        segments_dir=os.path.join(output_dir, f"segments-{name}"),
        bgm_path=opts.bgm,
        bgm_volume=opts.bgm_volume,
        tts_concurrency=opts.tts_concurrency,
        retry=RetryPolicy.from_options(opts, name="tts"),
        cancel_event=cancel_event,
    )
    assembler.synthesize_all(turns)
    metrics["tts_seconds"] = round(time.perf_counter() - t_audio, 3)

    set_stage("assembling", {"segment_count": len(turns), "bgm": bool(opts.bgm)})
    t_assemble = time.perf_counter()
    finished: FinishedProgram = assembler.assemble()
    metrics["assemble_seconds"] = round(time.perf_counter() - t_assemble, 3)

    audio_url = finished.filename
    if uploader:
        set_stage("uploading", {"audio_filename": finished.filename})
        audio_url = uploader(finished.path, "audio")

    metrics["total_seconds"] = round(time.perf_counter() - t0, 3)
    metrics["duration_seconds"] = round(finished.duration, 3)
    set_stage("completed", {"audio_filename": finished.filename, "duration_seconds": metrics["duration_seconds"]})

    return {
        "name": name,
        "title": program.metadata.title,
        "author": program.metadata.author,
        "guest_voice": program.metadata.guest_voice,
        "audio_url": audio_url,
        "audio_filename": finished.filename,
        "audio_path": finished.path,
        "script_url": script_url,
        "script_filename": script_filename,
        "duration_seconds": metrics["duration_seconds"],
        "section_count": len(program.chunks),
        "turn_count": len(turns),
        "sections": program.to_records(),
        "metrics": metrics,
    }
