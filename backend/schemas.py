from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from radio.errors import ValidationError
from radio.llm import resolve_model_name

JobStatus = Literal["queued", "running", "completed", "failed"]
Language = Literal["en", "ja", "ko"]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class RecordingOptions(_CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )

    documents: list[str] = Field(
        min_length=1,
        validation_alias=AliasChoices("documents", "papers", "paperUrls", "paper_urls"),
    )
    minute: float = Field(default=15, gt=0, le=180)
    language: Language = "en"
    bgm: str | None = None
    bgm_volume: float = Field(default=0.25, ge=0.0, le=1.0)
    llm_model: str = Field(default_factory=resolve_model_name)
    outline_model: str | None = None
    extraction_model: str | None = None
    script_model: str | None = None
    fixer_model: str = "gpt-4o-mini"
    tts_model: str = "tts-1"
    assistant_concurrency: int = Field(default=10, ge=1, le=64)
    tts_concurrency: int = Field(default=20, ge=1, le=64)
    retry_count: int = Field(default=5, ge=1, le=30)
    retry_max_delay: int = Field(default=150000, ge=0)
    continuation_limit: int = Field(default=30, ge=1, le=100)
    index_build_timeout: float = Field(default=600.0, gt=0)

    @field_validator("documents")
    @classmethod
    def _strip_documents(cls, value: list[str]) -> list[str]:
        cleaned = [str(v).strip() for v in value if str(v).strip()]
        if not cleaned:
            raise ValueError("At least one document reference is required.")
        return cleaned

    @classmethod
    def parse(cls, data: Any) -> RecordingOptions:
        if isinstance(data, cls):
            return data
        try:
            return cls.model_validate(data)
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid recording options: {exc}") from exc

    def model_for(self, stage: str) -> str:
        override = {
            "outline": self.outline_model,
            "extraction": self.extraction_model,
            "script": self.script_model,
        }.get(stage)
        return override or self.llm_model


class Section(_CamelModel):
    title: str
    conversation_turns: int = Field(default=0, ge=0)
    contents: list[str] = Field(default_factory=list)

    @field_validator("conversation_turns", mode="before")
    @classmethod
    def _round_turns(cls, value: Any) -> int:
        try:
            return max(0, int(round(float(value))))
        except (TypeError, ValueError):
            return 0


class ProgramOutline(_CamelModel):
    total_turns: int = 0
    program: list[Section] = Field(min_length=1)

    @field_validator("total_turns", mode="before")
    @classmethod
    def _round_total(cls, value: Any) -> int:
        try:
            return max(0, int(round(float(value))))
        except (TypeError, ValueError):
            return 0

    @property
    def planned_turns(self) -> int:
        return sum(s.conversation_turns for s in self.program)


class ScriptTurn(_CamelModel):
    speaker: str = ""
    voice: str = ""
    text: str = ""


class ScriptWriterInput(_CamelModel):
    author: str
    current_section: Section
    next_section: Section | None = None


class ScriptWriterOutput(_CamelModel):
    title: str = ""
    next_title: str | None = None
    conversation_turns: int | None = None
    script: list[ScriptTurn] = Field(min_length=1)

    @field_validator("conversation_turns", mode="before")
    @classmethod
    def _round_turns(cls, value: Any) -> int | None:
        if value is None:
            return None
        try:
            return int(round(float(value)))
        except (TypeError, ValueError):
            return None


class ExtractionResult(BaseModel):
    result: str

    @field_validator("result", mode="before")
    @classmethod
    def _to_text(cls, value: Any) -> str:
        if isinstance(value, (list, tuple)):
            value = ", ".join(str(v) for v in value)
        return str(value).strip()


class ScriptChunkRecord(BaseModel):
    section: str
    script: list[ScriptTurn]


class JobCreateResponse(BaseModel):
    job_id: str
    status: JobStatus
    created_at: datetime


class JobResult(BaseModel):
    name: str
    title: str
    author: str
    audio_url: str
    audio_filename: str
    script_url: str | None = None
    script_filename: str | None = None
    duration_seconds: float = 0.0
    section_count: int = 0
    turn_count: int = 0
    guest_voice: str | None = None


class JobStage(BaseModel):
    stage: str
    at: datetime
    payload: dict[str, Any] = Field(default_factory=dict)


class JobStatusResponse(BaseModel):
    job_id: str
    status: JobStatus
    stage: str
    created_at: datetime
    updated_at: datetime
    error: str | None = None
    result: JobResult | None = None
    metrics: dict[str, Any] = Field(default_factory=dict)
    stages: list[JobStage] = Field(default_factory=list)
    options: dict[str, Any] = Field(default_factory=dict)
