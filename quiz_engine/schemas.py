"""
Pydantic schemas for the extraction & generation engine.

Parser layer:       CandidateRecord, AnswerKeyEntry, ParseDiagnostics, ParseOutcome
Domain layer:       QuestionRecord, Simulation
Orchestrator layer: GenerationBatchState, GenerationEvent, GenerationResult
Flow results:       ExtractionResult, AnswerKeyResult, MergeReport, SimulationBuildResult
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from quiz_engine.errors import ContentAbsentError, ParseError

AnswerLetter = Literal["A", "B", "C", "D"]
ANSWER_LETTERS = ("A", "B", "C", "D")


class ExtractionTask(str, Enum):
    QUESTION_EXTRACTION = "question_extraction"
    ANSWER_SHEET_EXTRACTION = "answer_sheet_extraction"
    BULK_GENERATION = "bulk_generation"

    @property
    def is_image_task(self) -> bool:
        return self != ExtractionTask.BULK_GENERATION


def _upper_answer(value):
    if isinstance(value, str):
        return value.strip().upper()
    return value


# ─── Parser output ─────────────────────────────────────────────────────────────

class CandidateRecord(BaseModel):
    """A question parsed from a provider reply, not yet given a stable id."""
    question_number: Optional[int] = None
    question_text: str
    options: List[str]
    correct_answer: AnswerLetter = "A"
    passage_text: Optional[str] = None

    normalize_answer = field_validator("correct_answer", mode="before")(_upper_answer)


class AnswerKeyEntry(BaseModel):
    question_number: int
    answer: AnswerLetter

    normalize_answer = field_validator("answer", mode="before")(_upper_answer)


class ParseDiagnostics(BaseModel):
    strategy: Optional[str] = None          # name of the strategy that succeeded
    attempted: List[str] = Field(default_factory=list)
    dropped: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


ParsedItem = Union[CandidateRecord, AnswerKeyEntry]


class ParseOutcome(BaseModel):
    """
    Tagged parse result: ok | content_absent | parse_failed.

    unwrap() turns the two failure tags into ContentAbsentError / ParseError.
    """
    status: Literal["ok", "content_absent", "parse_failed"]
    task: ExtractionTask
    records: List[CandidateRecord] = Field(default_factory=list)
    answer_key: List[AnswerKeyEntry] = Field(default_factory=list)
    diagnostics: ParseDiagnostics = Field(default_factory=ParseDiagnostics)
    error: Optional[str] = None
    raw_response: str = ""

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def items(self) -> List[ParsedItem]:
        if self.task == ExtractionTask.ANSWER_SHEET_EXTRACTION:
            return list(self.answer_key)
        return list(self.records)

    def unwrap(self) -> Tuple[List[ParsedItem], ParseDiagnostics]:
        if self.status == "content_absent":
            raise ContentAbsentError(raw_response=self.raw_response)
        if self.status == "parse_failed":
            raise ParseError(self.error or "Failed to parse provider response", raw_response=self.raw_response)
        return self.items, self.diagnostics


# ─── Domain records ────────────────────────────────────────────────────────────

class QuestionRecord(CandidateRecord):
    """CandidateRecord promoted with a caller-assigned id."""
    id: int
    kind: Literal["image", "reading", "answer-key"] = "image"
    image: Optional[str] = None      # URL / reference of the source image

    @model_validator(mode="after")
    def _four_options(self) -> "QuestionRecord":
        if self.kind != "answer-key" and len(self.options) != 4:
            raise ValueError(f"expected exactly 4 options, got {len(self.options)}")
        return self

    @classmethod
    def from_candidate(cls, candidate: CandidateRecord, record_id: int, **extra) -> "QuestionRecord":
        return cls(**{**candidate.model_dump(), **extra, "id": record_id})


def _new_simulation_id() -> str:
    return uuid.uuid4().hex[:9]


class Simulation(BaseModel):
    """A persisted test bundle."""
    id: str = Field(default_factory=_new_simulation_id)
    title: str = "TOEIC Practice Test"
    questions: List[QuestionRecord] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    is_answer_key_only: bool = False


# ─── Orchestrator state & results ──────────────────────────────────────────────

class GenerationBatchState(BaseModel):
    """Accumulator owned by one generate() call; discarded when it returns."""
    target_count: int
    accumulated: List[QuestionRecord] = Field(default_factory=list)
    consecutive_fill_failures: int = 0

    @property
    def missing(self) -> int:
        return max(0, self.target_count - len(self.accumulated))

    @property
    def next_id(self) -> int:
        return len(self.accumulated) + 1


class GenerationEvent(BaseModel):
    kind: Literal["batch", "fill", "error", "id_mismatch", "shortfall", "complete"]
    phase: Literal["initial", "fill", "final"]
    batch_index: Optional[int] = None
    requested: int = 0
    received: int = 0
    start_id: Optional[int] = None
    retry_count: int = 0
    message: Optional[str] = None


class GenerationResult(BaseModel):
    records: List[QuestionRecord]
    target_count: int
    initial_batch_sizes: List[int] = Field(default_factory=list)
    fill_batch_sizes: List[int] = Field(default_factory=list)
    events: List[GenerationEvent] = Field(default_factory=list)

    @property
    def shortfall(self) -> int:
        return max(0, self.target_count - len(self.records))

    @property
    def complete(self) -> bool:
        return self.shortfall == 0

    @property
    def fill_attempts(self) -> int:
        return len(self.fill_batch_sizes)


class ExtractionResult(BaseModel):
    records: List[QuestionRecord]
    raw_response: str
    diagnostics: ParseDiagnostics


class AnswerKeyResult(BaseModel):
    entries: List[AnswerKeyEntry]
    raw_response: str
    diagnostics: ParseDiagnostics


class MergeReport(BaseModel):
    """
    Outcome of applying an answer key. Unmatched records fall back to "A";
    default_ratio makes that fallback visible instead of silent.
    """
    records: List[QuestionRecord]
    defaulted_ids: List[int] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.records)

    @property
    def default_count(self) -> int:
        return len(self.defaulted_ids)

    @property
    def default_ratio(self) -> float:
        return self.default_count / self.total if self.total else 0.0

    @property
    def all_defaulted(self) -> bool:
        return self.total > 0 and self.default_count == self.total


class ImageFailure(BaseModel):
    index: int
    error_type: str
    message: str


class SimulationBuildResult(BaseModel):
    simulation: Simulation
    merge: MergeReport
    failures: List[ImageFailure] = Field(default_factory=list)


class ConnectionStatus(BaseModel):
    success: bool
    error: Optional[str] = None
    response: Optional[str] = None
