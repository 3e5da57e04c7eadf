"""
Core Pydantic data models for debate analysis.

These schemas describe an analysis job, the transcript it produces, the
per-speaker scores coming back from the reasoning backend and the bundle
handed to whatever renders the results.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class SourceKind(str, Enum):
    TEXT = "text"
    UPLOADED_MEDIA = "uploaded-media"
    REMOTE_URL = "remote-url"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.ERROR})


# ---------------------------------------------------------------------------
# Scoring categories
# ---------------------------------------------------------------------------

# key -> (label, what the judge should look at)
CATEGORIES: dict[str, tuple[str, str]] = {
    "technical_rigor": (
        "Technical Rigor",
        "Precision and accuracy of the information presented",
    ),
    "data_usage": (
        "Use of Data",
        "Quantity and quality of data, statistics and sources cited",
    ),
    "communication_style": (
        "Communication Style",
        "Clarity, effectiveness and professionalism of delivery",
    ),
    "focus": (
        "Focus",
        "Adherence to the main topic and coherence of the argument",
    ),
    "practical_orientation": (
        "Practical Orientation",
        "Concreteness of proposals and real-world applicability",
    ),
    "accessibility": (
        "Accessibility",
        "Ability to make complex concepts understandable to a general audience",
    ),
}

CATEGORY_KEYS: tuple[str, ...] = tuple(CATEGORIES)

MIN_SCORE = 1.0
MAX_SCORE = 10.0
NEUTRAL_SCORE = 5.0
UNDETERMINED = "Undetermined"


# ---------------------------------------------------------------------------
# Job & transcript
# ---------------------------------------------------------------------------

class AnalysisJob(BaseModel):
    """One end-to-end request to evaluate a debate."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    title: str
    topic: str = ""
    source_kind: SourceKind
    source_ref: str = Field(description="Full text, local file path or URL depending on source_kind")
    speakers: list[str] = Field(min_length=1, max_length=10)
    status: JobStatus = JobStatus.PENDING
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def language(self) -> Optional[str]:
        return self.metadata.get("language")


class Transcript(BaseModel):
    """Transcript of a job's source.  At most one per job."""

    text: str
    language: str
    duration: Optional[float] = Field(default=None, description="Seconds, when known")
    source_kind: SourceKind
    segment_count: int = Field(default=1, ge=1)
    model: Optional[str] = Field(default=None, description="Speech-to-text model, None for text sources")
    created_at: datetime = Field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Reasoning output
# ---------------------------------------------------------------------------

class SpeakerAnalysis(BaseModel):
    """Six bounded category scores plus prose feedback for one participant."""

    speaker: str
    scores: dict[str, float] = Field(description="category key -> score in [1, 10], one decimal")
    explanations: dict[str, str] = Field(default_factory=dict)
    highlights: list[str] = Field(default_factory=list)
    improvements: list[str] = Field(default_factory=list)
    overall_assessment: str = ""

    @property
    def average(self) -> float:
        if not self.scores:
            return NEUTRAL_SCORE
        return round(sum(self.scores.values()) / len(self.scores), 1)


class Comparison(BaseModel):
    """Cross-participant synthesis."""

    winner_overall: str = UNDETERMINED
    category_winners: dict[str, str] = Field(default_factory=dict)
    summary: str = ""
    key_differences: list[str] = Field(default_factory=list)


class DebateAssessment(BaseModel):
    """Everything one reasoning pass produces for a job."""

    individual: list[SpeakerAnalysis]
    comparison: Comparison
    metadata: dict[str, Any] = Field(default_factory=dict)


class AnalysisResults(BaseModel):
    """Full results bundle for a completed job."""

    speaker_analyses: list[SpeakerAnalysis]
    comparison: Optional[Comparison] = None
    transcript: Optional[Transcript] = None


class JobSnapshot(BaseModel):
    """Status view of a job; results only once completed, error only once failed."""

    id: str
    title: str
    topic: str
    source_kind: SourceKind
    speakers: list[str]
    status: JobStatus
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None
    results: Optional[AnalysisResults] = None
