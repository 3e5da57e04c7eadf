"""
Persistence for analysis jobs and their results.

``AnalysisStore`` is the interface the pipeline depends on; ``SqlAnalysisStore``
implements it on SQLAlchemy's async engine (SQLite via aiosqlite by default).
Every mutation is a single statement or a single short transaction keyed by
job id.  Child rows cascade on job delete.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Collection, Optional, Protocol

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    delete,
    event,
    func,
    select,
    update,
)
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from debatelens.models import (
    AnalysisJob,
    AnalysisResults,
    Comparison,
    JobStatus,
    SourceKind,
    SpeakerAnalysis,
    Transcript,
    utcnow,
)

log = logging.getLogger(__name__)

MAX_PAGE_SIZE = 50


class AnalysisStore(Protocol):
    async def create(self, job: AnalysisJob) -> AnalysisJob: ...

    async def get(self, job_id: str) -> Optional[AnalysisJob]: ...

    async def update_status(
        self,
        job_id: str,
        status: JobStatus,
        error: Optional[str] = None,
        *,
        expected: Optional[Collection[JobStatus]] = None,
    ) -> bool: ...

    async def update_metadata(self, job_id: str, values: dict[str, Any]) -> None: ...

    async def save_transcript(self, job_id: str, transcript: Transcript) -> None: ...

    async def get_transcript(self, job_id: str) -> Optional[Transcript]: ...

    async def save_speaker_analysis(self, job_id: str, analysis: SpeakerAnalysis) -> None: ...

    async def save_comparison(self, job_id: str, comparison: Comparison) -> None: ...

    async def clear_results(self, job_id: str) -> None: ...

    async def get_results(self, job_id: str) -> AnalysisResults: ...

    async def list_jobs(
        self,
        page: int = 1,
        limit: int = 20,
        status: Optional[JobStatus] = None,
    ) -> tuple[list[AnalysisJob], int]: ...

    async def delete(self, job_id: str) -> bool: ...

    async def stats(self) -> dict[str, int]: ...


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    pass


class AnalysisRow(Base):
    __tablename__ = "analyses"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'error')",
            name="ck_analyses_status",
        ),
    )

    id = Column(String(36), primary_key=True)
    title = Column(String(255), nullable=False)
    topic = Column(Text, nullable=False, default="")
    source_kind = Column(String(32), nullable=False)
    source_ref = Column(Text, nullable=False)
    speakers = Column(JSON, nullable=False)
    status = Column(String(16), nullable=False, default=JobStatus.PENDING.value, index=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSON, nullable=False, default=dict)


class TranscriptRow(Base):
    __tablename__ = "transcripts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    analysis_id = Column(
        String(36), ForeignKey("analyses.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    text = Column(Text, nullable=False)
    language = Column(String(16), nullable=False)
    duration = Column(Float, nullable=True)
    source_kind = Column(String(32), nullable=False)
    segment_count = Column(Integer, nullable=False, default=1)
    model = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


class SpeakerAnalysisRow(Base):
    __tablename__ = "speaker_analyses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    analysis_id = Column(
        String(36), ForeignKey("analyses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    speaker = Column(String(255), nullable=False)
    scores = Column(JSON, nullable=False)
    explanations = Column(JSON, nullable=False)
    highlights = Column(JSON, nullable=False)
    improvements = Column(JSON, nullable=False)
    overall_assessment = Column(Text, nullable=False, default="")


class ComparisonRow(Base):
    __tablename__ = "comparisons"

    id = Column(Integer, primary_key=True, autoincrement=True)
    analysis_id = Column(
        String(36), ForeignKey("analyses.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    winner_overall = Column(String(255), nullable=False)
    category_winners = Column(JSON, nullable=False)
    summary = Column(Text, nullable=False, default="")
    key_differences = Column(JSON, nullable=False)


def _enable_sqlite_foreign_keys(dbapi_connection, _record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ---------------------------------------------------------------------------
# Row <-> model
# ---------------------------------------------------------------------------

def _job_from_row(row: AnalysisRow) -> AnalysisJob:
    return AnalysisJob(
        id=row.id,
        title=row.title,
        topic=row.topic,
        source_kind=SourceKind(row.source_kind),
        source_ref=row.source_ref,
        speakers=list(row.speakers),
        status=JobStatus(row.status),
        error_message=row.error_message,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
        completed_at=_aware(row.completed_at),
        metadata=dict(row.meta or {}),
    )


def _transcript_from_row(row: TranscriptRow) -> Transcript:
    return Transcript(
        text=row.text,
        language=row.language,
        duration=row.duration,
        source_kind=SourceKind(row.source_kind),
        segment_count=row.segment_count,
        model=row.model,
        created_at=_aware(row.created_at),
    )


def _analysis_from_row(row: SpeakerAnalysisRow) -> SpeakerAnalysis:
    return SpeakerAnalysis(
        speaker=row.speaker,
        scores=row.scores,
        explanations=row.explanations,
        highlights=row.highlights,
        improvements=row.improvements,
        overall_assessment=row.overall_assessment,
    )


def _comparison_from_row(row: ComparisonRow) -> Comparison:
    return Comparison(
        winner_overall=row.winner_overall,
        category_winners=row.category_winners,
        summary=row.summary,
        key_differences=row.key_differences,
    )


# ---------------------------------------------------------------------------
# SQL implementation
# ---------------------------------------------------------------------------

class SqlAnalysisStore:
    """``AnalysisStore`` on an async SQLAlchemy engine."""

    def __init__(self, url: str):
        self.engine = create_async_engine(url)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        self._session = async_sessionmaker(self.engine, expire_on_commit=False)

    @classmethod
    def for_path(cls, path: Path) -> "SqlAnalysisStore":
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        return cls(f"sqlite+aiosqlite:///{path}")

    async def init(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()

    # -----------------------------------------------------------------------
    # Jobs
    # -----------------------------------------------------------------------

    async def create(self, job: AnalysisJob) -> AnalysisJob:
        async with self._session() as session:
            session.add(
                AnalysisRow(
                    id=job.id,
                    title=job.title,
                    topic=job.topic,
                    source_kind=job.source_kind.value,
                    source_ref=job.source_ref,
                    speakers=list(job.speakers),
                    status=job.status.value,
                    error_message=job.error_message,
                    created_at=job.created_at,
                    updated_at=job.updated_at,
                    completed_at=job.completed_at,
                    meta=dict(job.metadata),
                )
            )
            await session.commit()
        return job

    async def get(self, job_id: str) -> Optional[AnalysisJob]:
        async with self._session() as session:
            row = await session.get(AnalysisRow, job_id)
            return _job_from_row(row) if row is not None else None

    async def update_status(
        self,
        job_id: str,
        status: JobStatus,
        error: Optional[str] = None,
        *,
        expected: Optional[Collection[JobStatus]] = None,
    ) -> bool:
        """Set the status in one conditional UPDATE.

        With ``expected``, the row is only touched if its current status is
        one of them.  Returns whether a row changed.
        """
        now = utcnow()
        values: dict[str, Any] = {
            "status": status.value,
            "updated_at": now,
            "error_message": error if status is JobStatus.ERROR else None,
        }
        if status is JobStatus.COMPLETED:
            values["completed_at"] = now
        elif status is JobStatus.PROCESSING:
            values["completed_at"] = None

        stmt = update(AnalysisRow).where(AnalysisRow.id == job_id).values(**values)
        if expected is not None:
            stmt = stmt.where(AnalysisRow.status.in_([s.value for s in expected]))

        async with self._session() as session:
            result = await session.execute(stmt)
            await session.commit()
        return result.rowcount > 0

    async def update_metadata(self, job_id: str, values: dict[str, Any]) -> None:
        """Merge ``values`` into the job's metadata map."""
        async with self._session() as session:
            row = await session.get(AnalysisRow, job_id)
            if row is None:
                return
            row.meta = {**(row.meta or {}), **values}
            row.updated_at = utcnow()
            await session.commit()

    async def list_jobs(
        self,
        page: int = 1,
        limit: int = 20,
        status: Optional[JobStatus] = None,
    ) -> tuple[list[AnalysisJob], int]:
        """One page of jobs, newest first, plus the total matching count."""
        page = max(1, page)
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        query = select(AnalysisRow)
        count = select(func.count()).select_from(AnalysisRow)
        if status is not None:
            query = query.where(AnalysisRow.status == status.value)
            count = count.where(AnalysisRow.status == status.value)
        query = query.order_by(AnalysisRow.created_at.desc()).offset((page - 1) * limit).limit(limit)

        async with self._session() as session:
            rows = (await session.scalars(query)).all()
            total = (await session.execute(count)).scalar_one()
        return [_job_from_row(r) for r in rows], total

    async def delete(self, job_id: str) -> bool:
        async with self._session() as session:
            result = await session.execute(delete(AnalysisRow).where(AnalysisRow.id == job_id))
            await session.commit()
        return result.rowcount > 0

    async def stats(self) -> dict[str, int]:
        """Job counts per status (every status present, zero if none)."""
        async with self._session() as session:
            rows = (
                await session.execute(
                    select(AnalysisRow.status, func.count()).group_by(AnalysisRow.status)
                )
            ).all()
        counts = {s.value: 0 for s in JobStatus}
        counts.update({status: n for status, n in rows})
        counts["total"] = sum(n for _, n in rows)
        return counts

    # -----------------------------------------------------------------------
    # Results
    # -----------------------------------------------------------------------

    async def save_transcript(self, job_id: str, transcript: Transcript) -> None:
        """Replace the job's transcript."""
        async with self._session() as session:
            await session.execute(delete(TranscriptRow).where(TranscriptRow.analysis_id == job_id))
            session.add(
                TranscriptRow(
                    analysis_id=job_id,
                    text=transcript.text,
                    language=transcript.language,
                    duration=transcript.duration,
                    source_kind=transcript.source_kind.value,
                    segment_count=transcript.segment_count,
                    model=transcript.model,
                    created_at=transcript.created_at,
                )
            )
            await session.commit()

    async def get_transcript(self, job_id: str) -> Optional[Transcript]:
        async with self._session() as session:
            row = await session.scalar(
                select(TranscriptRow).where(TranscriptRow.analysis_id == job_id)
            )
            return _transcript_from_row(row) if row is not None else None

    async def save_speaker_analysis(self, job_id: str, analysis: SpeakerAnalysis) -> None:
        async with self._session() as session:
            session.add(
                SpeakerAnalysisRow(
                    analysis_id=job_id,
                    speaker=analysis.speaker,
                    scores=analysis.scores,
                    explanations=analysis.explanations,
                    highlights=analysis.highlights,
                    improvements=analysis.improvements,
                    overall_assessment=analysis.overall_assessment,
                )
            )
            await session.commit()

    async def save_comparison(self, job_id: str, comparison: Comparison) -> None:
        """Replace the job's comparison."""
        async with self._session() as session:
            await session.execute(delete(ComparisonRow).where(ComparisonRow.analysis_id == job_id))
            session.add(
                ComparisonRow(
                    analysis_id=job_id,
                    winner_overall=comparison.winner_overall,
                    category_winners=comparison.category_winners,
                    summary=comparison.summary,
                    key_differences=comparison.key_differences,
                )
            )
            await session.commit()

    async def clear_results(self, job_id: str) -> None:
        """Drop speaker analyses and comparison ahead of a fresh set."""
        async with self._session() as session:
            await session.execute(
                delete(SpeakerAnalysisRow).where(SpeakerAnalysisRow.analysis_id == job_id)
            )
            await session.execute(delete(ComparisonRow).where(ComparisonRow.analysis_id == job_id))
            await session.commit()

    async def get_results(self, job_id: str) -> AnalysisResults:
        async with self._session() as session:
            analyses = (
                await session.scalars(
                    select(SpeakerAnalysisRow)
                    .where(SpeakerAnalysisRow.analysis_id == job_id)
                    .order_by(SpeakerAnalysisRow.id)
                )
            ).all()
            comparison = await session.scalar(
                select(ComparisonRow).where(ComparisonRow.analysis_id == job_id)
            )
            transcript = await session.scalar(
                select(TranscriptRow).where(TranscriptRow.analysis_id == job_id)
            )
        return AnalysisResults(
            speaker_analyses=[_analysis_from_row(r) for r in analyses],
            comparison=_comparison_from_row(comparison) if comparison is not None else None,
            transcript=_transcript_from_row(transcript) if transcript is not None else None,
        )
