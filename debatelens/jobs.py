"""
Analysis job lifecycle.

  pending → processing → completed | error
  completed | error → processing   (regenerate)

Intake validates the request, creates the job, moves it to ``processing``
with one conditional update and only then launches the pipeline as a
background task.  The ``JobScheduler`` supervises those tasks so that each
one ends with a terminal status write.  Pipeline failures never reach the
caller that submitted the job; they are visible through ``status``.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Sequence
from urllib.parse import urlparse

from debatelens.config import Settings, build_chat_model
from debatelens.debate.judge import DebateJudge
from debatelens.errors import (
    ConflictError,
    InputValidationError,
    JobNotFoundError,
    TranscriptionError,
)
from debatelens.graph import build_analysis_graph, initial_state
from debatelens.models import (
    TERMINAL_STATUSES,
    AnalysisJob,
    AnalysisResults,
    DebateAssessment,
    JobSnapshot,
    JobStatus,
    SourceKind,
    Transcript,
    utcnow,
)
from debatelens.store import AnalysisStore
from debatelens.transcription.engine import TranscriptionEngine

log = logging.getLogger(__name__)

MIN_TEXT_CHARS = 100
MAX_SPEAKERS = 10

_LANGUAGE = re.compile(r"^[a-z]{2,3}$")


# ---------------------------------------------------------------------------
# Intake validation
# ---------------------------------------------------------------------------

def validate_speakers(speakers: Sequence[str]) -> list[str]:
    if isinstance(speakers, str) or not speakers:
        raise InputValidationError("At least one participant is required")
    names = [str(s).strip() for s in speakers]
    if any(not n for n in names):
        raise InputValidationError("Participant names cannot be blank")
    if len(names) > MAX_SPEAKERS:
        raise InputValidationError(f"At most {MAX_SPEAKERS} participants are supported")
    return names


def validate_text(text: str) -> str:
    text = (text or "").strip()
    if len(text) < MIN_TEXT_CHARS:
        raise InputValidationError(
            f"Text must be at least {MIN_TEXT_CHARS} characters (got {len(text)})"
        )
    return text


def validate_url(url: str) -> str:
    url = (url or "").strip()
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InputValidationError(f"Not a valid http(s) video URL: {url!r}")
    return url


def normalize_language(language: Optional[str], default: str) -> str:
    """Lower-case ISO 639 code, e.g. 'IT' -> 'it', 'pt-BR' -> 'pt'."""
    value = (language or default).strip().lower().replace("_", "-").split("-")[0]
    if not _LANGUAGE.match(value):
        raise InputValidationError(f"Invalid language code: {language!r}")
    return value


def _error_message(error: BaseException | str) -> str:
    if isinstance(error, str):
        return error
    return str(error) or type(error).__name__


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------

class JobScheduler:
    """Owns the background task of every running job.

    Each task is wrapped so that an escaped exception, a cancellation or a
    pipeline that returns without a terminal status still ends in ``on_failure``.
    """

    def __init__(
        self,
        store: AnalysisStore,
        on_failure: Callable[[str, BaseException | str], Awaitable[None]],
    ):
        self.store = store
        self._on_failure = on_failure
        self._tasks: dict[str, asyncio.Task] = {}

    def launch(self, job_id: str, pipeline: Awaitable[None]) -> asyncio.Task:
        task = asyncio.create_task(self._supervise(job_id, pipeline), name=f"analysis-{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(functools.partial(self._forget, job_id))
        return task

    def _forget(self, job_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(job_id) is task:
            del self._tasks[job_id]

    async def _supervise(self, job_id: str, pipeline: Awaitable[None]) -> None:
        try:
            await pipeline
        except asyncio.CancelledError:
            await self._record_failure(job_id, "Analysis was cancelled")
            raise
        except Exception as e:
            log.exception("Unhandled error in analysis %s", job_id)
            await self._record_failure(job_id, e)
            return

        job = await self.store.get(job_id)
        if job is not None and job.status is JobStatus.PROCESSING:
            await self._record_failure(job_id, "Analysis ended without recording a result")

    async def _record_failure(self, job_id: str, error: BaseException | str) -> None:
        try:
            await self._on_failure(job_id, error)
        except Exception:
            log.exception("Could not record failure for analysis %s; it may stay in processing", job_id)

    def is_running(self, job_id: str) -> bool:
        return job_id in self._tasks

    @property
    def running(self) -> list[str]:
        return list(self._tasks)

    async def wait(self, job_id: str) -> None:
        """Block until the job's task (if any) has finished."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.wait({task})

    async def join(self) -> None:
        while self._tasks:
            await asyncio.wait(set(self._tasks.values()))

    async def shutdown(self) -> None:
        for task in list(self._tasks.values()):
            task.cancel()
        await asyncio.gather(*self._tasks.values(), return_exceptions=True)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

@dataclass
class JobService:
    """Intake, state transitions and result access for analysis jobs."""

    store: AnalysisStore
    transcriber: TranscriptionEngine
    judge: DebateJudge
    default_language: str = "it"
    scheduler: JobScheduler = field(init=False)

    def __post_init__(self) -> None:
        self.scheduler = JobScheduler(self.store, self.fail)
        self._graph = build_analysis_graph(self.transcriber, self.judge, self.store, self.complete)

    @classmethod
    def from_settings(cls, settings: Settings, store: AnalysisStore) -> "JobService":
        judge = DebateJudge(
            functools.partial(build_chat_model, settings),
            primary_model=settings.primary_model,
            fallback_model=settings.fallback_model,
            max_concurrency=settings.scoring_concurrency,
        )
        return cls(
            store=store,
            transcriber=TranscriptionEngine.from_settings(settings),
            judge=judge,
            default_language=settings.language,
        )

    # -----------------------------------------------------------------------
    # Intake
    # -----------------------------------------------------------------------

    async def submit_text(
        self,
        text: str,
        speakers: Sequence[str],
        *,
        topic: str = "",
        title: Optional[str] = None,
        language: Optional[str] = None,
    ) -> AnalysisJob:
        text = validate_text(text)
        job = AnalysisJob(
            title=title or f"Analysis {datetime.now():%Y-%m-%d %H:%M}",
            topic=topic.strip(),
            source_kind=SourceKind.TEXT,
            source_ref=text,
            speakers=validate_speakers(speakers),
            metadata={
                "text_length": len(text),
                "language": normalize_language(language, self.default_language),
            },
        )
        return await self._launch(job)

    async def submit_file(
        self,
        path: Path,
        speakers: Sequence[str],
        *,
        topic: str = "",
        title: Optional[str] = None,
        language: Optional[str] = None,
    ) -> AnalysisJob:
        path = Path(path).resolve()
        try:
            self.transcriber.normalizer.validate(path)
        except TranscriptionError as e:
            raise InputValidationError(str(e)) from e

        job = AnalysisJob(
            title=title or f"File: {path.name}",
            topic=topic.strip() or "Debate analysis from media file",
            source_kind=SourceKind.UPLOADED_MEDIA,
            source_ref=str(path),
            speakers=validate_speakers(speakers),
            metadata={
                "file_name": path.name,
                "file_size": path.stat().st_size,
                "language": normalize_language(language, self.default_language),
            },
        )
        return await self._launch(job)

    async def submit_url(
        self,
        url: str,
        speakers: Sequence[str],
        *,
        topic: str = "",
        title: Optional[str] = None,
        language: Optional[str] = None,
    ) -> AnalysisJob:
        url = validate_url(url)
        job = AnalysisJob(
            title=title or f"Video {datetime.now():%Y-%m-%d %H:%M}",
            topic=topic.strip(),
            source_kind=SourceKind.REMOTE_URL,
            source_ref=url,
            speakers=validate_speakers(speakers),
            metadata={
                "source_url": url,
                "language": normalize_language(language, self.default_language),
            },
        )
        return await self._launch(job)

    async def _launch(self, job: AnalysisJob) -> AnalysisJob:
        await self.store.create(job)
        log.info("Created analysis %s (%s, %d participant(s))", job.id, job.source_kind.value, len(job.speakers))
        await self.start(job.id)
        self.scheduler.launch(job.id, self._run_pipeline(job.id))
        return await self.store.get(job.id)

    # -----------------------------------------------------------------------
    # State transitions
    # -----------------------------------------------------------------------

    async def start(self, job_id: str, *, regenerate: bool = False) -> None:
        """Atomically move a job to ``processing``.

        Fresh jobs must be pending; regenerated ones must be completed or
        failed.  Anything else raises ``ConflictError``.
        """
        allowed = TERMINAL_STATUSES if regenerate else {JobStatus.PENDING}
        if not await self.store.update_status(job_id, JobStatus.PROCESSING, expected=allowed):
            job = await self.store.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            raise ConflictError(f"Analysis {job_id} is {job.status.value} and cannot be started")
        await self.store.update_metadata(job_id, {"processing_started": utcnow().isoformat()})

    async def complete(self, job_id: str, assessment: DebateAssessment) -> None:
        """Replace the job's results, then mark it completed."""
        await self.store.clear_results(job_id)
        for analysis in assessment.individual:
            await self.store.save_speaker_analysis(job_id, analysis)
        await self.store.save_comparison(job_id, assessment.comparison)
        await self.store.update_metadata(job_id, assessment.metadata)
        if not await self.store.update_status(
            job_id, JobStatus.COMPLETED, expected={JobStatus.PROCESSING}
        ):
            raise ConflictError(f"Analysis {job_id} is no longer processing")
        log.info("Analysis %s completed", job_id)

    async def fail(self, job_id: str, error: BaseException | str) -> None:
        """Record a human-readable error; only a processing job is touched."""
        message = _error_message(error)
        log.error("Analysis %s failed: %s", job_id, message)
        await self.store.update_status(
            job_id, JobStatus.ERROR, message, expected={JobStatus.PROCESSING}
        )

    async def _run_pipeline(self, job_id: str, transcript: Optional[Transcript] = None) -> None:
        try:
            job = await self.store.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            language = job.language or self.default_language
            await self._graph.ainvoke(initial_state(job, language, transcript))
        except Exception as e:
            await self.fail(job_id, e)

    # -----------------------------------------------------------------------
    # Regenerate
    # -----------------------------------------------------------------------

    async def regenerate(self, job_id: str) -> AnalysisJob:
        """Re-run a finished job.  Text jobs reuse their stored transcript."""
        job = await self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.status not in TERMINAL_STATUSES:
            raise ConflictError(f"Analysis {job_id} is {job.status.value}; regenerate is not allowed")

        transcript = None
        if job.source_kind is SourceKind.TEXT:
            transcript = await self.store.get_transcript(job_id)

        log.info("Regenerating analysis %s", job_id)
        await self.start(job_id, regenerate=True)
        self.scheduler.launch(job_id, self._run_pipeline(job_id, transcript))
        return await self.store.get(job_id)

    # -----------------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------------

    async def _require(self, job_id: str) -> AnalysisJob:
        job = await self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def status(self, job_id: str) -> JobSnapshot:
        job = await self._require(job_id)
        snapshot = JobSnapshot(
            id=job.id,
            title=job.title,
            topic=job.topic,
            source_kind=job.source_kind,
            speakers=job.speakers,
            status=job.status,
            created_at=job.created_at,
            updated_at=job.updated_at,
            completed_at=job.completed_at,
            metadata=job.metadata,
        )
        if job.status is JobStatus.ERROR:
            snapshot.error_message = job.error_message
        elif job.status is JobStatus.COMPLETED:
            snapshot.results = await self.store.get_results(job_id)
        return snapshot

    async def results(self, job_id: str) -> AnalysisResults:
        job = await self._require(job_id)
        if job.status is not JobStatus.COMPLETED:
            raise ConflictError(f"Analysis {job_id} is {job.status.value}; no results yet")
        return await self.store.get_results(job_id)

    async def list_jobs(
        self,
        page: int = 1,
        limit: int = 20,
        status: Optional[JobStatus] = None,
    ) -> tuple[list[AnalysisJob], int]:
        return await self.store.list_jobs(page=page, limit=limit, status=status)

    async def delete(self, job_id: str) -> None:
        job = await self._require(job_id)
        if job.status is JobStatus.PROCESSING:
            raise ConflictError(f"Analysis {job_id} is still processing")
        await self.store.delete(job_id)
        log.info("Deleted analysis %s", job_id)

    async def health(self) -> dict[str, Any]:
        reasoning, transcription = await asyncio.gather(
            self.judge.test_connection(),
            self.transcriber.test_connection(),
        )
        return {
            "reasoning": reasoning,
            "transcription": transcription,
            "downloaders": self.transcriber.downloaders,
            **{f"whisper_{k}": v for k, v in self.transcriber.describe().items()},
            "primary_model": self.judge.primary_model,
            "fallback_model": self.judge.fallback_model,
        }
