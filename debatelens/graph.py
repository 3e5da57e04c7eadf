"""
LangGraph pipeline for one analysis job.

  transcribe (skipped when a transcript is reused) → analyze → persist

Text sources are turned into a Transcript directly; media sources go through
the TranscriptionEngine.  ``persist`` hands the assessment to the job
service, which writes the results and marks the job completed.
"""

from __future__ import annotations

import logging
import time
import warnings
from typing import Any, Awaitable, Callable, Optional

from langgraph.graph import END, START, StateGraph
from typing_extensions import TypedDict

from debatelens.debate.judge import DebateJudge
from debatelens.models import AnalysisJob, DebateAssessment, SourceKind, Transcript
from debatelens.store import AnalysisStore
from debatelens.transcription.engine import TranscriptionEngine

log = logging.getLogger(__name__)

# Suppress noisy Pydantic serialization warnings from LangGraph internals
warnings.filterwarnings("ignore", category=UserWarning, module="pydantic")

CompleteFn = Callable[[str, DebateAssessment], Awaitable[None]]


# ---------------------------------------------------------------------------
# Graph state
# ---------------------------------------------------------------------------

class AnalysisGraphState(TypedDict):
    """State that flows through the analysis pipeline."""

    job: AnalysisJob
    language: str
    started: float  # time.monotonic() at pipeline start

    transcript: Optional[Transcript]  # preset when regenerating a text job
    assessment: Optional[DebateAssessment]


def initial_state(
    job: AnalysisJob,
    language: str,
    transcript: Optional[Transcript] = None,
) -> AnalysisGraphState:
    return {
        "job": job,
        "language": language,
        "started": time.monotonic(),
        "transcript": transcript,
        "assessment": None,
    }


def route_source(state: AnalysisGraphState) -> str:
    return "analyze" if state.get("transcript") is not None else "transcribe"


# ---------------------------------------------------------------------------
# Graph assembly
# ---------------------------------------------------------------------------

def build_analysis_graph(
    transcriber: TranscriptionEngine,
    judge: DebateJudge,
    store: AnalysisStore,
    complete: CompleteFn,
):
    """Construct and compile the pipeline graph around injected collaborators."""

    async def transcribe_node(state: AnalysisGraphState) -> dict[str, Any]:
        job = state["job"]
        if job.source_kind is SourceKind.TEXT:
            transcript = Transcript(
                text=job.source_ref.strip(),
                language=state["language"],
                source_kind=SourceKind.TEXT,
            )
        else:
            log.info("[%s] Transcribing %s source", job.id, job.source_kind.value)
            transcript = await transcriber.transcribe_source(
                job.source_kind, job.source_ref, state["language"]
            )

        await store.save_transcript(job.id, transcript)
        await store.update_metadata(
            job.id,
            {
                "duration": transcript.duration,
                "segment_count": transcript.segment_count,
                "transcript_length": len(transcript.text),
            },
        )
        return {"transcript": transcript}

    async def analyze_node(state: AnalysisGraphState) -> dict[str, Any]:
        job, transcript = state["job"], state["transcript"]
        log.info("[%s] Analysing %d participant(s)", job.id, len(job.speakers))
        assessment = await judge.analyze_debate(transcript.text, job.speakers, job.topic)
        return {"assessment": assessment}

    async def persist_node(state: AnalysisGraphState) -> dict[str, Any]:
        job, assessment = state["job"], state["assessment"]
        assessment.metadata["pipeline_time"] = round(time.monotonic() - state["started"], 2)
        await complete(job.id, assessment)
        return {}

    graph = StateGraph(AnalysisGraphState)

    graph.add_node("transcribe", transcribe_node)
    graph.add_node("analyze", analyze_node)
    graph.add_node("persist", persist_node)

    graph.add_conditional_edges(
        START,
        route_source,
        {
            "transcribe": "transcribe",
            "analyze": "analyze",
        },
    )
    graph.add_edge("transcribe", "analyze")
    graph.add_edge("analyze", "persist")
    graph.add_edge("persist", END)

    return graph.compile()
