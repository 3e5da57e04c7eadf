"""
Reasoning orchestrator: per-speaker scoring and comparative synthesis.

  1. Segment the transcript into per-speaker text
  2. Score every speaker concurrently (six categories, 1-10, with feedback)
  3. Compare the speakers in one further call

A malformed or failed call for one speaker degrades to a neutral result for
that speaker only.  The pass as a whole fails only when no speaker could be
reached on either the primary or the fallback model.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

import openai
from langchain_core.messages import HumanMessage, SystemMessage

from debatelens.debate.parsing import (
    neutral_analysis,
    neutral_comparison,
    normalize_analysis,
    normalize_comparison,
    parse_json_payload,
)
from debatelens.debate.prompts import (
    CONNECTION_PROMPT,
    SYSTEM_PROMPT,
    build_comparison_prompt,
    build_speaker_prompt,
)
from debatelens.debate.segmenter import segment_speakers
from debatelens.errors import ReasoningError, ReasoningUnavailableError
from debatelens.models import Comparison, DebateAssessment, SpeakerAnalysis

log = logging.getLogger(__name__)

# Network-level faults are retried by the client itself; switching model won't help
_TRANSIENT_ERRORS = (
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)


def is_model_error(exc: BaseException) -> bool:
    """True when a failure is attributable to the chosen model rather than the network."""
    if isinstance(exc, _TRANSIENT_ERRORS):
        return False
    if isinstance(exc, openai.NotFoundError):
        return True
    return "model" in str(exc).lower()


async def _throttled_invoke(coro, semaphore: asyncio.Semaphore):
    """Run a coroutine under a semaphore."""
    async with semaphore:
        return await coro


@dataclass
class _Scored:
    analysis: SpeakerAnalysis
    reached_backend: bool
    model: Optional[str] = None
    tried: tuple[str, ...] = ()


class DebateJudge:
    """Calls the reasoning backend for scoring and comparison.

    ``llm_factory`` maps a model identifier to a chat model exposing
    ``ainvoke(messages)``; see ``debatelens.config.build_chat_model``.
    """

    def __init__(
        self,
        llm_factory: Callable[[str], Any],
        primary_model: str,
        fallback_model: Optional[str] = None,
        max_concurrency: int = 10,
    ):
        self._llm_factory = llm_factory
        self.primary_model = primary_model
        self.fallback_model = fallback_model if fallback_model != primary_model else None
        self.max_concurrency = max_concurrency
        self._clients: dict[str, Any] = {}

    # -----------------------------------------------------------------------
    # Backend calls
    # -----------------------------------------------------------------------

    def _client(self, model: str) -> Any:
        if model not in self._clients:
            self._clients[model] = self._llm_factory(model)
        return self._clients[model]

    async def _call(self, prompt: str, model: str) -> str:
        response = await self._client(model).ainvoke(
            [SystemMessage(content=SYSTEM_PROMPT), HumanMessage(content=prompt)]
        )
        content = getattr(response, "content", None)
        if not isinstance(content, str):
            raise ReasoningError(f"Invalid response from {model}")
        return content

    async def _call_with_fallback(
        self,
        prompt: str,
        label: str,
        tried: Optional[list[str]] = None,
    ) -> tuple[str, str]:
        """Call the primary model, retrying once on the fallback for model-selection errors.

        Every model actually called is appended to ``tried``.
        """
        tried = tried if tried is not None else []
        tried.append(self.primary_model)
        try:
            return await self._call(prompt, self.primary_model), self.primary_model
        except Exception as e:
            if not self.fallback_model or not is_model_error(e):
                raise
            log.warning(
                "%s: model %s failed (%s), retrying with %s",
                label, self.primary_model, e, self.fallback_model,
            )
        tried.append(self.fallback_model)
        return await self._call(prompt, self.fallback_model), self.fallback_model

    # -----------------------------------------------------------------------
    # Per-speaker scoring
    # -----------------------------------------------------------------------

    async def _score_speaker(self, speaker: str, text: str, topic: str) -> _Scored:
        prompt = build_speaker_prompt(speaker, text, topic)
        tried: list[str] = []
        try:
            raw, model = await self._call_with_fallback(prompt, speaker, tried)
        except Exception as e:
            log.warning("Scoring %s failed (%s), using neutral scores", speaker, e)
            return _Scored(
                neutral_analysis(speaker, "reasoning backend unavailable"), False, tried=tuple(tried)
            )

        # blank replies count as unparseable, not unreachable
        payload = parse_json_payload(raw)
        if payload is None:
            log.warning("Could not parse the analysis for %s, using neutral scores", speaker)
            return _Scored(
                neutral_analysis(speaker, "response could not be parsed"), True, model, tuple(tried)
            )

        return _Scored(normalize_analysis(payload, speaker), True, model, tuple(tried))

    async def score_speakers(
        self,
        speaker_texts: dict[str, str],
        topic: str,
    ) -> list[SpeakerAnalysis]:
        """Score every speaker concurrently, in participant order.

        Raises ``ReasoningUnavailableError`` when no call reached the backend.
        """
        scored = await self._score_all(speaker_texts, topic)
        return [s.analysis for s in scored]

    async def _score_all(self, speaker_texts: dict[str, str], topic: str) -> list[_Scored]:
        semaphore = asyncio.Semaphore(self.max_concurrency)
        tasks = [
            _throttled_invoke(self._score_speaker(speaker, text, topic), semaphore)
            for speaker, text in speaker_texts.items()
        ]
        scored: list[_Scored] = list(await asyncio.gather(*tasks))

        if scored and not any(s.reached_backend for s in scored):
            tried = list(dict.fromkeys(m for s in scored for m in s.tried))
            raise ReasoningUnavailableError(
                "Reasoning backend unavailable: every speaker failed on " + " and ".join(tried)
            )
        return scored

    # -----------------------------------------------------------------------
    # Comparison
    # -----------------------------------------------------------------------

    async def compare(
        self,
        analyses: list[SpeakerAnalysis],
        topic: str,
        participants: Optional[Sequence[str]] = None,
    ) -> Comparison:
        """Cross-speaker synthesis.  Never raises: failures give a neutral comparison."""
        names = list(participants) if participants is not None else [a.speaker for a in analyses]
        prompt = build_comparison_prompt(analyses, topic)
        try:
            raw, _ = await self._call_with_fallback(prompt, "comparison")
        except Exception as e:
            log.warning("Comparison failed (%s), using neutral comparison", e)
            return neutral_comparison("reasoning backend error")

        payload = parse_json_payload(raw)
        if payload is None:
            log.warning("Could not parse the comparison, using neutral comparison")
            return neutral_comparison("response could not be parsed")
        return normalize_comparison(payload, names)

    # -----------------------------------------------------------------------
    # Full pass
    # -----------------------------------------------------------------------

    async def analyze_debate(
        self,
        full_text: str,
        participants: Sequence[str],
        topic: str = "",
    ) -> DebateAssessment:
        """Segment, score every participant in parallel, then compare."""
        started = time.monotonic()
        speaker_texts = segment_speakers(full_text, participants)
        log.info("Scoring %d speaker(s) with %s", len(speaker_texts), self.primary_model)

        scored = await self._score_all(speaker_texts, topic)
        analyses = [s.analysis for s in scored]
        comparison = await self.compare(analyses, topic, list(speaker_texts))

        models_used = sorted({s.model for s in scored if s.model})
        return DebateAssessment(
            individual=analyses,
            comparison=comparison,
            metadata={
                "model_used": ", ".join(models_used) or self.primary_model,
                "total_length": len(full_text),
                "processing_time": round(time.monotonic() - started, 2),
            },
        )

    async def test_connection(self) -> bool:
        """True if the primary model answers a trivial prompt."""
        try:
            content = await self._call(CONNECTION_PROMPT, self.primary_model)
        except Exception as e:
            log.error("Reasoning backend connection test failed: %s", e)
            return False
        if not content.strip():
            log.error("Reasoning backend connection test failed: empty reply from %s", self.primary_model)
            return False
        return True
