"""
Parsing, repair and normalisation of reasoning-backend responses.

Models wrap JSON in code fences, prepend chatter, or drift out of range.
``parse_json_payload`` recovers the object if there is one; the ``normalize_*``
functions coerce whatever came back into a structurally complete result.
Both normalisers are idempotent.
"""

from __future__ import annotations

import json
import math
import re
from typing import Any, Optional, Sequence

from debatelens.models import (
    CATEGORY_KEYS,
    MAX_SCORE,
    MIN_SCORE,
    NEUTRAL_SCORE,
    UNDETERMINED,
    Comparison,
    SpeakerAnalysis,
)

MISSING_EXPLANATION = "Explanation not available"
DEFAULT_ASSESSMENT = "Analysis completed"

_FENCE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _strip_fences(raw: str) -> str:
    return _FENCE.sub("", raw.strip()).strip()


def _loads_object(candidate: str) -> Optional[dict[str, Any]]:
    try:
        value = json.loads(candidate)
    except (json.JSONDecodeError, ValueError):
        return None
    return value if isinstance(value, dict) else None


def _largest_fragment(raw: str) -> Optional[dict[str, Any]]:
    """Longest decodable ``{...}`` object embedded anywhere in ``raw``."""
    start, end = raw.find("{"), raw.rfind("}")
    if start != -1 and end > start:
        greedy = _loads_object(raw[start:end + 1])
        if greedy is not None:
            return greedy

    decoder = json.JSONDecoder()
    best: Optional[dict[str, Any]] = None
    best_len = 0
    for match in re.finditer(r"\{", raw):
        try:
            value, stop = decoder.raw_decode(raw, match.start())
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict) and stop - match.start() > best_len:
            best, best_len = value, stop - match.start()
    return best


def parse_json_payload(raw: Any) -> Optional[dict[str, Any]]:
    """Strict parse, then fence stripping, then the largest embedded fragment."""
    if not isinstance(raw, str) or not raw.strip():
        return None
    return (
        _loads_object(raw)
        or _loads_object(_strip_fences(raw))
        or _largest_fragment(raw)
    )


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------

def normalize_score(value: Any) -> float:
    """Score in [1, 10] rounded to one decimal; anything else becomes 5.0."""
    if isinstance(value, bool):
        return NEUTRAL_SCORE
    try:
        score = float(value)
    except (TypeError, ValueError):
        return NEUTRAL_SCORE
    if math.isnan(score) or score < MIN_SCORE or score > MAX_SCORE:
        return NEUTRAL_SCORE
    return round(score, 1)


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if isinstance(item, (str, int, float)) and str(item).strip()]


def _text(value: Any, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def normalize_analysis(data: Any, speaker: str) -> SpeakerAnalysis:
    """Coerce a parsed payload (or a SpeakerAnalysis) into a complete SpeakerAnalysis.

    The speaker name is always the expected participant, whatever the model wrote.
    """
    if isinstance(data, SpeakerAnalysis):
        data = data.model_dump()
    if not isinstance(data, dict):
        data = {}

    raw_scores = data.get("scores") if isinstance(data.get("scores"), dict) else {}
    raw_explanations = data.get("explanations") if isinstance(data.get("explanations"), dict) else {}

    return SpeakerAnalysis(
        speaker=speaker,
        scores={key: normalize_score(raw_scores.get(key)) for key in CATEGORY_KEYS},
        explanations={
            key: _text(raw_explanations.get(key), MISSING_EXPLANATION) for key in CATEGORY_KEYS
        },
        highlights=_string_list(data.get("highlights")),
        improvements=_string_list(data.get("improvements")),
        overall_assessment=_text(data.get("overall_assessment"), DEFAULT_ASSESSMENT),
    )


def neutral_analysis(speaker: str, reason: str) -> SpeakerAnalysis:
    """Midpoint scores with placeholders, flagged as a failed analysis."""
    return SpeakerAnalysis(
        speaker=speaker,
        scores={key: NEUTRAL_SCORE for key in CATEGORY_KEYS},
        explanations={key: "Analysis not available" for key in CATEGORY_KEYS},
        highlights=["Analysis in progress"],
        improvements=["Retry the analysis"],
        overall_assessment=(
            f"Automatic analysis failed ({reason}). The scores shown are default values."
        ),
    )


def _resolve_name(value: Any, participants: Sequence[str]) -> Optional[str]:
    if not isinstance(value, str):
        return None
    wanted = value.strip().casefold()
    for name in participants:
        if name.casefold() == wanted:
            return name
    return None


def normalize_comparison(data: Any, participants: Sequence[str]) -> Comparison:
    """Keep only winners that are actual participants (case-insensitive match)."""
    if isinstance(data, Comparison):
        data = data.model_dump()
    if not isinstance(data, dict):
        data = {}

    raw_winners = data.get("category_winners") if isinstance(data.get("category_winners"), dict) else {}
    category_winners = {}
    for key in CATEGORY_KEYS:
        name = _resolve_name(raw_winners.get(key), participants)
        if name is not None:
            category_winners[key] = name

    return Comparison(
        winner_overall=_resolve_name(data.get("winner_overall"), participants) or UNDETERMINED,
        category_winners=category_winners,
        summary=_text(data.get("summary"), ""),
        key_differences=_string_list(data.get("key_differences")),
    )


def neutral_comparison(reason: str) -> Comparison:
    return Comparison(
        winner_overall=UNDETERMINED,
        category_winners={},
        summary=f"Comparison not available ({reason}).",
        key_differences=[],
    )
