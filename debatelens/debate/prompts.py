"""
Prompt templates for speaker scoring, comparison and the health check.
"""

from __future__ import annotations

import json

from debatelens.models import CATEGORIES, SpeakerAnalysis

SYSTEM_PROMPT = (
    "You are an expert debate analyst. You assess rhetorical quality "
    "objectively and always answer with a single valid JSON object. "
    "Give differentiated scores that reflect real strengths and weaknesses; "
    "avoid handing out identical scores across categories."
)

CONNECTION_PROMPT = "Reply only with the word OK."


def _category_block() -> str:
    return "\n".join(
        f"- {key} ({label}): {description}"
        for key, (label, description) in CATEGORIES.items()
    )


def _schema_example(speaker: str) -> str:
    example = {
        "speaker": speaker,
        "scores": {key: "<number 1-10>" for key in CATEGORIES},
        "explanations": {key: "<one or two sentences>" for key in CATEGORIES},
        "highlights": ["<strong moment>", "<strong moment>"],
        "improvements": ["<concrete suggestion>", "<concrete suggestion>"],
        "overall_assessment": "<short paragraph>",
    }
    return json.dumps(example, indent=2, ensure_ascii=False)


def build_speaker_prompt(speaker: str, text: str, topic: str) -> str:
    """Fixed-schema evaluation prompt for one participant."""
    topic_line = topic.strip() or "Not specified"
    return f"""Analyse the contribution of **{speaker}** to a debate.

DEBATE TOPIC: {topic_line}

TEXT ATTRIBUTED TO {speaker.upper()}:
\"\"\"
{text}
\"\"\"

Score the speaker from 1 (very poor) to 10 (outstanding) on each category:
{_category_block()}

Scoring guidance:
- Use the whole scale. A 5 is average, 8+ is genuinely strong, 3 or below is weak.
- Scores may use one decimal place (e.g. 6.5).
- Base every score on evidence from the text; quote or paraphrase it in the explanation.
- The attribution of text to speakers is automatic and may be imperfect. Judge what is there.

Respond with ONLY a JSON object in exactly this shape (no prose, no markdown):
{_schema_example(speaker)}
"""


def build_comparison_prompt(
    analyses: list[SpeakerAnalysis],
    topic: str,
) -> str:
    """Prompt for the cross-participant synthesis."""
    rows = []
    for a in analyses:
        scores = ", ".join(f"{key}={a.scores.get(key)}" for key in CATEGORIES)
        rows.append(f"- {a.speaker}: {scores} (average {a.average})\n  Assessment: {a.overall_assessment}")
    participants = ", ".join(a.speaker for a in analyses)
    winners_shape = ", ".join(f'"{key}": "<participant name>"' for key in CATEGORIES)
    results_block = "\n".join(rows)
    topic_line = topic.strip() or "Not specified"

    return f"""Compare the performance of the participants in a debate.

DEBATE TOPIC: {topic_line}
PARTICIPANTS: {participants}

INDIVIDUAL RESULTS:
{results_block}

Decide who performed best overall and in each category.  Winner names must be
spelled exactly as listed in PARTICIPANTS.

Respond with ONLY a JSON object in exactly this shape (no prose, no markdown):
{{
  "winner_overall": "<participant name>",
  "category_winners": {{{winners_shape}}},
  "summary": "<one paragraph comparing the participants>",
  "key_differences": ["<difference>", "<difference>", "<difference>"]
}}
"""
