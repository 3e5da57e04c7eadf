"""
Speaker segmentation.

Transcripts arrive as one flat string with no diarisation, so attribution is
heuristic: blocks are matched against name patterns ("Alice:", "… Alice …:",
first-name prefix, bare mention) and unmatched blocks inherit the current
speaker.  When attribution is too thin to score, sentences are dealt out
round-robin instead so that no two participants are ever scored on the same
text.
"""

from __future__ import annotations

import logging
import math
import re
from functools import lru_cache
from typing import Optional, Sequence

log = logging.getLogger(__name__)

MIN_SPEAKER_CHARS = 50

_PARAGRAPH_SPLIT = re.compile(r"\n\s*\n")
# Sentence terminator followed by a letter; only uppercase starts open a block
_SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+(?=[^\W\d_])")
_SENTENCE = re.compile(r"[^.!?]+[.!?]*")


# ---------------------------------------------------------------------------
# Name matching
# ---------------------------------------------------------------------------

@lru_cache(maxsize=256)
def _name_patterns(name: str) -> tuple[re.Pattern[str], ...]:
    """Ordered patterns for one participant, most specific first."""
    full = re.escape(name)
    first = re.escape(name.split()[0])
    return (
        re.compile(rf"^\s*{full}\s*[:;]", re.IGNORECASE),
        re.compile(rf"(?<!\w){full}(?!\w).*?[:;]", re.IGNORECASE),
        re.compile(rf"^\s*{first}\s*[:;]", re.IGNORECASE),
        re.compile(rf"(?<!\w){full}(?!\w)", re.IGNORECASE),
    )


def match_speaker(block: str, participants: Sequence[str]) -> Optional[str]:
    """Return the participant a block is attributed to, or None.

    Participants are tried in list order, so when two names both match the
    block the one listed first wins.
    """
    for name in participants:
        if not name.strip():
            continue
        if any(p.search(block) for p in _name_patterns(name.strip())):
            return name
    return None


# ---------------------------------------------------------------------------
# Splitting
# ---------------------------------------------------------------------------

def split_blocks(text: str) -> list[str]:
    """Paragraph-like blocks: blank-line separated, then split at sentence starts."""
    blocks: list[str] = []
    for paragraph in _PARAGRAPH_SPLIT.split(text):
        current = ""
        for piece in _SENTENCE_BREAK.split(paragraph.strip()):
            if current and piece[:1].isupper():
                blocks.append(current)
                current = piece
            else:
                current = f"{current} {piece}" if current else piece
        if current.strip():
            blocks.append(current.strip())
    return blocks


def split_sentences(text: str) -> list[str]:
    return [s.strip() for s in _SENTENCE.findall(text) if s.strip()]


def _even_slices(text: str, n: int) -> list[str]:
    compact = text.strip()
    size = max(1, math.ceil(len(compact) / n))
    return [compact[i:i + size] for i in range(0, len(compact), size)]


def _distinct(buffers: dict[str, str]) -> dict[str, str]:
    """Label any buffer that is byte-identical to an earlier one with its owner."""
    seen: set[str] = set()
    for name, text in buffers.items():
        if text in seen:
            text = f"({name}) {text}".strip()
            buffers[name] = text
        seen.add(text)
    return buffers


# ---------------------------------------------------------------------------
# Segmentation
# ---------------------------------------------------------------------------

def round_robin_split(text: str, participants: Sequence[str]) -> dict[str, str]:
    """Deal sentences to participants by index modulo participant count.

    Falls back to words, then to even character slices, when there are fewer
    sentences than participants.
    """
    names = _unique(participants)
    units = split_sentences(text)
    if len(units) < len(names):
        units = text.split()
    if len(units) < len(names):
        units = _even_slices(text, len(names))

    buckets: list[list[str]] = [[] for _ in names]
    for i, unit in enumerate(units):
        buckets[i % len(names)].append(unit)

    return _distinct({name: " ".join(bucket) for name, bucket in zip(names, buckets)})


def segment_speakers(text: str, participants: Sequence[str]) -> dict[str, str]:
    """Partition a flat transcript into participant name -> attributed text."""
    names = _unique(participants)
    if not names:
        raise ValueError("At least one participant is required")

    buffers: dict[str, list[str]] = {name: [] for name in names}
    unassigned: list[str] = []
    current: Optional[str] = None

    for block in split_blocks(text):
        speaker = match_speaker(block, names)
        if speaker is not None:
            current = speaker
        if current is None:
            unassigned.append(block)
        else:
            buffers[current].append(block)

    attributed = {name: " ".join(parts) for name, parts in buffers.items()}

    if not any(attributed.values()):
        log.info("No speaker names found in transcript, distributing sentences round-robin")
        return round_robin_split(text, names)

    if unassigned:
        # Load-balance rather than guess: give the leftovers to the quietest speaker
        target = min(names, key=lambda n: len(attributed[n]))
        attributed[target] = " ".join(filter(None, [attributed[target], *unassigned]))

    short = [n for n, t in attributed.items() if len(t) < MIN_SPEAKER_CHARS]
    if short:
        log.info(
            "Attributed text too short for %s (< %d chars), distributing sentences round-robin",
            ", ".join(short), MIN_SPEAKER_CHARS,
        )
        return round_robin_split(text, names)

    if len(set(attributed.values())) < len(attributed):
        return round_robin_split(text, names)

    return attributed


def _unique(participants: Sequence[str]) -> list[str]:
    return list(dict.fromkeys(p.strip() for p in participants if p and p.strip()))
