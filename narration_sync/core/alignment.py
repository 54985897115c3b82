"""Alignment resolver: map timing evidence onto a chunk's words.

WHY: Three sources can describe when each word is spoken: provider
character timings, acoustic speech segments, and the weight-model
estimate. Each needs its own mapping onto the word list, but the playback
controller should only ever see one answer: a list of AlignmentResult
rows parallel to the chunk's words.

HOW: One resolver function per TimingSource variant, selected through the
_RESOLVERS registry by resolve(). apply_alignment() then copies the rows
onto the chunk's existing WordUnit objects so global indices survive.

RULES:
- Output is always parallel to the input words (same length, same order)
- Provider match → 1.0; fallback span → 0.5, logged, never raised
- Segments == words → 1.0; more segments → 0.8; fewer → 0.7; none → 0.5
- A character mismatch skips the word's expected character count and
  carries on; later words are not re-synchronized
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Sequence, Type

from narration_sync import config
from narration_sync.core.ir import (
    AcousticSegment,
    AcousticTiming,
    AlignmentResult,
    CharacterAlignment,
    Chunk,
    EstimatedTiming,
    ProviderTiming,
    TimingKind,
    TimingSource,
)
from narration_sync.core.weights import distribute

logger = logging.getLogger(__name__)

PROVIDER_CONFIDENCE = 1.0
EXACT_SEGMENT_CONFIDENCE = 1.0
MERGED_SEGMENT_CONFIDENCE = 0.8
SPLIT_SEGMENT_CONFIDENCE = 0.7
ESTIMATE_CONFIDENCE = 0.5

# Smallest span apply_alignment() will write, so end > start always holds.
MIN_WORD_SPAN_S = 0.01


# ---------------------------------------------------------------------------
# Provider character timings
# ---------------------------------------------------------------------------


def align_from_characters(
    words: Sequence[str],
    characters: Sequence[str],
    char_start: Sequence[float],
    char_end: Sequence[float],
    fallback_s: float = config.FALLBACK_WORD_DURATION_S,
) -> List[AlignmentResult]:
    """Convert provider character timings into word spans.

    WHY: Providers that return alignment do so per character, including
    the spaces. The reader needs per-word spans.

    HOW: Whitespace characters are dropped. Then each word consumes exactly
    len(word) characters from the remaining stream, comparing
    case-insensitively. A fully matched word spans
    [min(char starts), max(char ends)].

    RULES:
    - On a mismatch, or when characters run out, the word gets a fallback
      span that starts at the previous word's end (0.0 for the first word),
      lasts fallback_s, and has confidence 0.5
    - The character cursor advances by len(word) either way
    - Mismatched array lengths → every word falls back
    """
    if not (len(characters) == len(char_start) == len(char_end)):
        logger.warning(
            "Character alignment arrays differ in length (%d/%d/%d); "
            "using fallback spans for all %d words",
            len(characters), len(char_start), len(char_end), len(words),
        )
        stream = []
    else:
        stream = [
            (ch, float(s), float(e))
            for ch, s, e in zip(characters, char_start, char_end)
            if ch.strip()
        ]

    results: List[AlignmentResult] = []
    cursor = 0

    for word in words:
        expected = len(word)
        span = stream[cursor:cursor + expected]
        matched = len(span) == expected and all(
            ch.lower() == want.lower() for (ch, _, _), want in zip(span, word)
        )

        if matched and span:
            results.append(AlignmentResult(
                text=word,
                start=min(s for _, s, _ in span),
                end=max(e for _, _, e in span),
                confidence=PROVIDER_CONFIDENCE,
            ))
        else:
            start = results[-1].end if results else 0.0
            logger.warning(
                "Alignment mismatch for word %r at character %d; "
                "using %.2fs fallback span", word, cursor, fallback_s,
            )
            results.append(AlignmentResult(
                text=word,
                start=start,
                end=start + fallback_s,
                confidence=ESTIMATE_CONFIDENCE,
            ))

        cursor += expected

    return results


# ---------------------------------------------------------------------------
# Acoustic segments
# ---------------------------------------------------------------------------


def align_from_segments(
    segments: Sequence[AcousticSegment],
    words: Sequence[str],
    total_duration: float,
) -> List[AlignmentResult]:
    """Map detected speech segments onto words.

    WHY: Segment boundaries are real pauses in the audio, but the segmenter
    cannot know how many words a segment holds. The count ratio decides how
    segments and words are grouped.

    HOW:
      equal counts  → pair in order
      more segments → contiguous segment groups per word, span first→last
      fewer         → contiguous word groups per segment, weight-split inside
      none          → distribute() over total_duration

    RULES:
    - Group boundaries use integer floor math: group i covers
      [i*A//B, (i+1)*A//B), so every item lands in exactly one group
    """
    n_words = len(words)
    n_segments = len(segments)

    if n_words == 0:
        return []

    if n_segments == 0:
        logger.info(
            "No speech segments detected; estimating %d words over %.2fs",
            n_words, total_duration,
        )
        return _estimate(words, total_duration)

    if n_segments == n_words:
        return [
            AlignmentResult(
                text=word,
                start=seg.start,
                end=seg.end,
                confidence=EXACT_SEGMENT_CONFIDENCE,
            )
            for word, seg in zip(words, segments)
        ]

    if n_segments > n_words:
        results = []
        for i, word in enumerate(words):
            group = segments[i * n_segments // n_words:(i + 1) * n_segments // n_words]
            results.append(AlignmentResult(
                text=word,
                start=group[0].start,
                end=group[-1].end,
                confidence=MERGED_SEGMENT_CONFIDENCE,
            ))
        return results

    results = []
    for j, seg in enumerate(segments):
        group = list(words[j * n_words // n_segments:(j + 1) * n_words // n_segments])
        if not group:
            continue
        span = max(seg.end - seg.start, MIN_WORD_SPAN_S * len(group))
        for unit in distribute(group, span, offset=seg.start):
            results.append(AlignmentResult(
                text=unit.text,
                start=unit.start_time,
                end=unit.end_time,
                confidence=SPLIT_SEGMENT_CONFIDENCE,
            ))
    return results


def _estimate(words: Sequence[str], total_duration: float) -> List[AlignmentResult]:
    return [
        AlignmentResult(
            text=unit.text,
            start=unit.start_time,
            end=unit.end_time,
            confidence=ESTIMATE_CONFIDENCE,
        )
        for unit in distribute(list(words), total_duration)
    ]


# ---------------------------------------------------------------------------
# Dispatch by timing source
# ---------------------------------------------------------------------------


def _resolve_estimated(words: Sequence[str], timing: EstimatedTiming) -> List[AlignmentResult]:
    return _estimate(words, timing.duration_s)


def _resolve_acoustic(words: Sequence[str], timing: AcousticTiming) -> List[AlignmentResult]:
    return align_from_segments(timing.segments, words, timing.duration_s)


def _resolve_provider(words: Sequence[str], timing: ProviderTiming) -> List[AlignmentResult]:
    alignment: CharacterAlignment = timing.alignment
    return align_from_characters(
        words, alignment.characters, alignment.char_start, alignment.char_end,
    )


_RESOLVERS: Dict[Type, Callable[[Sequence[str], TimingSource], List[AlignmentResult]]] = {
    EstimatedTiming: _resolve_estimated,
    AcousticTiming: _resolve_acoustic,
    ProviderTiming: _resolve_provider,
}


def resolve(words: Sequence[str], timing: TimingSource) -> List[AlignmentResult]:
    """Resolve *words* against whichever timing source is available."""
    try:
        resolver = _RESOLVERS[type(timing)]
    except KeyError:
        raise TypeError(f"Unknown timing source: {timing!r}") from None
    return resolver(words, timing)


# ---------------------------------------------------------------------------
# Applying results to a chunk
# ---------------------------------------------------------------------------


def apply_alignment(
    chunk: Chunk,
    results: Sequence[AlignmentResult],
    duration: float,
    kind: TimingKind,
) -> bool:
    """Copy resolved timings onto *chunk*'s words in place.

    WHY: WordUnit objects are shared with the renderer and carry the
    document-wide index. Only their times may change.

    HOW: Each row's start/end is written to the word at the same position.
    Spans are widened to at least MIN_WORD_SPAN_S. The last word is then
    stretched (or the duration extended) so that it ends exactly at the
    chunk's duration.

    RULES:
    - Returns False and leaves the chunk untouched if the row count does
      not match the word count
    - text and global_index are never written
    """
    if len(results) != len(chunk.words) or not results:
        logger.warning(
            "Discarding alignment for %s: %d results for %d words",
            chunk.id, len(results), len(chunk.words),
        )
        return False

    for word, row in zip(chunk.words, results):
        word.start_time = max(0.0, row.start)
        word.end_time = max(row.end, word.start_time + MIN_WORD_SPAN_S)

    last = chunk.words[-1]
    final_duration = max(duration, last.end_time)
    last.end_time = final_duration

    chunk.duration_s = final_duration
    chunk.timing_source = kind
    return True


# ---------------------------------------------------------------------------
# Quality summary
# ---------------------------------------------------------------------------


@dataclass
class TimingQuality:
    """Human-readable summary of how trustworthy a timing table is."""

    quality: str
    accuracy: float
    message: str


def timing_quality(results: Sequence[AlignmentResult]) -> TimingQuality:
    """Summarize *results* as excellent, good or fair.

    RULES:
    - excellent: every span valid and every confidence ≥ 0.95
    - good: mean confidence ≥ 0.7
    - fair: anything else (including an empty table)
    """
    if not results:
        return TimingQuality("fair", 0.0, "No timing information")

    mean = sum(r.confidence for r in results) / len(results)
    accuracy = round(mean * 100.0, 1)
    valid = all(r.end > r.start for r in results)

    if valid and all(r.confidence >= 0.95 for r in results):
        return TimingQuality("excellent", accuracy, "Word timings from the speech engine")
    if mean >= 0.7:
        return TimingQuality("good", accuracy, "Word timings from audio analysis")
    return TimingQuality("fair", accuracy, "Estimated word timings")
