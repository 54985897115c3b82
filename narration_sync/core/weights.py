"""Syllable and punctuation weight model for pre-audio timing estimates.

WHY: Before real audio exists (and whenever acoustic or provider timings
are unusable) the reader still needs a plausible word→time table. Spreading
a duration evenly across words makes long words and sentence pauses drift
badly; weighting each word by how long it takes to say gets much closer.

HOW: Each word's weight is its syllable count plus a pause weight keyed by
its trailing punctuation, with small adjustments for very long and very
short words. distribute() normalizes the weights so they sum to the
requested duration and lays the spans out back to back.

RULES:
- Sentence end (. ! ?) → +3.0, clause (; :) → +2.0, comma → +1.5
- Stripped length > 10 → +0.5; stripped length ≤ 2 → −0.2
- Every weight is floored at 0.3
- distribute() is deterministic: same input → same spans, bit for bit
- Spans are contiguous and the last one ends exactly at offset + duration
"""

from __future__ import annotations

import math
import re
from typing import List, Sequence

from narration_sync.core.ir import WordUnit


# Silent trailing "e"/"es"/"ed" endings, dropped before counting vowels.
_SILENT_ENDING_RE = re.compile(r"(?:[^laeiouy]es|ed|[^laeiouy]e)$")

_VOWEL_RUN_RE = re.compile(r"[aeiouy]+")

_NON_LETTER_RE = re.compile(r"[^a-z]")

# Closing quotes and brackets that may follow the real punctuation mark,
# e.g. `said."` or `(see below),`.
_CLOSERS = "\"'”’»)]}"

_SENTENCE_END = frozenset(".!?")
_CLAUSE = frozenset(";:")
_COMMA = frozenset(",")

_PUNCTUATION = ".,!?;:…—–-"

SENTENCE_PAUSE = 3.0
CLAUSE_PAUSE = 2.0
COMMA_PAUSE = 1.5
LONG_WORD_BONUS = 0.5
SHORT_WORD_PENALTY = 0.2
MIN_WEIGHT = 0.3


def count_syllables(word: str) -> int:
    """Estimate the syllable count of a single word.

    WHY: Syllables are the best cheap proxy for how long a word takes to
    speak. A dictionary lookup would be more accurate but is out of scope.

    HOW: Lower-case and keep letters only. Drop a silent trailing e, drop a
    word-initial y (it is a consonant there), then count runs of vowels.

    RULES:
    - Empty (or letterless) word → 0
    - Words of two letters or fewer → 1
    - Any other word → at least 1
    """
    letters = _NON_LETTER_RE.sub("", word.lower())
    if not letters:
        return 0
    if len(letters) <= 2:
        return 1

    letters = _SILENT_ENDING_RE.sub("", letters)
    if letters.startswith("y"):
        letters = letters[1:]

    return max(1, len(_VOWEL_RUN_RE.findall(letters)))


def _trailing_marks(word: str) -> str:
    """Return the punctuation run at the end of *word*, closers skipped."""
    stripped = word.rstrip(_CLOSERS)
    end = len(stripped)
    start = end
    while start > 0 and stripped[start - 1] in _PUNCTUATION:
        start -= 1
    return stripped[start:end]


def pause_weight(word: str) -> float:
    """Return the pause weight implied by a word's trailing punctuation.

    The strongest mark in the trailing run wins, so "really?!" pauses like a
    sentence end and "etc.," pauses like one too.
    """
    marks = set(_trailing_marks(word))
    if marks & _SENTENCE_END:
        return SENTENCE_PAUSE
    if marks & _CLAUSE:
        return CLAUSE_PAUSE
    if marks & _COMMA:
        return COMMA_PAUSE
    return 0.0


def _core(word: str) -> str:
    """Strip surrounding punctuation, quotes and brackets."""
    return word.strip(_PUNCTUATION + _CLOSERS + "\"'“‘«([{")


def word_weight(word: str) -> float:
    """Return the relative speaking-duration weight of *word*.

    WHY: distribute() needs one positive number per word that is roughly
    proportional to its spoken length, pause included.

    HOW: syllables + pause weight + length adjustment, floored.

    RULES:
    - Always ≥ 0.3, so no word ever collapses to a zero-length span
    - Punctuation is stripped before syllables and length are measured
    """
    core = _core(word)
    weight = float(count_syllables(core)) + pause_weight(word)

    if len(core) > 10:
        weight += LONG_WORD_BONUS
    elif len(core) <= 2:
        weight -= SHORT_WORD_PENALTY

    return max(MIN_WEIGHT, weight)


def distribute(
    words: Sequence[str],
    total_duration: float,
    start_index: int = 0,
    offset: float = 0.0,
) -> List[WordUnit]:
    """Lay *words* out across *total_duration* in proportion to their weights.

    WHY: This is the fallback timing for every path. The chunker uses it for
    pre-audio estimates, the resolver for empty segmentation and for
    splitting one acoustic segment across several words.

    HOW: Each word gets ``weight / sum(weights) * total_duration`` seconds.
    Start times are the running sum from *offset*. The final end time is
    pinned to ``offset + total_duration`` so float error never leaves a
    gap before the end of the audio.

    RULES:
    - Empty word list → []
    - total_duration must be > 0 (ValueError otherwise)
    - global_index runs from start_index upward
    - Word text is carried over unchanged
    """
    if not words:
        return []
    if total_duration <= 0:
        raise ValueError(
            f"total_duration must be positive, got {total_duration!r}"
        )

    weights = [word_weight(w) for w in words]
    total_weight = sum(weights)
    end_of_span = offset + total_duration

    units: List[WordUnit] = []
    cursor = offset
    last = len(words) - 1
    for i, (text, weight) in enumerate(zip(words, weights)):
        start = cursor
        if i == last:
            end = end_of_span
        else:
            end = start + weight / total_weight * total_duration
        units.append(WordUnit(
            text=text,
            start_time=start,
            end_time=end,
            global_index=start_index + i,
        ))
        cursor = end

    return units


def estimate_duration(word_count: int, words_per_minute: float) -> float:
    """Estimate how many seconds *word_count* words take at a speaking rate.

    Rounded up to whole seconds; never below one second for a non-empty
    chunk, so distribute() always has a positive span to fill.
    """
    if word_count <= 0:
        return 0.0
    if words_per_minute <= 0:
        raise ValueError(
            f"words_per_minute must be positive, got {words_per_minute!r}"
        )
    return float(max(1, math.ceil(word_count * 60.0 / words_per_minute)))
