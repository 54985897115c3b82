"""Text chunking, pre-audio estimates, and word lookup by time.

WHY: Synthesis providers limit request size, and waiting for one huge
request delays first audio. The source text is cut into chunks that are
synthesized independently, while every word keeps a document-wide index so
the reader highlights one continuous text.

HOW: Split on whitespace runs, slice into groups of at most
words_per_chunk, and give each chunk an estimated duration at the
configured speaking rate. The weight model turns that duration into a
word table. A binary search over start times maps a playback clock back to
the active word.

RULES:
- Chunk ids are "chunk-0", "chunk-1", ... in document order
- Global indices are 0..N-1 with no gaps or repeats, N = total words
- Empty or whitespace-only text → []
- words_per_chunk < 1 → ValueError
"""

from __future__ import annotations

import logging
from typing import List, Sequence

from narration_sync import config
from narration_sync.core.ir import Chunk, TimingKind, WordUnit
from narration_sync.core.weights import distribute, estimate_duration

logger = logging.getLogger(__name__)


def split_words(text: str) -> List[str]:
    """Split *text* on whitespace runs, dropping empty pieces."""
    return text.split()


def chunk_text(
    full_text: str,
    words_per_chunk: int = config.WORDS_PER_CHUNK,
    words_per_minute: float = config.WORDS_PER_MINUTE,
) -> List[Chunk]:
    """Split *full_text* into chunks with estimated word timings.

    WHY: The playback controller needs a complete, indexed word table before
    any audio has been requested, so the reader can render and seek at once.

    HOW: Words are sliced in order. Each slice becomes a Chunk whose text is
    the words joined by single spaces and whose duration is
    estimate_duration(len(slice)). distribute() lays the words out with
    global indices continuing from the previous chunk.

    RULES:
    - A budget at or above the word count yields exactly one chunk
    - Every chunk starts with timing_source=ESTIMATED and no audio
    """
    if words_per_chunk < 1:
        raise ValueError(
            f"words_per_chunk must be at least 1, got {words_per_chunk!r}"
        )

    all_words = split_words(full_text)
    chunks: List[Chunk] = []

    for n, i in enumerate(range(0, len(all_words), words_per_chunk)):
        piece = all_words[i:i + words_per_chunk]
        duration = estimate_duration(len(piece), words_per_minute)
        chunks.append(Chunk(
            id="chunk-%d" % n,
            text=" ".join(piece),
            words=distribute(piece, duration, start_index=i),
            duration_s=duration,
            timing_source=TimingKind.ESTIMATED,
        ))

    logger.debug(
        "Chunked %d words into %d chunk(s) of up to %d words",
        len(all_words), len(chunks), words_per_chunk,
    )
    return chunks


def update_chunk_with_timing(chunk: Chunk, duration: float) -> Chunk:
    """Re-estimate *chunk*'s word table for a known audio *duration*.

    WHY: Once audio is decoded its real duration is known even if no finer
    timing source is available. Stretching the estimate to fit is already a
    large improvement over the words-per-minute guess.

    HOW: Runs distribute() over the chunk's word texts and copies the new
    times onto the existing WordUnit objects.

    RULES:
    - Mutates and returns the same chunk
    - Word text and global_index are never touched
    """
    fresh = distribute(chunk.word_texts(), duration)
    for word, estimate in zip(chunk.words, fresh):
        word.start_time = estimate.start_time
        word.end_time = estimate.end_time
    chunk.duration_s = duration
    return chunk


def find_word_index(
    words: Sequence[WordUnit],
    current_time: float,
    lookahead_s: float = config.HIGHLIGHT_LOOKAHEAD_S,
) -> int:
    """Return the local index of the word active at *current_time*.

    WHY: Called on every clock tick, so it must be O(log n) even for chunks
    of a thousand words.

    HOW: Binary search over start_time, with *lookahead_s* added to the raw
    clock to hide rendering lag. A time that falls between spans resolves to
    the last word that has already started.

    RULES:
    - Empty word list → 0
    - Times before the first word → 0
    - Times after the last word → last index
    """
    if not words:
        return 0

    t = current_time + lookahead_s
    lo, hi = 0, len(words) - 1
    result = 0

    while lo <= hi:
        mid = (lo + hi) // 2
        word = words[mid]
        if word.start_time <= t < word.end_time:
            return mid
        if t < word.start_time:
            hi = mid - 1
        else:
            result = mid
            lo = mid + 1

    return min(result, len(words) - 1)


def format_time(seconds: float) -> str:
    """Format *seconds* as "M:SS" for a progress display."""
    if seconds < 0 or seconds != seconds:
        seconds = 0.0
    total = int(seconds)
    return "%d:%02d" % (total // 60, total % 60)
