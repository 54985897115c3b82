"""Intermediate representation dataclasses for timed narration.

WHY: Timing for a word can come from three places — a pre-audio estimate,
acoustic analysis of the waveform, or character timings returned by the
speech provider. The playback controller, the resolver and the renderer
all need one well-typed shape for "this word is spoken from t0 to t1",
regardless of where the numbers came from.

HOW: A small hierarchy of dataclasses:
  WordUnit         — one whitespace-delimited word with timing and global index
  Chunk            — a span of text synthesized as one audio unit
  AlignmentResult  — a transient timing row produced by the resolver
  AcousticSegment  — a contiguous region of audio classified as speech
  CharacterAlignment — provider character timings for one chunk
plus a tagged TimingSource variant (EstimatedTiming | AcousticTiming |
ProviderTiming) and the TimingKind / PlaybackState enums.

RULES:
- All times are in float seconds, local to the chunk
- WordUnit.text and WordUnit.global_index never change after creation
- Only refinement rewrites start_time / end_time, in place
- global_index is contiguous from 0 across the whole document
- Once timing is finalized, words[-1].end_time == chunk.duration_s
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, List, Optional, Union


class TimingKind(str, enum.Enum):
    """Which source produced a chunk's current timing table.

    WHY: Refinements arrive in any order. A late acoustic estimate must not
    overwrite provider timings that are already exact.

    HOW: Inherits from str so values serialize cleanly; ``rank`` orders the
    kinds by trustworthiness.

    RULES:
    - estimated < acoustic < provider
    """

    ESTIMATED = "estimated"
    ACOUSTIC = "acoustic"
    PROVIDER = "provider"

    @property
    def rank(self) -> int:
        return _KIND_RANK[self]


_KIND_RANK = {
    TimingKind.ESTIMATED: 0,
    TimingKind.ACOUSTIC: 1,
    TimingKind.PROVIDER: 2,
}


class PlaybackState(str, enum.Enum):
    """Valid states of a playback session.

    RULES:
    - idle → loading → playing ⇄ paused → ended
    - ended → idle (reset) or ended → playing (restart from chunk 0)
    """

    IDLE = "idle"
    LOADING = "loading"
    PLAYING = "playing"
    PAUSED = "paused"
    ENDED = "ended"


@dataclass
class WordUnit:
    """A single word with its spoken time window inside a chunk.

    RULES:
    - text: the word exactly as split from the source text (punctuation kept)
    - start_time / end_time: seconds from the start of the chunk's audio
    - global_index: position in the full document, stable across chunks
    """

    text: str
    start_time: float
    end_time: float
    global_index: int

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


@dataclass
class Chunk:
    """A bounded span of source text processed and synthesized as one unit.

    WHY: Long texts are synthesized piece by piece. Each piece carries its
    own audio, its own duration and its own word table, but words keep a
    document-wide index so the renderer never sees chunk boundaries.

    HOW: Created by the chunker with an estimated table. The controller
    attaches ``audio_ref`` when synthesis succeeds and rewrites ``words``
    and ``duration_s`` when a refinement is applied.

    RULES:
    - id: "chunk-<n>", unique within one chunk list
    - words: sorted by global_index, never empty
    - audio_ref: opaque decoded-audio handle, None until loaded
    - loading: True while a synthesis request is in flight
    - error: message of the last load failure, cleared on retry
    - timing_source: which TimingKind produced the current table
    """

    id: str
    text: str
    words: List[WordUnit]
    duration_s: float
    audio_ref: Optional[Any] = None
    loading: bool = False
    error: Optional[str] = None
    timing_source: TimingKind = TimingKind.ESTIMATED

    @property
    def first_index(self) -> int:
        return self.words[0].global_index

    @property
    def last_index(self) -> int:
        return self.words[-1].global_index

    @property
    def is_loaded(self) -> bool:
        return self.audio_ref is not None

    def word_texts(self) -> List[str]:
        return [w.text for w in self.words]


@dataclass
class AlignmentResult:
    """One word's resolved time span with a confidence score.

    RULES:
    - confidence 1.0: provider timings, or one acoustic segment per word
    - confidence 0.8: several acoustic segments merged into one word
    - confidence 0.7: one acoustic segment split across several words
    - confidence 0.5: weight-model estimate or provider fallback span
    """

    text: str
    start: float
    end: float
    confidence: float


@dataclass
class AcousticSegment:
    """A contiguous region of audio whose energy crossed the speech threshold."""

    start: float
    end: float
    peak_amplitude: float


@dataclass
class CharacterAlignment:
    """Character-level timings returned by a speech provider.

    RULES:
    - characters, char_start and char_end are parallel lists
    - whitespace characters are present and skipped by the resolver
    """

    characters: List[str]
    char_start: List[float]
    char_end: List[float]

    def is_consistent(self) -> bool:
        return len(self.characters) == len(self.char_start) == len(self.char_end)


# ---------------------------------------------------------------------------
# Timing sources (tagged variant)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EstimatedTiming:
    """No audio evidence; spread ``duration_s`` by word weight."""

    duration_s: float
    kind: TimingKind = field(default=TimingKind.ESTIMATED, init=False)


@dataclass(frozen=True)
class AcousticTiming:
    """Speech segments detected in the decoded waveform."""

    segments: List[AcousticSegment]
    duration_s: float
    kind: TimingKind = field(default=TimingKind.ACOUSTIC, init=False)


@dataclass(frozen=True)
class ProviderTiming:
    """Character timings supplied with the synthesized audio."""

    alignment: CharacterAlignment
    duration_s: float
    kind: TimingKind = field(default=TimingKind.PROVIDER, init=False)


TimingSource = Union[EstimatedTiming, AcousticTiming, ProviderTiming]
