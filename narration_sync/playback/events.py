"""Completion events posted to the playback controller.

WHY: Synthesis, decoding and analysis finish at unpredictable times. Rather
than letting each coroutine mutate the session directly, every completion
becomes an event that the controller reduces in order, applying its guards
in one place.

RULES:
- Every event carries the session generation it was started under
- Events whose generation differs from the session's are dropped
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Union

from narration_sync.core.ir import AlignmentResult, CharacterAlignment, TimingKind
from narration_sync.core.segmenter import DecodedAudio


@dataclass
class ChunkLoaded:
    generation: int
    chunk_id: str
    audio: DecodedAudio
    alignment: Optional[CharacterAlignment] = None


@dataclass
class ChunkFailed:
    generation: int
    chunk_id: str
    error: str


@dataclass
class AnalysisReady:
    generation: int
    chunk_id: str
    results: List[AlignmentResult]
    duration: float
    kind: TimingKind = TimingKind.ACOUSTIC


Event = Union[ChunkLoaded, ChunkFailed, AnalysisReady]
