"""Per-reading-view playback session record.

WHY: Position, state and speed belong to one open reading view, not to
the process. Keeping them in an explicit record (owned by one controller)
allows several sessions side by side and makes tests trivial to set up.

HOW: PlaybackSession holds the chunk list plus the cursor fields, and
offers the timeline arithmetic the controller needs: prefix-sum offsets,
word → chunk lookup, global seconds → (chunk, local seconds).

RULES:
- Only the PlaybackController mutates a session
- cumulative_offsets[i] = sum of chunk durations before chunk i
- Offsets are recomputed only when the controller is not playing;
  offsets_stale marks a pending recompute
- generation increases whenever the chunk list is replaced
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from narration_sync.core.ir import Chunk, PlaybackState

logger = logging.getLogger(__name__)


@dataclass
class PlaybackSession:
    chunks: List[Chunk] = field(default_factory=list)
    current_chunk_index: int = 0
    current_word_index: int = 0
    state: PlaybackState = PlaybackState.IDLE
    speed: float = 1.0
    cumulative_offsets: List[float] = field(default_factory=list)
    offsets_stale: bool = False
    generation: int = 0

    def __post_init__(self) -> None:
        if not self.cumulative_offsets:
            self.recompute_offsets()

    # ------------------------------------------------------------------
    # Timeline
    # ------------------------------------------------------------------

    def recompute_offsets(self) -> None:
        offsets = []
        running = 0.0
        for chunk in self.chunks:
            offsets.append(running)
            running += chunk.duration_s
        self.cumulative_offsets = offsets
        self.offsets_stale = False

    @property
    def total_duration(self) -> float:
        if not self.chunks:
            return 0.0
        return self.cumulative_offsets[-1] + self.chunks[-1].duration_s

    @property
    def current_chunk(self) -> Optional[Chunk]:
        if 0 <= self.current_chunk_index < len(self.chunks):
            return self.chunks[self.current_chunk_index]
        return None

    @property
    def loaded_progress(self) -> float:
        """Percentage of chunks whose audio is loaded."""
        if not self.chunks:
            return 0.0
        loaded = sum(1 for c in self.chunks if c.is_loaded)
        return loaded / len(self.chunks) * 100.0

    def global_time(self, chunk_index: int, local_seconds: float) -> float:
        return self.cumulative_offsets[chunk_index] + local_seconds

    def locate_time(self, global_seconds: float) -> Optional[Tuple[int, float]]:
        """Map global seconds to (chunk index, seconds into that chunk).

        Times past the end resolve to the end of the last chunk; negative
        times resolve to the start of the first.
        """
        if not self.chunks:
            return None
        t = max(0.0, global_seconds)
        for i in range(len(self.chunks) - 1, -1, -1):
            if t >= self.cumulative_offsets[i]:
                local = min(t - self.cumulative_offsets[i], self.chunks[i].duration_s)
                return i, local
        return 0, 0.0

    # ------------------------------------------------------------------
    # Word lookup
    # ------------------------------------------------------------------

    def chunk_for_word(self, global_index: int) -> Optional[int]:
        """Return the index of the chunk owning *global_index*, or None."""
        for i, chunk in enumerate(self.chunks):
            if chunk.first_index <= global_index <= chunk.last_index:
                return i
        return None

    def find_chunk(self, chunk_id: str) -> Optional[int]:
        for i, chunk in enumerate(self.chunks):
            if chunk.id == chunk_id:
                return i
        return None
