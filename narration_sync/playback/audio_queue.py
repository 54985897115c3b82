"""Gapless audio queue on a shared clock.

WHY: Swapping one source for the next at a chunk boundary always leaves a
small audible gap: the old source has to report that it ended before the
new one can start. Scheduling every decoded buffer ahead of time on one
clock, each starting exactly when the previous one ends, removes the gap.

HOW: The queue keeps a shared clock (seconds since the last stop(),
excluding suspended time) and a running next_start_time. enqueue() places
a buffer at next_start_time and moves it forward by the buffer's duration
divided by the current rate. set_rate() re-anchors the buffer that is
playing so its consumed portion is preserved, then re-chains everything
after it. poll() retires finished buffers and fires callbacks; hosts call
it from their timer (about every 50 ms).

RULES:
- Buffers never overlap and never leave a gap between them
- current_time() is the shared clock, never a buffer-local position
- position() maps the clock to (chunk_id, seconds into that chunk)
- stop() drops everything and resets the clock to 0
- pause()/resume() suspend the clock; scheduled buffers wait with it
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class ScheduledBuffer:
    """One decoded buffer placed on the shared clock."""

    chunk_id: str
    pcm: np.ndarray
    sample_rate: int
    start_at: float
    rate: float
    started: bool = False

    @property
    def duration(self) -> float:
        """Length of the audio at rate 1.0, in seconds."""
        return len(self.pcm) / float(self.sample_rate)

    @property
    def end_at(self) -> float:
        return self.start_at + self.duration / self.rate

    def local_time(self, clock_time: float) -> float:
        """Seconds of this buffer's audio consumed at *clock_time*."""
        consumed = (clock_time - self.start_at) * self.rate
        return min(max(0.0, consumed), self.duration)


class AudioQueue:
    """Schedules decoded chunk buffers back to back.

    RULES:
    - enqueue() with an empty buffer or a non-positive sample rate raises
      ValueError
    - set_rate() with a non-positive rate raises ValueError
    - on_ended fires once each time the queue drains completely
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        on_buffer_start: Optional[Callable[[str], None]] = None,
        on_ended: Optional[Callable[[], None]] = None,
    ) -> None:
        self._clock = clock
        self.on_buffer_start = on_buffer_start
        self.on_ended = on_ended
        self._buffers: List[ScheduledBuffer] = []
        self._rate = 1.0
        self.next_start_time = 0.0
        self._elapsed = 0.0
        self._running_since: Optional[float] = clock()

    # ------------------------------------------------------------------
    # Clock
    # ------------------------------------------------------------------

    def current_time(self) -> float:
        if self._running_since is None:
            return self._elapsed
        return self._elapsed + (self._clock() - self._running_since)

    @property
    def suspended(self) -> bool:
        return self._running_since is None

    def pause(self) -> None:
        if self._running_since is not None:
            self._elapsed = self.current_time()
            self._running_since = None

    def resume(self) -> None:
        if self._running_since is None:
            self._running_since = self._clock()

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    @property
    def rate(self) -> float:
        return self._rate

    @property
    def buffers(self) -> List[ScheduledBuffer]:
        return list(self._buffers)

    def enqueue(self, chunk_id: str, pcm: np.ndarray, sample_rate: int) -> ScheduledBuffer:
        """Schedule *pcm* to start when the previously queued buffer ends."""
        pcm = np.asarray(pcm)
        if sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {sample_rate!r}")
        if pcm.size == 0:
            raise ValueError(f"Refusing to queue empty buffer for {chunk_id}")

        start = max(self.next_start_time, self.current_time())
        buf = ScheduledBuffer(
            chunk_id=chunk_id,
            pcm=pcm,
            sample_rate=int(sample_rate),
            start_at=start,
            rate=self._rate,
        )
        self._buffers.append(buf)
        self.next_start_time = buf.end_at
        logger.info("Queued %s at %.2fs (%.2fs long)", chunk_id, start, buf.duration)
        return buf

    def set_rate(self, rate: float) -> None:
        """Rescale every buffer that has not finished yet.

        The buffer playing now keeps the audio it has already consumed;
        every later buffer is moved so it still starts exactly when its
        predecessor ends.
        """
        if rate <= 0:
            raise ValueError(f"Playback rate must be positive, got {rate!r}")
        now = self.current_time()
        self._rate = rate

        previous_end: Optional[float] = None
        for buf in self._buffers:
            if buf.end_at <= now:
                continue
            if previous_end is None and buf.start_at <= now:
                consumed = buf.local_time(now)
                buf.rate = rate
                buf.start_at = now - consumed / rate
            else:
                buf.rate = rate
                if previous_end is not None:
                    buf.start_at = previous_end
            previous_end = buf.end_at

        if previous_end is not None:
            self.next_start_time = previous_end

    def stop(self) -> None:
        """Cancel every scheduled buffer and reset the clock to 0."""
        dropped = len(self._buffers)
        self._buffers = []
        self.next_start_time = 0.0
        self._elapsed = 0.0
        self._running_since = self._clock()
        if dropped:
            logger.info("Stopped queue, dropped %d buffer(s)", dropped)

    # ------------------------------------------------------------------
    # Position and polling
    # ------------------------------------------------------------------

    def _active(self, now: float) -> Optional[ScheduledBuffer]:
        for buf in self._buffers:
            if buf.start_at <= now < buf.end_at:
                return buf
        return None

    def position(self) -> Optional[Tuple[str, float]]:
        """Return (chunk_id, local seconds) for the buffer playing now."""
        now = self.current_time()
        buf = self._active(now)
        if buf is None:
            return None
        return buf.chunk_id, buf.local_time(now)

    def poll(self) -> float:
        """Retire finished buffers and fire callbacks; returns the clock."""
        now = self.current_time()
        had_buffers = bool(self._buffers)

        for buf in self._buffers:
            if not buf.started and buf.start_at <= now:
                buf.started = True
                if self.on_buffer_start is not None:
                    self.on_buffer_start(buf.chunk_id)

        self._buffers = [b for b in self._buffers if b.end_at > now]

        if had_buffers and not self._buffers:
            logger.info("Queue drained at %.2fs", now)
            if self.on_ended is not None:
                self.on_ended()
        return now
