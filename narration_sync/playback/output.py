"""Audio output backends driven by the playback controller.

WHY: The controller must not care whether audio comes out of a browser
element, a sound card, or nothing at all (tests, headless hosts). It needs
a small surface — load a chunk, play, pause, seek, change rate, read the
clock — and a way for the device to refuse playback.

HOW: AudioOutput is the abstract base every backend implements.
ClockOutput is a reference backend that "plays" by reading a monotonic
clock, which is all the controller needs to drive highlighting. Hosts with
real devices subclass AudioOutput and forward the calls.

RULES:
- current_time() is seconds into the currently loaded chunk
- play() raises PlaybackRejected if the device refuses (autoplay policy)
- set_rate() applies to the current and every later chunk
- load() replaces the current source; position resets to 0
- prepare() is an optional hint; QueueOutput uses it to play gaplessly
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Callable, Optional, Tuple

from narration_sync.core.segmenter import DecodedAudio
from narration_sync.playback.audio_queue import AudioQueue, ScheduledBuffer


class PlaybackRejected(Exception):
    """Raised by AudioOutput.play() when the device refuses to start.

    WHY: Platforms that require a user gesture before audio may start will
    refuse programmatic playback. The controller treats this as "paused"
    rather than an error.
    """


class AudioOutput(ABC):
    """Abstract audio sink with a chunk-local clock."""

    @abstractmethod
    def load(self, chunk_id: str, audio: DecodedAudio) -> None:
        """Make *audio* the current source, positioned at 0."""

    @abstractmethod
    def play(self) -> None:
        """Start or resume output. May raise PlaybackRejected."""

    @abstractmethod
    def pause(self) -> None:
        """Stop output, keeping the position."""

    @abstractmethod
    def seek(self, seconds: float) -> None:
        """Move the position within the current source."""

    @abstractmethod
    def set_rate(self, rate: float) -> None:
        """Set the playback rate multiplier."""

    @abstractmethod
    def current_time(self) -> float:
        """Seconds into the current source."""

    def prepare(self, chunk_id: str, audio: DecodedAudio) -> None:
        """Hint that *audio* will follow the current source.

        Backends that cannot schedule ahead ignore it; the controller still
        calls load() when the chunk becomes active.
        """


class ClockOutput(AudioOutput):
    """Silent output that advances with a monotonic clock.

    WHY: Lets the controller run end to end without a sound device, and
    gives tests a deterministic clock to drive.

    HOW: Position is kept as an (anchor position, anchor clock) pair.
    While playing, the position is anchor + elapsed × rate, capped at the
    source duration. Every pause, seek or rate change re-anchors.

    RULES:
    - clock defaults to time.monotonic; tests pass a fake
    - blocked=True makes play() raise PlaybackRejected
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        blocked: bool = False,
    ) -> None:
        self._clock = clock
        self.blocked = blocked
        self.chunk_id: Optional[str] = None
        self._duration = 0.0
        self._rate = 1.0
        self._playing = False
        self._anchor_pos = 0.0
        self._anchor_clock = 0.0

    @property
    def playing(self) -> bool:
        return self._playing

    @property
    def rate(self) -> float:
        return self._rate

    def _reanchor(self) -> None:
        self._anchor_pos = self.current_time()
        self._anchor_clock = self._clock()

    def load(self, chunk_id: str, audio: DecodedAudio) -> None:
        self.chunk_id = chunk_id
        self._duration = audio.duration_s
        self._anchor_pos = 0.0
        self._anchor_clock = self._clock()

    def play(self) -> None:
        if self.blocked:
            raise PlaybackRejected("Playback requires a user gesture")
        if self.chunk_id is None:
            raise PlaybackRejected("No audio loaded")
        if not self._playing:
            self._anchor_clock = self._clock()
            self._playing = True

    def pause(self) -> None:
        if self._playing:
            self._reanchor()
            self._playing = False

    def seek(self, seconds: float) -> None:
        self._anchor_pos = min(max(0.0, seconds), self._duration)
        self._anchor_clock = self._clock()

    def set_rate(self, rate: float) -> None:
        self._reanchor()
        self._rate = rate

    def current_time(self) -> float:
        position = self._anchor_pos
        if self._playing:
            position += (self._clock() - self._anchor_clock) * self._rate
        return min(position, self._duration)


class QueueOutput(AudioOutput):
    """AudioOutput that plays through a gapless AudioQueue.

    WHY: ClockOutput swaps sources at a chunk boundary, which a real device
    hears as a short gap. With an AudioQueue behind it, the next chunk is
    already scheduled to start on the exact sample the current one ends.

    HOW: load() schedules the chunk's first channel on the queue, or adopts
    the buffer queued earlier by prepare() when it is the same audio.
    seek() restarts the queue from a slice of the current chunk. pause()
    and play() suspend and resume the queue clock. current_time() is the
    active buffer's consumed audio plus the slice offset.

    RULES:
    - The queue clock only runs between play() and pause()
    - A seek within SEEK_TOLERANCE_S of the current position is ignored,
      so crossing into a prepared chunk never replays its first samples
    - The host calls queue.poll() from its timer to retire finished buffers
    """

    SEEK_TOLERANCE_S = 0.1

    def __init__(self, queue: AudioQueue) -> None:
        self.queue = queue
        self.queue.pause()
        self.chunk_id: Optional[str] = None
        self._audio: Optional[DecodedAudio] = None
        self._buffer: Optional[ScheduledBuffer] = None
        self._offset = 0.0
        self._next: Optional[Tuple[str, DecodedAudio]] = None
        self._next_buffer: Optional[ScheduledBuffer] = None
        self._playing = False

    @property
    def playing(self) -> bool:
        return self._playing

    def _schedule(self, seconds: float) -> None:
        """Drop everything queued and restart at *seconds* into the chunk."""
        self.queue.stop()
        if not self._playing:
            self.queue.pause()
        self._buffer = None
        self._next_buffer = None
        self._offset = seconds

        audio = self._audio
        pcm = audio.first_channel[int(round(seconds * audio.sample_rate)):]
        if pcm.size:
            self._buffer = self.queue.enqueue(self.chunk_id, pcm, audio.sample_rate)
        if self._next is not None:
            chunk_id, nxt = self._next
            self._next_buffer = self.queue.enqueue(chunk_id, nxt.first_channel, nxt.sample_rate)

    def load(self, chunk_id: str, audio: DecodedAudio) -> None:
        prepared = self._next
        self.chunk_id = chunk_id
        self._audio = audio
        if (
            prepared is not None
            and self._next_buffer is not None
            and prepared[0] == chunk_id
            and prepared[1] is audio
            and self._next_buffer.start_at - self.queue.current_time() <= self.SEEK_TOLERANCE_S
        ):
            self._buffer = self._next_buffer
            self._offset = 0.0
            self._next = None
            self._next_buffer = None
            return
        self._next = None
        self._schedule(0.0)

    def prepare(self, chunk_id: str, audio: DecodedAudio) -> None:
        if self._next is not None and self._next[0] == chunk_id and self._next[1] is audio:
            return
        self._next = (chunk_id, audio)
        if self._audio is None:
            return
        if self._next_buffer is None:
            self._next_buffer = self.queue.enqueue(chunk_id, audio.first_channel, audio.sample_rate)
        else:
            self._schedule(self.current_time())

    def play(self) -> None:
        if self._audio is None:
            raise PlaybackRejected("No audio loaded")
        self._playing = True
        self.queue.resume()

    def pause(self) -> None:
        self._playing = False
        self.queue.pause()

    def seek(self, seconds: float) -> None:
        if self._audio is None:
            return
        target = min(max(0.0, seconds), self._audio.duration_s)
        if abs(target - self.current_time()) <= self.SEEK_TOLERANCE_S:
            return
        self._schedule(target)

    def set_rate(self, rate: float) -> None:
        self.queue.set_rate(rate)

    def current_time(self) -> float:
        if self._audio is None:
            return 0.0
        if self._buffer is None:
            return min(self._offset, self._audio.duration_s)
        local = self._buffer.local_time(self.queue.current_time())
        return min(self._offset + local, self._audio.duration_s)
