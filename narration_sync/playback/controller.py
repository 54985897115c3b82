"""Playback controller: chunked audio driven as one continuous timeline.

WHY: The reader sees one text and one progress bar, but the audio behind
it is a list of independently synthesized chunks whose timing tables get
better over time (estimate → acoustic analysis → provider timings). The
controller hides the chunk boundaries, keeps the highlighted word in step
with the audio clock, and makes sure late-arriving timing never makes the
highlight jump while audio is running.

HOW: One PlaybackController owns one PlaybackSession. Public coroutines
(play, seek_to_word, load_chunk, preload_all, ...) change state and start
I/O. Every I/O completion becomes an event (ChunkLoaded, ChunkFailed,
AnalysisReady) in a deque that _drain() reduces one at a time. Timing
refinements pass through _offer_refinement(), which applies them at once
when it is safe and parks them in _deferred otherwise.

    idle ──play──▶ loading ──audio ready──▶ playing ⇄ paused
      ▲                                       │
      └──────────reset────────── ended ◀──────┘ (last chunk done)

RULES:
- At most one synthesis request per chunk is in flight
- Refinements apply in idle/paused (also loading/ended, before the clock
  runs); while playing they wait until the next pause or idle
- A preloaded chunk's deferred refinement is applied when it becomes
  active, before its clock starts
- Acoustic analysis starts only in idle/paused; results landing while
  playing are cached and picked up again on the next pause
- Events from an older generation (text or provider changed) are dropped
- Transport, decode and device failures never raise out of the controller
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable, Deque, Dict, List, Optional, Set, Tuple

from narration_sync import config
from narration_sync.api.models import SynthesisContext, SynthesisResult
from narration_sync.cache import AnalysisCache, cache_key
from narration_sync.core.alignment import (
    align_from_characters,
    align_from_segments,
    apply_alignment,
    resolve,
)
from narration_sync.core.chunker import chunk_text, find_word_index
from narration_sync.core.ir import (
    AlignmentResult,
    Chunk,
    EstimatedTiming,
    PlaybackState,
    TimingKind,
)
from narration_sync.core.segmenter import DecodedAudio, analyze, decode_audio_async
from narration_sync.playback.events import AnalysisReady, ChunkFailed, ChunkLoaded, Event
from narration_sync.playback.output import AudioOutput, PlaybackRejected
from narration_sync.playback.session import PlaybackSession

logger = logging.getLogger(__name__)

SynthesizeFn = Callable[[str, SynthesisContext], Awaitable[SynthesisResult]]
DecodeFn = Callable[[bytes], Awaitable[DecodedAudio]]

# States in which a timing table may be rewritten. Besides idle and paused
# this includes loading and ended: the output clock is stopped in both.
_SAFE_STATES = frozenset({
    PlaybackState.IDLE,
    PlaybackState.PAUSED,
    PlaybackState.LOADING,
    PlaybackState.ENDED,
})

# States in which acoustic analysis may be started.
_ANALYSIS_STATES = frozenset({PlaybackState.IDLE, PlaybackState.PAUSED})


class PlaybackController:
    """Owns one reading session and drives its audio output.

    WHY: Session state has exactly one writer. Everything that can change
    position, state or timing goes through this class.

    HOW: Collaborators are injected: synthesize (text → audio and optional
    alignment), output (an AudioOutput), decode (bytes → DecodedAudio),
    cache (AnalysisCache). on_word_change and on_state_change are called
    synchronously when the highlighted word or the state changes.

    RULES:
    - Construct with text, or call set_text() later
    - Coroutines must run on one event loop; no locks are used
    - Background analysis tasks can be awaited with wait_for_tasks()
    - Timing refinements are written in idle and paused, and also in
      loading and ended, where the output is stopped too. They are never
      written while playing
    - Seeking into another chunk applies that chunk's parked refinement
      before the target position is computed
    - When the chunk after the active one is loaded, the output is told
      via prepare() so a gapless backend can queue it in advance
    """

    def __init__(
        self,
        synthesize: SynthesizeFn,
        output: AudioOutput,
        text: str = "",
        decode: DecodeFn = decode_audio_async,
        cache: Optional[AnalysisCache] = None,
        on_word_change: Optional[Callable[[int], None]] = None,
        on_state_change: Optional[Callable[[PlaybackState], None]] = None,
        words_per_chunk: int = config.WORDS_PER_CHUNK,
        lookahead_s: float = config.HIGHLIGHT_LOOKAHEAD_S,
    ) -> None:
        self._synthesize = synthesize
        self._output = output
        self._decode = decode
        self._cache = cache if cache is not None else AnalysisCache()
        self._on_word_change = on_word_change
        self._on_state_change = on_state_change
        self._words_per_chunk = words_per_chunk
        self._lookahead_s = lookahead_s

        self._text = ""
        self.session = PlaybackSession()

        self._events: Deque[Event] = deque()
        self._draining = False
        self._in_flight: Set[str] = set()
        self._deferred: Dict[str, Tuple[List[AlignmentResult], float, TimingKind]] = {}
        self._analysis_wanted: Set[str] = set()
        self._analysis_running: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._loaded_id: Optional[str] = None
        self._resume_at: Optional[float] = None
        self._preload_key: Optional[Tuple[int, int]] = None

        if text:
            self.set_text(text)

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> PlaybackState:
        return self.session.state

    @property
    def chunks(self) -> List[Chunk]:
        return self.session.chunks

    @property
    def total_duration(self) -> float:
        return self.session.total_duration

    @property
    def loaded_progress(self) -> float:
        return self.session.loaded_progress

    def current_time(self) -> float:
        """Seconds from the start of the whole document."""
        session = self.session
        chunk = session.current_chunk
        if chunk is None:
            return 0.0
        if self._loaded_id == chunk.id and session.state != PlaybackState.IDLE:
            local = self._output.current_time()
        else:
            local = self._word_start(chunk, session.current_word_index)
        return session.global_time(session.current_chunk_index, local)

    # ------------------------------------------------------------------
    # Text and provider
    # ------------------------------------------------------------------

    def set_text(self, text: str) -> None:
        """Replace the document. All chunks, timings and audio are dropped."""
        self._text = text
        self._replace_chunks(chunk_text(text, self._words_per_chunk))

    def change_provider(self, synthesize: SynthesizeFn) -> None:
        """Switch the synthesis collaborator and start over on the same text.

        Audio and timings from the previous provider no longer match, so
        chunks are rebuilt exactly as set_text() would.
        """
        self._synthesize = synthesize
        self._replace_chunks(chunk_text(self._text, self._words_per_chunk))

    def _replace_chunks(self, chunks: List[Chunk]) -> None:
        if self._loaded_id is not None:
            self._output.pause()
        session = self.session
        session.generation += 1
        session.chunks = chunks
        session.current_chunk_index = 0
        session.recompute_offsets()

        self._events.clear()
        self._in_flight.clear()
        self._deferred.clear()
        self._analysis_wanted.clear()
        self._analysis_running.clear()
        self._loaded_id = None
        self._resume_at = None
        self._preload_key = None

        logger.info(
            "Session generation %d: %d chunk(s), %.1fs estimated",
            session.generation, len(chunks), session.total_duration,
        )
        self._set_word(0)
        self._set_state(PlaybackState.IDLE)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _context_for(self, index: int) -> SynthesisContext:
        chunks = self.session.chunks
        return SynthesisContext(
            previous_text=chunks[index - 1].text if index > 0 else None,
            next_text=chunks[index + 1].text if index + 1 < len(chunks) else None,
        )

    async def load_chunk(self, index: int) -> bool:
        """Synthesize and decode chunk *index* if it is not loaded yet.

        WHY: Both play() and preload_all() need audio; whichever asks first
        does the work, the other becomes a no-op.

        HOW: Marks the chunk loading, awaits synthesize() then decode(), and
        posts ChunkLoaded or ChunkFailed. The event is reduced before this
        coroutine returns.

        RULES:
        - Returns False without doing anything if the chunk is loaded,
          loading, or already has a request in flight
        - Failures are recorded on chunk.error, never raised
        """
        session = self.session
        if not 0 <= index < len(session.chunks):
            return False
        chunk = session.chunks[index]
        if chunk.is_loaded or chunk.loading or chunk.id in self._in_flight:
            return False

        generation = session.generation
        chunk_id = chunk.id
        chunk.loading = True
        chunk.error = None
        self._in_flight.add(chunk_id)
        logger.info("Loading %s (%d words)", chunk_id, len(chunk.words))

        try:
            result = await self._synthesize(chunk.text, self._context_for(index))
            audio = await self._decode(result.audio_bytes)
        except Exception as exc:
            logger.warning("Failed to load %s: %s", chunk_id, exc)
            event: Event = ChunkFailed(generation, chunk_id, str(exc) or type(exc).__name__)
        else:
            event = ChunkLoaded(generation, chunk_id, audio, result.alignment)
        finally:
            if generation == self.session.generation:
                self._in_flight.discard(chunk_id)

        self._post(event)
        return isinstance(event, ChunkLoaded)

    async def preload_all(self) -> None:
        """Load every chunk that is not loaded yet, concurrently.

        RULES:
        - Runs once per chunk list (keyed by generation and chunk count);
          repeated calls return immediately
        - Never changes state or the visible word table on its own
        """
        session = self.session
        key = (session.generation, len(session.chunks))
        if self._preload_key == key:
            return
        self._preload_key = key
        pending = [
            self.load_chunk(i)
            for i, chunk in enumerate(session.chunks)
            if not chunk.is_loaded and not chunk.loading
        ]
        if pending:
            logger.info("Preloading %d chunk(s)", len(pending))
            await asyncio.gather(*pending)

    # ------------------------------------------------------------------
    # Transport controls
    # ------------------------------------------------------------------

    async def play(self) -> None:
        """Start or resume playback at the current word.

        RULES:
        - playing → no-op
        - ended → restart from chunk 0
        - chunk loaded → playing (paused if the device refuses)
        - chunk loading → loading; playback starts when audio arrives
        - chunk not loaded → loading, request synthesis, play on success
        """
        session = self.session
        if session.state == PlaybackState.PLAYING:
            return
        if not session.chunks:
            logger.info("Nothing to play")
            return

        if session.state == PlaybackState.ENDED:
            session.current_chunk_index = 0
            self._resume_at = None
            self._set_word(session.chunks[0].first_index)

        chunk = session.chunks[session.current_chunk_index]
        if chunk.is_loaded:
            self._start_current()
            return

        self._set_state(PlaybackState.LOADING)
        if chunk.loading or chunk.id in self._in_flight:
            return
        await self.load_chunk(session.current_chunk_index)

    def pause(self) -> None:
        state = self.session.state
        if state not in (PlaybackState.PLAYING, PlaybackState.LOADING):
            return
        if state == PlaybackState.PLAYING:
            self._resume_at = self._output.current_time()
            self._output.pause()
        self._set_state(PlaybackState.PAUSED)

    def reset(self) -> None:
        """Stop and return to the start of the document in idle."""
        if self._loaded_id is not None:
            self._output.pause()
        session = self.session
        session.current_chunk_index = 0
        self._resume_at = None
        self._set_word(session.chunks[0].first_index if session.chunks else 0)
        self._set_state(PlaybackState.IDLE)

    def set_speed(self, multiplier: float) -> None:
        if multiplier <= 0:
            raise ValueError(f"Playback speed must be positive, got {multiplier!r}")
        self.session.speed = multiplier
        self._output.set_rate(multiplier)
        logger.info("Playback speed set to %.2fx", multiplier)

    # ------------------------------------------------------------------
    # Seeking
    # ------------------------------------------------------------------

    def seek_to_word(self, global_index: int) -> bool:
        """Jump to the start of word *global_index* and play from there.

        RULES:
        - Unknown index or unloaded chunk → logged, nothing changes,
          returns False (the caller can retry once loaded)
        """
        session = self.session
        index = session.chunk_for_word(global_index)
        if index is None:
            logger.warning("Seek to unknown word %d ignored", global_index)
            return False
        chunk = session.chunks[index]
        if not chunk.is_loaded:
            logger.info("Seek to word %d ignored: %s not loaded", global_index, chunk.id)
            return False

        if index != session.current_chunk_index:
            self._flush_deferred(chunk.id)
        local = self._word_start(chunk, global_index)
        session.current_chunk_index = index
        self._set_word(global_index)
        self._start_output(index, local)
        return True

    def seek_to_time(self, global_seconds: float) -> bool:
        """Jump to *global_seconds* on the document timeline."""
        session = self.session
        located = session.locate_time(global_seconds)
        if located is None:
            return False
        index, local = located
        chunk = session.chunks[index]
        if not chunk.is_loaded:
            logger.info("Seek to %.2fs ignored: %s not loaded", global_seconds, chunk.id)
            return False

        if index != session.current_chunk_index and chunk.id in self._deferred:
            self._flush_deferred(chunk.id)
            # The refined duration may be shorter than the estimate.
            index, local = session.locate_time(global_seconds)
            chunk = session.chunks[index]
            if not chunk.is_loaded:
                logger.info("Seek to %.2fs ignored: %s not loaded", global_seconds, chunk.id)
                return False

        session.current_chunk_index = index
        word = chunk.words[find_word_index(chunk.words, local, 0.0)]
        self._set_word(word.global_index)
        self._start_output(index, local)
        return True

    def skip(self, seconds: float = config.SKIP_SECONDS) -> bool:
        """Move forward (or backward, if negative) by *seconds*."""
        target = self.current_time() + seconds
        target = min(max(0.0, target), self.session.total_duration)
        return self.seek_to_time(target)

    # ------------------------------------------------------------------
    # Clock
    # ------------------------------------------------------------------

    def handle_time_update(self, local_seconds: float) -> int:
        """Update the highlighted word for a clock reading in the active chunk.

        Emits on_word_change only when the word actually changes.
        """
        chunk = self.session.current_chunk
        if chunk is None:
            return self.session.current_word_index
        word = chunk.words[find_word_index(chunk.words, local_seconds, self._lookahead_s)]
        self._set_word(word.global_index)
        return word.global_index

    def tick(self) -> None:
        """Poll the output clock; call from the host's timer while playing."""
        session = self.session
        if session.state != PlaybackState.PLAYING:
            return
        chunk = session.current_chunk
        if chunk is None or not chunk.is_loaded:
            return
        local = self._output.current_time()
        if local >= chunk.audio_ref.duration_s:
            self.handle_ended()
        else:
            self.handle_time_update(local)

    def handle_ended(self) -> None:
        """The active chunk's audio finished; cross to the next one.

        RULES:
        - Next chunk loaded → switch source and keep playing
        - Next chunk not loaded → paused with a warning, positioned at the
          next chunk so play() resumes there
        - No next chunk → ended, word index back to 0
        """
        session = self.session
        if session.state != PlaybackState.PLAYING:
            return

        nxt = session.current_chunk_index + 1
        if nxt >= len(session.chunks):
            self._output.pause()
            self._resume_at = None
            self._set_word(0)
            self._set_state(PlaybackState.ENDED)
            logger.info("Reached end of document")
            return

        chunk = session.chunks[nxt]
        session.current_chunk_index = nxt
        self._resume_at = None
        self._set_word(chunk.first_index)

        if chunk.is_loaded:
            self._flush_deferred(chunk.id)
            self._start_output(nxt, 0.0)
            return

        logger.warning("Stalled at chunk boundary: %s not loaded yet", chunk.id)
        self._output.pause()
        self._set_state(PlaybackState.PAUSED)
        if not chunk.loading and chunk.id not in self._in_flight:
            self._spawn(self.load_chunk(nxt))

    # ------------------------------------------------------------------
    # Output helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _word_start(chunk: Chunk, global_index: int) -> float:
        local = global_index - chunk.first_index
        if 0 <= local < len(chunk.words):
            return chunk.words[local].start_time
        return 0.0

    def _start_current(self) -> None:
        session = self.session
        chunk = session.chunks[session.current_chunk_index]
        if self._resume_at is not None and self._loaded_id == chunk.id:
            local = self._resume_at
        else:
            local = self._word_start(chunk, session.current_word_index)
        self._start_output(session.current_chunk_index, local)

    def _start_output(self, index: int, local_seconds: float) -> bool:
        chunk = self.session.chunks[index]
        if self._loaded_id != chunk.id:
            self._output.load(chunk.id, chunk.audio_ref)
            self._loaded_id = chunk.id
        self._output.set_rate(self.session.speed)
        self._output.seek(local_seconds)
        self._resume_at = None
        self._prepare_next(index)

        try:
            self._output.play()
        except PlaybackRejected as exc:
            logger.warning("Playback rejected by output device: %s", exc)
            self._resume_at = local_seconds
            self._set_state(PlaybackState.PAUSED)
            return False

        self._set_state(PlaybackState.PLAYING)
        return True

    def _prepare_next(self, index: int) -> None:
        chunks = self.session.chunks
        nxt = index + 1
        if nxt < len(chunks) and chunks[nxt].is_loaded:
            self._output.prepare(chunks[nxt].id, chunks[nxt].audio_ref)

    # ------------------------------------------------------------------
    # State and word cursor
    # ------------------------------------------------------------------

    def _set_word(self, global_index: int) -> None:
        if self.session.current_word_index == global_index:
            return
        self.session.current_word_index = global_index
        if self._on_word_change is not None:
            self._on_word_change(global_index)

    def _set_state(self, state: PlaybackState) -> None:
        session = self.session
        if session.state == state:
            return
        logger.info("Playback state %s → %s", session.state.value, state.value)
        session.state = state

        if state in (PlaybackState.IDLE, PlaybackState.PAUSED, PlaybackState.ENDED):
            for chunk_id in list(self._deferred):
                self._flush_deferred(chunk_id)
            if session.offsets_stale:
                session.recompute_offsets()
        if state in _ANALYSIS_STATES:
            self._start_wanted_analyses()

        if self._on_state_change is not None:
            self._on_state_change(state)

    # ------------------------------------------------------------------
    # Event reduction
    # ------------------------------------------------------------------

    def _post(self, event: Event) -> None:
        self._events.append(event)
        self._drain()

    def _drain(self) -> None:
        if self._draining:
            return
        self._draining = True
        try:
            while self._events:
                self._reduce(self._events.popleft())
        finally:
            self._draining = False

    def _reduce(self, event: Event) -> None:
        session = self.session
        if event.generation != session.generation:
            logger.debug("Dropping stale %s for %s", type(event).__name__, event.chunk_id)
            return
        index = session.find_chunk(event.chunk_id)
        if index is None:
            return
        chunk = session.chunks[index]

        if isinstance(event, ChunkLoaded):
            self._on_chunk_loaded(index, chunk, event)
        elif isinstance(event, ChunkFailed):
            chunk.loading = False
            chunk.error = event.error
            if index == session.current_chunk_index and session.state == PlaybackState.LOADING:
                self._set_state(PlaybackState.PAUSED)
        elif isinstance(event, AnalysisReady):
            self._analysis_running.discard(chunk.id)
            self._cache.put(cache_key(chunk.id, chunk.text), event.results)
            if session.state == PlaybackState.PLAYING:
                logger.info("Analysis for %s finished during playback; not applied", chunk.id)
                self._analysis_wanted.add(chunk.id)
            else:
                self._offer_refinement(chunk, event.results, event.duration, event.kind)

    def _on_chunk_loaded(self, index: int, chunk: Chunk, event: ChunkLoaded) -> None:
        session = self.session
        chunk.loading = False
        chunk.error = None
        chunk.audio_ref = event.audio
        duration = event.audio.duration_s
        logger.info("Loaded %s: %.2fs of audio", chunk.id, duration)

        words = chunk.word_texts()
        if event.alignment is not None:
            results = align_from_characters(
                words,
                event.alignment.characters,
                event.alignment.char_start,
                event.alignment.char_end,
            )
            self._offer_refinement(chunk, results, duration, TimingKind.PROVIDER)
        else:
            self._offer_refinement(
                chunk, resolve(words, EstimatedTiming(duration)), duration, TimingKind.ESTIMATED,
            )
            self._analysis_wanted.add(chunk.id)
            if session.state in _ANALYSIS_STATES:
                self._start_wanted_analyses()
            else:
                self._lookup_cached(chunk)

        if index == session.current_chunk_index and session.state == PlaybackState.LOADING:
            self._start_current()
        elif index == session.current_chunk_index + 1 and self._loaded_id is not None:
            current = session.current_chunk
            if current is not None and current.id == self._loaded_id:
                self._prepare_next(session.current_chunk_index)

    # ------------------------------------------------------------------
    # Refinement
    # ------------------------------------------------------------------

    def _offer_refinement(
        self,
        chunk: Chunk,
        results: List[AlignmentResult],
        duration: float,
        kind: TimingKind,
    ) -> None:
        if kind.rank < chunk.timing_source.rank:
            logger.debug(
                "Ignoring %s timing for %s: already %s",
                kind.value, chunk.id, chunk.timing_source.value,
            )
            return

        if self.session.state in _SAFE_STATES:
            self._apply(chunk, results, duration, kind)
            return

        parked = self._deferred.get(chunk.id)
        if parked is None or kind.rank >= parked[2].rank:
            self._deferred[chunk.id] = (results, duration, kind)
            logger.info("Deferred %s timing for %s until playback stops", kind.value, chunk.id)

    def _flush_deferred(self, chunk_id: str) -> None:
        parked = self._deferred.pop(chunk_id, None)
        if parked is None:
            return
        index = self.session.find_chunk(chunk_id)
        if index is None:
            return
        chunk = self.session.chunks[index]
        results, duration, kind = parked
        if kind.rank >= chunk.timing_source.rank:
            self._apply(chunk, results, duration, kind)

    def _apply(
        self,
        chunk: Chunk,
        results: List[AlignmentResult],
        duration: float,
        kind: TimingKind,
    ) -> None:
        session = self.session
        if not apply_alignment(chunk, results, duration, kind):
            return
        logger.info("Applied %s timing to %s (%.2fs)", kind.value, chunk.id, chunk.duration_s)

        if session.current_chunk is chunk:
            self._resume_at = None
        if session.state == PlaybackState.PLAYING:
            session.offsets_stale = True
        else:
            session.recompute_offsets()

    # ------------------------------------------------------------------
    # Acoustic analysis
    # ------------------------------------------------------------------

    def _lookup_cached(self, chunk: Chunk) -> bool:
        cached = self._cache.get(cache_key(chunk.id, chunk.text))
        if cached is None or len(cached) != len(chunk.words):
            return False
        self._analysis_wanted.discard(chunk.id)
        self._offer_refinement(chunk, cached, chunk.audio_ref.duration_s, TimingKind.ACOUSTIC)
        return True

    def _start_wanted_analyses(self) -> None:
        session = self.session
        for chunk_id in list(self._analysis_wanted):
            index = session.find_chunk(chunk_id)
            if index is None:
                self._analysis_wanted.discard(chunk_id)
                continue
            chunk = session.chunks[index]
            if not chunk.is_loaded or chunk.timing_source.rank >= TimingKind.ACOUSTIC.rank:
                self._analysis_wanted.discard(chunk_id)
                continue
            if self._lookup_cached(chunk):
                continue
            if chunk_id in self._analysis_running:
                continue
            if self._spawn(self._analyze(chunk, session.generation)):
                self._analysis_running.add(chunk_id)
                self._analysis_wanted.discard(chunk_id)

    async def _analyze(self, chunk: Chunk, generation: int) -> None:
        audio = chunk.audio_ref
        words = chunk.word_texts()
        try:
            segments = await asyncio.to_thread(analyze, audio)
        except Exception:
            logger.exception("Acoustic analysis failed for %s", chunk.id)
            self._analysis_running.discard(chunk.id)
            return
        results = align_from_segments(segments, words, audio.duration_s)
        self._post(AnalysisReady(generation, chunk.id, results, audio.duration_s))

    # ------------------------------------------------------------------
    # Background tasks
    # ------------------------------------------------------------------

    def _spawn(self, coro: Awaitable) -> bool:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; background work postponed")
            coro.close()
            return False
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def wait_for_tasks(self) -> None:
        """Await every background load and analysis started so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))
