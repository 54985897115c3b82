"""Tests for the gapless audio queue.

WHY: The queue's only job is timing: buffers must meet end to end, a rate
change must not skip or repeat audio, and stop() must leave a clean clock.

HOW: A FakeClock drives the queue. Buffers are zero-filled numpy arrays at
1 kHz, so 1000 samples are exactly one second of audio. QueueOutput tests
use 8 kHz decoded audio from conftest.
"""

from __future__ import annotations

import numpy as np
import pytest

from conftest import make_decoded
from narration_sync.playback.audio_queue import AudioQueue
from narration_sync.playback.output import PlaybackRejected, QueueOutput

SR = 1000


def _seconds(n: float) -> np.ndarray:
    return np.zeros(int(n * SR), dtype=np.float32)


@pytest.fixture
def queue(clock):
    return AudioQueue(clock=clock)


class TestScheduling:

    def test_buffers_chain_back_to_back(self, queue):
        a = queue.enqueue("chunk-0", _seconds(1.0), SR)
        b = queue.enqueue("chunk-1", _seconds(2.0), SR)
        assert a.start_at == 0.0
        assert b.start_at == a.end_at == 1.0
        assert queue.next_start_time == 3.0

    def test_late_enqueue_starts_now(self, queue, clock):
        queue.enqueue("chunk-0", _seconds(1.0), SR)
        clock.advance(5.0)
        b = queue.enqueue("chunk-1", _seconds(1.0), SR)
        assert b.start_at == pytest.approx(5.0)

    def test_enqueue_uses_current_rate(self, queue):
        queue.set_rate(2.0)
        buf = queue.enqueue("chunk-0", _seconds(1.0), SR)
        assert buf.end_at == 0.5
        assert queue.next_start_time == 0.5

    def test_position(self, queue, clock):
        queue.enqueue("chunk-0", _seconds(1.0), SR)
        queue.enqueue("chunk-1", _seconds(1.0), SR)
        clock.advance(0.5)
        chunk_id, local = queue.position()
        assert chunk_id == "chunk-0"
        assert local == pytest.approx(0.5)
        clock.advance(1.0)
        chunk_id, local = queue.position()
        assert chunk_id == "chunk-1"
        assert local == pytest.approx(0.5)

    def test_position_when_empty(self, queue):
        assert queue.position() is None

    @pytest.mark.parametrize("pcm, sr", [
        (np.zeros(0, dtype=np.float32), SR),
        (np.zeros(10, dtype=np.float32), 0),
    ])
    def test_invalid_buffers(self, queue, pcm, sr):
        with pytest.raises(ValueError):
            queue.enqueue("chunk-0", pcm, sr)


class TestRate:

    def test_active_buffer_keeps_consumed_audio(self, queue, clock):
        a = queue.enqueue("chunk-0", _seconds(2.0), SR)
        b = queue.enqueue("chunk-1", _seconds(1.0), SR)
        clock.advance(1.0)
        queue.set_rate(2.0)

        assert a.local_time(queue.current_time()) == pytest.approx(1.0)
        assert a.end_at == pytest.approx(1.5)
        assert b.start_at == pytest.approx(a.end_at)
        assert b.end_at == pytest.approx(2.0)
        assert queue.next_start_time == pytest.approx(2.0)

        clock.advance(0.25)
        assert queue.position() == ("chunk-0", pytest.approx(1.5))

    def test_future_buffers_stay_gapless(self, queue, clock):
        bufs = [queue.enqueue("chunk-%d" % i, _seconds(1.0), SR) for i in range(3)]
        queue.set_rate(0.5)
        for prev, nxt in zip(bufs, bufs[1:]):
            assert nxt.start_at == pytest.approx(prev.end_at)
        assert bufs[-1].end_at == pytest.approx(6.0)

    @pytest.mark.parametrize("bad", [0.0, -2.0])
    def test_invalid_rate(self, queue, bad):
        with pytest.raises(ValueError):
            queue.set_rate(bad)
        assert queue.rate == 1.0


class TestClock:

    def test_pause_and_resume(self, queue, clock):
        clock.advance(0.3)
        queue.pause()
        assert queue.suspended
        clock.advance(10.0)
        assert queue.current_time() == pytest.approx(0.3)
        queue.resume()
        clock.advance(0.2)
        assert queue.current_time() == pytest.approx(0.5)

    def test_stop_resets_everything(self, queue, clock):
        queue.enqueue("chunk-0", _seconds(1.0), SR)
        clock.advance(0.4)
        queue.stop()
        assert queue.buffers == []
        assert queue.next_start_time == 0.0
        assert queue.current_time() == 0.0
        buf = queue.enqueue("chunk-1", _seconds(1.0), SR)
        assert buf.start_at == 0.0


class TestPoll:

    def test_callbacks(self, clock):
        started = []
        ended = []
        queue = AudioQueue(clock=clock, on_buffer_start=started.append,
                           on_ended=lambda: ended.append(True))
        queue.enqueue("chunk-0", _seconds(1.0), SR)
        queue.enqueue("chunk-1", _seconds(1.0), SR)

        queue.poll()
        assert started == ["chunk-0"]
        clock.advance(1.0)
        queue.poll()
        assert started == ["chunk-0", "chunk-1"]
        assert [b.chunk_id for b in queue.buffers] == ["chunk-1"]
        assert ended == []

        clock.advance(1.0)
        queue.poll()
        queue.poll()
        assert ended == [True]
        assert queue.buffers == []

    def test_poll_on_empty_queue_does_not_fire(self, clock):
        ended = []
        queue = AudioQueue(clock=clock, on_ended=lambda: ended.append(True))
        queue.poll()
        assert ended == []


# ---------------------------------------------------------------------------
# QueueOutput: the queue behind the AudioOutput surface
# ---------------------------------------------------------------------------


class TestQueueOutput:

    def test_play_without_audio_rejected(self, queue):
        output = QueueOutput(queue)
        with pytest.raises(PlaybackRejected):
            output.play()
        assert not output.playing

    def test_clock_runs_only_while_playing(self, queue, clock):
        output = QueueOutput(queue)
        output.load("chunk-0", make_decoded(2.0))
        clock.advance(1.0)
        assert output.current_time() == 0.0

        output.play()
        clock.advance(0.5)
        assert output.current_time() == pytest.approx(0.5)

        output.pause()
        clock.advance(3.0)
        assert output.current_time() == pytest.approx(0.5)

    def test_seek_restarts_from_slice(self, queue, clock):
        output = QueueOutput(queue)
        output.load("chunk-0", make_decoded(2.0))
        output.play()
        clock.advance(0.3)

        output.seek(1.5)
        assert output.current_time() == pytest.approx(1.5)
        assert len(queue.buffers) == 1
        assert queue.buffers[0].duration == pytest.approx(0.5)
        clock.advance(0.2)
        assert output.current_time() == pytest.approx(1.7)

    def test_seek_to_current_position_keeps_buffer(self, queue, clock):
        output = QueueOutput(queue)
        output.load("chunk-0", make_decoded(2.0))
        output.play()
        clock.advance(0.5)
        buf = queue.buffers[0]

        output.seek(0.55)
        assert queue.buffers[0] is buf
        assert output.current_time() == pytest.approx(0.5)

    def test_set_rate(self, queue, clock):
        output = QueueOutput(queue)
        output.load("chunk-0", make_decoded(2.0))
        output.play()
        output.set_rate(2.0)
        clock.advance(0.5)
        assert output.current_time() == pytest.approx(1.0)

    def test_prepared_chunk_adopted_at_boundary(self, queue, clock):
        output = QueueOutput(queue)
        nxt = make_decoded(1.0)
        output.load("chunk-0", make_decoded(2.0))
        output.prepare("chunk-1", nxt)
        output.play()
        first, second = queue.buffers
        assert second.start_at == first.end_at

        clock.advance(2.0)
        output.load("chunk-1", nxt)
        assert output.chunk_id == "chunk-1"
        assert queue.buffers[1] is second
        assert output.current_time() == pytest.approx(0.0)
        clock.advance(0.5)
        assert output.current_time() == pytest.approx(0.5)

    def test_early_load_of_prepared_chunk_starts_it_now(self, queue, clock):
        output = QueueOutput(queue)
        nxt = make_decoded(1.0)
        output.load("chunk-0", make_decoded(2.0))
        output.prepare("chunk-1", nxt)
        output.play()
        clock.advance(0.5)

        output.load("chunk-1", nxt)
        assert [b.chunk_id for b in queue.buffers] == ["chunk-1"]
        assert output.current_time() == 0.0
        clock.advance(0.25)
        assert output.current_time() == pytest.approx(0.25)
