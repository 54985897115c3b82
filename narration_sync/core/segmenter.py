"""Audio decoding and energy-based speech segmentation.

WHY: Some speech providers return audio with no timing information. The
waveform itself still says a lot: speech is loud, the gaps between words
and sentences are quiet. Finding those loud regions gives the alignment
resolver real anchors instead of a pure words-per-minute guess.

HOW: decode_audio() turns encoded bytes into float32 channel samples with
soundfile. detect_segments() slides a 10 ms window over the first channel,
computes RMS energy per window with numpy, and runs a small state machine:
speech windows open or extend a segment, and once enough consecutive
silence accumulates the segment is closed at the point the silence began.

RULES:
- Window = floor(sample_rate × 0.01) samples (at least 1)
- A window is speech when RMS > 0.02
- A segment closes after ≥ 50 ms of silence; its end excludes that silence
- Segments shorter than 80 ms are discarded
- A segment still open at the end of the clip ends at the clip end
- Silent, empty or invalid input → [] (never raises)
- Malformed encoded audio → DecodeError from decode_audio()
"""

from __future__ import annotations

import asyncio
import io
import logging
from dataclasses import dataclass
from typing import Any, List

import numpy as np
import soundfile as sf

from narration_sync import config
from narration_sync.core.ir import AcousticSegment

logger = logging.getLogger(__name__)


class DecodeError(Exception):
    """Raised when synthesized audio bytes cannot be decoded."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


@dataclass
class DecodedAudio:
    """PCM samples decoded from a synthesis response.

    RULES:
    - channels: float32 array shaped (n_channels, n_frames)
    - duration_s: n_frames / sample_rate, always > 0
    """

    sample_rate: int
    channels: np.ndarray
    duration_s: float

    @property
    def first_channel(self) -> np.ndarray:
        return self.channels[0]

    @property
    def n_frames(self) -> int:
        return int(self.channels.shape[1])


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def decode_audio(audio_bytes: bytes) -> DecodedAudio:
    """Decode *audio_bytes* (WAV, FLAC, OGG, MP3, ...) into PCM channels.

    RULES:
    - Raises DecodeError for empty, malformed or zero-length audio
    - Never mixes channels down; the segmenter picks the first one
    """
    if not audio_bytes:
        raise DecodeError("No audio data to decode")

    try:
        with sf.SoundFile(io.BytesIO(audio_bytes)) as sound_file:
            frames = sound_file.read(dtype="float32", always_2d=True)
            sample_rate = int(sound_file.samplerate)
    except (RuntimeError, ValueError, TypeError) as exc:
        raise DecodeError(f"Could not decode audio: {exc}") from exc

    if frames.size == 0 or sample_rate <= 0:
        raise DecodeError("Decoded audio contains no samples")

    channels = np.ascontiguousarray(frames.T)
    duration = frames.shape[0] / float(sample_rate)
    logger.debug(
        "Decoded audio: %.2fs, %d Hz, %d channel(s)",
        duration, sample_rate, channels.shape[0],
    )
    return DecodedAudio(
        sample_rate=sample_rate,
        channels=channels,
        duration_s=duration,
    )


async def decode_audio_async(audio_bytes: bytes) -> DecodedAudio:
    """Awaitable decode_audio(), run off the event loop thread."""
    return await asyncio.to_thread(decode_audio, audio_bytes)


# ---------------------------------------------------------------------------
# Segmentation
# ---------------------------------------------------------------------------


def _window_rms(samples: np.ndarray, window: int) -> np.ndarray:
    """RMS energy of consecutive *window*-sample frames.

    The trailing partial frame is measured over the samples it has, not
    zero-padded.
    """
    n_full = len(samples) // window
    values = samples.astype(np.float64)

    rms = np.sqrt(np.mean(
        values[:n_full * window].reshape(n_full, window) ** 2, axis=1,
    )) if n_full else np.zeros((0,), dtype=np.float64)

    tail = values[n_full * window:]
    if tail.size:
        rms = np.append(rms, np.sqrt(np.mean(tail ** 2)))
    return rms


def _as_first_channel(samples: Any) -> np.ndarray:
    array = np.asarray(samples, dtype=np.float64)
    if array.ndim == 2:
        array = array[0] if array.shape[0] else np.zeros((0,))
    elif array.ndim != 1:
        return np.zeros((0,))
    return np.nan_to_num(array, nan=0.0, posinf=0.0, neginf=0.0)


def detect_segments(
    samples: Any,
    sample_rate: int,
    window_s: float = config.SEGMENT_WINDOW_S,
    threshold: float = config.SEGMENT_AMPLITUDE_THRESHOLD,
    min_silence_s: float = config.SEGMENT_MIN_SILENCE_S,
    min_duration_s: float = config.SEGMENT_MIN_DURATION_S,
) -> List[AcousticSegment]:
    """Find contiguous speech regions in a waveform.

    WHY: Each detected region is roughly a word or a run of words spoken
    without a pause. The resolver maps them onto the chunk's words.

    HOW: See the module docstring. *samples* is a 1-D array of one channel
    or a 2-D (channels, frames) array, in which case channel 0 is used.

    RULES:
    - Returns segments in time order, non-overlapping
    - peak_amplitude is the loudest window RMS inside the segment
    """
    try:
        channel = _as_first_channel(samples)
    except (TypeError, ValueError):
        logger.warning("Unusable samples for segmentation; returning none")
        return []

    if sample_rate is None or sample_rate <= 0 or channel.size == 0:
        return []

    window = max(1, int(sample_rate * window_s))
    window_seconds = window / float(sample_rate)
    rms = _window_rms(channel, window)

    segments: List[AcousticSegment] = []
    segment_start = None
    peak = 0.0
    silence = 0.0

    for n, energy in enumerate(rms):
        time = n * window / float(sample_rate)

        if energy > threshold:
            if segment_start is None:
                segment_start = time
                peak = float(energy)
            else:
                peak = max(peak, float(energy))
            silence = 0.0
            continue

        silence += window_seconds
        if segment_start is not None and silence >= min_silence_s:
            segment_end = time - silence
            if segment_end - segment_start >= min_duration_s:
                segments.append(AcousticSegment(
                    start=segment_start,
                    end=segment_end,
                    peak_amplitude=peak,
                ))
            segment_start = None
            peak = 0.0

    if segment_start is not None:
        clip_end = len(channel) / float(sample_rate)
        if clip_end - segment_start >= min_duration_s:
            segments.append(AcousticSegment(
                start=segment_start,
                end=clip_end,
                peak_amplitude=peak,
            ))

    logger.debug("Detected %d speech segment(s)", len(segments))
    return segments


def analyze(audio: DecodedAudio) -> List[AcousticSegment]:
    """Run detect_segments() over already-decoded audio."""
    return detect_segments(audio.first_channel, audio.sample_rate)
