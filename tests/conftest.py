"""Shared test fixtures for the narration_sync test suite.

WHY: Segmenter, controller and queue tests all need synthetic audio, a
controllable clock, and a stand-in for the speech provider. Centralizing
them here keeps each test module focused on behaviour.

HOW: Helpers build sine-burst waveforms with numpy (and WAV bytes with
soundfile), FakeClock replaces time.monotonic, and FakeSynth implements the
synthesize(text, context) collaborator plus a matching decode() so the
controller can run without real audio files.

RULES:
- No network and no sound device is ever touched
- Waveforms are deterministic (fixed frequency, no noise)
- FakeSynth durations default to 2.0 s per chunk
"""

from __future__ import annotations

import asyncio
import io
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pytest
import soundfile as sf

from narration_sync.api.client import TransportError
from narration_sync.api.models import SynthesisContext, SynthesisResult
from narration_sync.core.ir import CharacterAlignment
from narration_sync.core.segmenter import DecodedAudio


# ---------------------------------------------------------------------------
# Audio helpers
# ---------------------------------------------------------------------------


def make_tone(
    bursts: Sequence[Tuple[float, float]],
    duration: float,
    sample_rate: int = 16000,
    amplitude: float = 0.5,
) -> np.ndarray:
    """Silence of *duration* seconds with 220 Hz bursts at *bursts*."""
    n = int(round(duration * sample_rate))
    y = np.zeros(n, dtype=np.float32)
    for start, end in bursts:
        i0 = int(round(start * sample_rate))
        i1 = int(round(end * sample_rate))
        t = np.arange(i1 - i0) / sample_rate
        y[i0:i1] = amplitude * np.sin(2 * np.pi * 220.0 * t)
    return y


def make_wav_bytes(samples: np.ndarray, sample_rate: int = 16000) -> bytes:
    buffer = io.BytesIO()
    sf.write(buffer, samples, sample_rate, format="WAV")
    return buffer.getvalue()


def make_decoded(
    duration: float,
    bursts: Sequence[Tuple[float, float]] = (),
    sample_rate: int = 8000,
) -> DecodedAudio:
    samples = make_tone(bursts, duration, sample_rate)
    return DecodedAudio(
        sample_rate=sample_rate,
        channels=samples[np.newaxis, :],
        duration_s=len(samples) / float(sample_rate),
    )


def even_alignment(text: str, duration: float) -> CharacterAlignment:
    """Character timings that spread *text* evenly over *duration*."""
    chars = list(text)
    step = duration / len(chars)
    return CharacterAlignment(
        characters=chars,
        char_start=[i * step for i in range(len(chars))],
        char_end=[(i + 1) * step for i in range(len(chars))],
    )


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced replacement for time.monotonic."""

    def __init__(self, start: float = 100.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


# ---------------------------------------------------------------------------
# Synthesis collaborator
# ---------------------------------------------------------------------------


class FakeSynth:
    """In-memory synthesize() + decode() pair for controller tests.

    Each call returns bytes of the form b"audio:<n>", which decode()
    resolves to a DecodedAudio registered at synthesis time.
    """

    def __init__(
        self,
        duration: float = 2.0,
        bursts: Sequence[Tuple[float, float]] = (),
        with_alignment: bool = False,
    ) -> None:
        self.duration = duration
        self.bursts = tuple(bursts)
        self.with_alignment = with_alignment
        self.calls: List[Tuple[str, SynthesisContext]] = []
        self.fail_texts: set = set()
        self.gate: Optional[asyncio.Event] = None
        self.durations: Dict[str, float] = {}
        self._audio: Dict[bytes, DecodedAudio] = {}
        self._served = 0

    async def __call__(self, text: str, context: SynthesisContext) -> SynthesisResult:
        self.calls.append((text, context))
        if self.gate is not None:
            await self.gate.wait()
        if text in self.fail_texts:
            raise TransportError(503, "provider unavailable")

        duration = self.durations.get(text, self.duration)
        self._served += 1
        key = b"audio:%d" % self._served
        self._audio[key] = make_decoded(duration, self.bursts)
        alignment: Optional[CharacterAlignment] = None
        if self.with_alignment:
            alignment = even_alignment(text, duration)
        return SynthesisResult(audio_bytes=key, alignment=alignment)

    async def decode(self, audio_bytes: bytes) -> DecodedAudio:
        return self._audio[audio_bytes]


@pytest.fixture
def synth():
    return FakeSynth()
