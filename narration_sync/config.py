"""Configuration constants, timing defaults, and .env loading.

WHY: Centralizes every tunable number of the sync engine — chunk size,
speaking rate, segmentation thresholds, highlight lookahead — so they are
easy to find, update, and override. They are plain module-level values,
not buried in logic, so both humans and coding agents can modify them
confidently.

HOW: python-dotenv loads the .env file on import. Constants are defined
as module-level floats, ints and strings with os.getenv overrides. The
load_tts_url() function provides a clear error when the synthesis
endpoint is missing.

RULES:
- All durations are float seconds
- All defaults can be overridden via environment variables
- The synthesis endpoint is loaded from .env, never hardcoded
"""

from __future__ import annotations

import os

from dotenv import load_dotenv

# Load .env from the project root (where the host app is run from)
load_dotenv()


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


# ---------------------------------------------------------------------------
# Chunking and estimation
# ---------------------------------------------------------------------------

WORDS_PER_CHUNK = _env_int("WORDS_PER_CHUNK", 1000)
"""Word budget per synthesized chunk. Large chunks avoid audible cuts."""

WORDS_PER_MINUTE = _env_float("WORDS_PER_MINUTE", 150.0)
"""Speaking rate used for pre-audio duration estimates."""

# ---------------------------------------------------------------------------
# Acoustic segmentation
# ---------------------------------------------------------------------------

SEGMENT_WINDOW_S = 0.01
SEGMENT_AMPLITUDE_THRESHOLD = 0.02
SEGMENT_MIN_SILENCE_S = 0.05
SEGMENT_MIN_DURATION_S = 0.08

# ---------------------------------------------------------------------------
# Alignment and playback
# ---------------------------------------------------------------------------

FALLBACK_WORD_DURATION_S = 0.3
"""Span given to a word whose provider characters could not be matched."""

HIGHLIGHT_LOOKAHEAD_S = _env_float("HIGHLIGHT_LOOKAHEAD_S", 0.1)
"""Added to the audio clock before word lookup to hide display lag."""

SKIP_SECONDS = _env_float("SKIP_SECONDS", 10.0)

# ---------------------------------------------------------------------------
# Synthesis endpoint
# ---------------------------------------------------------------------------

NARRATION_TTS_PROVIDER = os.getenv("NARRATION_TTS_PROVIDER", "elevenlabs")


def load_tts_url() -> str:
    """Load the synthesis endpoint URL from the environment.

    WHY: The SpeechClient needs to know where the host's TTS route lives.
    Loading it from the environment (via .env) keeps deployment details
    out of source code.

    HOW: Reads NARRATION_TTS_URL from os.environ (populated by python-dotenv).

    RULES:
    - Raises ValueError if the URL is missing or empty
    - Never returns a default/placeholder value
    """
    url = os.getenv("NARRATION_TTS_URL", "").strip()
    if not url:
        raise ValueError(
            "Synthesis endpoint not configured. "
            "Add NARRATION_TTS_URL to the .env file of the host app."
        )
    return url
