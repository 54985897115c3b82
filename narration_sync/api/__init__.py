"""Synthesis client package — async HTTP interface to the host's TTS route.

WHY: The playback controller requests audio through an opaque
synthesize(text, context) collaborator. This package provides the default
HTTP implementation of that collaborator.

HOW: Uses httpx.AsyncClient for non-blocking HTTP. Response data is parsed
into typed dataclasses defined in models.py.

RULES:
- All HTTP calls go through SpeechClient (no direct httpx usage elsewhere)
- The endpoint URL comes from config, never hardcoded
"""

from narration_sync.api.client import SpeechClient, TransportError
from narration_sync.api.models import SynthesisContext, SynthesisResult

__all__ = ["SpeechClient", "SynthesisContext", "SynthesisResult", "TransportError"]
