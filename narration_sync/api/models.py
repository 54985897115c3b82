"""Synthesis request and response dataclasses.

WHY: The host's speech-synthesis route answers in one of two shapes — a
JSON body carrying audio plus optional character timings, or the raw audio
bytes alone. Typed dataclasses make both explicit and keep payload quirks
(snake_case vs camelCase keys, byte lists vs base64) out of the
controller.

HOW: SynthesisContext carries neighbouring text for prosody continuity.
SynthesisResult.from_json() parses a JSON body: audio comes from "audio"
(list of byte values) or "audio_base64"/"audioBase64"; alignment from
"alignment", falling back to "normalized_alignment". Each alignment block
is validated with jsonschema before it is trusted.

RULES:
- An alignment block that fails validation is dropped (audio is kept)
- Both snake_case and camelCase timing keys are accepted
- "alignment" wins over "normalized_alignment" when both are valid
- A body with no usable audio raises ValueError
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass

import jsonschema

from narration_sync.core.ir import CharacterAlignment

logger = logging.getLogger(__name__)


_NUMBER_LIST = {"type": "array", "items": {"type": "number"}}

ALIGNMENT_SCHEMA: dict = {
    "type": "object",
    "required": ["characters"],
    "properties": {
        "characters": {"type": "array", "items": {"type": "string"}},
        "character_start_times_seconds": _NUMBER_LIST,
        "character_end_times_seconds": _NUMBER_LIST,
        "characterStartTimesSeconds": _NUMBER_LIST,
        "characterEndTimesSeconds": _NUMBER_LIST,
    },
    "anyOf": [
        {"required": ["character_start_times_seconds", "character_end_times_seconds"]},
        {"required": ["characterStartTimesSeconds", "characterEndTimesSeconds"]},
    ],
}


@dataclass
class SynthesisContext:
    """Neighbouring text sent with a synthesis request.

    WHY: Providers produce smoother intonation across chunk boundaries when
    they know what comes before and after.

    RULES:
    - Both fields are optional; None means "start/end of document"
    """

    previous_text: str | None = None
    next_text: str | None = None


def parse_alignment(data: object) -> CharacterAlignment | None:
    """Parse one provider alignment block, or return None if unusable.

    RULES:
    - Schema violations are logged and return None
    - Parallel arrays of different lengths return None
    """
    if data is None:
        return None
    try:
        jsonschema.validate(instance=data, schema=ALIGNMENT_SCHEMA)
    except jsonschema.ValidationError as exc:
        logger.warning("Ignoring invalid alignment payload: %s", exc.message)
        return None

    starts = data.get("character_start_times_seconds", data.get("characterStartTimesSeconds"))
    ends = data.get("character_end_times_seconds", data.get("characterEndTimesSeconds"))
    alignment = CharacterAlignment(
        characters=list(data["characters"]),
        char_start=[float(s) for s in starts],
        char_end=[float(e) for e in ends],
    )
    if not alignment.is_consistent():
        logger.warning(
            "Ignoring alignment with mismatched lengths (%d chars, %d starts, %d ends)",
            len(alignment.characters), len(alignment.char_start), len(alignment.char_end),
        )
        return None
    return alignment


def _audio_from_json(data: dict) -> bytes:
    raw = data.get("audio")
    if isinstance(raw, list):
        try:
            return bytes(raw)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid audio byte list: {exc}") from exc

    encoded = data.get("audio_base64") or data.get("audioBase64")
    if isinstance(encoded, str):
        try:
            return base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError(f"Invalid base64 audio: {exc}") from exc

    raise ValueError("Synthesis response contains no audio")


@dataclass
class SynthesisResult:
    """Audio returned by the synthesis collaborator.

    RULES:
    - audio_bytes: encoded audio (mp3, wav, ...), never empty
    - alignment: provider character timings, or None
    """

    audio_bytes: bytes
    alignment: CharacterAlignment | None = None

    @classmethod
    def from_json(cls, data: dict) -> SynthesisResult:
        """Parse a JSON synthesis response body.

        HOW: Audio first (required), then "alignment", then
        "normalized_alignment"/"normalizedAlignment" if the first is
        missing or invalid.
        """
        if not isinstance(data, dict):
            raise ValueError("Synthesis response is not a JSON object")

        audio = _audio_from_json(data)
        if not audio:
            raise ValueError("Synthesis response contains empty audio")

        alignment = parse_alignment(data.get("alignment"))
        if alignment is None:
            normalized = data.get("normalized_alignment", data.get("normalizedAlignment"))
            alignment = parse_alignment(normalized)

        return cls(audio_bytes=audio, alignment=alignment)
