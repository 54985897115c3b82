"""Tests for the speech synthesis client and its response models.

WHY: The client is the only network boundary. It must turn every way a
request can fail into a TransportError, and accept every response shape
the host route is known to produce.

HOW: SpeechClient is given an httpx.MockTransport whose handler returns
canned responses and records the request it saw. Coroutines run inside
asyncio.run() from synchronous tests.

RULES:
- No real network traffic, ever
- An invalid alignment block never costs us the audio
"""

from __future__ import annotations

import asyncio
import base64
import json

import httpx
import pytest

from narration_sync.api.client import SpeechClient, TransportError
from narration_sync.api.models import (
    SynthesisContext,
    SynthesisResult,
    parse_alignment,
)
from narration_sync.config import load_tts_url

URL = "http://host.test/api/tts"

ALIGNMENT = {
    "characters": ["H", "i"],
    "character_start_times_seconds": [0.0, 0.1],
    "character_end_times_seconds": [0.1, 0.25],
}


def _run(handler, text="Hi", **kwargs):
    """Call synthesize() once against a mock transport."""
    seen = {}

    def recording(request: httpx.Request) -> httpx.Response:
        seen["request"] = request
        return handler(request)

    async def go():
        async with SpeechClient(url=URL, provider="elevenlabs",
                                transport=httpx.MockTransport(recording)) as client:
            return await client.synthesize(text, **kwargs)

    return asyncio.run(go()), seen


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


class TestResponses:

    def test_json_with_byte_list_and_alignment(self):
        result, _ = _run(lambda r: httpx.Response(
            200, json={"audio": [73, 68, 51], "alignment": ALIGNMENT},
        ))
        assert result.audio_bytes == b"ID3"
        assert result.alignment.characters == ["H", "i"]
        assert result.alignment.char_end == [0.1, 0.25]

    def test_json_with_base64_audio(self):
        encoded = base64.b64encode(b"RIFFdata").decode()
        result, _ = _run(lambda r: httpx.Response(200, json={"audioBase64": encoded}))
        assert result.audio_bytes == b"RIFFdata"
        assert result.alignment is None

    def test_camel_case_normalized_alignment(self):
        """normalizedAlignment is used when alignment is absent."""
        payload = {
            "audio": [1, 2, 3],
            "normalizedAlignment": {
                "characters": ["a"],
                "characterStartTimesSeconds": [0.0],
                "characterEndTimesSeconds": [0.2],
            },
        }
        result, _ = _run(lambda r: httpx.Response(200, json=payload))
        assert result.alignment.char_start == [0.0]

    def test_invalid_alignment_dropped_audio_kept(self):
        payload = {"audio": [1, 2, 3], "alignment": {"characters": "Hi"}}
        result, _ = _run(lambda r: httpx.Response(200, json=payload))
        assert result.audio_bytes == b"\x01\x02\x03"
        assert result.alignment is None

    def test_raw_audio_response(self):
        result, _ = _run(lambda r: httpx.Response(
            200, content=b"\xff\xfbmp3", headers={"content-type": "audio/mpeg"},
        ))
        assert result.audio_bytes == b"\xff\xfbmp3"
        assert result.alignment is None


# ---------------------------------------------------------------------------
# Request body
# ---------------------------------------------------------------------------


class TestRequest:

    def test_body_carries_context_and_provider(self):
        _, seen = _run(
            lambda r: httpx.Response(200, content=b"x", headers={"content-type": "audio/mpeg"}),
            text="middle",
            context=SynthesisContext(previous_text="before", next_text="after"),
            chunk_id="chunk-1",
        )
        request = seen["request"]
        assert request.method == "POST"
        assert str(request.url) == URL
        assert json.loads(request.content) == {
            "text": "middle",
            "provider": "elevenlabs",
            "chunkId": "chunk-1",
            "previousText": "before",
            "nextText": "after",
        }

    def test_missing_context_fields_are_omitted(self):
        _, seen = _run(lambda r: httpx.Response(
            200, content=b"x", headers={"content-type": "audio/mpeg"},
        ))
        body = json.loads(seen["request"].content)
        assert set(body) == {"text", "provider"}


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class TestErrors:

    def test_non_2xx(self):
        with pytest.raises(TransportError) as excinfo:
            _run(lambda r: httpx.Response(429, text="rate limited"))
        assert excinfo.value.status_code == 429
        assert excinfo.value.message == "rate limited"

    def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransportError) as excinfo:
            _run(handler)
        assert excinfo.value.status_code == 0
        assert "ConnectError" in excinfo.value.message

    def test_json_without_audio(self):
        with pytest.raises(TransportError):
            _run(lambda r: httpx.Response(200, json={"alignment": ALIGNMENT}))

    def test_empty_raw_audio(self):
        with pytest.raises(TransportError):
            _run(lambda r: httpx.Response(200, content=b"", headers={"content-type": "audio/mpeg"}))

    def test_outside_context_manager(self):
        client = SpeechClient(url=URL)
        with pytest.raises(RuntimeError):
            asyncio.run(client.synthesize("Hi"))

    def test_missing_url(self, monkeypatch):
        """Without a URL argument the endpoint must come from the environment."""
        monkeypatch.delenv("NARRATION_TTS_URL", raising=False)
        with pytest.raises(ValueError):
            load_tts_url()
        with pytest.raises(ValueError):
            SpeechClient()

    def test_url_from_environment(self, monkeypatch):
        monkeypatch.setenv("NARRATION_TTS_URL", URL)
        assert load_tts_url() == URL


# ---------------------------------------------------------------------------
# Model helpers
# ---------------------------------------------------------------------------


class TestModels:

    def test_parse_alignment_length_mismatch(self):
        data = dict(ALIGNMENT, character_end_times_seconds=[0.1])
        assert parse_alignment(data) is None

    def test_parse_alignment_none(self):
        assert parse_alignment(None) is None

    def test_alignment_preferred_over_normalized(self):
        other = dict(ALIGNMENT, characters=["X", "y"])
        result = SynthesisResult.from_json(
            {"audio": [1], "alignment": ALIGNMENT, "normalized_alignment": other},
        )
        assert result.alignment.characters == ["H", "i"]

    def test_from_json_rejects_non_object(self):
        with pytest.raises(ValueError):
            SynthesisResult.from_json([1, 2, 3])
