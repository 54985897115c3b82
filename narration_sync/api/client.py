"""Async HTTP client for the host application's speech-synthesis route.

WHY: The playback controller only knows a synthesize(text, context)
collaborator. In a real deployment that collaborator is an HTTP endpoint
owned by the host app, which talks to the actual speech provider. This
module is the default implementation of that collaborator so hosts do not
have to write HTTP plumbing themselves.

HOW: Uses httpx.AsyncClient for non-blocking HTTP. The SpeechClient is an
async context manager — enter it to open the connection pool, exit to
close it. synthesize() POSTs the chunk text and its neighbouring context
as JSON and accepts either a JSON body (audio + optional alignment) or a
raw audio/* body.

RULES:
- Always use the async context manager (async with SpeechClient(...) as client:)
- url defaults to load_tts_url() from .env
- provider defaults to NARRATION_TTS_PROVIDER from config
- Any network failure or non-2xx response raises TransportError
- Malformed response bodies also raise TransportError (status kept)
- No retries: the controller records the error on the chunk instead
"""

from __future__ import annotations

import logging

import httpx

from narration_sync.api.models import SynthesisContext, SynthesisResult
from narration_sync.config import NARRATION_TTS_PROVIDER, load_tts_url

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_TIMEOUT_S = 120.0
_CONNECT_TIMEOUT_S = 15.0


class TransportError(Exception):
    """Raised when the synthesis request fails or returns an error response.

    WHY: Callers need a typed exception to distinguish a failed synthesis
    from decode failures or programming errors. The controller records it
    on the chunk and leaves the chunk retriable.

    HOW: Wraps the HTTP status code (0 when no response was received) and
    the response body or error summary.

    RULES:
    - Always include status_code and message
    """

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"Synthesis error {status_code}: {message}")


class SpeechClient:
    """Async client for a host-provided text-to-speech endpoint.

    WHY: Provides a single synthesize() coroutine matching the controller's
    collaborator contract, with error wrapping and response parsing.

    HOW: Wraps httpx.AsyncClient. Use as an async context manager to ensure
    the HTTP connection pool is properly closed. A custom transport can be
    passed for testing (httpx.MockTransport).

    RULES:
    - Use as: async with SpeechClient() as client: ...
    - The request body is {text, chunkId, provider, previousText, nextText}
    """

    def __init__(
        self,
        url: str | None = None,
        provider: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url or load_tts_url()
        self._provider = provider or NARRATION_TTS_PROVIDER
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def provider(self) -> str:
        return self._provider

    async def __aenter__(self) -> SpeechClient:
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(_TIMEOUT_S, connect=_CONNECT_TIMEOUT_S),
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._client:
            await self._client.aclose()
            self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        """Return the active httpx client, raising if not in context manager."""
        if self._client is None:
            raise RuntimeError(
                "SpeechClient must be used as an async context manager: "
                "async with SpeechClient() as client: ..."
            )
        return self._client

    async def synthesize(
        self,
        text: str,
        context: SynthesisContext | None = None,
        chunk_id: str | None = None,
    ) -> SynthesisResult:
        """Synthesize *text* and return its audio and optional alignment.

        WHY: This is the one network call in the engine. Everything the
        controller needs (audio bytes, character timings when the provider
        has them) comes back from here.

        HOW: POSTs a JSON body. A response whose content-type is JSON is
        parsed by SynthesisResult.from_json(); anything else is taken as
        raw audio bytes with no alignment.

        RULES:
        - Raises TransportError on connection errors, timeouts, non-2xx
          responses and unparseable bodies
        - Empty text is sent as-is; the endpoint decides

        Args:
            text: The chunk text to speak.
            context: Previous/next chunk text for prosody continuity.
            chunk_id: Optional chunk id, forwarded for server-side logging.

        Returns:
            SynthesisResult with audio bytes and optional alignment.
        """
        client = self._ensure_client()
        context = context or SynthesisContext()

        body: dict = {"text": text, "provider": self._provider}
        if chunk_id is not None:
            body["chunkId"] = chunk_id
        if context.previous_text:
            body["previousText"] = context.previous_text
        if context.next_text:
            body["nextText"] = context.next_text

        try:
            resp = await client.post(self._url, json=body)
        except httpx.HTTPError as exc:
            raise TransportError(0, f"{type(exc).__name__}: {exc}") from exc

        if resp.status_code < 200 or resp.status_code >= 300:
            raise TransportError(resp.status_code, resp.text)

        content_type = resp.headers.get("content-type", "")
        if "json" in content_type:
            try:
                result = SynthesisResult.from_json(resp.json())
            except ValueError as exc:
                raise TransportError(resp.status_code, str(exc)) from exc
        else:
            if not resp.content:
                raise TransportError(resp.status_code, "Empty audio response")
            result = SynthesisResult(audio_bytes=resp.content)

        logger.info(
            "Synthesized %s: %d bytes, alignment=%s",
            chunk_id or "text", len(result.audio_bytes), result.alignment is not None,
        )
        return result
