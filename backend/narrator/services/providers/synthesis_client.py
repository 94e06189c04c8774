"""
Speech synthesis HTTP adapter.

Turns a text segment into audio bytes. Callers split text so that no
segment exceeds max_input_chars.
"""

import logging

import httpx

from narrator.config import Settings
from narrator.services.errors import TerminalProviderError
from narrator.services.providers.base import BaseProviderClient, ProviderConfig

logger = logging.getLogger(__name__)


class HttpSynthesisClient(BaseProviderClient):
    """
    Async HTTP client for the text-to-speech service.

    Example:
        async with HttpSynthesisClient.from_settings(settings) as client:
            audio = await client.synthesize("A dog runs across the park.")
    """

    provider_name = "synthesis"

    def __init__(
        self,
        config: ProviderConfig,
        voice: str = "default",
        max_input_chars: int = 2500,
        http_client: httpx.AsyncClient | None = None,
    ):
        super().__init__(config, http_client=http_client)
        self.voice = voice
        self.max_input_chars = max_input_chars

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
    ) -> "HttpSynthesisClient":
        """Create client from application settings."""
        config = ProviderConfig(
            base_url=settings.synthesis_url,
            timeout=settings.provider_call_timeout_seconds,
        )
        return cls(
            config,
            voice=settings.synthesis_voice,
            max_input_chars=settings.synthesis_max_chars,
            http_client=http_client,
        )

    async def synthesize(self, text: str) -> bytes:
        """
        Synthesize speech for one text segment.

        Raises:
            TerminalProviderError: Text longer than max_input_chars or
                the service rejected it
            RetryableProviderError: Throttling, timeout, 5xx
        """
        if len(text) > self.max_input_chars:
            raise TerminalProviderError(
                f"synthesize input too long: {len(text)} > {self.max_input_chars}",
                provider=self.provider_name,
            )

        response = await self._post_json(
            "/v1/synthesize",
            {"text": text, "voice": self.voice},
            operation="synthesize",
        )

        audio = response.content
        if not audio:
            raise TerminalProviderError(
                "synthesize returned empty audio",
                provider=self.provider_name,
            )

        logger.debug(f"Synthesized {len(text)} chars -> {len(audio)} bytes")
        return audio
