"""TTS synthesizer interfaces and the OpenAI-compatible implementation.

Responsibilities:
- Define the protocol used by the generation orchestrator for one TTS call.
- Map generation settings onto an OpenAI-compatible speech request.
"""

from __future__ import annotations

from typing import Protocol

from ..models.datatypes import GenerationSettings
from .openai_client import SpeechClient
from .voices import default_base_url_for_provider, normalize_voice, supports_instructions

INTERMEDIATE_FORMAT = "mp3"


class SpeechSynthesizer(Protocol):
    """Protocol for text-to-speech collaborators."""

    def synthesize(self, text: str, settings: GenerationSettings) -> bytes:
        """Return synthesized audio bytes in the intermediate codec."""


class OpenAISpeechSynthesizer:
    """Synthesize chapter audio through an OpenAI-compatible `/audio/speech` endpoint."""

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str | None = None,
        provider: str = "openai",
        instructions: str | None = None,
        timeout_seconds: float = 45.0,
    ) -> None:
        resolved_base_url = (
            base_url
            or default_base_url_for_provider(provider)
            or "https://api.openai.com/v1"
        )
        self.client = SpeechClient(
            api_key=api_key,
            base_url=resolved_base_url,
            timeout_seconds=timeout_seconds,
        )
        self.instructions = instructions

    def synthesize(self, text: str, settings: GenerationSettings) -> bytes:
        """Synthesize `text` as mp3 with the locked voice, model, and native speed."""

        return self.client.synthesize_speech(
            model=settings.model,
            voice=normalize_voice(settings.voice, settings.model),
            text=text,
            speed=settings.native_speed,
            response_format=INTERMEDIATE_FORMAT,
            instructions=self.instructions if supports_instructions(settings.model) else None,
        )
