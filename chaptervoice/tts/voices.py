"""Provider defaults for voices, models, and endpoints.

Responsibilities:
- Pick default voice and model per provider when the caller gives none.
- Normalize provider-specific voice strings before synthesis.
"""

from __future__ import annotations

from ..parsing import normalize_optional_string

KOKORO_MODEL = "hexgrad/Kokoro-82M"
DEFAULT_OPENAI_MODEL = "gpt-4o-mini-tts"

_DEFAULT_VOICES = {"openai": "alloy", "deepinfra": "af_bella"}
_DEFAULT_BASE_URLS = {
    "openai": "https://api.openai.com/v1",
    "deepinfra": "https://api.deepinfra.com/v1/openai",
}


def default_voice_for_provider(provider: str) -> str:
    """Return the default voice for `provider` (`af_sarah` for custom endpoints)."""

    return _DEFAULT_VOICES.get(provider.lower(), "af_sarah")


def default_model_for_provider(provider: str) -> str:
    if provider.lower() == "deepinfra":
        return KOKORO_MODEL
    return DEFAULT_OPENAI_MODEL


def default_base_url_for_provider(provider: str) -> str | None:
    """Return the known endpoint for `provider`, or `None` for custom providers."""

    return _DEFAULT_BASE_URLS.get(provider.lower())


def is_kokoro_model(model: str) -> bool:
    return "kokoro" in model.lower()


def normalize_voice(voice: str, model: str) -> str:
    """Strip Kokoro-style voice blends (`a+b`) for models that do not support them."""

    if is_kokoro_model(model) or "+" not in voice:
        return voice
    return normalize_optional_string(voice.split("+", 1)[0]) or voice


def supports_instructions(model: str) -> bool:
    return model == DEFAULT_OPENAI_MODEL
