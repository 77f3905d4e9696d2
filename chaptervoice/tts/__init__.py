"""Text-to-speech provider abstractions.

This package contains the synthesizer protocol and the OpenAI-compatible
implementation used by the generation orchestrator.
"""

from .openai_client import SpeechClient, TTSProviderError
from .synthesizer import OpenAISpeechSynthesizer, SpeechSynthesizer
from .voices import default_voice_for_provider

__all__ = [
    "OpenAISpeechSynthesizer",
    "SpeechClient",
    "SpeechSynthesizer",
    "TTSProviderError",
    "default_voice_for_provider",
]
