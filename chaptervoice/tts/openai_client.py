"""OpenAI-compatible HTTP speech client.

Responsibilities:
- Send `/audio/speech` requests to OpenAI or any OpenAI-compatible endpoint.
- Classify failures so the retry policy can tell transport errors from quota errors.
- Redact secrets from provider error messages before they reach logs or the CLI.
"""

from __future__ import annotations

import json
import re
import socket
from typing import Any

import requests


class TTSProviderError(RuntimeError):
    """Raised when a speech request fails or returns an unusable payload.

    Attributes:
        failure_kind: One of `invalid_api_key`, `insufficient_quota`, `rate_limited`,
            `invalid_model`, `timeout`, `transport`, `http_error`, `unknown`.
        status_code: HTTP status when the provider answered.
        provider_code: Provider error code string when present.
    """

    def __init__(
        self,
        message: str,
        *,
        failure_kind: str = "unknown",
        status_code: int | None = None,
        provider_code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.failure_kind = failure_kind
        self.status_code = status_code
        self.provider_code = provider_code


class SpeechClient:
    """Minimal requests-based client for OpenAI-compatible speech synthesis."""

    _MAX_PROVIDER_MESSAGE_CHARS = 180

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str = "https://api.openai.com/v1",
        timeout_seconds: float = 45.0,
    ) -> None:
        self.api_key = api_key.strip() if isinstance(api_key, str) else ""
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    def synthesize_speech(
        self,
        *,
        model: str,
        voice: str,
        text: str,
        speed: float = 1.0,
        response_format: str = "mp3",
        instructions: str | None = None,
    ) -> bytes:
        """Return synthesized audio bytes from `/audio/speech`."""

        if not self.api_key:
            raise TTSProviderError(
                "Missing TTS API key. Set `CHAPTERVOICE_API_KEY`, use `--api-key`, or "
                "store one with `chaptervoice credentials`.",
                failure_kind="invalid_api_key",
            )

        payload: dict[str, Any] = {
            "model": model,
            "voice": voice,
            "input": text,
            "response_format": response_format,
            "speed": speed,
        }
        if instructions:
            payload["instructions"] = instructions

        endpoint = f"{self.base_url}/audio/speech"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            response = requests.post(
                endpoint,
                headers=headers,
                json=payload,
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
            audio = bytes(response.content)
        except requests.HTTPError as exc:
            raise self._http_error_to_provider_error(exc) from exc
        except requests.RequestException as exc:
            failure_kind = self._classify_transport_failure(exc)
            if failure_kind == "timeout":
                detail = "TTS request timed out."
            else:
                detail = f"TTS request transport error: {self._short_message(str(exc))}"
            raise TTSProviderError(detail, failure_kind=failure_kind) from exc
        except TimeoutError as exc:
            raise TTSProviderError("TTS request timed out.", failure_kind="timeout") from exc

        if not audio:
            raise TTSProviderError("TTS speech response is empty.")
        return audio

    @staticmethod
    def _decode_error_body(exc: requests.HTTPError) -> str:
        response = exc.response
        if response is None:
            return ""
        return bytes(response.content).decode("utf-8", errors="replace").strip()

    @classmethod
    def _redact_sensitive_tokens(cls, text: str) -> str:
        """Redact API-key-like tokens from provider error content."""

        redacted = re.sub(r"\bsk-[A-Za-z0-9_-]{8,}\b", "[redacted-key]", text)
        return re.sub(
            r"(?i)bearer\s+[A-Za-z0-9._-]{12,}",
            "Bearer [redacted-token]",
            redacted,
        )

    @classmethod
    def _short_message(cls, text: str) -> str:
        compact = " ".join(text.split())
        if len(compact) <= cls._MAX_PROVIDER_MESSAGE_CHARS:
            return compact
        return f"{compact[: cls._MAX_PROVIDER_MESSAGE_CHARS - 1]}..."

    @classmethod
    def _extract_provider_message(cls, body: str) -> tuple[str, str | None]:
        """Extract a concise provider message and optional provider error code."""

        if not body:
            return "", None
        try:
            payload = json.loads(body)
        except json.JSONDecodeError:
            return cls._short_message(cls._redact_sensitive_tokens(body)), None

        provider_code: str | None = None
        message: str | None = None
        if isinstance(payload, dict):
            error_payload = payload.get("error", payload)
            if isinstance(error_payload, dict):
                code_value = error_payload.get("code")
                if isinstance(code_value, str) and code_value.strip():
                    provider_code = code_value.strip()
                message_value = error_payload.get("message") or error_payload.get("detail")
                if isinstance(message_value, str) and message_value.strip():
                    message = message_value.strip()
        return cls._short_message(cls._redact_sensitive_tokens(message or body)), provider_code

    @staticmethod
    def _classify_http_failure(
        status_code: int,
        provider_message: str,
        provider_code: str | None,
    ) -> str:
        message_lower = provider_message.lower()
        normalized_code = provider_code.lower() if provider_code is not None else ""

        if status_code == 401 or "api key" in message_lower:
            return "invalid_api_key"
        if normalized_code in {"insufficient_quota", "user_daily_quota_exceeded"} or (
            status_code in {402, 429} and "quota" in message_lower
        ):
            return "insufficient_quota"
        if status_code == 429:
            return "rate_limited"
        if normalized_code == "model_not_found" or (
            "model" in message_lower
            and any(
                phrase in message_lower
                for phrase in ("not found", "does not exist", "invalid")
            )
        ):
            return "invalid_model"
        if status_code in {408, 504} or "timed out" in message_lower:
            return "timeout"
        return "http_error"

    @staticmethod
    def _classify_transport_failure(reason: object) -> str:
        if isinstance(reason, TimeoutError | socket.timeout | requests.Timeout):
            return "timeout"
        return "transport"

    @classmethod
    def _http_error_to_provider_error(cls, exc: requests.HTTPError) -> TTSProviderError:
        status_code = exc.response.status_code if exc.response is not None else 0
        provider_message, provider_code = cls._extract_provider_message(
            cls._decode_error_body(exc)
        )
        failure_kind = cls._classify_http_failure(status_code, provider_message, provider_code)

        headline = {
            "invalid_api_key": "TTS authentication failed",
            "insufficient_quota": "TTS quota is insufficient for this request",
            "rate_limited": "TTS provider rate limit reached",
            "invalid_model": "TTS provider rejected the selected model",
            "timeout": "TTS request timed out",
        }.get(failure_kind, "TTS request failed")

        if provider_message:
            detail = f"{headline} (HTTP {status_code}): {provider_message}"
        else:
            detail = f"{headline} (HTTP {status_code})."
        return TTSProviderError(
            detail,
            failure_kind=failure_kind,
            status_code=status_code,
            provider_code=provider_code,
        )
