"""Configuration model and loaders for chaptervoice.

Responsibilities:
- Define storage, row-store, and TTS configuration as a typed dataclass.
- Provide deterministic precedence resolution for runtime provider values.
- Provide loader entry points for file- and environment-based configuration.

Key types:
- `ChaptervoiceConfig`: normalized settings for one CLI invocation.
- `ProviderRuntimeConfig`: resolved provider, model, voice, and credentials.
- `RuntimeConfigSources`: optional value sources for precedence resolution.
- `ConfigLoader`: static construction helpers for `ChaptervoiceConfig`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import math
import os
from pathlib import Path
from typing import Any, Mapping

import yaml

from .models.datatypes import GenerationSettings, normalize_audio_format
from .parsing import (
    normalize_optional_string,
    parse_permissive_boolean,
    parse_required_boolean,
)
from .storage.blobstore import DEFAULT_STORAGE_ROOT
from .tts.voices import (
    default_base_url_for_provider,
    default_model_for_provider,
    default_voice_for_provider,
)

_SUPPORTED_PROVIDER_IDS = frozenset({"openai", "deepinfra", "custom"})
_SUPPORTED_STORAGE_BACKENDS = frozenset({"local", "s3"})
_DEFAULT_DATA_DIR = Path("chaptervoice-data")


@dataclass(frozen=True, slots=True)
class RuntimeConfigSources:
    """Source mappings used for deterministic runtime value precedence.

    Attributes:
        cli: Values explicitly provided by CLI arguments.
        secure: Values loaded from secure local credential storage.
        env: Values loaded from environment variables.
    """

    cli: Mapping[str, str] = field(default_factory=dict)
    secure: Mapping[str, str] = field(default_factory=dict)
    env: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ProviderRuntimeConfig:
    """Resolved TTS provider values for one run.

    Attributes:
        provider: TTS provider identifier.
        model: TTS model identifier.
        voice: Voice identifier.
        api_key: Provider API key (never logged or persisted).
        base_url: OpenAI-compatible API base URL, when not the provider default.
    """

    provider: str
    model: str
    voice: str
    api_key: str | None = None
    base_url: str | None = None


@dataclass(slots=True)
class ChaptervoiceConfig:
    """Runtime configuration for one CLI invocation.

    Attributes:
        storage_backend: `local` (filesystem) or `s3`.
        storage_dir: Root directory of the local blob store.
        storage_prefix: Key prefix under which every book is stored.
        db_path: SQLite row-store path.
        namespace: Optional storage namespace segment.
        owner_id: Owner scope; the unclaimed placeholder when unset.
        s3_bucket: Bucket name for the `s3` backend.
        s3_region: Bucket region.
        s3_access_key_id: Access key id; boto3 default credentials when unset.
        s3_secret_access_key: Secret access key.
        s3_endpoint: Custom endpoint for S3-compatible services.
        s3_force_path_style: Use path-style bucket addressing.
        tts_provider: TTS provider identifier.
        tts_model: TTS model, the provider default when unset.
        tts_voice: TTS voice, the provider default when unset.
        native_speed: Speed passed to the TTS provider.
        post_speed: Tempo applied by the transcoder.
        output_format: Chapter container format (`mp3` or `m4b`).
        base_url: OpenAI-compatible API base URL override.
        api_key: Optional provider API key.
        tts_max_attempts: Total TTS attempts per chapter.
        clean_text: Apply speech-oriented text cleanup before synthesis.
        runtime_sources: Optional runtime source overrides injected by CLI.
    """

    storage_backend: str = "local"
    storage_dir: Path = _DEFAULT_DATA_DIR / "blobs"
    storage_prefix: str = DEFAULT_STORAGE_ROOT
    db_path: Path = _DEFAULT_DATA_DIR / "chaptervoice.sqlite3"
    namespace: str | None = None
    owner_id: str | None = None
    s3_bucket: str | None = None
    s3_region: str = "us-east-1"
    s3_access_key_id: str | None = None
    s3_secret_access_key: str | None = None
    s3_endpoint: str | None = None
    s3_force_path_style: bool = False
    tts_provider: str = "openai"
    tts_model: str | None = None
    tts_voice: str | None = None
    native_speed: float = 1.0
    post_speed: float = 1.0
    output_format: str = "m4b"
    base_url: str | None = None
    api_key: str | None = None
    tts_max_attempts: int = 2
    clean_text: bool = False
    runtime_sources: RuntimeConfigSources = field(default_factory=RuntimeConfigSources)

    def validate(self) -> None:
        """Validate configuration values before any storage or provider access."""

        if self.storage_backend not in _SUPPORTED_STORAGE_BACKENDS:
            supported = ", ".join(sorted(_SUPPORTED_STORAGE_BACKENDS))
            raise ValueError(
                f"Unsupported `storage_backend` value `{self.storage_backend}`; "
                f"supported: {supported}."
            )
        if self.storage_backend == "s3" and not self.s3_bucket:
            raise ValueError("`s3_bucket` is required when `storage_backend` is `s3`.")
        self._validate_provider_id(self.tts_provider)
        self._require_positive_speed(self.native_speed, "native_speed")
        self._require_positive_speed(self.post_speed, "post_speed")
        self.output_format = normalize_audio_format(self.output_format)
        if self.tts_max_attempts <= 0:
            raise ValueError("`tts_max_attempts` must be a positive integer.")

    def resolved_provider_runtime(
        self, sources: RuntimeConfigSources | None = None
    ) -> ProviderRuntimeConfig:
        """Resolve provider values with deterministic source precedence.

        Precedence for each key is:
        `cli` > `secure` > `env` > config field default.
        Model, voice, and base URL defaults follow the resolved provider.
        """

        resolved_sources = sources if sources is not None else self.runtime_sources
        provider = self._resolve_runtime_value(
            key="tts_provider",
            env_key="CHAPTERVOICE_TTS_PROVIDER",
            default_value=self.tts_provider,
            sources=resolved_sources,
        )
        self._validate_provider_id(provider)
        model = self._resolve_runtime_value(
            key="tts_model",
            env_key="CHAPTERVOICE_TTS_MODEL",
            default_value=self.tts_model or default_model_for_provider(provider),
            sources=resolved_sources,
        )
        voice = self._resolve_runtime_value(
            key="tts_voice",
            env_key="CHAPTERVOICE_TTS_VOICE",
            default_value=self.tts_voice or default_voice_for_provider(provider),
            sources=resolved_sources,
        )
        api_key = self._resolve_optional_runtime_value(
            key="api_key",
            env_key="CHAPTERVOICE_API_KEY",
            default_value=self.api_key,
            sources=resolved_sources,
        )
        base_url = self._resolve_optional_runtime_value(
            key="base_url",
            env_key="CHAPTERVOICE_BASE_URL",
            default_value=self.base_url or default_base_url_for_provider(provider),
            sources=resolved_sources,
        )
        if provider == "custom" and base_url is None:
            raise ValueError("`base_url` is required for the `custom` TTS provider.")
        return ProviderRuntimeConfig(
            provider=provider,
            model=model,
            voice=voice,
            api_key=api_key,
            base_url=base_url,
        )

    def generation_settings(self, runtime: ProviderRuntimeConfig) -> GenerationSettings:
        """Return the settings a new book will be locked to."""

        return GenerationSettings(
            provider=runtime.provider,
            model=runtime.model,
            voice=runtime.voice,
            native_speed=self.native_speed,
            post_speed=self.post_speed,
            format=self.output_format,
        )

    def _resolve_runtime_value(
        self,
        key: str,
        env_key: str,
        default_value: str | None,
        sources: RuntimeConfigSources,
    ) -> str:
        """Resolve a runtime value from sources in deterministic precedence order."""

        value = self._resolve_optional_runtime_value(key, env_key, default_value, sources)
        if value is None:
            raise ValueError(
                f"`{key}` could not be resolved from CLI, secure storage, env, or defaults."
            )
        return value

    def _resolve_optional_runtime_value(
        self,
        key: str,
        env_key: str,
        default_value: str | None,
        sources: RuntimeConfigSources,
    ) -> str | None:
        for mapping, lookup_key in (
            (sources.cli, key),
            (sources.secure, key),
            (sources.env, env_key),
        ):
            value = self._normalized_lookup(mapping, lookup_key)
            if value is not None:
                return value
        return normalize_optional_string(default_value)

    @staticmethod
    def _normalized_lookup(mapping: Mapping[str, str], key: str) -> str | None:
        """Return a stripped mapping value for a key or `None` when missing/blank."""

        if key not in mapping:
            return None
        return normalize_optional_string(mapping.get(key))

    @staticmethod
    def _validate_provider_id(provider_id: str) -> None:
        if provider_id not in _SUPPORTED_PROVIDER_IDS:
            supported = ", ".join(sorted(_SUPPORTED_PROVIDER_IDS))
            raise ValueError(
                f"Unsupported `tts_provider` value `{provider_id}`; supported: {supported}."
            )

    @staticmethod
    def _require_positive_speed(value: float, field_name: str) -> None:
        if not math.isfinite(value) or value <= 0:
            raise ValueError(f"`{field_name}` must be a positive number.")


class ConfigLoader:
    """Factory methods for creating `ChaptervoiceConfig` from external sources."""

    _SUPPORTED_YAML_KEYS = frozenset(
        {
            "storage_backend",
            "storage_dir",
            "storage_prefix",
            "db_path",
            "namespace",
            "owner_id",
            "s3_bucket",
            "s3_region",
            "s3_access_key_id",
            "s3_secret_access_key",
            "s3_endpoint",
            "s3_force_path_style",
            "tts_provider",
            "tts_model",
            "tts_voice",
            "native_speed",
            "post_speed",
            "output_format",
            "base_url",
            "api_key",
            "tts_max_attempts",
            "clean_text",
        }
    )
    _RUNTIME_ENV_KEYS = frozenset(
        {
            "CHAPTERVOICE_TTS_PROVIDER",
            "CHAPTERVOICE_TTS_MODEL",
            "CHAPTERVOICE_TTS_VOICE",
            "CHAPTERVOICE_API_KEY",
            "CHAPTERVOICE_BASE_URL",
        }
    )
    _PATH_KEYS = frozenset({"storage_dir", "db_path"})
    _FLOAT_KEYS = frozenset({"native_speed", "post_speed"})
    _BOOL_KEYS = frozenset({"s3_force_path_style", "clean_text"})
    _INT_KEYS = frozenset({"tts_max_attempts"})
    # Environment variable for each config field.
    _ENV_FIELDS = {
        "CHAPTERVOICE_STORAGE_BACKEND": "storage_backend",
        "CHAPTERVOICE_STORAGE_DIR": "storage_dir",
        "S3_PREFIX": "storage_prefix",
        "CHAPTERVOICE_DB_PATH": "db_path",
        "CHAPTERVOICE_NAMESPACE": "namespace",
        "CHAPTERVOICE_OWNER_ID": "owner_id",
        "S3_BUCKET": "s3_bucket",
        "S3_REGION": "s3_region",
        "S3_ACCESS_KEY_ID": "s3_access_key_id",
        "S3_SECRET_ACCESS_KEY": "s3_secret_access_key",
        "S3_ENDPOINT": "s3_endpoint",
        "S3_FORCE_PATH_STYLE": "s3_force_path_style",
        "CHAPTERVOICE_TTS_PROVIDER": "tts_provider",
        "CHAPTERVOICE_TTS_MODEL": "tts_model",
        "CHAPTERVOICE_TTS_VOICE": "tts_voice",
        "CHAPTERVOICE_NATIVE_SPEED": "native_speed",
        "CHAPTERVOICE_POST_SPEED": "post_speed",
        "CHAPTERVOICE_OUTPUT_FORMAT": "output_format",
        "CHAPTERVOICE_BASE_URL": "base_url",
        "CHAPTERVOICE_API_KEY": "api_key",
        "CHAPTERVOICE_TTS_MAX_ATTEMPTS": "tts_max_attempts",
        "CHAPTERVOICE_CLEAN_TEXT": "clean_text",
    }

    @staticmethod
    def from_yaml(path: Path) -> ChaptervoiceConfig:
        """Create a validated config from a YAML file."""

        payload = yaml.safe_load(path.read_text(encoding="utf-8"))
        if payload is None:
            payload = {}
        if not isinstance(payload, Mapping):
            raise ValueError(f"YAML config `{path}` must contain a top-level mapping/object.")

        source_label = f"YAML `{path}`"
        unknown = sorted(set(payload).difference(ConfigLoader._SUPPORTED_YAML_KEYS))
        if unknown:
            raise ValueError(f"{source_label} includes unsupported key(s): {', '.join(unknown)}.")

        values = {
            key: ConfigLoader._coerce(key, raw_value, f"{source_label} field `{key}`")
            for key, raw_value in payload.items()
        }
        config = ChaptervoiceConfig(
            **{key: value for key, value in values.items() if value is not None},
            runtime_sources=ConfigLoader.runtime_sources_from_env(),
        )
        config.validate()
        return config

    @staticmethod
    def from_env(env: Mapping[str, str] | None = None) -> ChaptervoiceConfig:
        """Create a validated config from environment variables."""

        env_map: Mapping[str, str] = os.environ if env is None else env
        values: dict[str, Any] = {}
        for env_key, field_name in ConfigLoader._ENV_FIELDS.items():
            if env_key not in env_map:
                continue
            value = ConfigLoader._coerce(
                field_name,
                env_map[env_key],
                f"Environment variable `{env_key}`",
            )
            if value is not None:
                values[field_name] = value
        # A configured bucket selects S3 unless a backend is named explicitly.
        if values.get("s3_bucket") and "storage_backend" not in values:
            values["storage_backend"] = "s3"

        config = ChaptervoiceConfig(
            **values,
            runtime_sources=ConfigLoader.runtime_sources_from_env(env_map),
        )
        config.validate()
        return config

    @staticmethod
    def runtime_sources_from_env(env: Mapping[str, str] | None = None) -> RuntimeConfigSources:
        """Return env-only runtime sources holding the provider-related variables."""

        env_map: Mapping[str, str] = os.environ if env is None else env
        return RuntimeConfigSources(
            env={
                key: value
                for key, value in env_map.items()
                if key in ConfigLoader._RUNTIME_ENV_KEYS
                and normalize_optional_string(value) is not None
            }
        )

    @staticmethod
    def _coerce(key: str, raw_value: Any, label: str) -> Any:
        """Convert one raw YAML or environment value into its field type."""

        if key in ConfigLoader._BOOL_KEYS:
            if isinstance(raw_value, str):
                return parse_required_boolean(raw_value, key)
            parsed = parse_permissive_boolean(raw_value)
            if parsed is None:
                raise ValueError(
                    f"{label} must be a boolean value (`true`/`false`, `1`/`0`, `yes`/`no`)."
                )
            return parsed

        if key in ConfigLoader._INT_KEYS:
            if isinstance(raw_value, bool):
                raise ValueError(f"{label} must be a positive integer.")
            try:
                parsed_int = int(str(raw_value).strip())
            except ValueError as exc:
                raise ValueError(f"{label} must be a positive integer.") from exc
            if parsed_int <= 0:
                raise ValueError(f"{label} must be a positive integer.")
            return parsed_int

        if key in ConfigLoader._FLOAT_KEYS:
            if isinstance(raw_value, bool):
                raise ValueError(f"{label} must be a number.")
            try:
                return float(str(raw_value).strip())
            except ValueError as exc:
                raise ValueError(f"{label} must be a number.") from exc

        normalized = normalize_optional_string(raw_value)
        if normalized is None:
            return None
        if key in ConfigLoader._PATH_KEYS:
            return Path(normalized)
        return normalized
