"""Core datatypes shared across chaptervoice modules.

Responsibilities:
- Represent immutable records exchanged between storage, generation, and assembly.
- Provide explicit typing and JSON payload mapping for persisted records.

Key types:
- `GenerationSettings`, `BookRecord`, `ChapterRecord`, `ChapterObject`,
  `ContentUnit`, `ChapterOutcome`, `GenerationResult`, `SignatureEntry`,
  `AssembledBook`, and `BookStatus`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from ..parsing import normalize_optional_string, parse_finite_float


AUDIO_FORMATS: tuple[str, ...] = ("mp3", "m4b")

_MIME_TYPES = {"mp3": "audio/mpeg", "m4b": "audio/mp4"}


def normalize_audio_format(value: object) -> str:
    """Return a supported lowercase audio format or raise `ValueError`."""

    normalized = normalize_optional_string(value)
    if normalized is None or normalized.lower() not in AUDIO_FORMATS:
        supported = ", ".join(AUDIO_FORMATS)
        raise ValueError(f"Unsupported audio format `{value}`; supported: {supported}.")
    return normalized.lower()


def audio_mime_type(audio_format: str) -> str:
    """Return the content type used when storing one audio format."""

    return _MIME_TYPES[audio_format]


@dataclass(frozen=True, slots=True)
class GenerationSettings:
    """Generation configuration that becomes immutable once a book has chapters.

    Attributes:
        provider: TTS provider identifier.
        model: TTS model identifier.
        voice: Provider voice identifier.
        native_speed: Speed passed to the TTS provider.
        post_speed: Tempo applied by the transcoder after synthesis.
        format: Output container format (`mp3` or `m4b`).
    """

    provider: str
    model: str
    voice: str
    native_speed: float = 1.0
    post_speed: float = 1.0
    format: str = "m4b"

    _FIELDS = ("provider", "model", "voice", "native_speed", "post_speed", "format")

    def mismatched_fields(self, other: GenerationSettings) -> tuple[str, ...]:
        """Return field names whose values differ from `other`."""

        return tuple(
            name for name in self._FIELDS if getattr(self, name) != getattr(other, name)
        )

    def to_payload(self) -> dict[str, Any]:
        """Serialize settings to the persisted `audiobook.meta.json` shape."""

        return {
            "ttsProvider": self.provider,
            "ttsModel": self.model,
            "voice": self.voice,
            "nativeSpeed": self.native_speed,
            "postSpeed": self.post_speed,
            "format": self.format,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> GenerationSettings:
        """Parse a persisted settings payload, raising `ValueError` when malformed."""

        provider = normalize_optional_string(payload.get("ttsProvider"))
        model = normalize_optional_string(payload.get("ttsModel"))
        voice = normalize_optional_string(payload.get("voice"))
        if provider is None or model is None or voice is None:
            raise ValueError("Settings payload requires `ttsProvider`, `ttsModel`, and `voice`.")
        return cls(
            provider=provider,
            model=model,
            voice=voice,
            native_speed=parse_finite_float(payload.get("nativeSpeed", 1.0), "nativeSpeed"),
            post_speed=parse_finite_float(payload.get("postSpeed", 1.0), "postSpeed"),
            format=normalize_audio_format(payload.get("format")),
        )


@dataclass(frozen=True, slots=True)
class BookRecord:
    """Row-store record for one audiobook."""

    book_id: str
    owner_id: str
    title: str
    created_at: int


@dataclass(frozen=True, slots=True)
class ChapterRecord:
    """Row-store record for one committed chapter.

    Attributes:
        book_id: Owning book identifier.
        owner_id: Owning user scope.
        index: 0-based chapter index.
        title: Human-readable chapter title.
        duration: Probed duration in seconds.
        format: Container format of the stored chapter.
        file_name: Canonical stored object name.
    """

    book_id: str
    owner_id: str
    index: int
    title: str
    duration: float
    format: str
    file_name: str

    @property
    def row_id(self) -> str:
        """Return the natural row identifier for this chapter."""

        return f"{self.book_id}-{self.index}"


@dataclass(frozen=True, slots=True)
class DecodedChapterName:
    """Logical chapter identity decoded from a stored file name."""

    index: int
    title: str
    format: str


@dataclass(frozen=True, slots=True)
class ChapterObject:
    """Canonical chapter object found while listing a book prefix."""

    index: int
    title: str
    format: str
    file_name: str


@dataclass(frozen=True, slots=True)
class SignatureEntry:
    """One ordered `{index, fileName}` element of a combined-artifact signature."""

    index: int
    file_name: str

    def to_payload(self) -> dict[str, Any]:
        """Serialize the entry to its persisted JSON shape."""

        return {"index": self.index, "fileName": self.file_name}


@dataclass(frozen=True, slots=True)
class ContentUnit:
    """One non-empty page or section of a source document.

    Attributes:
        position: 0-based position among all units, including empty ones.
        text: Unit text as extracted.
        title: Optional source-provided title (for example an EPUB TOC label).
    """

    position: int
    text: str
    title: str | None = None


@dataclass(frozen=True, slots=True)
class ChapterOutcome:
    """Per-chapter result reported to generation callers."""

    index: int
    title: str
    status: str
    book_id: str | None
    format: str
    duration: float | None = None
    error: str | None = None
    retries: int = 0


@dataclass(frozen=True, slots=True)
class GenerationResult:
    """Result of one generation run over a document."""

    book_id: str
    status: str
    outcomes: tuple[ChapterOutcome, ...] = field(default_factory=tuple)
    skipped_indices: tuple[int, ...] = field(default_factory=tuple)

    @property
    def failed_indices(self) -> tuple[int, ...]:
        """Return indices whose chapter generation failed in this run."""

        return tuple(item.index for item in self.outcomes if item.status == "error")

    @property
    def committed_indices(self) -> tuple[int, ...]:
        """Return indices committed during this run."""

        return tuple(item.index for item in self.outcomes if item.status == "completed")

    @property
    def retry_count(self) -> int:
        """Return how many TTS retries this run needed."""

        return sum(item.retries for item in self.outcomes)


@dataclass(frozen=True, slots=True)
class AssembledBook:
    """Combined audiobook artifact returned by the assembler."""

    data: bytes
    format: str
    chapter_count: int
    cache_hit: bool

    @property
    def mime_type(self) -> str:
        return audio_mime_type(self.format)


@dataclass(frozen=True, slots=True)
class ChapterStatus:
    """Status row for one stored chapter."""

    index: int
    title: str
    format: str
    duration: float | None


@dataclass(frozen=True, slots=True)
class BookStatus:
    """Reconstructed state of one audiobook.

    Attributes:
        book_id: Book identifier, `None` when the book does not exist.
        exists: Whether any chapter, combined artifact, or settings record exists.
        chapters: Canonical chapters ordered by index.
        has_complete: Whether a combined artifact is currently stored.
        settings: Locked generation settings when persisted.
        settings_unknown: Chapters exist but no settings record was persisted.
    """

    book_id: str | None
    exists: bool
    chapters: tuple[ChapterStatus, ...] = field(default_factory=tuple)
    has_complete: bool = False
    settings: GenerationSettings | None = None
    settings_unknown: bool = False

    @property
    def state(self) -> str:
        """Return the state reconstructable from storage alone.

        `idle` means no chapter is stored; `partial` means at least one is and
        the book can be resumed. Run outcomes live on `GenerationResult.status`.
        """

        return "partial" if self.chapters else "idle"
