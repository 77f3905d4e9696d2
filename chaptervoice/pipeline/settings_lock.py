"""Settings lock for books that already have chapters.

Responsibilities:
- Read the persisted generation settings record of one book.
- Decide whether incoming settings are compatible with the locked ones.
- Persist the first settings record exactly once.
"""

from __future__ import annotations

from dataclasses import dataclass
import json

from ..chapters.codec import SETTINGS_FILE_NAME, list_chapter_objects
from ..errors import (
    BlobNotFoundError,
    PreconditionFailedError,
    SettingsConflictError,
    StorageError,
)
from ..models.datatypes import GenerationSettings
from ..storage.blobstore import AudiobookScope, BlobStore, list_file_names

SETTINGS_CONTENT_TYPE = "application/json; charset=utf-8"


@dataclass(frozen=True, slots=True)
class LockState:
    """Settings lock state of one book.

    Attributes:
        settings: Persisted settings record, if any.
        has_chapters: Whether at least one chapter object is stored.
    """

    settings: GenerationSettings | None
    has_chapters: bool

    @property
    def locked(self) -> bool:
        return self.settings is not None and self.has_chapters

    @property
    def settings_unknown(self) -> bool:
        """Chapters exist but no settings were ever persisted."""

        return self.has_chapters and self.settings is None


class SettingsLock:
    """Resolve and enforce the per-book settings lock."""

    def __init__(self, store: BlobStore) -> None:
        self._store = store

    def read_settings(self, scope: AudiobookScope) -> GenerationSettings | None:
        """Return persisted settings, or `None` when the record is absent."""

        key = scope.key(SETTINGS_FILE_NAME)
        try:
            raw = self._store.get(key)
        except BlobNotFoundError:
            return None
        try:
            payload = json.loads(raw.decode("utf-8"))
            if not isinstance(payload, dict):
                raise ValueError("settings payload must be an object")
            return GenerationSettings.from_payload(payload)
        except (UnicodeDecodeError, ValueError) as exc:
            raise StorageError(f"Stored settings record `{key}` is malformed: {exc}") from exc

    def resolve(
        self,
        scope: AudiobookScope,
        file_names: list[str] | None = None,
    ) -> LockState:
        """Return the lock state, listing the book prefix unless names are supplied."""

        names = list_file_names(self._store, scope) if file_names is None else file_names
        has_chapters = bool(list_chapter_objects(names))
        settings = self.read_settings(scope) if SETTINGS_FILE_NAME in names else None
        return LockState(settings=settings, has_chapters=has_chapters)

    @staticmethod
    def check(state: LockState, incoming: GenerationSettings | None) -> None:
        """Raise `SettingsConflictError` when `incoming` differs from locked settings."""

        if incoming is None or not state.locked or state.settings is None:
            return
        if state.settings.mismatched_fields(incoming):
            raise SettingsConflictError(state.settings)

    def persist(
        self,
        scope: AudiobookScope,
        settings: GenerationSettings,
        *,
        replace: bool = False,
    ) -> bool:
        """Write the settings record and return whether it was written.

        Without `replace` the write is if-absent, so a concurrent first commit
        that already stored a record wins.
        """

        body = json.dumps(settings.to_payload(), indent=2).encode("utf-8")
        try:
            self._store.put(
                scope.key(SETTINGS_FILE_NAME),
                body,
                SETTINGS_CONTENT_TYPE,
                if_absent=not replace,
            )
        except PreconditionFailedError:
            return False
        return True
