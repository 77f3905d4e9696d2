"""SQLite-backed row store for audiobook and chapter records.

Responsibilities:
- Create the `audiobooks` / `audiobook_chapters` schema on first use.
- Provide insert-or-ignore book rows and conflict-upserted chapter rows.
- Support status reconciliation (pruning rows whose blobs disappeared).
"""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
import sqlite3
import time
from typing import Iterable, Iterator

from ..errors import StorageError
from ..models.datatypes import BookRecord, ChapterRecord

_SCHEMA = """
CREATE TABLE IF NOT EXISTS audiobooks (
    id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    title TEXT NOT NULL,
    created_at INTEGER NOT NULL,
    PRIMARY KEY (id, user_id)
);
CREATE TABLE IF NOT EXISTS audiobook_chapters (
    id TEXT NOT NULL,
    book_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    chapter_index INTEGER NOT NULL,
    title TEXT NOT NULL,
    duration REAL DEFAULT 0,
    file_path TEXT NOT NULL,
    format TEXT NOT NULL,
    PRIMARY KEY (id, user_id),
    FOREIGN KEY (book_id, user_id) REFERENCES audiobooks (id, user_id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS audiobook_chapters_book_idx
    ON audiobook_chapters (book_id, user_id, chapter_index);
"""


def _now_ms() -> int:
    return int(time.time() * 1000)


class AudiobookRepository:
    """Persist book and chapter rows in one SQLite database file."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._schema_ready = False

    @property
    def db_path(self) -> Path:
        return self._db_path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Open a connection, commit on success, and always close it."""

        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            connection = sqlite3.connect(str(self._db_path))
        except (OSError, sqlite3.Error) as exc:
            raise StorageError(f"Cannot open row store `{self._db_path}`: {exc}") from exc
        connection.row_factory = sqlite3.Row
        try:
            connection.execute("PRAGMA foreign_keys = ON;")
            if not self._schema_ready:
                connection.executescript(_SCHEMA)
                self._schema_ready = True
            yield connection
            connection.commit()
        except sqlite3.Error as exc:
            connection.rollback()
            raise StorageError(f"Row store operation failed: {exc}") from exc
        finally:
            connection.close()

    def ensure_book(
        self,
        book_id: str,
        owner_id: str,
        *,
        title: str | None = None,
        created_at: int | None = None,
    ) -> None:
        """Insert the book row unless it already exists."""

        with self._connect() as connection:
            connection.execute(
                "INSERT OR IGNORE INTO audiobooks (id, user_id, title, created_at) "
                "VALUES (?, ?, ?, ?)",
                (book_id, owner_id, title or "Untitled Audiobook", created_at or _now_ms()),
            )

    def get_book(self, book_id: str, owner_id: str) -> BookRecord | None:
        with self._connect() as connection:
            row = connection.execute(
                "SELECT id, user_id, title, created_at FROM audiobooks "
                "WHERE id = ? AND user_id = ?",
                (book_id, owner_id),
            ).fetchone()
        if row is None:
            return None
        return BookRecord(
            book_id=row["id"],
            owner_id=row["user_id"],
            title=row["title"],
            created_at=int(row["created_at"]),
        )

    def book_exists(self, book_id: str, owner_id: str) -> bool:
        return self.get_book(book_id, owner_id) is not None

    def delete_book(self, book_id: str, owner_id: str) -> None:
        """Delete the book row together with all of its chapter rows."""

        with self._connect() as connection:
            connection.execute(
                "DELETE FROM audiobook_chapters WHERE book_id = ? AND user_id = ?",
                (book_id, owner_id),
            )
            connection.execute(
                "DELETE FROM audiobooks WHERE id = ? AND user_id = ?",
                (book_id, owner_id),
            )

    def upsert_chapter(self, record: ChapterRecord) -> None:
        """Insert or replace the row for `(book, owner, index)`."""

        with self._connect() as connection:
            connection.execute(
                """
                INSERT INTO audiobook_chapters
                    (id, book_id, user_id, chapter_index, title, duration, file_path, format)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (id, user_id) DO UPDATE SET
                    title = excluded.title,
                    duration = excluded.duration,
                    file_path = excluded.file_path,
                    format = excluded.format
                """,
                (
                    record.row_id,
                    record.book_id,
                    record.owner_id,
                    record.index,
                    record.title,
                    record.duration,
                    record.file_name,
                    record.format,
                ),
            )

    def list_chapters(self, book_id: str, owner_id: str) -> list[ChapterRecord]:
        """Return chapter rows ordered by index."""

        with self._connect() as connection:
            rows = connection.execute(
                "SELECT book_id, user_id, chapter_index, title, duration, file_path, format "
                "FROM audiobook_chapters WHERE book_id = ? AND user_id = ? "
                "ORDER BY chapter_index",
                (book_id, owner_id),
            ).fetchall()
        return [self._chapter_from_row(row) for row in rows]

    def get_chapter(self, book_id: str, owner_id: str, index: int) -> ChapterRecord | None:
        with self._connect() as connection:
            row = connection.execute(
                "SELECT book_id, user_id, chapter_index, title, duration, file_path, format "
                "FROM audiobook_chapters WHERE id = ? AND user_id = ?",
                (f"{book_id}-{index}", owner_id),
            ).fetchone()
        return None if row is None else self._chapter_from_row(row)

    def delete_chapter(self, book_id: str, owner_id: str, index: int) -> None:
        with self._connect() as connection:
            connection.execute(
                "DELETE FROM audiobook_chapters WHERE id = ? AND user_id = ?",
                (f"{book_id}-{index}", owner_id),
            )

    def delete_chapters_not_in(
        self,
        book_id: str,
        owner_id: str,
        indices: Iterable[int],
    ) -> int:
        """Delete chapter rows whose index is absent from `indices`; return the count."""

        keep = set(indices)
        stale = [
            record.index
            for record in self.list_chapters(book_id, owner_id)
            if record.index not in keep
        ]
        if not stale:
            return 0
        with self._connect() as connection:
            connection.executemany(
                "DELETE FROM audiobook_chapters WHERE id = ? AND user_id = ?",
                [(f"{book_id}-{index}", owner_id) for index in stale],
            )
        return len(stale)

    @staticmethod
    def _chapter_from_row(row: sqlite3.Row) -> ChapterRecord:
        return ChapterRecord(
            book_id=row["book_id"],
            owner_id=row["user_id"],
            index=int(row["chapter_index"]),
            title=row["title"],
            duration=float(row["duration"] or 0.0),
            format=row["format"],
            file_name=row["file_path"],
        )
