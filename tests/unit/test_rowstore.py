"""Unit tests for the SQLite audiobook repository."""

from __future__ import annotations

from chaptervoice.models.datatypes import ChapterRecord
from chaptervoice.storage.rowstore import AudiobookRepository


def _chapter(
    index: int,
    *,
    owner_id: str = "u",
    title: str = "T",
    duration: float = 1.5,
) -> ChapterRecord:
    return ChapterRecord(
        book_id="b1",
        owner_id=owner_id,
        index=index,
        title=title,
        duration=duration,
        format="mp3",
        file_name=f"{index + 1:04d}__{title}.mp3",
    )


def test_ensure_book_is_insert_or_ignore(repository: AudiobookRepository) -> None:
    """A second ensure must not overwrite the original title or timestamp."""

    repository.ensure_book("b1", "u", title="First", created_at=1000)
    repository.ensure_book("b1", "u", title="Second", created_at=2000)

    book = repository.get_book("b1", "u")

    assert book is not None
    assert (book.title, book.created_at) == ("First", 1000)
    assert repository.book_exists("b1", "other") is False


def test_upsert_chapter_replaces_row_for_same_index(repository: AudiobookRepository) -> None:
    """Upserting the same `(book, owner, index)` should update in place."""

    repository.ensure_book("b1", "u")
    repository.upsert_chapter(_chapter(0, title="Old", duration=1.0))
    repository.upsert_chapter(_chapter(0, title="New", duration=2.0))
    repository.upsert_chapter(_chapter(1))

    chapters = repository.list_chapters("b1", "u")

    assert [(item.index, item.title, item.duration) for item in chapters] == [
        (0, "New", 2.0),
        (1, "T", 1.5),
    ]
    assert chapters[0].row_id == "b1-0"
    assert repository.get_chapter("b1", "u", 0) == chapters[0]


def test_rows_are_scoped_by_owner(repository: AudiobookRepository) -> None:
    """The same book id under two owners must hold independent chapter rows."""

    repository.ensure_book("b1", "u")
    repository.ensure_book("b1", "v")
    repository.upsert_chapter(_chapter(0, owner_id="u"))

    assert repository.list_chapters("b1", "v") == []
    assert repository.get_chapter("b1", "v", 0) is None


def test_delete_chapters_not_in_prunes_stale_rows(repository: AudiobookRepository) -> None:
    """Rows whose index is absent from the keep set should be removed."""

    repository.ensure_book("b1", "u")
    for index in range(3):
        repository.upsert_chapter(_chapter(index))

    removed = repository.delete_chapters_not_in("b1", "u", [0, 2])

    assert removed == 1
    assert [item.index for item in repository.list_chapters("b1", "u")] == [0, 2]
    assert repository.delete_chapters_not_in("b1", "u", [0, 2]) == 0


def test_delete_book_removes_chapter_rows(repository: AudiobookRepository) -> None:
    repository.ensure_book("b1", "u")
    repository.upsert_chapter(_chapter(0))
    repository.delete_chapter("b1", "u", 5)

    repository.delete_book("b1", "u")

    assert repository.get_book("b1", "u") is None
    assert repository.list_chapters("b1", "u") == []
