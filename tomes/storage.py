"""
On-disk locations of book files.

Each book owns a directory ``books/<id>/`` under the library path holding
``<id>.epub`` and an optional ``cover`` image.
"""

from pathlib import Path
import logging

logger = logging.getLogger(__name__)


class BookStorage:
    """Resolves where a book's EPUB and cover live."""

    def __init__(self, library_path: Path):
        self.root = Path(library_path) / "books"

    def book_dir(self, book_id: int) -> Path:
        return self.root / str(book_id)

    def epub_path(self, book_id: int) -> Path:
        return self.book_dir(book_id) / f"{book_id}.epub"

    def cover_path(self, book_id: int) -> Path:
        return self.book_dir(book_id) / "cover"

    def save_cover(self, book_id: int, data: bytes) -> Path:
        """Write cover image bytes for a book."""
        path = self.cover_path(book_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        logger.debug(f"Saved cover for book {book_id} ({len(data)} bytes)")
        return path
