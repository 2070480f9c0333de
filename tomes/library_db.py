"""
Database-backed Library class for tomes.

Library wraps one SQLAlchemy session over the catalog database. The web
server keeps one Library for the process and gives each request its own
session through Library.fork().
"""

from dataclasses import dataclass
from functools import cmp_to_key
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional
import logging
import uuid

from sqlalchemy import func, or_
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .db.models import Author, Book, ServerOption, Tag, book_tags
from .db.session import get_or_create, init_db, make_session_factory
from .filters import FilterSpec, apply_filters, apply_order
from .storage import BookStorage

logger = logging.getLogger(__name__)

DEFAULT_NAME = "tomes"
DEFAULT_PAGE_SIZE = 20
DEFAULT_PORT = 3000

# Largest OFFSET SQLite accepts
MAX_OFFSET = 2 ** 63 - 1

UPDATABLE_OPTIONS = ('name', 'base_url', 'password', 'token', 'port', 'page_size', 'language')

# Columns a form edit may overwrite verbatim
EDITABLE_FIELDS = ('title', 'description', 'isbn', 'publisher', 'collection', 'serie')


@dataclass(frozen=True)
class TagCount:
    """A tag together with the number of books carrying it."""
    id: int
    name: str
    book_count: int


LIKE_ESCAPE = "\\"


def escape_like(term: str) -> str:
    """Make ``%`` and ``_`` match literally in a LIKE pattern."""
    return (term.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
            .replace("%", LIKE_ESCAPE + "%")
            .replace("_", LIKE_ESCAPE + "_"))


def compare_by_book_count(a: TagCount, b: TagCount) -> int:
    """Order tags with more books first."""
    return b.book_count - a.book_count


def sort_tags_by_book_count(tags: List[TagCount]) -> List[TagCount]:
    """Sort tags by descending book count; ties keep their input order."""
    return sorted(tags, key=cmp_to_key(compare_by_book_count))


class Library:
    """
    Database-backed ebook library.

    Usage:
        lib = Library.open(Path("/path/to/library"))
        options = lib.options()
        books = lib.books(FilterSpec(tag="Fantasy"), limit=20)
        lib.close()
    """

    def __init__(self, library_path: Path, engine: Engine,
                 session_factory: sessionmaker, owns_engine: bool = True):
        self.library_path = Path(library_path)
        self.engine = engine
        self.session_factory = session_factory
        self.session: Session = session_factory()
        self.storage = BookStorage(self.library_path)
        self._owns_engine = owns_engine

    @classmethod
    def open(cls, library_path: Path, echo: bool = False) -> 'Library':
        """
        Open or create a library.

        Args:
            library_path: Path to library directory
            echo: If True, log all SQL statements

        Returns:
            Library instance
        """
        library_path = Path(library_path)
        engine = init_db(library_path, echo=echo)
        lib = cls(library_path, engine, make_session_factory(engine))
        lib.options()

        logger.info(f"Opened library at {library_path}")
        return lib

    def fork(self) -> 'Library':
        """Return a Library sharing this engine but with its own session."""
        return Library(self.library_path, self.engine, self.session_factory, owns_engine=False)

    def close(self):
        """Close the session, and the engine if this Library opened it."""
        if self.session:
            self.session.close()
        if self._owns_engine:
            self.engine.dispose()
            logger.info("Closed library")

    # ------------------------------------------------------------------
    # Server options
    # ------------------------------------------------------------------

    def options(self) -> ServerOption:
        """
        Load the ServerOption row, creating or completing it if needed.

        The catalog UUID is generated once and kept afterwards.
        """
        option = self.session.query(ServerOption).order_by(ServerOption.id).first()
        changed = False
        if option is None:
            option = ServerOption()
            self.session.add(option)
            changed = True
        if not option.uuid:
            option.uuid = str(uuid.uuid4())
            changed = True
        if not option.name:
            option.name = DEFAULT_NAME
            changed = True
        if not option.page_size or option.page_size < 1:
            option.page_size = DEFAULT_PAGE_SIZE
            changed = True
        if not option.port:
            option.port = DEFAULT_PORT
            changed = True

        if changed:
            self.session.commit()
            logger.info(f"Initialized server options for catalog {option.uuid}")
        return option

    def update_options(self, **changes: Any) -> ServerOption:
        """Update ServerOption fields; None values are left unchanged."""
        option = self.options()
        changes = {key: value for key, value in changes.items() if value is not None}
        if not changes:
            return option

        for key, value in changes.items():
            if key not in UPDATABLE_OPTIONS:
                raise ValueError(f"Unknown server option: {key}")
            setattr(option, key, value)
        self.session.commit()
        logger.info(f"Updated server options: {sorted(changes)}")
        return self.options()

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def get_book(self, book_id: int) -> Optional[Book]:
        """Get book by ID, or None."""
        if not book_id:
            return None
        return self.session.get(Book, book_id)

    def query(self) -> 'QueryBuilder':
        """Start a fluent query."""
        return QueryBuilder(self.session)

    def count(self, spec: FilterSpec) -> int:
        """Number of books matching ``spec``."""
        return self.query().filter(spec).count()

    def books(self, spec: FilterSpec, limit: Optional[int] = None, offset: int = 0) -> List[Book]:
        """One page of books matching ``spec`` in its sort order."""
        query = self.query().filter(spec).order(spec)
        if limit:
            query = query.limit(limit).offset(min(offset, MAX_OFFSET))
        return query.all()

    def search(self, query: str) -> List[Book]:
        """
        Find books where every word of ``query`` appears in the title,
        description, serie, an author name or a tag name.

        Returns:
            Matching books, newest first; empty for a blank query
        """
        terms = query.split()
        if not terms:
            return []

        books_query = self.session.query(Book)
        for term in terms:
            like = f"%{escape_like(term)}%"
            books_query = books_query.filter(or_(
                Book.title.ilike(like, escape=LIKE_ESCAPE),
                Book.description.ilike(like, escape=LIKE_ESCAPE),
                Book.serie.ilike(like, escape=LIKE_ESCAPE),
                Book.authors.any(Author.name.ilike(like, escape=LIKE_ESCAPE)),
                Book.tags.any(Tag.name.ilike(like, escape=LIKE_ESCAPE)),
            ))
        return books_query.order_by(Book.id.desc()).all()

    def tags_with_counts(self) -> List[TagCount]:
        """All tags with their book counts, including tags without books."""
        rows = (self.session.query(Tag.id, Tag.name, func.count(book_tags.c.book_id))
                .outerjoin(book_tags, Tag.id == book_tags.c.tag_id)
                .group_by(Tag.id, Tag.name)
                .order_by(Tag.id)
                .all())
        return [TagCount(id=tag_id, name=name, book_count=count) for tag_id, name, count in rows]

    def tag_names(self) -> List[str]:
        """Tag names in alphabetical order."""
        return [name for (name,) in self.session.query(Tag.name).order_by(Tag.name.asc())]

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def find_or_create_author(self, name: str) -> Author:
        """Return the author called ``name``, creating it if absent."""
        author, created = get_or_create(self.session, Author, name=name)
        if created:
            logger.debug(f"Created author: {name}")
        return author

    def find_or_create_tag(self, name: str) -> Tag:
        """Return the tag called ``name``, creating it if absent."""
        tag, created = get_or_create(self.session, Tag, name=name)
        if created:
            logger.debug(f"Created tag: {name}")
        return tag

    def add_book(self, title: str = "", authors: Optional[List[str]] = None,
                 tags: Optional[List[str]] = None, **fields: Any) -> Book:
        """
        Create a book record.

        Args:
            title: Book title
            authors: Author names, created when unknown
            tags: Tag names, created when unknown
            **fields: Other Book columns (serie, favorite, cover_type, ...)

        Returns:
            The new Book
        """
        book = Book(title=title, **fields)
        self.session.add(book)
        book.authors = [self.find_or_create_author(name) for name in authors or []]
        book.tags = [self.find_or_create_tag(name) for name in tags or []]
        self.session.commit()
        logger.info(f"Added book {book.id}: {book.title}")
        return book

    def toggle_favorite(self, book_id: int) -> Optional[Book]:
        """Flip the favorite flag. Unknown ids are ignored.

        Read-modify-write without locking: concurrent toggles on the same
        book race and the last write wins.
        """
        book = self.get_book(book_id)
        if book is None:
            logger.warning(f"Book {book_id} not found")
            return None
        book.favorite = not book.favorite
        self.session.commit()
        logger.info(f"Set favorite for book {book_id}: {book.favorite}")
        return book

    def toggle_read(self, book_id: int) -> Optional[Book]:
        """Flip the read flag. Unknown ids are ignored; same race as toggle_favorite."""
        book = self.get_book(book_id)
        if book is None:
            logger.warning(f"Book {book_id} not found")
            return None
        book.read = not book.read
        self.session.commit()
        logger.info(f"Set read for book {book_id}: {book.read}")
        return book

    def delete_book(self, book_id: int) -> bool:
        """
        Delete a book and its author/tag associations.

        Files stay in storage.

        Returns:
            True if a book was deleted
        """
        book = self.get_book(book_id)
        if book is None:
            logger.warning(f"Book {book_id} not found")
            return False

        self.session.delete(book)
        self.session.commit()
        logger.info(f"Deleted book: {book.title}")
        return True

    def edit_book(self, book_id: int, form: Mapping[str, str]) -> Optional[Book]:
        """
        Apply an edit form to a book.

        Recognized keys: title, description, isbn, publisher, collection,
        serie, serie_number, tags (comma-separated) and author. Tags and the
        author replace the current ones and are found or created by name.
        """
        book = self.get_book(book_id)
        if book is None:
            logger.warning(f"Book {book_id} not found")
            return None

        for key in EDITABLE_FIELDS:
            if key in form:
                setattr(book, key, form.get(key) or "")

        try:
            serie_number = float(form.get('serie_number') or 0)
        except ValueError:
            serie_number = 0.0
        if serie_number:
            book.serie_number = serie_number

        names = [name.strip() for name in (form.get('tags') or "").split(",")]
        book.tags = [self.find_or_create_tag(name) for name in dict.fromkeys(n for n in names if n)]

        author = (form.get('author') or "").strip()
        book.authors = [self.find_or_create_author(author)] if author else []

        self.session.commit()
        logger.info(f"Edited book {book_id}: {book.title}")
        return book

    def apply_metadata(self, book: Book, metadata: Dict[str, Any]) -> Book:
        """
        Store extracted metadata on a book and mark it as edited.

        Args:
            book: Book to update
            metadata: Dictionary from extract_metadata_from_epub()
        """
        if metadata.get("title"):
            book.title = metadata["title"]
        if metadata.get("description"):
            book.description = metadata["description"]
        if metadata.get("language"):
            book.language = metadata["language"]
        if metadata.get("creators"):
            book.authors = [self.find_or_create_author(name)
                            for name in dict.fromkeys(metadata["creators"])]
        if metadata.get("subjects") and not book.tags:
            book.tags = [self.find_or_create_tag(name)
                         for name in dict.fromkeys(metadata["subjects"])]
        if metadata.get("cover_data") and metadata.get("cover_type"):
            self.storage.save_cover(book.id, metadata["cover_data"])
            book.cover_type = metadata["cover_type"]

        book.edited = True
        self.session.commit()
        return book

    def refresh_metadata(self, book_id: int,
                         extractor: Optional[Callable[[str], Dict[str, Any]]] = None) -> Optional[Book]:
        """
        Re-run metadata extraction on a stored EPUB.

        Unknown ids and books without a stored file are left unchanged.
        """
        if extractor is None:
            from .extract_metadata import extract_metadata_from_epub
            extractor = extract_metadata_from_epub

        book = self.get_book(book_id)
        if book is None:
            logger.warning(f"Book {book_id} not found")
            return None

        epub_path = self.storage.epub_path(book.id)
        if not epub_path.exists():
            logger.warning(f"No EPUB stored for book {book_id} at {epub_path}")
            return book

        self.apply_metadata(book, extractor(str(epub_path)))
        logger.info(f"Refreshed metadata for book {book_id}: {book.title}")
        return book

    def unedited_book_ids(self) -> List[int]:
        """Ids of books whose metadata was never extracted."""
        return [book_id for (book_id,) in
                self.session.query(Book.id).filter(Book.edited.is_(False)).order_by(Book.id)]


class QueryBuilder:
    """Fluent query builder for books."""

    def __init__(self, session: Session):
        self.session = session
        self._query = session.query(Book)

    def filter(self, spec: FilterSpec) -> 'QueryBuilder':
        """Narrow by the fields of ``spec``."""
        self._query = apply_filters(self._query, spec)
        return self

    def order(self, spec: FilterSpec) -> 'QueryBuilder':
        """Sort by the order of ``spec``."""
        self._query = apply_order(self._query, spec)
        return self

    def limit(self, limit: int) -> 'QueryBuilder':
        """Limit number of results."""
        self._query = self._query.limit(limit)
        return self

    def offset(self, offset: int) -> 'QueryBuilder':
        """Set result offset."""
        self._query = self._query.offset(offset)
        return self

    def all(self) -> List[Book]:
        """Execute query and return all results."""
        return self._query.all()

    def count(self) -> int:
        """Get count of matching books."""
        return self._query.count()
