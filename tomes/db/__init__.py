"""
Database module for tomes.

Provides SQLAlchemy models, engine initialization and session helpers.
"""

from .models import Base, Book, Author, Tag, ServerOption, book_authors, book_tags
from .session import init_db, make_session_factory, get_or_create

__all__ = [
    'Base',
    'Book',
    'Author',
    'Tag',
    'ServerOption',
    'book_authors',
    'book_tags',
    'init_db',
    'make_session_factory',
    'get_or_create',
]
