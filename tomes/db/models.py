"""
SQLAlchemy models for the tomes catalog.

Books, authors and tags with many-to-many links, plus the single-row
ServerOption table that holds the catalog identity and access settings.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Column, Integer, String, Text, Boolean, Float,
    DateTime, ForeignKey, Table, UniqueConstraint, Index
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

JPEG_MEDIA_TYPE = "image/jpeg"
PNG_MEDIA_TYPE = "image/png"
COVER_MEDIA_TYPES = (JPEG_MEDIA_TYPE, PNG_MEDIA_TYPE)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Association tables for many-to-many relationships
book_authors = Table(
    'book_authors',
    Base.metadata,
    Column('book_id', Integer, ForeignKey('books.id', ondelete='CASCADE'), primary_key=True),
    Column('author_id', Integer, ForeignKey('authors.id', ondelete='CASCADE'), primary_key=True),
)

book_tags = Table(
    'book_tags',
    Base.metadata,
    Column('book_id', Integer, ForeignKey('books.id', ondelete='CASCADE'), primary_key=True),
    Column('tag_id', Integer, ForeignKey('tags.id', ondelete='CASCADE'), primary_key=True),
)


class Book(Base):
    """A single ebook in the library."""
    __tablename__ = 'books'

    id = Column(Integer, primary_key=True)

    title = Column(String(500), nullable=False, default='', index=True)
    description = Column(Text, default='')
    language = Column(String(10), default='', index=True)
    isbn = Column(String(20), default='')
    publisher = Column(String(200), default='')
    collection = Column(String(200), default='')

    # Series information
    serie = Column(String(200), default='', index=True)
    serie_number = Column(Float, default=0.0)  # Position in serie (e.g., 2.5)

    # Reading state
    favorite = Column(Boolean, default=False, nullable=False)
    read = Column(Boolean, default=False, nullable=False)
    edited = Column(Boolean, default=False, nullable=False)  # Metadata extraction has run

    cover_type = Column(String(50), default='')  # image/jpeg, image/png

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    authors = relationship('Author', secondary=book_authors, back_populates='books', lazy='selectin')
    tags = relationship('Tag', secondary=book_tags, back_populates='books', lazy='selectin')

    __table_args__ = (
        Index('idx_book_serie_number', 'serie', 'serie_number'),
    )

    @property
    def download_url(self) -> str:
        """Relative URL of the EPUB file."""
        return f"/books/{self.id}/download"

    @property
    def cover_download_url(self) -> Optional[str]:
        """Relative URL of the cover, only for jpeg and png covers."""
        if self.cover_type in COVER_MEDIA_TYPES:
            return f"/books/{self.id}/cover"
        return None

    def __repr__(self):
        return f"<Book(id={self.id}, title='{(self.title or '')[:50]}')>"


class Author(Base):
    """Author entity, shared between books and unique by name."""
    __tablename__ = 'authors'

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False, index=True)

    books = relationship('Book', secondary=book_authors, back_populates='authors')

    __table_args__ = (
        UniqueConstraint('name', name='uix_author_name'),
    )

    def __repr__(self):
        return f"<Author(id={self.id}, name='{self.name}')>"


class Tag(Base):
    """User tag, shared between books and unique by name.

    The number of books carrying a tag is never stored; see
    Library.tags_with_counts().
    """
    __tablename__ = 'tags'

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False, index=True)

    books = relationship('Book', secondary=book_tags, back_populates='tags')

    __table_args__ = (
        UniqueConstraint('name', name='uix_tag_name'),
    )

    def __repr__(self):
        return f"<Tag(id={self.id}, name='{self.name}')>"


class ServerOption(Base):
    """Catalog-wide settings. The table holds exactly one row."""
    __tablename__ = 'server_options'

    id = Column(Integer, primary_key=True)
    uuid = Column(String(36), nullable=False)  # Stable feed identity
    name = Column(String(200), nullable=False, default='tomes')
    base_url = Column(String(500), default='')
    password = Column(String(200), default='')
    token = Column(String(200), default='')
    port = Column(Integer, default=3000)
    page_size = Column(Integer, default=20)
    language = Column(String(10), default='en')

    def __repr__(self):
        return f"<ServerOption(uuid='{self.uuid}', name='{self.name}')>"
