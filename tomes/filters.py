"""
Catalog filters.

A FilterSpec captures the narrowing and ordering parameters of a catalog
request. apply_filters() and apply_order() turn it into SQLAlchemy query
clauses; every non-empty field adds one conjunct, empty fields add nothing.
"""

from dataclasses import dataclass, fields
from typing import Mapping, Optional

from sqlalchemy.orm import Query, aliased

from .db.models import Author, Book, Tag

ORDER_OLD = 'old'


def parse_int(value: Optional[str]) -> int:
    """Parse an integer query parameter, falling back to 0."""
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


@dataclass(frozen=True)
class FilterSpec:
    """Filter and sort parameters of a catalog listing."""
    tag: str = ""
    author: str = ""
    author_id: int = 0
    serie: str = ""
    read_filter: str = ""
    order: str = ""

    @classmethod
    def from_params(cls, params: Mapping[str, str]) -> 'FilterSpec':
        """Build a FilterSpec from request query parameters.

        Unknown keys are ignored and a non-numeric ``author_id`` counts as
        absent.
        """
        return cls(
            tag=params.get('tag') or "",
            author=params.get('author') or "",
            author_id=parse_int(params.get('author_id')),
            serie=params.get('serie') or "",
            read_filter=params.get('filter') or "",
            order=params.get('order') or "",
        )

    def is_empty(self) -> bool:
        """True when no field narrows or reorders the listing."""
        return not any(getattr(self, f.name) for f in fields(self))


def apply_filters(query: Query, spec: FilterSpec) -> Query:
    """Narrow a Book query with the conjunction of all set fields."""
    if spec.tag:
        tag = aliased(Tag)
        query = query.join(Book.tags.of_type(tag)).filter(tag.name == spec.tag)

    # Name and id use separate joins so both can apply at once
    if spec.author:
        by_name = aliased(Author)
        query = query.join(Book.authors.of_type(by_name)).filter(by_name.name == spec.author)

    if spec.author_id:
        by_id = aliased(Author)
        query = query.join(Book.authors.of_type(by_id)).filter(by_id.id == spec.author_id)

    if spec.serie:
        query = query.filter(Book.serie == spec.serie)

    if spec.read_filter == 'favorite':
        query = query.filter(Book.favorite.is_(True))
    elif spec.read_filter == 'notread':
        query = query.filter(Book.read.is_(False))
    elif spec.read_filter == 'read':
        query = query.filter(Book.read.is_(True))

    return query


def apply_order(query: Query, spec: FilterSpec) -> Query:
    """Order a Book query.

    A serie listing always follows reading order, whatever ``order`` says.
    """
    if spec.serie:
        return query.order_by(Book.serie_number.asc(), Book.id.asc())
    if spec.order == ORDER_OLD:
        return query.order_by(Book.id.asc())
    return query.order_by(Book.id.desc())
