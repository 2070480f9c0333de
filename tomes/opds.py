"""
OPDS (Open Publication Distribution System) feed builder.

Builds the Atom documents served by the catalog:
- Acquisition feeds of books (summary entries, relative links)
- The root listing of tag facets
- Full book entries (absolute links, for use outside the catalog host)
- The OpenSearch description document

OPDS Spec: https://specs.opds.io/opds-1.2
"""

from datetime import datetime, timezone
import re
from typing import Iterable, Optional
from urllib.parse import urlencode

from lxml import etree

from .db.models import Book, COVER_MEDIA_TYPES
from .library_db import TagCount

# MIME types
ATOM_MIME = "application/atom+xml"
OPDS_ACQUISITION_MIME = "application/atom+xml;profile=opds-catalog;kind=acquisition"
OPDS_ENTRY_MIME = "application/atom+xml;type=entry;profile=opds-catalog"
OPENSEARCH_MIME = "application/opensearchdescription+xml"
EPUB_MIME = "application/epub+zip"

# Link relations
REL_ACQUISITION = "http://opds-spec.org/acquisition/open-access"
REL_IMAGE = "http://opds-spec.org/image"
REL_SORT_NEW = "http://opds-spec.org/sort/new"
REL_SORT_POPULAR = "http://opds-spec.org/sort/popular"
REL_SAME_AUTHOR = "http://www.feedbooks.com/opds/same_author"

ATOM_NS = "http://www.w3.org/2005/Atom"
OPENSEARCH_NS = "http://a9.com/-/spec/opensearch/1.1/"
XML_NS = "http://www.w3.org/XML/1998/namespace"
TAG_SCHEME = "urn:tomes:tags"

_XML_ILLEGAL = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\ud800-\udfff\ufffe\uffff]")

NSMAP = {
    None: ATOM_NS,
    "dc": "http://purl.org/dc/elements/1.1/",
    "dcterms": "http://purl.org/dc/terms/",
    "thr": "http://purl.org/syndication/thread/1.0",
    "opds": "http://opds-spec.org/2010/catalog",
    "opensearch": OPENSEARCH_NS,
    "app": "http://www.w3.org/2007/app",
    "xsi": "http://www.w3.org/2001/XMLSchema-instance",
    "schema": "http://schema.org/",
}


def format_datetime(dt: Optional[datetime] = None) -> str:
    """Format datetime for Atom feed."""
    if dt is None:
        dt = datetime.now(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


def qname(tag: str) -> str:
    """Resolve ``prefix:name`` (or a bare Atom name) to Clark notation."""
    prefix, _, local = tag.rpartition(":")
    return f"{{{NSMAP[prefix or None]}}}{local}"


def xml_safe(value: str) -> str:
    """Drop code points XML 1.0 cannot carry (control characters, surrogates)."""
    return _XML_ILLEGAL.sub("", value)


def sub(parent: etree._Element, tag: str, text: Optional[str] = None, **attrs: str) -> etree._Element:
    """Append a child element with optional text and attributes."""
    element = etree.SubElement(parent, qname(tag),
                               {k: xml_safe(v) for k, v in attrs.items() if v is not None})
    if text is not None:
        element.text = xml_safe(text)
    return element


def catalog_href(root_url: str = "", token: str = "", **params) -> str:
    """URL of the acquisition feed narrowed by ``params``."""
    query = list(params.items())
    if token:
        query.append(("token", token))
    return f"{root_url}/index.atom?{urlencode(query)}"


def book_href(book_id: int, root_url: str = "", token: str = "") -> str:
    """URL of a book's full entry."""
    href = f"{root_url}/books/{book_id}.atom"
    if token:
        href += "?" + urlencode({"token": token})
    return href


def serialize(element: etree._Element) -> bytes:
    """Serialize a document root with its XML declaration."""
    return etree.tostring(element, xml_declaration=True, encoding="UTF-8", pretty_print=True)


# ----------------------------------------------------------------------
# Entries
# ----------------------------------------------------------------------

def _populate_entry(entry: etree._Element, book: Book, root_url: str, token: str) -> None:
    """Fill the fields shared by summary and full entries."""
    sub(entry, "id", f"urn:tomes:book:{book.id}")
    sub(entry, "updated", format_datetime(book.updated_at))
    sub(entry, "title", book.title or "")

    for author in book.authors:
        author_el = sub(entry, "author")
        sub(author_el, "name", author.name)
        sub(author_el, "uri", catalog_href(root_url, token, author_id=author.id))

    if book.language:
        sub(entry, "dcterms:language", book.language)

    sub(entry, "summary", book.description or "", type="text")

    sub(entry, "link", rel=REL_ACQUISITION, type=EPUB_MIME, href=root_url + book.download_url)

    if book.cover_type in COVER_MEDIA_TYPES:
        sub(entry, "link", rel=REL_IMAGE, type=book.cover_type,
            href=root_url + book.cover_download_url)

    sub(entry, "link", rel="alternate", type=OPDS_ENTRY_MIME,
        href=book_href(book.id, root_url, token), title="Full entry")


def build_entry(feed: etree._Element, book: Book, token: str = "") -> etree._Element:
    """Append a summary entry for ``book`` to ``feed``. Links are relative."""
    entry = sub(feed, "entry")
    _populate_entry(entry, book, "", token)
    return entry


def build_full_entry(book: Book, root_url: str, token: str = "", language: str = "en") -> etree._Element:
    """
    Build a standalone full entry document for ``book``.

    Adds tag categories and related serie/author/tag links to the summary
    fields. Every link is absolute, prefixed with ``root_url``.
    """
    entry = etree.Element(qname("entry"), nsmap=NSMAP)
    entry.set(f"{{{XML_NS}}}lang", language)
    _populate_entry(entry, book, root_url, token)

    for tag in book.tags:
        sub(entry, "category", scheme=TAG_SCHEME, label=tag.name, term=tag.name)

    if book.serie:
        sub(entry, "link", rel="related", type=OPDS_ACQUISITION_MIME,
            href=catalog_href(root_url, token, serie=book.serie), title=book.serie)

    for author in book.authors:
        sub(entry, "link", rel=REL_SAME_AUTHOR, type=OPDS_ACQUISITION_MIME,
            href=catalog_href(root_url, token, author_id=author.id), title=author.name)

    for tag in book.tags:
        sub(entry, "link", rel="related", type=OPDS_ACQUISITION_MIME,
            href=catalog_href(root_url, token, tag=tag.name), title=tag.name)

    return entry


def build_tag_entry(feed: etree._Element, tag: TagCount, token: str = "") -> etree._Element:
    """Append a facet entry that re-enters the catalog filtered by ``tag``."""
    entry = sub(feed, "entry")
    sub(entry, "title", tag.name)
    sub(entry, "id", tag.name)
    sub(entry, "updated", format_datetime())
    sub(entry, "link", rel=REL_SORT_NEW, type=OPDS_ACQUISITION_MIME,
        href=catalog_href("", token, tag=tag.name))
    return entry


# ----------------------------------------------------------------------
# Feeds
# ----------------------------------------------------------------------

def build_feed(
    feed_id: str,
    title: str,
    total_results: int = 0,
    items_per_page: int = 0,
    start_index: int = 0,
    prev_link: str = "",
    next_link: str = "",
    language: str = "en",
    search_href: str = "/opensearch.xml",
) -> etree._Element:
    """
    Build an OPDS feed envelope.

    The opensearch counters are omitted, not zero-filled, when they carry
    no information: totalResults and itemsPerPage when 0, startIndex when
    it is 1 or less.
    """
    feed = etree.Element(qname("feed"), nsmap=NSMAP)
    feed.set(f"{{{XML_NS}}}lang", language)

    sub(feed, "id", feed_id)
    sub(feed, "title", title)
    sub(feed, "updated", format_datetime())

    author = sub(feed, "author")
    sub(author, "name", "tomes")

    if total_results > 0:
        sub(feed, "opensearch:totalResults", str(total_results))
    if items_per_page > 0:
        sub(feed, "opensearch:itemsPerPage", str(items_per_page))
    if start_index > 1:
        sub(feed, "opensearch:startIndex", str(start_index))

    if prev_link:
        sub(feed, "link", rel="previous", type=OPDS_ACQUISITION_MIME, title="Previous", href=prev_link)
    if next_link:
        sub(feed, "link", rel="next", type=OPDS_ACQUISITION_MIME, title="Next", href=next_link)

    sub(feed, "link", rel="search", type=OPENSEARCH_MIME, href=search_href)

    return feed


def add_root_links(feed: etree._Element, token: str = "") -> None:
    """Add the favorites and recent shortcuts of the catalog root."""
    sub(feed, "link", rel=REL_SORT_POPULAR, type=OPDS_ACQUISITION_MIME,
        href=catalog_href("", token, filter="favorite"), title="Favorites")
    sub(feed, "link", rel=REL_SORT_NEW, type=OPDS_ACQUISITION_MIME,
        href=catalog_href("", token, page=1), title="Recent")


def build_books_feed(feed: etree._Element, books: Iterable[Book], token: str = "") -> etree._Element:
    """Append a summary entry per book."""
    for book in books:
        build_entry(feed, book, token)
    return feed


def build_opensearch_description(root_url: str, token: str = "") -> etree._Element:
    """OpenSearch description document pointing at the html and atom searches."""
    doc = etree.Element(f"{{{OPENSEARCH_NS}}}OpenSearchDescription", nsmap={None: OPENSEARCH_NS})

    def add(tag, text=None, **attrs):
        element = etree.SubElement(doc, f"{{{OPENSEARCH_NS}}}{tag}", attrs)
        element.text = text
        return element

    add("ShortName", "tomes search")
    add("Description", "Search the library")
    add("InputEncoding", "UTF-8")
    add("OutputEncoding", "UTF-8")

    atom_template = f"{root_url}/search.atom?query={{searchTerms}}"
    if token:
        atom_template += "&" + urlencode({"token": token})
    add("Url", type="text/html", template=f"{root_url}/search.html?query={{searchTerms}}")
    add("Url", type=ATOM_MIME, template=atom_template)
    add("Query", role="example", searchTerms="robot")

    return doc
