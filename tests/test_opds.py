"""
Tests for the OPDS document builders.

Tests cover:
- Feed envelope: namespaces, language, conditional opensearch counters
- Summary entries with relative links and cover links for jpeg/png only
- Full entries with absolute links, categories and related links
- Tag facet entries ordered by book count
- The OpenSearch description document
- Dropping characters XML cannot carry
"""

from urllib.parse import parse_qsl, urlsplit

import pytest
import tempfile
import shutil
from pathlib import Path
from lxml import etree

from tomes import opds
from tomes.library_db import Library, TagCount, sort_tags_by_book_count


ATOM = "{http://www.w3.org/2005/Atom}"
OPENSEARCH = "{http://a9.com/-/spec/opensearch/1.1/}"
XML_LANG = "{http://www.w3.org/XML/1998/namespace}lang"


@pytest.fixture
def temp_library():
    """Create a temporary library for testing."""
    temp_dir = tempfile.mkdtemp()
    lib = Library.open(Path(temp_dir))

    yield lib

    lib.close()
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def book(temp_library):
    return temp_library.add_book(
        "Dune", authors=["Frank Herbert"], tags=["Science Fiction", "Classic"],
        serie="Dune", serie_number=1, description="Desert planet", language="en",
        cover_type="image/jpeg",
    )


def links(element, rel=None):
    found = element.findall(f"{ATOM}link")
    if rel is not None:
        found = [link for link in found if link.get("rel") == rel]
    return found


def parse(element):
    """Serialize then parse again, as a client would."""
    return etree.fromstring(opds.serialize(element))


class TestFeedEnvelope:
    """Test the feed root element."""

    def test_feed_declares_nine_namespaces_and_language(self):
        feed = parse(opds.build_feed("urn:uuid:1", "Library", language="fr"))

        assert feed.tag == f"{ATOM}feed"
        assert len(feed.nsmap) == 9
        assert feed.get(XML_LANG) == "fr"
        assert feed.findtext(f"{ATOM}id") == "urn:uuid:1"
        assert feed.findtext(f"{ATOM}title") == "Library"
        assert feed.find(f"{ATOM}updated") is not None

    def test_serialized_document_has_xml_declaration(self):
        data = opds.serialize(opds.build_feed("urn:uuid:1", "Library"))

        assert data.startswith(b"<?xml version='1.0' encoding='UTF-8'?>")
        assert data.count(b"<feed") == 1

    def test_counters_omitted_when_uninformative(self):
        feed = parse(opds.build_feed("id", "t", total_results=0, items_per_page=0, start_index=1))

        assert feed.find(f"{OPENSEARCH}totalResults") is None
        assert feed.find(f"{OPENSEARCH}itemsPerPage") is None
        assert feed.find(f"{OPENSEARCH}startIndex") is None

    def test_counters_present_when_set(self):
        feed = parse(opds.build_feed("id", "t", total_results=41, items_per_page=20, start_index=41))

        assert feed.findtext(f"{OPENSEARCH}totalResults") == "41"
        assert feed.findtext(f"{OPENSEARCH}itemsPerPage") == "20"
        assert feed.findtext(f"{OPENSEARCH}startIndex") == "41"

    def test_navigation_links_only_when_given(self):
        feed = parse(opds.build_feed("id", "t", prev_link="/index.atom?page=1"))

        assert [link.get("href") for link in links(feed, "previous")] == ["/index.atom?page=1"]
        assert links(feed, "next") == []
        assert len(links(feed, "search")) == 1

    def test_root_links(self):
        feed = opds.build_feed("id", "t")
        opds.add_root_links(feed, token="abc")
        feed = parse(feed)

        favorites = links(feed, opds.REL_SORT_POPULAR)[0]
        recent = links(feed, opds.REL_SORT_NEW)[0]
        assert dict(parse_qsl(urlsplit(favorites.get("href")).query)) == {
            "filter": "favorite", "token": "abc"}
        assert dict(parse_qsl(urlsplit(recent.get("href")).query)) == {"page": "1", "token": "abc"}


class TestSummaryEntry:
    """Test entries inside an acquisition feed."""

    def test_entry_fields_and_relative_links(self, book):
        feed = opds.build_feed("id", "t")
        opds.build_entry(feed, book)
        entry = parse(feed).find(f"{ATOM}entry")

        assert entry.findtext(f"{ATOM}id") == f"urn:tomes:book:{book.id}"
        assert entry.findtext(f"{ATOM}title") == "Dune"
        assert entry.findtext(f"{ATOM}summary") == "Desert planet"
        assert entry.findtext(f"{ATOM}author/{ATOM}name") == "Frank Herbert"

        acquisition = links(entry, opds.REL_ACQUISITION)[0]
        assert acquisition.get("href") == f"/books/{book.id}/download"
        assert acquisition.get("type") == opds.EPUB_MIME
        assert links(entry, "alternate")[0].get("href") == f"/books/{book.id}.atom"

    def test_jpeg_cover_gets_image_link(self, book):
        feed = opds.build_feed("id", "t")
        entry = opds.build_entry(feed, book)

        image = links(entry, opds.REL_IMAGE)
        assert len(image) == 1
        assert image[0].get("type") == "image/jpeg"
        assert image[0].get("href") == f"/books/{book.id}/cover"

    @pytest.mark.parametrize("cover_type", ["", "image/gif", "application/pdf"])
    def test_other_cover_types_get_no_image_link(self, temp_library, cover_type):
        book = temp_library.add_book("No cover", cover_type=cover_type)
        entry = opds.build_entry(opds.build_feed("id", "t"), book)

        assert links(entry, opds.REL_IMAGE) == []

    def test_control_characters_are_dropped(self, temp_library):
        book = temp_library.add_book("A\x0bB", description="d\x0ce", tags=["x\x1fy"],
                                     authors=["Ann\x1f"])

        feed = opds.build_feed("id", "t")
        opds.build_entry(feed, book)
        entry = parse(feed).find(f"{ATOM}entry")
        full = parse(opds.build_full_entry(book, "http://host"))

        assert entry.findtext(f"{ATOM}title") == "AB"
        assert entry.findtext(f"{ATOM}summary") == "de"
        assert entry.findtext(f"{ATOM}author/{ATOM}name") == "Ann"
        assert full.find(f"{ATOM}category").get("term") == "xy"

    def test_xml_safe_keeps_legal_text(self):
        text = "Tab\there, newline\n, carriage\r, accents éü, emoji \U0001f4da"

        assert opds.xml_safe(text) == text
        assert opds.xml_safe("\x00\x08\x0b\x0c\x0e\x1f\ufffe") == ""

    def test_entry_link_carries_token(self, book):
        entry = opds.build_entry(opds.build_feed("id", "t"), book, token="abc")

        assert links(entry, "alternate")[0].get("href") == f"/books/{book.id}.atom?token=abc"

    def test_books_feed_has_one_entry_per_book(self, temp_library):
        books = [temp_library.add_book(f"Book {i}") for i in range(3)]

        feed = parse(opds.build_books_feed(opds.build_feed("id", "t"), books))

        assert len(feed.findall(f"{ATOM}entry")) == 3


class TestFullEntry:
    """Test standalone full entries."""

    def test_full_entry_is_standalone_with_absolute_links(self, book):
        entry = parse(opds.build_full_entry(book, "http://example.org:3000", language="de"))

        assert entry.tag == f"{ATOM}entry"
        assert len(entry.nsmap) == 9
        assert entry.get(XML_LANG) == "de"
        for link in links(entry):
            assert link.get("href").startswith("http://example.org:3000/")
        assert entry.findtext(f"{ATOM}author/{ATOM}uri").startswith("http://example.org:3000/index.atom?")

    def test_categories_and_related_links(self, book):
        entry = parse(opds.build_full_entry(book, "http://host"))

        categories = entry.findall(f"{ATOM}category")
        assert sorted(c.get("term") for c in categories) == ["Classic", "Science Fiction"]
        assert all(c.get("scheme") == opds.TAG_SCHEME for c in categories)

        related = {link.get("title"): link.get("href") for link in links(entry, "related")}
        assert related["Dune"] == "http://host/index.atom?serie=Dune"
        assert related["Science Fiction"] == "http://host/index.atom?tag=Science+Fiction"

        same_author = links(entry, opds.REL_SAME_AUTHOR)[0]
        assert same_author.get("title") == "Frank Herbert"
        assert "author_id=" in same_author.get("href")

    def test_token_is_propagated_to_catalog_links(self, book):
        entry = parse(opds.build_full_entry(book, "http://host", token="s3cret"))

        for link in links(entry, "related") + links(entry, opds.REL_SAME_AUTHOR):
            assert dict(parse_qsl(urlsplit(link.get("href")).query))["token"] == "s3cret"

    def test_no_serie_link_without_serie(self, temp_library):
        book = temp_library.add_book("Standalone", tags=["Essay"])

        entry = parse(opds.build_full_entry(book, "http://host"))

        assert [link.get("title") for link in links(entry, "related")] == ["Essay"]


class TestTagEntries:
    """Test the tag facets of the catalog root."""

    def test_tag_entries_follow_book_count_order(self):
        tags = [TagCount(1, "Poetry", 0), TagCount(2, "Fantasy", 5), TagCount(3, "Essay", 2)]
        feed = opds.build_feed("id", "t")

        for tag in sort_tags_by_book_count(tags):
            opds.build_tag_entry(feed, tag)
        entries = parse(feed).findall(f"{ATOM}entry")

        assert [e.findtext(f"{ATOM}title") for e in entries] == ["Fantasy", "Essay", "Poetry"]
        assert [e.findtext(f"{ATOM}id") for e in entries] == ["Fantasy", "Essay", "Poetry"]

    def test_tag_entry_links_to_filtered_catalog(self):
        entry = opds.build_tag_entry(opds.build_feed("id", "t"), TagCount(1, "Science Fiction", 3))

        link = links(entry, opds.REL_SORT_NEW)[0]
        assert link.get("href") == "/index.atom?tag=Science+Fiction"
        assert link.get("type") == opds.OPDS_ACQUISITION_MIME


class TestOpenSearchDescription:
    """Test the OpenSearch description document."""

    def test_templates_point_at_search_endpoints(self):
        doc = parse(opds.build_opensearch_description("http://host"))

        templates = {url.get("type"): url.get("template") for url in doc.findall(f"{OPENSEARCH}Url")}
        assert templates["text/html"] == "http://host/search.html?query={searchTerms}"
        assert templates[opds.ATOM_MIME] == "http://host/search.atom?query={searchTerms}"

    def test_token_added_to_atom_template(self):
        doc = parse(opds.build_opensearch_description("http://host", token="abc"))

        templates = {url.get("type"): url.get("template") for url in doc.findall(f"{OPENSEARCH}Url")}
        assert templates[opds.ATOM_MIME].endswith("&token=abc")
        assert "token" not in templates["text/html"]
