import logging
from typing import Dict

import ebooklib
from ebooklib import epub

from .db.models import COVER_MEDIA_TYPES

logger = logging.getLogger(__name__)


def _find_cover(book: epub.EpubBook):
    """Return the cover image item of an EPUB, or None."""
    for item in book.get_items_of_type(ebooklib.ITEM_COVER):
        return item

    # EPUB2 books point at the cover from <meta name="cover" content="item-id"/>
    for _, attrs in book.get_metadata("OPF", "cover"):
        item = book.get_item_with_id(attrs.get("content", ""))
        if item is not None:
            return item

    for item in book.get_items_of_type(ebooklib.ITEM_IMAGE):
        if "cover" in item.get_name().lower():
            return item
    return None


def extract_metadata_from_epub(epub_path: str) -> Dict:
    """
    Extract metadata from an EPUB file using ebooklib.

    Returns a dictionary with keys title, creators, subjects, description,
    language, cover_type and cover_data. Unreadable files give a dictionary
    of empty values.
    """
    metadata = {
        "title": None,
        "creators": [],
        "subjects": [],
        "description": None,
        "language": None,
        "cover_type": None,
        "cover_data": None,
    }

    try:
        book = epub.read_epub(epub_path)
    except Exception as e:
        logger.error(f"Error reading '{epub_path}': {e}")
        return metadata

    dc_title = book.get_metadata("DC", "title")
    if dc_title:
        metadata["title"] = dc_title[0][0]

    dc_creators = book.get_metadata("DC", "creator")
    if dc_creators:
        metadata["creators"] = [c[0] for c in dc_creators]

    dc_subjects = book.get_metadata("DC", "subject")
    if dc_subjects:
        metadata["subjects"] = [s[0] for s in dc_subjects]

    dc_description = book.get_metadata("DC", "description")
    if dc_description:
        metadata["description"] = dc_description[0][0]

    dc_language = book.get_metadata("DC", "language")
    if dc_language:
        metadata["language"] = dc_language[0][0]

    cover = _find_cover(book)
    if cover is not None and cover.media_type in COVER_MEDIA_TYPES:
        metadata["cover_type"] = cover.media_type
        metadata["cover_data"] = cover.get_content()

    return metadata
