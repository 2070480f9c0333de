"""
tomes - a personal ebook library served as HTML pages and an OPDS catalog.

Main API:
    from pathlib import Path
    from tomes.library_db import Library
    from tomes.filters import FilterSpec

    lib = Library.open(Path("/path/to/library"))
    books = lib.books(FilterSpec(tag="Fantasy", order="old"), limit=20)
    lib.close()

    # Or serve it
    from tomes.server import create_app
    app = create_app(Path("/path/to/library"))
"""

from .library_db import Library

__version__ = "0.1.0"
__all__ = ["Library"]
