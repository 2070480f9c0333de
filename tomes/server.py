"""
Web server for the tomes catalog.

Serves the library as HTML pages and as an OPDS Atom catalog. Every route
that takes a ``.{fmt}`` suffix decides its Format first and is gated by
dispatch.authorize() before any data is read.
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional
from urllib.parse import urlencode
import logging
import secrets

from fastapi import APIRouter, Depends, FastAPI, Form, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, RedirectResponse, Response
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.sessions import SessionMiddleware

from . import opds
from .context import CatalogContext, current_url, get_context
from .dispatch import Format, SESSION_AUTH_KEY, authorize
from .filters import FilterSpec, parse_int
from .library_db import Library, sort_tags_by_book_count
from .pagination import PAGE_PARAM, paginate, parse_page
from .views import Page, render

logger = logging.getLogger(__name__)

router = APIRouter()


def create_app(library_path: Path, session_secret: Optional[str] = None) -> FastAPI:
    """
    Create the FastAPI application for a library.

    Args:
        library_path: Library directory, created if missing
        session_secret: Key signing the session cookie; random when omitted,
            which logs everybody out on restart

    Returns:
        Configured FastAPI app. The Library is available as
        ``app.state.library``.
    """
    library = Library.open(library_path)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        library.close()

    app = FastAPI(
        title="tomes",
        description="Personal ebook library with an OPDS catalog",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.library = library

    app.add_middleware(SessionMiddleware, secret_key=session_secret or secrets.token_urlsafe(32),
                       session_cookie="tomes")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    app.add_exception_handler(SQLAlchemyError, storage_error_handler)
    app.include_router(router)

    return app


async def storage_error_handler(request: Request, exc: SQLAlchemyError) -> Response:
    """Turn a failed query into a 500 instead of a dropped connection."""
    logger.exception(f"Storage error while serving {request.url.path}", exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Storage error"})


def _unsupported() -> Response:
    # Reserved for a future representation (e.g. OPDS 2 json)
    return Response(status_code=204)


def _atom(element, media_type: str = opds.OPDS_ACQUISITION_MIME) -> Response:
    return Response(content=opds.serialize(element), media_type=media_type)


def _search_href(ctx: CatalogContext) -> str:
    if ctx.options.token:
        return "/opensearch.xml?" + urlencode({"token": ctx.options.token})
    return "/opensearch.xml"


def _get_book_or_404(ctx: CatalogContext, book_id: str):
    book = ctx.library.get_book(parse_int(book_id))
    if book is None:
        raise HTTPException(status_code=404, detail="Book not found")
    return book


@router.get("/")
def redirect_root():
    """Send visitors to the HTML catalog."""
    return RedirectResponse("/index.html", status_code=301)


@router.get("/index.{fmt}")
def index(fmt: str, request: Request, ctx: CatalogContext = Depends(get_context)):
    """
    Catalog listing, filtered by tag/author/author_id/serie/filter and
    sorted by order, one page at a time.

    Without any of those parameters and without a page, the Atom root
    lists tag facets instead of books.
    """
    format_ = Format.from_extension(fmt)
    denied = authorize(format_, ctx.options, ctx.token, ctx.authenticated)
    if denied is not None:
        return denied
    if format_ is Format.UNSUPPORTED:
        return _unsupported()

    params = request.query_params
    spec = FilterSpec.from_params(params)
    page_size = ctx.options.page_size

    total = ctx.library.count(spec)
    pagination = paginate(parse_page(params.get(PAGE_PARAM)), page_size, total, current_url(request))

    if format_ is Format.ATOM:
        feed = opds.build_feed(
            ctx.options.uuid,
            ctx.options.name,
            total_results=total,
            items_per_page=page_size,
            start_index=pagination.start_index,
            prev_link=pagination.prev_link,
            next_link=pagination.next_link,
            language=ctx.options.language or "en",
            search_href=_search_href(ctx),
        )
        opds.add_root_links(feed, ctx.options.token)

        if PAGE_PARAM not in params and spec.is_empty():
            for tag in sort_tags_by_book_count(ctx.library.tags_with_counts()):
                opds.build_tag_entry(feed, tag, ctx.options.token)
        else:
            books = ctx.library.books(spec, limit=page_size, offset=pagination.offset)
            opds.build_books_feed(feed, books, ctx.options.token)
        return _atom(feed)

    books = ctx.library.books(spec, limit=page_size, offset=pagination.offset)
    return render(request, "bookcover.html", Page.from_pagination(ctx.options.name, books, pagination))


@router.get("/books/{book_id}.{fmt}")
def book_detail(book_id: str, fmt: str, request: Request, ctx: CatalogContext = Depends(get_context)):
    """Single book: HTML page or full OPDS entry."""
    format_ = Format.from_extension(fmt)
    denied = authorize(format_, ctx.options, ctx.token, ctx.authenticated)
    if denied is not None:
        return denied
    if format_ is Format.UNSUPPORTED:
        return _unsupported()

    book = _get_book_or_404(ctx, book_id)

    if format_ is Format.ATOM:
        entry = opds.build_full_entry(book, ctx.root_url, ctx.options.token, ctx.options.language or "en")
        return _atom(entry, opds.OPDS_ENTRY_MIME)

    return render(request, "book.html", Page(title=ctx.options.name, content=book))


@router.get("/search.{fmt}")
def search(fmt: str, request: Request, query: str = "", ctx: CatalogContext = Depends(get_context)):
    """Search books by title, description, serie, author or tag."""
    format_ = Format.from_extension(fmt)
    denied = authorize(format_, ctx.options, ctx.token, ctx.authenticated)
    if denied is not None:
        return denied
    if format_ is Format.UNSUPPORTED:
        return _unsupported()

    books = ctx.library.search(query)

    if format_ is Format.ATOM:
        feed = opds.build_feed(
            f"{ctx.root_url}/search.atom",
            query,
            total_results=len(books),
            items_per_page=len(books),
            language=ctx.options.language or "en",
            search_href=_search_href(ctx),
        )
        opds.build_books_feed(feed, books, ctx.options.token)
        return _atom(feed)

    return render(request, "bookcover.html", Page(title=ctx.options.name, content=books))


@router.get("/opensearch.xml")
def opensearch_description(ctx: CatalogContext = Depends(get_context)):
    """OpenSearch description document for search integration.

    The Atom template only carries the token when the caller presented it.
    """
    token = ctx.options.token if ctx.options.token and ctx.token == ctx.options.token else ""
    doc = opds.build_opensearch_description(ctx.root_url, token)
    return Response(content=opds.serialize(doc), media_type=opds.OPENSEARCH_MIME)


@router.get("/books/{book_id}/download")
def download(book_id: str, ctx: CatalogContext = Depends(get_context)):
    """Download a book's EPUB file."""
    book = _get_book_or_404(ctx, book_id)
    path = ctx.library.storage.epub_path(book.id)
    if not path.exists():
        raise HTTPException(status_code=404, detail="File not found on disk")

    safe_title = "".join(c for c in (book.title or "book") if c.isalnum() or c in " -_")[:50]
    return FileResponse(path=path, filename=f"{safe_title or 'book'}.epub", media_type=opds.EPUB_MIME)


@router.get("/books/{book_id}/cover")
def cover(book_id: str, ctx: CatalogContext = Depends(get_context)):
    """Get a book's cover image."""
    book = _get_book_or_404(ctx, book_id)
    path = ctx.library.storage.cover_path(book.id)
    if book.cover_download_url is None or not path.exists():
        raise HTTPException(status_code=404, detail="Cover not found")
    return FileResponse(path=path, media_type=book.cover_type)


# ----------------------------------------------------------------------
# Form actions. All redirect to a canonical page; unknown ids are no-ops.
# ----------------------------------------------------------------------

def _detail_redirect(book_id: str) -> RedirectResponse:
    return RedirectResponse(f"/books/{book_id}.html", status_code=303)


@router.post("/books/{book_id}/favorite")
def favorite(book_id: str, ctx: CatalogContext = Depends(get_context)):
    denied = authorize(Format.HTML, ctx.options, ctx.token, ctx.authenticated)
    if denied is not None:
        return denied
    ctx.library.toggle_favorite(parse_int(book_id))
    return _detail_redirect(book_id)


@router.post("/books/{book_id}/readed")
def readed(book_id: str, ctx: CatalogContext = Depends(get_context)):
    denied = authorize(Format.HTML, ctx.options, ctx.token, ctx.authenticated)
    if denied is not None:
        return denied
    ctx.library.toggle_read(parse_int(book_id))
    return _detail_redirect(book_id)


@router.post("/books/{book_id}/refresh")
def refresh(book_id: str, ctx: CatalogContext = Depends(get_context)):
    denied = authorize(Format.HTML, ctx.options, ctx.token, ctx.authenticated)
    if denied is not None:
        return denied
    ctx.library.refresh_metadata(parse_int(book_id))
    return _detail_redirect(book_id)


@router.post("/books/{book_id}/delete")
def delete(book_id: str, ctx: CatalogContext = Depends(get_context)):
    denied = authorize(Format.HTML, ctx.options, ctx.token, ctx.authenticated)
    if denied is not None:
        return denied
    ctx.library.delete_book(parse_int(book_id))
    return RedirectResponse("/index.html", status_code=303)


@router.get("/books/{book_id}/edit")
def edit_form(book_id: str, request: Request, ctx: CatalogContext = Depends(get_context)):
    denied = authorize(Format.HTML, ctx.options, ctx.token, ctx.authenticated)
    if denied is not None:
        return denied
    book = _get_book_or_404(ctx, book_id)
    return render(request, "book_edit.html", Page(title=ctx.options.name, content=book))


@router.post("/books/{book_id}/edit")
def edit(
    book_id: str,
    title: str = Form(""),
    description: str = Form(""),
    isbn: str = Form(""),
    publisher: str = Form(""),
    collection: str = Form(""),
    serie: str = Form(""),
    serie_number: str = Form(""),
    tags: str = Form(""),
    author: str = Form(""),
    ctx: CatalogContext = Depends(get_context),
):
    denied = authorize(Format.HTML, ctx.options, ctx.token, ctx.authenticated)
    if denied is not None:
        return denied
    ctx.library.edit_book(parse_int(book_id), {
        "title": title,
        "description": description,
        "isbn": isbn,
        "publisher": publisher,
        "collection": collection,
        "serie": serie,
        "serie_number": serie_number,
        "tags": tags,
        "author": author,
    })
    return _detail_redirect(book_id)


# ----------------------------------------------------------------------
# Login and tags
# ----------------------------------------------------------------------

@router.get("/login.html")
def login_form(request: Request, ctx: CatalogContext = Depends(get_context)):
    return render(request, "login.html", Page(title=ctx.options.name))


@router.post("/login.html")
def login(request: Request, password: str = Form(""), ctx: CatalogContext = Depends(get_context)):
    """Mark the session authenticated when the password matches."""
    if ctx.options.password and password == ctx.options.password:
        request.session[SESSION_AUTH_KEY] = "OK"
        logger.info("Session authenticated")
    else:
        logger.info("Rejected login attempt")
    return RedirectResponse("/index.html", status_code=303)


@router.get("/tags_list.html")
def tags_list(request: Request, ctx: CatalogContext = Depends(get_context)):
    """Alphabetical tag list with book counts."""
    denied = authorize(Format.HTML, ctx.options, ctx.token, ctx.authenticated)
    if denied is not None:
        return denied
    tags = sorted(ctx.library.tags_with_counts(), key=lambda tag: tag.name)
    return render(request, "tags_list.html", Page(title=ctx.options.name, content=tags))


@router.get("/tags_completion.json")
def tags_completion(ctx: CatalogContext = Depends(get_context)):
    """Tag names for the edit form's autocompletion."""
    return JSONResponse(ctx.library.tag_names())
