"""Per-request service context shared by the catalog routes."""

from dataclasses import dataclass
from typing import Iterator, Optional

from fastapi import Request

from .db.models import ServerOption
from .dispatch import SESSION_AUTH_KEY
from .library_db import Library


@dataclass
class CatalogContext:
    """Everything a route needs: data access, settings and link root."""
    library: Library
    options: ServerOption
    root_url: str
    token: Optional[str] = None
    authenticated: bool = False


def resolve_root_url(options: ServerOption, request: Request) -> str:
    """Configured base URL if any, else scheme and host of the request."""
    if options.base_url:
        return options.base_url.rstrip("/")
    return f"{request.url.scheme}://{request.url.netloc}"


def current_url(request: Request) -> str:
    """Path and query string of the request."""
    url = request.url.path
    if request.url.query:
        url += "?" + request.url.query
    return url


def get_context(request: Request) -> Iterator[CatalogContext]:
    """FastAPI dependency opening a session for the duration of a request."""
    library = request.app.state.library.fork()
    try:
        options = library.options()
        yield CatalogContext(
            library=library,
            options=options,
            root_url=resolve_root_url(options, request),
            token=request.query_params.get("token"),
            authenticated=request.session.get(SESSION_AUTH_KEY) == "OK",
        )
    finally:
        library.close()
