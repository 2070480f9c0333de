"""
Output format selection and access control.

Every catalog route decides its Format once from the URL extension, then
runs authorize() before touching the library. A non-None result from
authorize() is the complete response.
"""

from enum import Enum
from typing import Optional
import logging

from fastapi.responses import RedirectResponse, Response

from .db.models import ServerOption

logger = logging.getLogger(__name__)

LOGIN_URL = "/login.html"
SESSION_AUTH_KEY = "auth"


class Format(str, Enum):
    """Representation requested by the URL extension."""
    HTML = "html"
    ATOM = "atom"
    UNSUPPORTED = "unsupported"

    @classmethod
    def from_extension(cls, extension: str) -> 'Format':
        """Map an extension to a Format; unknown ones (json...) are UNSUPPORTED."""
        try:
            format_ = cls(extension.lower())
        except ValueError:
            return cls.UNSUPPORTED
        return cls.UNSUPPORTED if format_ is cls.UNSUPPORTED else format_


def authorize(fmt: Format, options: ServerOption, token: Optional[str],
              authenticated: bool) -> Optional[Response]:
    """
    Gate a request on the configured credentials.

    Args:
        fmt: Requested format
        options: Current server options
        token: ``token`` query parameter, if any
        authenticated: Whether the session passed the login form

    Returns:
        None when the request may proceed, otherwise the response to send:
        401 for a bad Atom token (reader apps cannot follow a login page),
        a 302 to the login page for HTML without a session.
    """
    if fmt is Format.ATOM and options.token:
        if token != options.token:
            logger.info("Rejected atom request with missing or invalid token")
            return Response(status_code=401)
    elif fmt is Format.HTML and options.password:
        if not authenticated:
            return RedirectResponse(LOGIN_URL, status_code=302)
    return None
