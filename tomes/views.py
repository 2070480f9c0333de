"""
HTML rendering of catalog pages with Jinja2 templates.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from fastapi import Request
from fastapi.templating import Jinja2Templates

from .pagination import Pagination

TEMPLATES_DIR = Path(__file__).parent / "templates"

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))


@dataclass
class Page:
    """View model handed to every template."""
    title: str = ""
    content: Any = None
    next_page: str = ""
    prev_page: str = ""
    first_page: str = ""
    last_page: str = ""
    filter_block: bool = False

    @classmethod
    def from_pagination(cls, title: str, content: Any, pagination: Pagination,
                        filter_block: bool = True) -> 'Page':
        return cls(
            title=title,
            content=content,
            next_page=pagination.next_link,
            prev_page=pagination.prev_link,
            first_page=pagination.first_link,
            last_page=pagination.last_link,
            filter_block=filter_block,
        )


def render(request: Request, template_name: str, page: Page):
    """Render ``template_name`` with ``page``."""
    return templates.TemplateResponse(request, template_name, {"page": page})
