import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .decorators import handle_library_errors

# Initialize Rich Console
console = Console()

# Configure logging to use Rich's RichHandler
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True)]
)
logger = logging.getLogger(__name__)

app = typer.Typer(help="Serve a personal ebook library as HTML and OPDS.")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose mode"),
):
    """
    tomes - personal ebook library server with an OPDS catalog.
    """
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        console.print("[bold green]Verbose mode enabled.[/bold green]")


def _resolve_library(library_path: Optional[Path]) -> Path:
    """Library path from the argument or the configured default."""
    from .config import load_config

    if library_path is None:
        default_path = load_config().library.default_path
        if not default_path:
            console.print("[red]Error: No library path specified[/red]")
            console.print("[yellow]Either provide a path or set default with:[/yellow]")
            console.print("[yellow]  tomes config --library-path ~/my-library[/yellow]")
            raise typer.Exit(code=1)
        library_path = Path(default_path)

    if not library_path.exists():
        raise FileNotFoundError(library_path)
    return library_path


@app.command()
@handle_library_errors
def init(
    library_path: Path = typer.Argument(..., help="Path to create the library"),
    echo_sql: bool = typer.Option(False, "--echo-sql", help="Echo SQL statements for debugging"),
):
    """
    Initialize a new library: database, catalog identity and defaults.

    Example:
        tomes init ~/my-library
    """
    from .library_db import Library

    lib = Library.open(library_path, echo=echo_sql)
    try:
        options = lib.options()
        console.print(f"[green]✓ Library initialized at {library_path}[/green]")
        console.print(f"  Catalog: {options.name} ({options.uuid})")
    finally:
        lib.close()


@app.command()
@handle_library_errors
def serve(
    library_path: Optional[Path] = typer.Argument(None, help="Path to library (defaults from config)"),
    host: Optional[str] = typer.Option(None, "--host", help="Host to bind to (defaults from config)"),
    port: Optional[int] = typer.Option(None, "--port", help="Port to bind to (defaults from config, then library options)"),
):
    """
    Start the web server.

    The HTML catalog is at /index.html and the OPDS catalog at /index.atom.

    Examples:
        tomes serve ~/my-library
        tomes serve --port 8080
    """
    import uvicorn

    from .config import load_config
    from .server import create_app

    config = load_config()
    library_path = _resolve_library(library_path)

    app_instance = create_app(library_path, session_secret=config.server.session_secret)
    options = app_instance.state.library.options()

    server_host = host if host is not None else config.server.host
    server_port = port or config.server.port or options.port

    console.print(f"[blue]Library: {library_path}[/blue]")
    console.print(f"[green]Serving {options.name} at http://{server_host}:{server_port}[/green]")
    console.print("[dim]Press Ctrl+C to stop[/dim]")

    uvicorn.run(app_instance, host=server_host, port=server_port, log_level="info")


@app.command()
@handle_library_errors
def options(
    library_path: Optional[Path] = typer.Argument(None, help="Path to library (defaults from config)"),
    name: Optional[str] = typer.Option(None, "--name", help="Catalog display name"),
    password: Optional[str] = typer.Option(None, "--password", help="Password for the HTML pages (empty to disable)"),
    token: Optional[str] = typer.Option(None, "--token", help="Token required by OPDS clients (empty to disable)"),
    base_url: Optional[str] = typer.Option(None, "--base-url", help="Public URL used in absolute links (empty for request host)"),
    page_size: Optional[int] = typer.Option(None, "--page-size", min=1, help="Books per page"),
    port: Optional[int] = typer.Option(None, "--port", help="Default listening port"),
    language: Optional[str] = typer.Option(None, "--language", help="Catalog language code"),
):
    """
    Show or update the catalog options stored in the library.

    Examples:
        tomes options ~/my-library
        tomes options ~/my-library --token s3cret --page-size 30
    """
    from .library_db import Library

    lib = Library.open(_resolve_library(library_path))
    try:
        current = lib.update_options(
            name=name, password=password, token=token, base_url=base_url,
            page_size=page_size, port=port, language=language,
        )

        table = Table(title="Catalog options")
        table.add_column("Option", style="cyan")
        table.add_column("Value")
        table.add_row("uuid", current.uuid)
        table.add_row("name", current.name)
        table.add_row("base_url", current.base_url or "[dim](request host)[/dim]")
        table.add_row("password", "***" if current.password else "[dim](none)[/dim]")
        table.add_row("token", current.token or "[dim](none)[/dim]")
        table.add_row("page_size", str(current.page_size))
        table.add_row("port", str(current.port))
        table.add_row("language", current.language or "")
        console.print(table)
    finally:
        lib.close()


@app.command("list")
@handle_library_errors
def list_books(
    library_path: Optional[Path] = typer.Argument(None, help="Path to library (defaults from config)"),
    tag: str = typer.Option("", "--tag", help="Only books with this tag"),
    author: str = typer.Option("", "--author", help="Only books by this author"),
    serie: str = typer.Option("", "--serie", help="Only books of this serie, in reading order"),
    read_filter: str = typer.Option("", "--filter", help="favorite, notread or read"),
    order: str = typer.Option("", "--order", help="new (default) or old"),
    page: int = typer.Option(1, "--page", help="Page number"),
):
    """
    List one page of books, filtered like the catalog.

    Example:
        tomes list ~/my-library --tag Fantasy --page 2
    """
    from .filters import FilterSpec
    from .library_db import Library
    from .pagination import paginate, parse_page

    lib = Library.open(_resolve_library(library_path))
    try:
        spec = FilterSpec(tag=tag, author=author, serie=serie, read_filter=read_filter, order=order)
        page_size = lib.options().page_size
        pagination = paginate(parse_page(str(page)), page_size, lib.count(spec), "")
        books = lib.books(spec, limit=page_size, offset=pagination.offset)

        table = Table(title=f"Page {pagination.page} of {pagination.last_page} ({pagination.total} books)")
        table.add_column("ID", style="cyan", justify="right")
        table.add_column("Title")
        table.add_column("Authors")
        table.add_column("Serie")
        table.add_column("Tags")
        table.add_column("★", justify="center")
        table.add_column("Read", justify="center")
        for book in books:
            serie_text = f"{book.serie} #{book.serie_number:g}" if book.serie else ""
            table.add_row(
                str(book.id),
                book.title or "",
                ", ".join(a.name for a in book.authors),
                serie_text,
                ", ".join(t.name for t in book.tags),
                "★" if book.favorite else "",
                "✓" if book.read else "",
            )
        console.print(table)
    finally:
        lib.close()


@app.command("refresh-meta")
@handle_library_errors
def refresh_meta(
    library_path: Optional[Path] = typer.Argument(None, help="Path to library (defaults from config)"),
):
    """
    Extract metadata for every book that was never extracted.
    """
    from .library_db import Library

    lib = Library.open(_resolve_library(library_path))
    try:
        book_ids = lib.unedited_book_ids()
        if not book_ids:
            console.print("[green]All books already have metadata[/green]")
            return
        for book_id in book_ids:
            book = lib.refresh_metadata(book_id)
            console.print(f"  {book_id}: {book.title if book else '?'}")
        console.print(f"[green]✓ Processed {len(book_ids)} books[/green]")
    finally:
        lib.close()


@app.command()
def config(
    show: bool = typer.Option(False, "--show", help="Show current configuration"),
    set_library_path: Optional[str] = typer.Option(None, "--library-path", help="Set default library path"),
    set_host: Optional[str] = typer.Option(None, "--host", help="Set web server host"),
    set_port: Optional[int] = typer.Option(None, "--port", help="Set web server port"),
    set_session_secret: Optional[str] = typer.Option(None, "--session-secret", help="Set the key signing login sessions"),
):
    """
    View or edit the tomes configuration file.

    Configuration is stored at ~/.config/tomes/config.json (or ~/.tomes/config.json).

    Examples:
        tomes config --show
        tomes config --library-path ~/my-library --port 9000
    """
    from .config import get_config_path, load_config, update_config

    has_settings = any(value is not None for value in
                       (set_library_path, set_host, set_port, set_session_secret))

    if has_settings:
        update_config(
            server_host=set_host,
            server_port=set_port,
            session_secret=set_session_secret,
            library_default_path=set_library_path,
        )
        console.print(f"[green]Configuration saved to {get_config_path()}[/green]")

    if show or not has_settings:
        console.print(f"[bold]Configuration file:[/bold] {get_config_path()}")
        console.print_json(json.dumps(load_config().to_dict()))


if __name__ == "__main__":
    app()
