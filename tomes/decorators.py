"""Decorators for tomes command-line functionality."""

import functools
import logging
from typing import Callable, Any

import typer
from rich.console import Console
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)
console = Console()


def handle_library_errors(func: Callable) -> Callable:
    """
    Decorator to handle common library operation errors.

    Centralizes error handling for:
    - FileNotFoundError: Library doesn't exist
    - PermissionError: No access to files
    - ValueError: Invalid data or arguments
    - SQLAlchemyError: Unreadable or corrupt database
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs) -> Any:
        try:
            return func(*args, **kwargs)
        except FileNotFoundError as e:
            console.print(f"[bold red]Error:[/bold red] Library or file not found: {e}")
            raise typer.Exit(code=1)
        except PermissionError as e:
            console.print(f"[bold red]Error:[/bold red] Permission denied: {e}")
            console.print("[yellow]Tip: Check file permissions or run with appropriate privileges[/yellow]")
            raise typer.Exit(code=1)
        except ValueError as e:
            console.print(f"[bold red]Error:[/bold red] Invalid input: {e}")
            raise typer.Exit(code=1)
        except SQLAlchemyError as e:
            logger.error(f"Database error in {func.__name__}: {e}", exc_info=True)
            console.print(f"[bold red]Database error:[/bold red] {e}")
            raise typer.Exit(code=1)
        except KeyboardInterrupt:
            console.print("\n[yellow]Operation cancelled by user[/yellow]")
            raise typer.Exit(code=130)

    return wrapper
