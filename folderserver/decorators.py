"""Decorators for folderserver CLI commands."""

import functools
import logging
from typing import Any, Callable

import typer
from rich.console import Console

from .exceptions import (
    AccessDeniedError,
    DuplicatePathError,
    FolderServerError,
    HierarchyError,
    RepositoryError,
    ValidationError,
)

logger = logging.getLogger(__name__)
console = Console()


def handle_folder_errors(func: Callable) -> Callable:
    """
    Decorator to handle common folder store errors.

    Centralizes error reporting for:
    - ValidationError: Bad path, type filter, sort or paging arguments
    - DuplicatePathError / HierarchyError: Rejected or corrupt tree
    - RepositoryError: Database failures
    - General exceptions: Unexpected errors
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs) -> Any:
        try:
            return func(*args, **kwargs)
        except typer.Exit:
            raise
        except ValidationError as e:
            console.print(f"[bold red]Error:[/bold red] Invalid input: {e}")
            raise typer.Exit(code=1)
        except DuplicatePathError as e:
            console.print(f"[bold red]Error:[/bold red] {e}")
            raise typer.Exit(code=1)
        except HierarchyError as e:
            console.print(f"[bold red]Error:[/bold red] Folder hierarchy error: {e}")
            raise typer.Exit(code=1)
        except AccessDeniedError as e:
            console.print(f"[bold red]Error:[/bold red] Access denied: {e}")
            raise typer.Exit(code=1)
        except RepositoryError as e:
            console.print(f"[bold red]Error:[/bold red] Storage error: {e}")
            console.print("[yellow]Tip: Check that the store path points at a folder store[/yellow]")
            raise typer.Exit(code=1)
        except FolderServerError as e:
            console.print(f"[bold red]Error:[/bold red] {e}")
            raise typer.Exit(code=1)
        except KeyboardInterrupt:
            console.print("\n[yellow]Operation cancelled by user[/yellow]")
            raise typer.Exit(code=130)
        except Exception as e:
            logger.error(f"Unexpected error in {func.__name__}: {e}", exc_info=True)
            console.print(f"[bold red]Unexpected error:[/bold red] {e}")
            raise typer.Exit(code=1)

    return wrapper


def require_confirmation(message: str = "Are you sure you want to continue?") -> Callable:
    """
    Decorator to require user confirmation for destructive operations.

    Skipped when the command was called with ``yes=True``.
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            if kwargs.get('yes', False):
                return func(*args, **kwargs)

            console.print(f"[yellow]{message}[/yellow]")
            if not typer.confirm("Continue?"):
                console.print("[red]Operation cancelled[/red]")
                raise typer.Exit(code=0)

            return func(*args, **kwargs)

        return wrapper
    return decorator
