"""CLI commands for localdb.

Commands:
- init: Open the database, creating or upgrading the schema
- version: Show stored vs. target schema version
- backup: Copy the live database to another file
- users add/list/delete: Manage rows of the users table
"""

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, TypeVar

import structlog
import typer
from rich.console import Console
from rich.table import Table

from localdb.config.app_config import load_app_config
from localdb.db.database import Database
from localdb.db.schema import SCHEMA_VERSION, build_migrator
from localdb.db.users_repository import User, UserRepository
from localdb.errors import LocalDBError

T = TypeVar("T")

app = typer.Typer(
    name="localdb",
    help="Typed data access over an embedded SQLite database.",
    no_args_is_help=True,
)
users_app = typer.Typer(help="Manage users.", no_args_is_help=True)
app.add_typer(users_app, name="users")

console = Console()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logs"),
) -> None:
    """Configure logging for all commands."""
    level = logging.DEBUG if verbose else logging.WARNING
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(level),
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
    )


def _open_database() -> Database:
    config = load_app_config()
    return Database.from_config(config, build_migrator())


def _run(action: Callable[[Database], Awaitable[T]]) -> T:
    """Run ``action`` against the configured database, exiting on errors."""

    async def runner() -> T:
        async with _open_database() as db:
            return await action(db)

    try:
        return asyncio.run(runner())
    except LocalDBError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1)


def _format_ts(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S")


# =============================================================================
# DATABASE COMMANDS
# =============================================================================


@app.command()
def init() -> None:
    """Create the database file and bring the schema up to date."""
    db_path = load_app_config().database.path

    async def action(db: Database) -> int:
        return await db.schema_version()

    version = _run(action)
    console.print(f"[green]✓ Base de datos lista:[/green] {db_path}")
    console.print(f"  [dim]schema version:[/dim] {version}")


@app.command()
def version() -> None:
    """Show stored and target schema versions without migrating."""
    config = load_app_config()
    db_path = config.database.path
    if not db_path.exists():
        console.print(f"[red]✗ Base de datos no encontrada:[/red] {db_path}")
        console.print("  Usa: localdb init")
        raise typer.Exit(code=1)

    # Open without a migrator so the stored version is reported as-is
    async def runner() -> int:
        async with Database.from_config(config) as db:
            return await db.schema_version()

    try:
        stored = asyncio.run(runner())
    except LocalDBError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1)

    console.print(f"  [dim]stored:[/dim] {stored}")
    console.print(f"  [dim]target:[/dim] {SCHEMA_VERSION}")
    if stored < SCHEMA_VERSION:
        console.print("[yellow]⚠ Migración pendiente - ejecuta: localdb init[/yellow]")


@app.command()
def backup(
    destination: Path = typer.Argument(None, help="Backup file (default: backup dir)"),
) -> None:
    """Copy the live database to another file."""
    config = load_app_config()
    if destination is None:
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        destination = config.backup_dir / f"{config.database.path.stem}-{stamp}.sqlite3"

    async def action(db: Database) -> Path:
        return await db.backup(destination)

    path = _run(action)
    console.print(f"[green]✓ Backup creado:[/green] {path}")


# =============================================================================
# USERS
# =============================================================================


@users_app.command("add")
def users_add(
    email: str = typer.Argument(..., help="Unique email address"),
    name: str = typer.Argument(..., help="Display name"),
    age: int = typer.Option(None, "--age", help="Age in years"),
) -> None:
    """Insert a user."""

    async def action(db: Database) -> int:
        return await UserRepository(db).insert(User(email=email, name=name, age=age))

    user_id = _run(action)
    console.print(f"[green]✓ Usuario creado:[/green] id={user_id}")


@users_app.command("list")
def users_list(
    search: str = typer.Option(None, "--search", "-s", help="Name contains"),
    limit: int = typer.Option(20, "--limit", "-n", min=1, help="Page size"),
    page: int = typer.Option(0, "--page", "-p", min=0, help="Zero-based page"),
) -> None:
    """List users in insertion order."""

    async def action(db: Database) -> list[User]:
        users = UserRepository(db)
        if search:
            return await users.search_by_name(search, limit=limit, offset=page * limit)
        return await users.page(page, limit)

    users = _run(action)

    if not users:
        console.print("[yellow]No hay usuarios[/yellow]")
        console.print("  Usa: localdb users add <email> <nombre>")
        return

    table = Table(title=f"Usuarios ({len(users)})")
    table.add_column("id", justify="right")
    table.add_column("email")
    table.add_column("name")
    table.add_column("age", justify="right")
    table.add_column("created_at", style="dim")
    for user in users:
        table.add_row(
            str(user.id),
            user.email,
            user.name,
            "" if user.age is None else str(user.age),
            _format_ts(user.created_at),
        )
    console.print(table)


@users_app.command("delete")
def users_delete(
    user_id: int = typer.Argument(..., help="User id"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
) -> None:
    """Delete a user and, by cascade, their posts."""
    if not yes:
        confirm = typer.confirm(f"¿Eliminar usuario {user_id} y sus posts?")
        if not confirm:
            console.print("[yellow]Cancelado[/yellow]")
            raise typer.Exit(code=0)

    async def action(db: Database) -> int:
        return await UserRepository(db).delete(user_id)

    removed = _run(action)
    if removed == 0:
        console.print(f"[yellow]Usuario no encontrado: {user_id}[/yellow]")
        raise typer.Exit(code=1)
    console.print(f"[green]✓ Usuario eliminado:[/green] {user_id}")


if __name__ == "__main__":
    app()
