"""Ödünç sistemi için komut satırı yönetimi."""

import json
from typing import List, Optional

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from circulation.config import settings
from circulation.errors import LibraryError, NotFound
from circulation.library import Library
from circulation.models import Role, User

APP_NAME = "circulation"

console = Console()

app = typer.Typer(help="Library circulation administration")


def _open_library(db_file: Optional[str]) -> Library:
    return Library(db_file=db_file)


def _print_users(users: List[User], output: str) -> None:
    if not users:
        print("No users.")
        return
    if output == "json":
        print(json.dumps([u.to_dict() for u in users], ensure_ascii=False, indent=2))
        return
    if output == "rich":
        table = Table(title="Users", box=box.SIMPLE)
        table.add_column("ID", justify="right")
        table.add_column("Name")
        table.add_column("Email")
        table.add_column("Role", style="cyan")
        for u in users:
            table.add_row(str(u.id), u.name, u.email, u.role.value)
        console.print(table)
        return
    for u in users:
        print(f"{u.id} - {u.name} <{u.email}> [{u.role.value}]")


@app.command("serve")
def cli_serve(
    host: str = typer.Option(settings.api_host, help="Interface to bind"),
    port: int = typer.Option(settings.api_port, help="Port to listen on"),
    reload: bool = typer.Option(settings.debug, help="Reload on code changes"),
):
    """Run the HTTP API with uvicorn."""
    import uvicorn

    uvicorn.run(
        "circulation.api:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


@app.command("init-db")
def cli_init_db(db_file: Optional[str] = typer.Option(None, "--db", help="Database file")):
    """Create the schema if it doesn't exist."""
    lib = _open_library(db_file)
    lib.close()
    print(f"Database ready: {lib.settings.database_file}")


@app.command("create-user")
def cli_create_user(
    name: str,
    email: str,
    password: str = typer.Option(..., prompt=True, hide_input=True, confirmation_prompt=True),
    role: Role = typer.Option(Role.MEMBER, case_sensitive=False, help="member | librarian | admin"),
    db_file: Optional[str] = typer.Option(None, "--db", help="Database file"),
):
    """Create an account. Use --role admin to bootstrap the first administrator."""
    lib = _open_library(db_file)
    try:
        user_id = lib.users.insert(name, email, password, role)
        user = lib.users.get(user_id)
        print(f"Created user {user.id}: {user.email} [{user.role.value}]")
    except LibraryError as e:
        errors = getattr(e, "field_errors", None)
        if errors:
            for field, message in errors.items():
                print(f"Error: {field}: {message}")
        else:
            print(f"Error: {e.message}")
        raise typer.Exit(code=1)
    finally:
        lib.close()


@app.command("promote")
def cli_promote(
    email: str,
    db_file: Optional[str] = typer.Option(None, "--db", help="Database file"),
):
    """Promote a member to librarian."""
    lib = _open_library(db_file)
    try:
        user = lib.users.find_by_email(email)
        user = lib.users.promote_to_librarian(user.id)
        print(f"{user.email} is now {user.role.value}")
    except NotFound:
        print(f"User with email {email} not found.")
        raise typer.Exit(code=1)
    finally:
        lib.close()


@app.command("users")
def cli_users(
    output: str = typer.Option("plain", "--output", "-o", help="Output format: plain | json | rich"),
    db_file: Optional[str] = typer.Option(None, "--db", help="Database file"),
):
    """List accounts, newest first."""
    lib = _open_library(db_file)
    try:
        _print_users(lib.users.list_users(), output.lower())
    finally:
        lib.close()


def main() -> None:
    app()


if __name__ == "__main__":
    main()
