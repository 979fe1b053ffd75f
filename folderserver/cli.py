import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from rich.traceback import install

from .config import get_config_path, load_config, update_config
from .db.session import DB_FILENAME
from .decorators import handle_folder_errors, require_confirmation
from .exceptions import AccessDeniedError
from .models import AccessLevel, Node, NodeType, Principal
from .permissions import PRINCIPAL_GROUP, PRINCIPAL_USER
from .seed import TreeSeeder
from .store import FolderStore

# Initialize Rich Traceback for better error messages
install(show_locals=True)

# Initialize Rich Console
console = Console()

# Configure logging to use Rich's RichHandler
logging.basicConfig(
    level=logging.WARNING,
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True)]
)
logger = logging.getLogger(__name__)

ALL_TYPES = ",".join(t.value for t in NodeType)
CLI_PRINCIPAL = "cli"

# Main app
app = typer.Typer()

# Command groups
user_app = typer.Typer(help="Manage the users directory")
group_app = typer.Typer(help="Manage groups of users")

# Register command groups
app.add_typer(user_app, name="user")
app.add_typer(group_app, name="group")

StoreOption = typer.Option(None, "--store", "-s", help="Path to the folder store (defaults from config)")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose mode"),
):
    """
    folderserver - Folder hierarchy and content resolution.

    Build folder trees, grant access to them and list folder contents the
    way the HTTP API does.
    """
    if verbose:
        logging.getLogger("folderserver").setLevel(logging.DEBUG)
        console.print("[bold green]Verbose mode enabled.[/bold green]")


# ============================================================================
# Helpers
# ============================================================================

def _store_path(store_path: Optional[Path]) -> Path:
    if store_path is not None:
        return store_path
    config = load_config()
    if config.store.default_path:
        return Path(config.store.default_path)
    console.print("[red]Error: No store path specified[/red]")
    console.print("[yellow]Either pass --store or set a default with:[/yellow]")
    console.print("[yellow]  folderserver config --store-path ~/folders[/yellow]")
    raise typer.Exit(code=1)


@contextmanager
def open_store(store_path: Optional[Path], create: bool = False) -> Iterator[FolderStore]:
    """Open the store at ``store_path`` (or the configured default) and close it afterwards."""
    path = _store_path(store_path)
    if not create and not path.exists():
        console.print(f"[red]Error: Folder store not found: {path}[/red]")
        raise typer.Exit(code=1)

    store = FolderStore.open(path, load_config())
    try:
        yield store
    finally:
        store.close()


def _principal(store, user_id: Optional[str]) -> Principal:
    """The principal to act as; without ``--as`` the CLI sees everything."""
    if user_id is None:
        return Principal(id=CLI_PRINCIPAL, is_admin=True)
    principal = store.principal(user_id)
    if principal is None:
        raise AccessDeniedError(f"Unknown user: {user_id}")
    return principal


def _resolve_node(store, target: str) -> Node:
    """A target is either a folder path (starting with the delimiter) or a node id."""
    if target.startswith(store.path_policy.delimiter):
        node = store.repository.find_folder_by_path(store.path_policy.normalize(target))
    else:
        node = store.repository.find_node_by_id(target)
    if node is None:
        console.print(f"[red]Error: Not found: {target}[/red]")
        raise typer.Exit(code=1)
    return node


def _format_time(node: Node) -> str:
    return node.modified_on.strftime("%Y-%m-%d %H:%M")


# ============================================================================
# Core Store Commands
# ============================================================================

@app.command()
@handle_folder_errors
def init(
    store_path: Path = typer.Argument(..., help="Path to create the folder store"),
):
    """
    Initialize a new folder store.

    Creates the SQLite database and the root folder.

    Example:
        folderserver init ~/folders
    """
    with open_store(store_path, create=True) as store:
        console.print(f"[green]✓ Folder store initialized at {store_path}[/green]")
        console.print(f"  Database: {store_path / DB_FILENAME}")
        console.print(f"  Root folder: {store.root.id}")


@app.command()
@handle_folder_errors
def mkdir(
    path: str = typer.Argument(..., help="Folder path to create, e.g. /studies/2024"),
    owner: Optional[str] = typer.Option(None, "--owner", "-o", help="Owner user id"),
    description: Optional[str] = typer.Option(None, "--description", "-d", help="Folder description"),
    parents: bool = typer.Option(False, "--parents", "-p", help="Create missing parent folders"),
    store_path: Optional[Path] = StoreOption,
):
    """
    Create a folder.

    Examples:
        folderserver mkdir /studies
        folderserver mkdir -p /studies/2024/pilot --owner alice
    """
    with open_store(store_path) as store:
        policy = store.path_policy
        segments = policy.split(policy.normalize(path))
        if not segments:
            console.print("[yellow]The root folder always exists[/yellow]")
            return

        parent = store.root
        for name in segments[:-1]:
            existing = store.repository.find_folder_by_path(policy.child_path(parent.path, name))
            if existing is None:
                if not parents:
                    console.print(f"[red]Error: Parent folder not found: {policy.child_path(parent.path, name)}[/red]")
                    console.print("[yellow]Use --parents to create it[/yellow]")
                    raise typer.Exit(code=1)
                existing = store.repository.create_folder(parent.id, name, owner)
            parent = existing

        existing = store.repository.find_folder_by_path(policy.child_path(parent.path, segments[-1]))
        if existing is not None and parents:
            parent = existing
        else:
            # Raises DuplicatePathError when the folder already exists
            parent = store.repository.create_folder(parent.id, segments[-1], owner, description)

        console.print(f"[green]✓ Created {parent.path}[/green] [dim]({parent.id})[/dim]")


@app.command()
@handle_folder_errors
def add(
    folder: str = typer.Argument(..., help="Parent folder path or id"),
    name: str = typer.Argument(..., help="Resource name"),
    node_type: str = typer.Option("template", "--type", "-t", help="Resource type (template, element, field, instance)"),
    owner: Optional[str] = typer.Option(None, "--owner", "-o", help="Owner user id"),
    description: Optional[str] = typer.Option(None, "--description", "-d", help="Resource description"),
    store_path: Optional[Path] = StoreOption,
):
    """
    Add a resource to a folder.

    Example:
        folderserver add /studies "Demographics" --type template --owner alice
    """
    resource_type = NodeType.for_value(node_type)
    if resource_type is NodeType.FOLDER:
        console.print("[red]Error: Use 'folderserver mkdir' to create folders[/red]")
        raise typer.Exit(code=1)

    with open_store(store_path) as store:
        parent = _resolve_node(store, folder)
        node = store.repository.create_resource(parent.id, resource_type, name, owner, description)
        console.print(f"[green]✓ Added {resource_type.value} '{node.name}'[/green] [dim]({node.id})[/dim]")


@app.command(name="ls")
@handle_folder_errors
def list_contents(
    path: str = typer.Argument("/", help="Folder path"),
    resource_types: str = typer.Option(ALL_TYPES, "--types", "-t", help="Comma separated node types"),
    sort: Optional[str] = typer.Option(None, "--sort", help="Comma separated sort fields, '-' for descending"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Page size"),
    offset: Optional[int] = typer.Option(None, "--offset", help="Starting offset"),
    as_user: Optional[str] = typer.Option(None, "--as", help="List as this user instead of as admin"),
    store_path: Optional[Path] = StoreOption,
):
    """
    List the contents of a folder.

    Uses the same validation, sorting and permission rules as the HTTP API.

    Examples:
        folderserver ls /studies
        folderserver ls /studies --types template --sort -modifiedOn --limit 10
        folderserver ls /studies --as bob
    """
    with open_store(store_path) as store:
        principal = _principal(store, as_user)
        result = store.service.contents_by_path(principal, path, resource_types, sort, limit, offset)
        if result is None:
            console.print(f"[red]Error: Folder not found: {path}[/red]")
            raise typer.Exit(code=1)

        if not result.resources:
            console.print("[yellow]No contents found[/yellow]")
        else:
            table = Table(title=path)
            table.add_column("Type", style="magenta")
            table.add_column("Name", style="green")
            table.add_column("Owner", style="blue")
            table.add_column("Modified", style="dim")
            table.add_column("ID", style="cyan")

            for node in result.resources:
                table.add_row(node.node_type.value, node.name, node.owner_id or "", _format_time(node), node.id)

            console.print(table)

        shown = len(result.resources)
        console.print(f"\n[dim]Showing {shown} of {result.total_count} (offset: {result.current_offset})[/dim]")
        if result.paging.next:
            next_offset = result.current_offset + result.request.limit
            console.print(f"[dim]More: --offset {next_offset}[/dim]")


@app.command()
@handle_folder_errors
def path(
    folder: str = typer.Argument(..., help="Folder path"),
    as_user: Optional[str] = typer.Option(None, "--as", help="Resolve as this user instead of as admin"),
    store_path: Optional[Path] = StoreOption,
):
    """
    Show the chain of folders from the root down to a folder.

    Example:
        folderserver path /studies/2024
    """
    with open_store(store_path) as store:
        chain = store.service.path_info(_principal(store, as_user), folder)
        if chain is None:
            console.print(f"[red]Error: Folder not found: {folder}[/red]")
            raise typer.Exit(code=1)

        table = Table(title="Path")
        table.add_column("Depth", style="dim")
        table.add_column("Path", style="green")
        table.add_column("ID", style="cyan")
        for depth, item in enumerate(chain):
            table.add_row(str(depth), item.path, item.id)
        console.print(table)


@app.command()
@handle_folder_errors
@require_confirmation("This permanently deletes the node and, with --recursive, everything below it.")
def rm(
    target: str = typer.Argument(..., help="Folder path or node id"),
    recursive: bool = typer.Option(False, "--recursive", "-r", help="Delete non-empty folders"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    store_path: Optional[Path] = StoreOption,
):
    """
    Delete a folder or resource.

    Examples:
        folderserver rm /studies/old --recursive --yes
        folderserver rm 2f1c...  --yes
    """
    with open_store(store_path) as store:
        node = _resolve_node(store, target)
        store.repository.delete_node(node.id, recursive=recursive)
        console.print(f"[green]✓ Deleted {node.node_type.value} '{node.name}'[/green]")


@app.command()
@handle_folder_errors
def mv(
    target: str = typer.Argument(..., help="Folder path or node id to move"),
    destination: str = typer.Argument(..., help="New parent folder path or id"),
    store_path: Optional[Path] = StoreOption,
):
    """
    Move a folder or resource under another folder.

    Example:
        folderserver mv /studies/pilot /archive
    """
    with open_store(store_path) as store:
        node = _resolve_node(store, target)
        parent = _resolve_node(store, destination)
        moved = store.repository.move_node(node.id, parent.id)
        label = getattr(moved, "path", moved.name)
        console.print(f"[green]✓ Moved to {label}[/green]")


@app.command()
@handle_folder_errors
def rename(
    target: str = typer.Argument(..., help="Folder path or node id"),
    new_name: str = typer.Argument(..., help="New name"),
    store_path: Optional[Path] = StoreOption,
):
    """
    Rename a folder or resource.

    Example:
        folderserver rename /studies/pilot pilot-2024
    """
    with open_store(store_path) as store:
        node = _resolve_node(store, target)
        renamed = store.repository.rename_node(node.id, new_name)
        label = getattr(renamed, "path", renamed.name)
        console.print(f"[green]✓ Renamed to {label}[/green]")


# ============================================================================
# Permission Commands
# ============================================================================

@app.command()
@handle_folder_errors
def grant(
    target: str = typer.Argument(..., help="Folder path or node id"),
    principal_id: str = typer.Argument(..., help="User id (or group id with --group)"),
    level: str = typer.Option("read", "--level", "-l", help="Access level: read or write"),
    group: bool = typer.Option(False, "--group", "-g", help="Grant to a group instead of a user"),
    store_path: Optional[Path] = StoreOption,
):
    """
    Grant a user or group access to a node and everything below it.

    Examples:
        folderserver grant /studies bob
        folderserver grant /studies lab --group --level write
    """
    access = AccessLevel(level.strip().lower())
    kind = PRINCIPAL_GROUP if group else PRINCIPAL_USER
    with open_store(store_path) as store:
        node = _resolve_node(store, target)
        store.grant(node.id, principal_id, access, kind)
        console.print(f"[green]✓ Granted {access.value} on '{node.name}' to {kind} {principal_id}[/green]")


@app.command()
@handle_folder_errors
def revoke(
    target: str = typer.Argument(..., help="Folder path or node id"),
    principal_id: str = typer.Argument(..., help="User id (or group id with --group)"),
    group: bool = typer.Option(False, "--group", "-g", help="Revoke a group grant"),
    store_path: Optional[Path] = StoreOption,
):
    """Remove a grant from a node."""
    kind = PRINCIPAL_GROUP if group else PRINCIPAL_USER
    with open_store(store_path) as store:
        node = _resolve_node(store, target)
        if store.policy.revoke(node.id, principal_id, kind):
            console.print(f"[green]✓ Revoked grant on '{node.name}' from {kind} {principal_id}[/green]")
        else:
            console.print(f"[yellow]No grant on '{node.name}' for {kind} {principal_id}[/yellow]")


@app.command()
@handle_folder_errors
def access(
    user_id: str = typer.Argument(..., help="User id"),
    store_path: Optional[Path] = StoreOption,
):
    """
    Show every node a user can access.

    Example:
        folderserver access bob
    """
    with open_store(store_path) as store:
        principal = _principal(store, user_id)
        accessible = store.service.accessible_node_ids(principal)
        if not accessible:
            console.print(f"[yellow]{user_id} cannot access any nodes[/yellow]")
            return

        table = Table(title=f"Accessible nodes for {user_id}")
        table.add_column("ID", style="cyan")
        table.add_column("Type", style="magenta")
        table.add_column("Name", style="green")
        table.add_column("Level", style="yellow")
        for node_id, level in sorted(accessible.items()):
            node = store.repository.find_node_by_id(node_id)
            if node is None:
                continue
            table.add_row(node_id, node.node_type.value, node.name, level.value)
        console.print(table)


# ============================================================================
# Users and Groups
# ============================================================================

@user_app.command(name="add")
@handle_folder_errors
def user_add(
    user_id: str = typer.Argument(..., help="User id (used as principal id)"),
    display_name: Optional[str] = typer.Option(None, "--name", "-n", help="Display name"),
    email: Optional[str] = typer.Option(None, "--email", "-e", help="Email address"),
    admin: bool = typer.Option(False, "--admin", help="Admins can see every node"),
    store_path: Optional[Path] = StoreOption,
):
    """Add a user, or update an existing one."""
    with open_store(store_path) as store:
        with store.users() as users:
            user = users.add_user(user_id, display_name or user_id, email=email, is_admin=admin)
        role = " (admin)" if user.is_admin else ""
        console.print(f"[green]✓ Saved user {user.id}{role}[/green]")


@user_app.command(name="list")
@handle_folder_errors
def user_list(
    store_path: Optional[Path] = StoreOption,
):
    """List users."""
    with open_store(store_path) as store:
        with store.users() as users:
            all_users = users.list_users()

        if not all_users:
            console.print("[yellow]No users found[/yellow]")
            return

        table = Table(title="Users")
        table.add_column("ID", style="cyan")
        table.add_column("Name", style="green")
        table.add_column("Email", style="blue")
        table.add_column("Admin", style="magenta")
        for user in all_users:
            table.add_row(user.id, user.display_name, user.email or "", "yes" if user.is_admin else "")
        console.print(table)


@group_app.command(name="add")
@handle_folder_errors
def group_add(
    group_id: str = typer.Argument(..., help="Group id"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Group name"),
    store_path: Optional[Path] = StoreOption,
):
    """Create a group."""
    with open_store(store_path) as store:
        with store.users() as users:
            users.add_group(group_id, name or group_id)
        console.print(f"[green]✓ Saved group {group_id}[/green]")


@group_app.command(name="member")
@handle_folder_errors
def group_member(
    group_id: str = typer.Argument(..., help="Group id"),
    user_id: str = typer.Argument(..., help="User id"),
    store_path: Optional[Path] = StoreOption,
):
    """Add a user to a group."""
    with open_store(store_path) as store:
        with store.users() as users:
            added = users.add_member(group_id, user_id)
        if not added:
            console.print(f"[red]Error: User {user_id} or group {group_id} not found[/red]")
            raise typer.Exit(code=1)
        console.print(f"[green]✓ Added {user_id} to {group_id}[/green]")


# ============================================================================
# Seeding
# ============================================================================

@app.command()
@handle_folder_errors
def seed(
    seed_file: Path = typer.Argument(..., help="YAML file describing users, groups and the folder tree"),
    store_path: Optional[Path] = StoreOption,
):
    """
    Import users, groups, folders, resources and grants from YAML.

    Example:
        folderserver seed demo.yaml --store ~/folders
    """
    if not seed_file.exists():
        console.print(f"[red]Error: File not found: {seed_file}[/red]")
        raise typer.Exit(code=1)

    with open_store(store_path, create=True) as store:
        created = TreeSeeder(store).import_file(seed_file)
        console.print(f"[green]✓ Seeded {created} nodes from {seed_file}[/green]")


@app.command()
@handle_folder_errors
def dump(
    folder: str = typer.Argument("/", help="Folder path to export"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write YAML to this file instead of stdout"),
    store_path: Optional[Path] = StoreOption,
):
    """
    Export a folder subtree as YAML.

    Example:
        folderserver dump /studies -o studies.yaml
    """
    with open_store(store_path) as store:
        node = _resolve_node(store, folder)
        if not node.is_folder:
            console.print(f"[red]Error: Not a folder: {folder}[/red]")
            raise typer.Exit(code=1)

        seeder = TreeSeeder(store)
        if output:
            seeder.export_file(output, node)
            console.print(f"[green]✓ Exported {folder} to {output}[/green]")
        else:
            typer.echo(seeder.export_yaml(node))


# ============================================================================
# Server and Configuration
# ============================================================================

@app.command()
def serve(
    store_path: Optional[Path] = typer.Argument(None, help="Path to folder store (defaults from config)"),
    host: Optional[str] = typer.Option(None, "--host", help="Host to bind to (defaults from config)"),
    port: Optional[int] = typer.Option(None, "--port", help="Port to bind to (defaults from config)"),
):
    """
    Start the HTTP API server.

    Configuration:
        Default server settings are loaded from ~/.config/folderserver/config.json
        Command-line options override config file values.

    Examples:
        folderserver serve ~/folders
        folderserver serve ~/folders --host 0.0.0.0 --port 9010
    """
    import uvicorn

    config = load_config()
    store_path = _store_path(store_path)
    if not store_path.exists():
        console.print(f"[red]Error: Folder store not found: {store_path}[/red]")
        raise typer.Exit(code=1)

    server_host = host if host is not None else config.server.host
    server_port = port if port is not None else config.server.port

    try:
        from .server import create_app

        console.print("[blue]Starting folder server...[/blue]")
        console.print(f"[blue]Store: {store_path}[/blue]")
        console.print(f"[green]Server running at http://{server_host}:{server_port}[/green]")
        console.print("[dim]Press Ctrl+C to stop[/dim]")

        app_instance = create_app(store_path, config)
        uvicorn.run(app_instance, host=server_host, port=server_port, log_level="info")

    except KeyboardInterrupt:
        console.print("\n[yellow]Server stopped[/yellow]")
    except Exception as e:
        logger.error(f"Error starting server: {e}", exc_info=True)
        console.print(f"[red]Error starting server: {e}[/red]")
        raise typer.Exit(code=1)


@app.command()
def config(
    show: bool = typer.Option(False, "--show", help="Show current configuration"),
    set_server_host: Optional[str] = typer.Option(None, "--server-host", help="Set web server host"),
    set_server_port: Optional[int] = typer.Option(None, "--server-port", help="Set web server port"),
    set_default_limit: Optional[int] = typer.Option(None, "--default-limit", help="Set default page size"),
    set_default_sort: Optional[str] = typer.Option(None, "--default-sort", help="Set default sort field"),
    set_case_sensitive: Optional[bool] = typer.Option(None, "--case-sensitive/--case-insensitive", help="Folder path matching"),
    set_store_path: Optional[str] = typer.Option(None, "--store-path", help="Set default store path"),
    set_id_prefix: Optional[str] = typer.Option(None, "--id-prefix", help="Prefix for generated node ids"),
):
    """
    View or edit folderserver configuration.

    Configuration is stored at ~/.config/folderserver/config.json
    (or ~/.folderserver/config.json, or $FOLDERSERVER_CONFIG).

    Examples:
        folderserver config --show
        folderserver config --store-path ~/folders --server-port 9010
    """
    has_settings = any([
        set_server_host, set_server_port is not None, set_default_limit is not None,
        set_default_sort, set_case_sensitive is not None, set_store_path, set_id_prefix is not None,
    ])

    if has_settings:
        try:
            update_config(
                server_host=set_server_host,
                server_port=set_server_port,
                default_limit=set_default_limit,
                default_sort=set_default_sort,
                case_sensitive=set_case_sensitive,
                store_default_path=set_store_path,
                id_prefix=set_id_prefix,
            )
        except ValueError as e:
            console.print(f"[red]Error: Invalid configuration: {e}[/red]")
            raise typer.Exit(code=1)
        console.print(f"[green]✓ Configuration saved to {get_config_path()}[/green]")
        if not show:
            return

    current = load_config()
    console.print("\n[bold]folderserver Configuration[/bold]")
    console.print(f"[dim]Location: {get_config_path()}[/dim]\n")

    console.print("[bold cyan]Store Settings:[/bold cyan]")
    console.print(f"  Default Path: {current.store.default_path or '[dim]not set[/dim]'}")
    console.print(f"  ID Prefix:    {current.store.id_prefix or '[dim]none[/dim]'}")

    console.print("\n[bold cyan]Listing Settings:[/bold cyan]")
    console.print(f"  Default Limit: {current.listing.default_limit}")
    console.print(f"  Max Limit:     {current.listing.max_limit}")
    console.print(f"  Default Sort:  {current.listing.default_sort}")
    console.print(f"  Sort Fields:   {', '.join(current.listing.sort_fields)}")

    console.print("\n[bold cyan]Path Settings:[/bold cyan]")
    console.print(f"  Delimiter:      {current.paths.delimiter}")
    console.print(f"  Case Sensitive: {current.paths.case_sensitive}")

    console.print("\n[bold cyan]Server Settings:[/bold cyan]")
    console.print(f"  Host: {current.server.host}")
    console.print(f"  Port: {current.server.port}")


if __name__ == "__main__":
    app()
