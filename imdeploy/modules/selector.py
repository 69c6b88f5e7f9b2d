"""
Numbered selection menus for choosing a cloud provider and a server.
"""
from typing import Callable, List, Optional, Sequence, TypeVar

import typer

from .topology import CloudProvider, ServerInfo

T = TypeVar('T')

QUIT = "q"


def select_item(title: str, items: Sequence[T], label: Callable[[T], str]) -> Optional[T]:
    """Show a numbered menu and return the chosen item, or None when the operator quits."""
    if not items:
        return None

    typer.secho(title, bold=True)
    for i, item in enumerate(items, start=1):
        typer.echo(f"  {i}) {label(item)}")

    while True:
        choice = typer.prompt(f"Select 1-{len(items)} ({QUIT} to quit)", default="1").strip().lower()
        if choice == QUIT:
            return None
        if choice.isdigit() and 1 <= int(choice) <= len(items):
            return items[int(choice) - 1]
        typer.secho(f"Invalid selection: {choice}", fg=typer.colors.RED)


def select_cloud_provider(providers: List[CloudProvider]) -> Optional[CloudProvider]:
    """Auto-select when only one provider is available."""
    if len(providers) == 1:
        typer.echo(f"Auto-selecting {providers[0].name} (only provider available)\n")
        return providers[0]
    return select_item(
        "Select Cloud Provider",
        providers,
        lambda p: f"{p.name} ({p.server_count} servers, {p.agent_count} agents)",
    )


def select_server(servers: List[ServerInfo]) -> Optional[ServerInfo]:
    return select_item("Select Server to SSH", servers, lambda s: f"{s.name} ({s.ip})")
