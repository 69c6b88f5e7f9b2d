import typer

from ..errors import SSHError, TailscaleError
from ..modules.selector import select_cloud_provider, select_server
from ..modules.ssh import ConnectionStrategy, TailscaleConnection
from ..modules.topology import extract_cloud_providers
from .common import get_options, load_context, verify_tailscale, warn


def ssh(ctx: typer.Context):
    """Open an SSH session on a cluster node."""
    options = get_options(ctx)
    config, terraform = load_context(options)

    typer.echo("Fetching server information...\n")
    providers = extract_cloud_providers(terraform.output_json())

    provider = select_cloud_provider(providers)
    if provider is None:
        typer.echo("No cloud provider selected.")
        return

    server = select_server(provider.servers)
    if server is None:
        typer.echo("No server selected.")
        return

    if provider.tailscale_enabled:
        try:
            verify_tailscale(config, provider, auto_confirm=options.auto_confirm)
        except TailscaleError as e:
            warn(f"\nCannot use Tailscale connection: {e}")
            raise
        if not server.tailscale_hostname:
            raise SSHError(f"Tailscale is enabled but hostname not found for server {server.name}")

    connection = ConnectionStrategy.from_server(server, provider.bastion_ip)
    typer.echo(f"\nConnecting to {server.name} via {connection}...\n")
    try:
        connection.execute_interactive()
    except SSHError:
        if isinstance(connection, TailscaleConnection):
            warn("\nSSH connection via Tailscale failed!")
            warn("Troubleshooting tips:")
            warn("  1. Check if Tailscale is running on your machine: tailscale status")
            warn(f"  2. Verify you can resolve the hostname: ping {connection.hostname}")
            warn("  3. Check if the node is connected to Tailscale network")
        raise
