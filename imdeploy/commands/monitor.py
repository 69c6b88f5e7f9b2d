import typer

from ..config import ClusterConfig
from ..modules.monitor import ClusterMonitor, MonitorState
from ..modules.terraform import TerraformClient
from ..modules.topology import ClusterInfo
from .common import (CliOptions, first_server_connection, get_options, load_context,
                     verify_tailscale)


def run_monitor(config: ClusterConfig, terraform: TerraformClient, options: CliOptions) -> MonitorState:
    """Monitor cluster formation from the first server of the primary provider."""
    typer.echo("Fetching cluster information...\n")
    cluster = ClusterInfo.from_outputs(terraform.output_json(), default_name=config.cluster_name)
    provider = cluster.primary_provider

    verify_tailscale(config, provider, auto_confirm=options.auto_confirm)
    server, connection = first_server_connection(provider)
    typer.echo(f"Connecting to {server.name} via {connection}\n")

    return ClusterMonitor(cluster, connection).run()


def monitor(ctx: typer.Context):
    """Monitor k3s cluster formation and add-on installation."""
    options = get_options(ctx)
    config, terraform = load_context(options)
    run_monitor(config, terraform, options)
