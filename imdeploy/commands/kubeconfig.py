import typer

from ..modules.kubeconfig import copy_kubeconfig as download_kubeconfig
from ..modules.topology import extract_cloud_providers, extract_loadbalancer_ip
from .common import first_server_connection, get_options, load_context


def copy_kubeconfig(ctx: typer.Context):
    """Download the kubeconfig and point it at the API load balancer."""
    options = get_options(ctx)
    _, terraform = load_context(options)

    typer.echo("Fetching cluster information...\n")
    outputs = terraform.output_json()
    provider = extract_cloud_providers(outputs)[0]
    lb_ip = extract_loadbalancer_ip(outputs)

    server, connection = first_server_connection(provider)
    typer.echo(f"Downloading kubeconfig from {server.name}...")
    typer.echo(f"Using {connection.name} connection")

    path = download_kubeconfig(connection, lb_ip)

    typer.secho(f"Kubeconfig saved to: {path}", fg=typer.colors.GREEN)
    typer.echo("\nTo use it, run:")
    typer.echo(f"  export KUBECONFIG={path}")
