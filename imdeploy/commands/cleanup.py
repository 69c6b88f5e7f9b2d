import logging
from typing import Optional

import typer

from ..errors import TerraformError
from .common import (confirm_action, get_options, load_context, openstack_client, optional_output,
                     print_header, print_report, warn)

logger = logging.getLogger(__name__)


def cleanup(
    ctx: typer.Context,
    network_id: Optional[str] = typer.Option(
        None, "--network-id", help="Cluster network (default: read from terraform outputs)"
    ),
    cluster_name: Optional[str] = typer.Option(
        None, "--cluster-name", help="Cluster whose security groups may be removed (default: from outputs)"
    ),
):
    """Remove orphaned OpenStack resources left behind by Kubernetes."""
    options = get_options(ctx)
    config, terraform = load_context(options)
    print_header(config)

    # dry run only lists
    if not config.dry_run and not confirm_action(
        "Delete orphaned OpenStack resources?", False, options.auto_confirm
    ):
        typer.echo("Cleanup cancelled.")
        return

    if network_id is None or cluster_name is None:
        try:
            outputs = terraform.output_json()
        except TerraformError as e:
            logger.debug(f"Could not read terraform outputs: {e}")
            outputs = None
        network_id = network_id or optional_output(outputs, "network_id")
        cluster_name = cluster_name or optional_output(outputs, "cluster_name")

    if not network_id:
        warn("No network_id available: load balancer and network port cleanup skipped")
    if not cluster_name:
        warn("No cluster_name available: security group cleanup skipped")

    client = openstack_client(config)
    report = client.cleanup_orphaned_resources(network_id=network_id, cluster_name=cluster_name)
    print_report(report)

    if not report.ok:
        warn("\nSome resources could not be cleaned up. Check the OpenStack dashboard.")
        raise typer.Exit(code=1)
    typer.secho("\nCleanup complete.", fg=typer.colors.GREEN)
