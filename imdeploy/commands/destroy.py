import logging
import time
from typing import Optional

import typer

from ..config import ClusterConfig
from ..errors import ImDeployError, OpenStackError, TailscaleError, TerraformError
from ..modules.tailscale import ADMIN_CONSOLE_URL, TailscaleClient, verify_tailscale_connection
from ..modules.terraform import TerraformClient
from ..utils import format_duration
from .common import (CliOptions, confirm_action, get_options, load_context, openstack_client,
                     optional_output, print_header, print_report, warn)

logger = logging.getLogger(__name__)

LONGHORN_BACKUP_CONTAINER = (
    "module.openstack_k3s[0].openstack_objectstorage_container_v1.longhorn_backup[0]"
)


def cleanup_tailscale(config: ClusterConfig, options: CliOptions) -> bool:
    """Step 1. Returns False when the operator cancelled the destroy."""
    if config.tailscale is None:
        typer.echo("\n=== Step 1: Tailscale cleanup skipped (not enabled) ===\n")
        return True

    typer.echo("\n=== Step 1: Cleaning up Tailscale devices ===\n")
    try:
        verify_tailscale_connection(config.tailscale.account_name, auto_confirm=options.auto_confirm)
    except TailscaleError as e:
        warn(f"Tailscale verification failed: {e}")
        if not confirm_action("Continue without Tailscale cleanup?", False, options.auto_confirm):
            return False
        typer.echo("Skipping Tailscale cleanup...\n")
        return True

    client = TailscaleClient(config.tailscale.api_key, config.tailscale.tailnet)
    try:
        client.cleanup_devices_by_tag(f"{config.cluster_name}-openstack", dry_run=config.dry_run)
    except ImDeployError as e:
        warn(f"WARNING: Tailscale cleanup failed: {e}")
        warn(f"         You may need to remove devices manually from {ADMIN_CONSOLE_URL}\n")
    return True


def read_cluster_identity(terraform: TerraformClient):
    """Read network_id and cluster_name from terraform outputs before they are gone."""
    typer.echo("\nExtracting network_id and cluster_name from terraform state...")
    try:
        outputs = terraform.output_json()
    except TerraformError as e:
        logger.debug(f"Could not read terraform outputs: {e}")
        outputs = None

    network_id = optional_output(outputs, "network_id")
    cluster_name = optional_output(outputs, "cluster_name")

    if network_id:
        typer.echo(f"   -> Found network_id: {network_id}")
    else:
        warn("   WARNING: Could not extract network_id from terraform outputs")
        warn("            This may happen if:")
        warn("            1. Terraform outputs haven't been refreshed")
        warn("            2. network_id is not exposed in root outputs.tf")
    if cluster_name:
        typer.echo(f"   -> Found cluster_name: {cluster_name}")
    else:
        warn("   WARNING: Could not extract cluster_name from terraform outputs")
    return network_id, cluster_name


def cleanup_before_destroy(config: ClusterConfig, network_id: Optional[str],
                           cluster_name: Optional[str]) -> bool:
    """Step 2. Returns False when the operator cancelled the destroy.

    Failures never abort on their own. The operator decides, because a stuck
    load balancer makes terraform destroy block rather than fail.
    """
    if config.openstack is None:
        typer.echo("\n=== Step 2: OpenStack pre-cleanup skipped (credentials not available) ===\n")
        return True
    if not network_id:
        typer.echo("\n=== Step 2: OpenStack pre-cleanup skipped (network_id not found) ===\n")
        return True
    if not cluster_name:
        typer.echo("\n=== Step 2: OpenStack pre-cleanup skipped (cluster_name not found) ===\n")
        return True

    typer.echo("\n=== Step 2: Cleaning up dynamic OpenStack resources ===")
    typer.echo("Removing dynamically created load balancers to prevent terraform destroy from blocking\n")

    try:
        client = openstack_client(config)
    except OpenStackError as e:
        warn(f"\nWARNING: Could not authenticate with OpenStack: {e}")
        warn("         Pre-destroy cleanup skipped. Terraform destroy may block!\n")
        return typer.confirm("Terraform destroy may block without cleanup. Continue anyway?", default=False)

    report = client.cleanup_before_destroy(network_id, cluster_name)
    print_report(report)
    if report.ok:
        return True

    warn("\nWARNING: Pre-destroy OpenStack cleanup failed")
    warn("         Terraform destroy may block waiting for load balancers to be deleted.")
    warn("         You may need to manually delete LBs from OpenStack dashboard and retry.\n")
    return typer.confirm("Terraform destroy may block. Continue anyway?", default=False)


def preserve_longhorn_backups(terraform: TerraformClient):
    """Step 3. Drop the Swift backup container from state so destroy keeps it."""
    typer.echo("\n=== Step 3: Preserving Longhorn backup container ===")
    typer.echo("Removing Swift backup container from Terraform state to prevent deletion...\n")
    try:
        terraform.state_rm(LONGHORN_BACKUP_CONTAINER)
        typer.echo("Backup container removed from state - backups will be preserved\n")
    except TerraformError as e:
        typer.echo(f"Note: Could not remove backup container from state: {e}")
        typer.echo("      This is normal if Longhorn backups are disabled or container doesn't exist.\n")


def cleanup_after_destroy(config: ClusterConfig, cluster_name: Optional[str]):
    """Step 5. Warnings only, the cluster is already gone."""
    if config.openstack is None:
        typer.echo("\n=== Step 5: OpenStack post-cleanup skipped (credentials not available) ===")
        return
    if not cluster_name:
        typer.echo("\n=== Step 5: OpenStack post-cleanup skipped (cluster_name not found) ===")
        return

    typer.echo("\n=== Step 5: Cleaning up remaining orphaned OpenStack resources ===")
    try:
        client = openstack_client(config)
    except OpenStackError as e:
        warn(f"\nWARNING: Could not authenticate with OpenStack: {e}")
        warn("         Post-destroy cleanup skipped. Check OpenStack dashboard for leftover resources.")
        return

    report = client.cleanup_after_destroy(cluster_name)
    print_report(report)
    if not report.ok:
        warn("\nWARNING: Post-destroy OpenStack cleanup incomplete")
        warn("         Some resources may need to be cleaned up manually via OpenStack dashboard")


def destroy(ctx: typer.Context):
    """Destroy the cluster, cleaning up resources terraform does not track."""
    options = get_options(ctx)
    config, terraform = load_context(options)
    print_header(config)
    typer.secho("WARNING: This will destroy all cluster resources!\n", fg=typer.colors.RED, bold=True)

    if not confirm_action("Are you sure you want to destroy the cluster?", False, options.auto_confirm):
        typer.echo("Destroy cancelled.")
        return

    if not cleanup_tailscale(config, options):
        typer.echo("Destroy cancelled.")
        return

    network_id, cluster_name = read_cluster_identity(terraform)

    if not cleanup_before_destroy(config, network_id, cluster_name):
        typer.echo("Destroy cancelled. Please clean up load balancers manually and retry.")
        return

    if options.dry_run:
        typer.echo("\nDry run: skipping state changes, terraform destroy and post-destroy cleanup.")
        return

    preserve_longhorn_backups(terraform)

    typer.echo("=== Step 4: Running terraform destroy ===\n")
    destroy_start = time.monotonic()
    terraform.destroy()
    destroy_duration = time.monotonic() - destroy_start

    typer.secho("\nTerraform destroy complete!", fg=typer.colors.GREEN)
    typer.echo(f"Terraform destroy time: {format_duration(destroy_duration)}")

    cleanup_after_destroy(config, cluster_name)

    typer.secho("\nCluster destroyed!", fg=typer.colors.GREEN)
