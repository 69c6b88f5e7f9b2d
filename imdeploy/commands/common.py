"""Helpers shared by the CLI commands."""
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import typer

from ..config import ClusterConfig, load_config
from ..errors import AuthenticationError, TopologyError
from ..modules.models import CleanupReport
from ..modules.openstack import OpenStackClient
from ..modules.ssh import ConnectionStrategy
from ..modules.tailscale import verify_tailscale_connection
from ..modules.terraform import TerraformClient
from ..modules.topology import CloudProvider, ServerInfo
from ..utils import redact_sensitive_data

logger = logging.getLogger(__name__)


@dataclass
class CliOptions:
    """Global options set by the top-level callback."""
    auto_confirm: bool = False
    dry_run: bool = False
    debug: bool = False


def get_options(ctx: typer.Context) -> CliOptions:
    return ctx.obj if isinstance(ctx.obj, CliOptions) else CliOptions()


def load_context(options: CliOptions) -> Tuple[ClusterConfig, TerraformClient]:
    config = load_config(dry_run=options.dry_run)
    logger.debug(f"Configuration: {redact_sensitive_data(config.as_dict())}")
    return config, TerraformClient(config.terraform_dir, config.terraform_bin)


def print_header(config: ClusterConfig):
    typer.echo(f"Terraform directory: {config.terraform_dir}")
    typer.echo(f"Using binary: {config.terraform_bin}")
    if config.dry_run:
        typer.secho("Dry run: no resources will be changed", fg=typer.colors.CYAN)
    typer.echo()


def confirm_action(prompt: str, default: bool = False, auto_confirm: bool = False) -> bool:
    if auto_confirm:
        return True
    return typer.confirm(prompt, default=default)


def warn(message: str):
    typer.secho(message, fg=typer.colors.YELLOW, err=True)


def first_server_connection(provider: CloudProvider) -> Tuple[ServerInfo, ConnectionStrategy]:
    """Pick ``k3s-server-0`` and how to reach it."""
    server = provider.get_first_server()
    if server is None:
        raise TopologyError("Could not find k3s-server-0")
    if provider.tailscale_enabled and not server.tailscale_hostname:
        raise TopologyError(f"Tailscale is enabled but hostname not found for server {server.name}")
    return server, ConnectionStrategy.from_server(server, provider.bastion_ip)


def verify_tailscale(config: ClusterConfig, provider: CloudProvider, auto_confirm: bool = False):
    """Check the local Tailscale client when the provider is reached over Tailscale."""
    if not provider.tailscale_enabled:
        return
    expected = config.tailscale.account_name if config.tailscale else None
    verify_tailscale_connection(expected, auto_confirm=auto_confirm)


def openstack_client(config: ClusterConfig) -> OpenStackClient:
    """Authenticate with the credentials from terraform.tfvars.

    Raises:
        AuthenticationError: If credentials are missing or rejected
    """
    if config.openstack is None:
        raise AuthenticationError("OpenStack credentials not found in terraform.tfvars (user_name / user_password)")
    return OpenStackClient.authenticate(config.openstack, dry_run=config.dry_run)


def print_report(report: CleanupReport):
    typer.echo(f"\nCleanup summary ({report.name}):")
    for stats in report.steps:
        color = None if stats.ok else typer.colors.YELLOW
        typer.secho(f"  {stats.summary()}", fg=color)
        for failure in stats.failures:
            typer.secho(f"    - {failure}", fg=typer.colors.YELLOW)


def optional_output(outputs: Optional[dict], key: str) -> Optional[str]:
    """Read ``openstack_cluster.<key>`` from terraform outputs, tolerating absence."""
    if not outputs:
        return None
    cluster = (outputs.get("openstack_cluster") or {}).get("value") or {}
    return cluster.get(key)
