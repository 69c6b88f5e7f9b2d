import time

import typer

from ..utils import format_duration
from .common import confirm_action, get_options, load_context, print_header
from .monitor import run_monitor


def deploy(ctx: typer.Context):
    """Deploy the cluster with terraform apply, then optionally monitor it."""
    options = get_options(ctx)
    config, terraform = load_context(options)
    print_header(config)

    if not confirm_action("Are you sure you want to deploy the cluster?", False, options.auto_confirm):
        typer.echo("Deploy cancelled.")
        return

    if options.dry_run:
        typer.echo("\nRunning terraform plan...\n")
        terraform.plan()
        return

    typer.echo("\nRunning terraform apply...\n")
    apply_start = time.monotonic()
    terraform.apply()
    apply_duration = time.monotonic() - apply_start

    typer.secho("\nDeployment complete!", fg=typer.colors.GREEN)
    typer.echo(f"Terraform apply time: {format_duration(apply_duration)}\n")

    monitor_start = time.monotonic()
    if options.auto_confirm:
        typer.echo("Skipped cluster monitoring (--yes flag)...\n")
        return
    if not typer.confirm("Would you like to monitor cluster formation?", default=True):
        return

    typer.echo()
    run_monitor(config, terraform, options)
    monitor_duration = time.monotonic() - monitor_start

    typer.echo("\nTiming Summary:")
    typer.echo(f"  Terraform apply:        {format_duration(apply_duration)}")
    typer.echo(f"  Cluster initialization: {format_duration(monitor_duration)}")
    typer.echo(f"  Total time:             {format_duration(apply_duration + monitor_duration)}")
