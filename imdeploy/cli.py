import logging
import sys
import traceback

import typer

from imdeploy.commands import cleanup, deploy, destroy, kubeconfig, monitor, ssh
from imdeploy.commands.common import CliOptions
from imdeploy.errors import ImDeployError
from imdeploy.logging import setup_logging

app = typer.Typer(help="Deploy, monitor and destroy the k3s cluster on OpenStack.")

# Global debug flag
debug_mode = False

app.command("deploy")(deploy.deploy)
app.command("destroy")(destroy.destroy)
app.command("ssh")(ssh.ssh)
app.command("copy-kubeconfig")(kubeconfig.copy_kubeconfig)
app.command("monitor")(monitor.monitor)
app.command("cleanup")(cleanup.cleanup)


# Global options callback
@app.callback()
def callback(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompts"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would change without changing anything"),
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug logging"),
):
    """im-deploy - k3s cluster lifecycle on OpenStack."""
    global debug_mode
    debug_mode = debug
    setup_logging(debug)
    if debug:
        logging.debug("Debug mode enabled")
    ctx.obj = CliOptions(auto_confirm=yes, dry_run=dry_run, debug=debug)


def main():
    try:
        app()
    except ImDeployError as e:
        if debug_mode:
            logging.error(f"Unhandled exception: {e}\n{traceback.format_exc()}")
        else:
            logging.error(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
