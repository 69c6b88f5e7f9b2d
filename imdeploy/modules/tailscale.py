"""
Tailscale device cleanup and local client checks.
"""
import json
import logging
import shutil
import subprocess
from typing import Any, Dict, List, Optional

import requests
import typer

from ..config import Config
from ..errors import AuthenticationError, TailscaleError
from .models import CleanupStats

logger = logging.getLogger(__name__)

ADMIN_CONSOLE_URL = "https://login.tailscale.com/admin/machines"


class TailscaleClient:
    """Minimal client for the Tailscale v2 API."""

    def __init__(self, api_key: str, tailnet: str, session: Optional[requests.Session] = None,
                 base_url: str = Config.TAILSCALE_API_URL, timeout: float = Config.HTTP_TIMEOUT):
        self.api_key = api_key
        self.tailnet = tailnet
        self.session = session or requests.Session()
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout

    def _request(self, method: str, url: str) -> requests.Response:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        logger.debug(f"{method} {url}")
        return self.session.request(method, url, headers=headers, timeout=self.timeout)

    def list_devices(self) -> List[Dict[str, Any]]:
        """List every device in the tailnet.

        Raises:
            AuthenticationError: If the API key is rejected
            TailscaleError: For any other failure
        """
        url = f"{self.base_url}/tailnet/{self.tailnet}/devices"
        try:
            response = self._request("GET", url)
        except requests.RequestException as e:
            raise TailscaleError(f"Failed to list Tailscale devices: {e}") from e

        if response.status_code in (401, 403):
            raise AuthenticationError("Tailscale API key rejected",
                                      status=response.status_code, body=response.text)
        if not response.ok:
            raise TailscaleError(f"Tailscale API error ({response.status_code}): {response.text}")

        try:
            return response.json()["devices"]
        except (ValueError, KeyError) as e:
            raise TailscaleError(f"Failed to parse Tailscale devices response: {e}") from e

    def cleanup_devices_by_tag(self, tag: str, dry_run: bool = False) -> CleanupStats:
        """Delete every device carrying ``tag:<tag>``.

        Individual delete failures are counted, not raised.
        """
        stats = CleanupStats("tailscale devices")
        typer.echo(f"Searching for Tailscale devices with tag: {tag}")

        wanted = f"tag:{tag}"
        devices = [d for d in self.list_devices() if wanted in (d.get("tags") or [])]
        stats.candidates = len(devices)
        if not devices:
            typer.echo(f"  -> No Tailscale devices found with tag '{tag}'")
            return stats

        typer.echo(f"  Found {len(devices)} device(s) to delete:")
        for device in devices:
            typer.echo(f"    - {device.get('name', '')} ({device['id']})")

        for device in devices:
            name = device.get("name", device["id"])
            if dry_run:
                typer.echo(f"    Would delete device: {name}")
                stats.skipped += 1
                continue
            try:
                response = self._request("DELETE", f"{self.base_url}/device/{device['id']}")
            except requests.RequestException as e:
                logger.error(f"Failed to delete {name}: {e}")
                stats.record_failure(name, str(e))
                continue
            if response.ok:
                typer.echo(f"    -> Deleted device: {name}")
                stats.deleted += 1
            else:
                logger.error(f"Failed to delete {name}: {response.status_code} - {response.text}")
                stats.record_failure(name, f"HTTP {response.status_code}")

        typer.echo(f"\nTailscale cleanup complete: {stats.deleted} deleted, {stats.failed} failed")
        if stats.failed:
            typer.secho(
                "WARNING: Some devices could not be deleted. You may need to remove them "
                f"manually from the Tailscale admin console ({ADMIN_CONSOLE_URL}).",
                fg=typer.colors.YELLOW,
            )
        return stats


def get_status() -> Dict[str, Any]:
    """Return the parsed output of ``tailscale status --json``.

    Raises:
        TailscaleError: If the CLI is missing, fails or prints something unparseable
    """
    if not shutil.which("tailscale"):
        raise TailscaleError("Tailscale CLI not installed. Please install Tailscale to use Tailscale features")

    try:
        result = subprocess.run(["tailscale", "status", "--json"],
                                stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True)
    except OSError as e:
        raise TailscaleError(f"Failed to execute 'tailscale status --json': {e}") from e

    if result.returncode != 0:
        raise TailscaleError(
            "Failed to get Tailscale status. Make sure Tailscale is running: sudo systemctl start tailscaled"
        )

    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise TailscaleError(f"Failed to parse Tailscale status JSON: {e}") from e


def switch_account(account: str):
    typer.echo(f"Switching Tailscale account to {account}...")
    result = subprocess.run(["sudo", "tailscale", "switch", account])
    if result.returncode != 0:
        raise TailscaleError("Failed to switch Tailscale account")
    typer.echo(f"Successfully switched to {account}")


def verify_tailscale_connection(expected_account: Optional[str] = None, auto_confirm: bool = False):
    """Make sure the local Tailscale client is up and on the expected tailnet.

    When connected to another tailnet the operator is offered a switch; with
    ``auto_confirm`` the current account is kept.

    Raises:
        TailscaleError: If Tailscale is not installed or not running
    """
    status = get_status()

    state = status.get("BackendState", "")
    if state != "Running":
        raise TailscaleError(f"Tailscale is not running (state: {state}). Please start Tailscale: sudo tailscale up")

    if not expected_account:
        return

    current = (status.get("CurrentTailnet") or {}).get("Name")
    if current is None:
        typer.secho("WARNING: Could not determine current Tailscale account", fg=typer.colors.YELLOW)
        typer.echo(f"         Please verify you are connected to {expected_account}")
        return

    if current == expected_account:
        logger.debug(f"Connected to Tailscale account {current}")
        return

    typer.secho("WARNING: Connected to wrong Tailscale account", fg=typer.colors.YELLOW)
    typer.echo(f"         Current account: {current}")
    typer.echo(f"         Expected account: {expected_account}\n")

    if not auto_confirm and typer.confirm(f"Would you like to switch to {expected_account}?", default=False):
        switch_account(expected_account)
    else:
        typer.echo("Continuing with current account (operations may fail)...")
