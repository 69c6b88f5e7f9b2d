"""
Fetch the k3s kubeconfig from the first server and point it at the load balancer.
"""
import logging
from pathlib import Path
from typing import Optional

import yaml

from ..config import Config
from ..errors import ImDeployError
from .ssh import ConnectionStrategy

logger = logging.getLogger(__name__)

REMOTE_KUBECONFIG = "/home/ubuntu/.kube/config"
SERVER_PREFIX = "server: https://"


def rewrite_server_address(kubeconfig: str, host: str, port: int = Config.API_SERVER_PORT) -> str:
    """Replace the host of the first ``server: https://<host>:<port>`` entry.

    Every other byte is left untouched. Without such an entry the input is
    returned unchanged.
    """
    start = kubeconfig.find(SERVER_PREFIX)
    if start == -1:
        return kubeconfig
    host_start = start + len(SERVER_PREFIX)
    port_pos = kubeconfig.find(f":{port}", host_start)
    if port_pos == -1:
        return kubeconfig
    return kubeconfig[:host_start] + host + kubeconfig[port_pos:]


def validate_kubeconfig(kubeconfig: str):
    """Make sure the downloaded file is a kubeconfig and not an error message."""
    try:
        data = yaml.safe_load(kubeconfig)
    except yaml.YAMLError as e:
        raise ImDeployError(f"Downloaded kubeconfig is not valid YAML: {e}") from e
    if not isinstance(data, dict) or "clusters" not in data:
        raise ImDeployError("Downloaded file does not look like a kubeconfig (no clusters section)")


def fetch_kubeconfig(connection: ConnectionStrategy) -> str:
    result = connection.execute_command(f"sudo cat {REMOTE_KUBECONFIG}")
    return result.stdout


def copy_kubeconfig(connection: ConnectionStrategy, lb_ip: str, output: Optional[Path] = None) -> Path:
    """Download, rewrite and save the kubeconfig.

    Args:
        connection: How to reach the first server node
        lb_ip: Load balancer address that replaces the node address
        output: Destination file (``./kubeconfig`` by default)

    Returns:
        Path the kubeconfig was written to
    """
    output = Path(output) if output else Path.cwd() / "kubeconfig"
    kubeconfig = rewrite_server_address(fetch_kubeconfig(connection), lb_ip)
    validate_kubeconfig(kubeconfig)
    output.write_text(kubeconfig)
    logger.debug(f"Kubeconfig written to {output}")
    return output
