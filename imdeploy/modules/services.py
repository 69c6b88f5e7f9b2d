"""
Access information for services deployed onto the cluster.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from .ssh import ConnectionStrategy

logger = logging.getLogger(__name__)


@dataclass
class ServiceInfo:
    name: str
    url: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    notes: Optional[str] = None

    def with_url(self, url: str) -> "ServiceInfo":
        self.url = url
        return self

    def with_credentials(self, username: str, password: str) -> "ServiceInfo":
        self.username = username
        self.password = password
        return self

    def with_note(self, note: str) -> "ServiceInfo":
        self.notes = note
        return self

    def __str__(self):
        lines = [f"{self.name}:", f"  URL:      {self.url or 'Not available'}"]
        if self.username is not None:
            lines.append(f"  Username: {self.username}")
        if self.password is not None:
            lines.append(f"  Password: {self.password}")
        if self.username is None and self.password is None:
            lines.append("  Auth:     None")
        if self.notes is not None:
            lines.append(f"  Notes:    {self.notes}")
        return "\n".join(lines)


def execute_kubectl(connection: ConnectionStrategy, command: str) -> str:
    """Run ``sudo kubectl <command>`` on the node and return its stdout."""
    result = connection.execute_command(f"sudo kubectl {command}")
    return result.stdout


def get_k8s_secret(connection: ConnectionStrategy, secret_name: str, namespace: str, key: str) -> str:
    """Read and base64-decode one key of a Kubernetes secret."""
    command = (
        f'get secret {secret_name} -n {namespace} -o jsonpath="{{.data.{key}}}" 2>/dev/null | base64 -d'
    )
    return execute_kubectl(connection, command).strip()
