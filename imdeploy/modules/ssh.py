"""
Remote execution over the system OpenSSH client.

Nodes are reached either directly over the Tailscale mesh or through the
bastion host with ``ssh -J``.
"""
import abc
import logging
import subprocess
from dataclasses import dataclass
from typing import List, Optional

from ..config import Config
from ..errors import NoConnectionMethodError, RemoteCommandError, SSHError
from .topology import ServerInfo

logger = logging.getLogger(__name__)

STRICT_HOST_KEY_CHECKING = "StrictHostKeyChecking=no"


@dataclass
class CommandResult:
    command: str
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class ConnectionStrategy(abc.ABC):
    """How to reach one node. Use :meth:`from_server` to pick one."""

    name = "ssh"

    @staticmethod
    def from_server(server: ServerInfo, bastion_ip: Optional[str] = None) -> "ConnectionStrategy":
        """Prefer the node's Tailscale hostname, fall back to the bastion.

        Raises:
            NoConnectionMethodError: If neither is available
        """
        if server.tailscale_hostname:
            return TailscaleConnection(server.tailscale_hostname)
        if bastion_ip:
            return BastionConnection(bastion_ip, server.ip)
        raise NoConnectionMethodError(server.name)

    @abc.abstractmethod
    def build_ssh_args(self, connect_timeout: Optional[int] = None) -> List[str]:
        """Arguments after ``ssh`` that select the target host."""

    @staticmethod
    def _options(connect_timeout: Optional[int]) -> List[str]:
        options = ["-o", STRICT_HOST_KEY_CHECKING]
        if connect_timeout is not None:
            options += ["-o", f"ConnectTimeout={connect_timeout}"]
        return options

    def execute_interactive(self):
        """Open an interactive shell on the node, inheriting the terminal.

        Raises:
            SSHError: If ssh cannot be started or exits non-zero
        """
        args = ["ssh"] + self.build_ssh_args()
        logger.debug(f"SSH command: {' '.join(args)}")
        try:
            result = subprocess.run(args)
        except OSError as e:
            raise SSHError(f"Failed to execute SSH: {e}") from e
        if result.returncode != 0:
            raise SSHError(f"SSH exited with code {result.returncode}")

    def execute_command(self, command: str, connect_timeout: Optional[int] = None,
                        check: bool = True) -> CommandResult:
        """Run ``command`` on the node and capture its output.

        Args:
            command: Shell command line executed by the remote login shell
            connect_timeout: Optional ssh ``ConnectTimeout`` in seconds
            check: Raise RemoteCommandError on a non-zero exit status

        Returns:
            CommandResult with decoded stdout and stderr
        """
        args = ["ssh"] + self.build_ssh_args(connect_timeout) + [command]
        logger.debug(f"Executing over SSH: {' '.join(args)}")
        try:
            result = subprocess.run(args, stdout=subprocess.PIPE, stderr=subprocess.PIPE,
                                    text=True, errors="replace")
        except OSError as e:
            raise SSHError(f"Failed to execute SSH: {e}") from e

        output = CommandResult(command, result.returncode, result.stdout or "", result.stderr or "")
        if check and not output.ok:
            raise RemoteCommandError(command, result.returncode, output.stderr)
        return output


@dataclass
class TailscaleConnection(ConnectionStrategy):
    hostname: str
    name = "tailscale"

    def build_ssh_args(self, connect_timeout: Optional[int] = None) -> List[str]:
        return self._options(connect_timeout) + [f"{Config.SSH_USER}@{self.hostname}"]

    def __str__(self):
        return f"Tailscale ({self.hostname})"


@dataclass
class BastionConnection(ConnectionStrategy):
    bastion_ip: str
    target_ip: str
    name = "bastion"

    def build_ssh_args(self, connect_timeout: Optional[int] = None) -> List[str]:
        return (["-J", f"{Config.SSH_USER}@{self.bastion_ip}"]
                + self._options(connect_timeout)
                + [f"{Config.SSH_USER}@{self.target_ip}"])

    def __str__(self):
        return f"{self.target_ip} via bastion host {self.bastion_ip}"
