"""Exception hierarchy for im-deploy."""
from typing import Optional


class ImDeployError(Exception):
    """Base exception for all im-deploy errors."""
    pass


class ConfigError(ImDeployError):
    """Raised when the cluster configuration cannot be loaded."""
    pass


class MissingFieldError(ConfigError):
    """Raised when a required configuration field is absent."""

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Missing required configuration field: {field}")


class TerraformError(ImDeployError):
    """Raised when the wrapped terraform/tofu process fails."""

    def __init__(self, command: str, code: Optional[int] = None, message: str = ""):
        self.command = command
        self.code = code
        text = f"Terraform command failed: {command}"
        if code is not None:
            text += f" (exit code: {code})"
        if message:
            text += f": {message}"
        super().__init__(text)


class TopologyError(ImDeployError):
    """Raised when terraform outputs do not describe a usable cluster."""
    pass


class OpenStackError(ImDeployError):
    """Base exception for OpenStack API errors."""
    pass


class AuthenticationError(OpenStackError):
    """Raised when a token cannot be obtained from an identity service."""

    def __init__(self, message: str, status: Optional[int] = None, body: str = ""):
        self.status = status
        self.body = body
        if status is not None:
            message = f"{message} ({status}): {body}"
        super().__init__(f"Authentication failed: {message}")


class ResourceOperationError(OpenStackError):
    """Raised when listing or deleting a cloud resource fails."""

    def __init__(self, operation: str, resource: str, message: str,
                 resource_id: Optional[str] = None, status: Optional[int] = None):
        self.operation = operation
        self.resource = resource
        self.resource_id = resource_id
        self.status = status
        target = f"{resource} {resource_id}" if resource_id else resource
        super().__init__(f"Failed to {operation} {target}: {message}")


class TailscaleError(ImDeployError):
    """Raised for Tailscale API or CLI problems."""
    pass


class SSHError(ImDeployError):
    """Base exception for remote execution errors."""
    pass


class NoConnectionMethodError(SSHError):
    """Raised when a server has neither a Tailscale hostname nor a bastion."""

    def __init__(self, server: str = ""):
        suffix = f" for {server}" if server else ""
        super().__init__(f"Neither Tailscale nor bastion host available for connection{suffix}")


class RemoteCommandError(SSHError):
    """Raised when a command run over SSH exits non-zero."""

    def __init__(self, command: str, returncode: Optional[int] = None, stderr: str = ""):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        text = f"SSH command execution failed: {command}"
        if returncode is not None:
            text += f" (exit code: {returncode})"
        if stderr:
            text += f": {stderr.strip()}"
        super().__init__(text)


class MonitorError(ImDeployError):
    """Raised when cluster formation cannot be monitored."""
    pass


class BootstrapFailedError(MonitorError):
    """Raised when the server bootstrap log reports an error."""
    pass


class InstallPhaseFailedError(MonitorError):
    """Raised when an optional install phase reports an error."""

    def __init__(self, phase: str):
        self.phase = phase
        super().__init__(f"{phase} failed")
