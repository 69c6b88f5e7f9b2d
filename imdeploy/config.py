"""Configuration management for the im-deploy application."""
import logging
import os
import shutil
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from .errors import ConfigError, MissingFieldError

# Load environment variables from .env file if it exists
load_dotenv()

logger = logging.getLogger(__name__)


class Config:
    """Application configuration with sensible defaults."""

    # OpenStack defaults
    DEFAULT_AUTH_URL: str = os.getenv(
        "OPENSTACK_DEFAULT_AUTH_URL",
        "https://private-cloud.informatik.hs-fulda.de:5000/v3",
    )
    DEFAULT_REGION: str = os.getenv("OPENSTACK_DEFAULT_REGION", "RegionOne")
    DEFAULT_DOMAIN: str = "Default"
    DEFAULT_CLUSTER_NAME: str = "k3s-multicloud"

    # Timeouts and intervals (in seconds)
    HTTP_TIMEOUT: int = int(os.getenv("HTTP_TIMEOUT", "30"))
    LB_DELETE_TIMEOUT: int = int(os.getenv("LB_DELETE_TIMEOUT", "120"))
    LB_POLL_INTERVAL: float = float(os.getenv("LB_POLL_INTERVAL", "5"))
    PORT_SETTLE_DELAY: float = float(os.getenv("PORT_SETTLE_DELAY", "5"))
    MONITOR_INTERVAL: float = float(os.getenv("MONITOR_INTERVAL", "10"))
    SSH_CONNECT_TIMEOUT: int = int(os.getenv("SSH_CONNECT_TIMEOUT", "10"))

    # Remote access
    SSH_USER: str = os.getenv("SSH_USER", "ubuntu")
    API_SERVER_PORT: int = 6443

    # Tailscale
    TAILSCALE_API_URL: str = os.getenv("TAILSCALE_API_URL", "https://api.tailscale.com/api/v2")

    # Terraform layout
    STATE_DIR: str = ".terraform"
    TFVARS_FILE: str = "terraform.tfvars"
    MAIN_TF_FILE: str = "main.tf"

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    LOG_FORMAT: str = os.getenv(
        "LOG_FORMAT",
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    # Security
    REDACT_KEYS: tuple = ("api_key", "password", "secret", "token")


@dataclass(frozen=True)
class CloudCredentials:
    """OpenStack credentials read from terraform.tfvars."""
    auth_url: str
    username: str
    password: str
    project_name: str
    region: str = Config.DEFAULT_REGION
    cacert_file: Optional[str] = None
    insecure: bool = True


@dataclass(frozen=True)
class TailscaleConfig:
    api_key: str
    tailnet: str

    @property
    def account_name(self) -> str:
        """Tailnet name as reported by ``tailscale status`` (without ``.ts.net``)."""
        if self.tailnet.endswith(".ts.net"):
            return self.tailnet[:-len(".ts.net")]
        return self.tailnet


@dataclass
class ClusterConfig:
    """Everything a command needs to know before talking to terraform."""
    terraform_dir: Path
    terraform_bin: str
    cluster_name: str
    tailscale: Optional[TailscaleConfig] = None
    openstack: Optional[CloudCredentials] = None
    dry_run: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return {
            "terraform_dir": str(self.terraform_dir),
            "terraform_bin": self.terraform_bin,
            "cluster_name": self.cluster_name,
            "dry_run": self.dry_run,
            "tailscale": vars(self.tailscale) if self.tailscale else None,
            "openstack": vars(self.openstack) if self.openstack else None,
        }


def detect_terraform_dir(cwd: Optional[Path] = None) -> Path:
    """Locate the terraform directory relative to the working directory.

    Looks for ``./terraform/main.tf`` and then ``../terraform/main.tf``.

    Raises:
        ConfigError: If neither location holds a terraform configuration
    """
    current = Path(cwd) if cwd else Path.cwd()
    candidates = [current / "terraform", current.parent / "terraform"]
    for candidate in candidates:
        if (candidate / Config.MAIN_TF_FILE).exists():
            return candidate
    raise ConfigError(
        "Terraform directory not found. Run from project root or im-deploy directory"
    )


def find_terraform_binary() -> str:
    """Return ``tofu`` if installed, else ``terraform``."""
    for binary in ("tofu", "terraform"):
        if shutil.which(binary):
            return binary
    raise ConfigError("Neither 'tofu' nor 'terraform' binary found. Please install one of them.")


def _require(values: Dict[str, Any], key: str) -> Any:
    value = values.get(key)
    if value is None or value == "":
        raise MissingFieldError(key)
    return value


def parse_tfvars(path: Path) -> Dict[str, Any]:
    """Parse a terraform.tfvars file.

    Only the flat ``key = value`` subset is supported, which is valid TOML.
    """
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except FileNotFoundError:
        raise ConfigError(f"Failed to read {path}")
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Failed to parse terraform.tfvars: {e}")


def build_config(values: Dict[str, Any], terraform_dir: Path, terraform_bin: str,
                 dry_run: bool = False) -> ClusterConfig:
    """Build a ClusterConfig from parsed tfvars values."""
    tailscale = None
    if values.get("enable_tailscale", False):
        tailscale = TailscaleConfig(
            api_key=_require(values, "tailscale_api_key"),
            tailnet=_require(values, "tailscale_tailnet"),
        )

    openstack = None
    if values.get("user_name") and values.get("user_password"):
        openstack = CloudCredentials(
            auth_url=values.get("openstack_auth_url") or Config.DEFAULT_AUTH_URL,
            username=values["user_name"],
            password=values["user_password"],
            project_name=_require(values, "tenant_name"),
            region=values.get("openstack_region") or Config.DEFAULT_REGION,
            cacert_file=values.get("openstack_cacert_file"),
            insecure=bool(values.get("openstack_insecure", True)),
        )

    return ClusterConfig(
        terraform_dir=terraform_dir,
        terraform_bin=terraform_bin,
        cluster_name=values.get("cluster_name") or Config.DEFAULT_CLUSTER_NAME,
        tailscale=tailscale,
        openstack=openstack,
        dry_run=dry_run,
    )


def load_config(dry_run: bool = False, cwd: Optional[Path] = None) -> ClusterConfig:
    """Load the cluster configuration from terraform.tfvars.

    Args:
        dry_run: Whether commands should only report what they would do
        cwd: Directory to start the terraform directory search from

    Returns:
        Loaded cluster configuration

    Raises:
        ConfigError: If the directory, binary or tfvars file is unusable
    """
    terraform_dir = detect_terraform_dir(cwd)
    terraform_bin = find_terraform_binary()
    values = parse_tfvars(terraform_dir / Config.TFVARS_FILE)
    config = build_config(values, terraform_dir, terraform_bin, dry_run=dry_run)
    logger.debug(f"Loaded configuration from {terraform_dir / Config.TFVARS_FILE}")
    return config
