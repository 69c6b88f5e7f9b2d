"""
Cluster topology extracted from ``terraform output -json``.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import jsonschema

from ..config import Config
from ..errors import TopologyError

logger = logging.getLogger(__name__)

OPENSTACK = "OpenStack"

_STRING_LIST = {"type": "array", "items": {"type": "string"}}


def _output(value_schema: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": "object", "properties": {"value": value_schema}}


# Only the outputs we read are described; anything else is ignored.
OUTPUTS_SCHEMA = {
    "type": "object",
    "properties": {
        "openstack_cluster": _output({
            "type": ["object", "null"],
            "properties": {
                "bastion_ip": {"type": ["string", "null"]},
                "server_ips": _STRING_LIST,
                "agent_ips": _STRING_LIST,
                "network_id": {"type": ["string", "null"]},
                "cluster_name": {"type": ["string", "null"]},
                "loadbalancer_ip": {"type": ["string", "null"]},
            },
        }),
        "tailscale_enabled": _output({"type": ["boolean", "null"]}),
        "tailscale_hostnames": _output({
            "type": ["object", "null"],
            "properties": {
                "openstack_servers": _STRING_LIST,
                "openstack_agents": _STRING_LIST,
            },
        }),
        "all_server_ips": _output({"type": ["array", "null"]}),
        "all_agent_ips": _output({"type": ["array", "null"]}),
        "enable_nvidia_gpu_operator": _output({"type": ["boolean", "null"]}),
        "enable_argocd": _output({"type": ["boolean", "null"]}),
        "primary_api_endpoint": _output({"type": ["string", "null"]}),
    },
}


@dataclass(frozen=True)
class ServerInfo:
    name: str
    ip: str
    cloud_provider: str
    tailscale_hostname: Optional[str] = None

    @property
    def is_server(self) -> bool:
        return "server" in self.name

    @property
    def is_agent(self) -> bool:
        return "agent" in self.name


@dataclass
class CloudProvider:
    """One cloud's slice of the cluster."""
    name: str
    bastion_ip: Optional[str] = None
    tailscale_enabled: bool = False
    servers: List[ServerInfo] = field(default_factory=list)

    @property
    def server_count(self) -> int:
        return sum(1 for s in self.servers if s.is_server)

    @property
    def agent_count(self) -> int:
        return sum(1 for s in self.servers if s.is_agent)

    @property
    def total_nodes(self) -> int:
        return len(self.servers)

    def get_first_server(self) -> Optional[ServerInfo]:
        return next((s for s in self.servers if s.is_server), None)


@dataclass
class ClusterInfo:
    """Read-only snapshot of the deployed cluster."""
    cluster_name: str
    providers: List[CloudProvider]
    primary_api_endpoint: Optional[str] = None
    network_id: Optional[str] = None
    gpu_enabled: bool = False
    argocd_enabled: bool = False
    expected_servers: int = 0
    expected_agents: int = 0

    @property
    def total_expected_nodes(self) -> int:
        return self.expected_servers + self.expected_agents

    @property
    def primary_provider(self) -> Optional[CloudProvider]:
        return self.providers[0] if self.providers else None

    @classmethod
    def from_outputs(cls, outputs: Dict[str, Any],
                     default_name: str = Config.DEFAULT_CLUSTER_NAME) -> "ClusterInfo":
        """Build the snapshot from parsed terraform outputs.

        Raises:
            TopologyError: If the outputs are malformed or describe no servers
        """
        providers = extract_cloud_providers(outputs)
        servers, agents = expected_node_counts(outputs, providers)
        openstack = output_value(outputs, "openstack_cluster") or {}
        return cls(
            cluster_name=openstack.get("cluster_name") or default_name,
            providers=providers,
            primary_api_endpoint=output_value(outputs, "primary_api_endpoint"),
            network_id=openstack.get("network_id"),
            gpu_enabled=bool(output_value(outputs, "enable_nvidia_gpu_operator", False)),
            argocd_enabled=bool(output_value(outputs, "enable_argocd", False)),
            expected_servers=servers,
            expected_agents=agents,
        )


def validate_outputs(outputs: Any):
    """Check the outputs we read against OUTPUTS_SCHEMA."""
    try:
        jsonschema.validate(outputs, OUTPUTS_SCHEMA)
    except jsonschema.ValidationError as e:
        location = ".".join(str(p) for p in e.absolute_path) or "<root>"
        raise TopologyError(f"Unexpected terraform outputs at {location}: {e.message}") from e


def output_value(outputs: Dict[str, Any], key: str, default: Any = None) -> Any:
    """Return ``outputs[key]["value"]``, or ``default`` when absent or null."""
    entry = outputs.get(key)
    if not isinstance(entry, dict):
        return default
    value = entry.get("value")
    return default if value is None else value


def _build_servers(role: str, ips: List[str], hostnames: Optional[List[str]]) -> List[ServerInfo]:
    servers = []
    for i, ip in enumerate(ips):
        hostname = hostnames[i] if hostnames and i < len(hostnames) else None
        servers.append(ServerInfo(
            name=f"k3s-{role}-{i}",
            ip=ip,
            cloud_provider="openstack",
            tailscale_hostname=hostname,
        ))
    return servers


def extract_cloud_providers(outputs: Dict[str, Any]) -> List[CloudProvider]:
    """Turn terraform outputs into the list of cloud providers and their servers.

    Tailscale hostnames are index-aligned with the IP lists and attached only
    when ``tailscale_enabled`` is true.

    Raises:
        TopologyError: If no provider with at least one server is found
    """
    validate_outputs(outputs)

    tailscale_enabled = bool(output_value(outputs, "tailscale_enabled", False))
    hostnames = output_value(outputs, "tailscale_hostnames", {}) if tailscale_enabled else {}

    providers = []
    openstack = output_value(outputs, "openstack_cluster")
    if openstack:
        servers = _build_servers("server", openstack.get("server_ips") or [],
                                 hostnames.get("openstack_servers"))
        servers += _build_servers("agent", openstack.get("agent_ips") or [],
                                  hostnames.get("openstack_agents"))
        if servers:
            providers.append(CloudProvider(
                name=OPENSTACK,
                bastion_ip=openstack.get("bastion_ip"),
                tailscale_enabled=tailscale_enabled,
                servers=servers,
            ))

    if not providers:
        raise TopologyError("No cloud providers found in terraform outputs. Has the cluster been deployed?")

    logger.debug(f"Found {len(providers)} cloud provider(s): {[p.name for p in providers]}")
    return providers


def expected_node_counts(outputs: Dict[str, Any], providers: List[CloudProvider]) -> Tuple[int, int]:
    """Expected (servers, agents), from the aggregated IP lists when terraform exports them."""
    server_ips = output_value(outputs, "all_server_ips")
    agent_ips = output_value(outputs, "all_agent_ips")
    servers = len(server_ips) if server_ips is not None else sum(p.server_count for p in providers)
    agents = len(agent_ips) if agent_ips is not None else sum(p.agent_count for p in providers)
    return servers, agents


def extract_loadbalancer_ip(outputs: Dict[str, Any]) -> str:
    """IP of the API load balancer, used to rewrite the kubeconfig server address."""
    endpoint = output_value(outputs, "primary_api_endpoint")
    if endpoint:
        ip = endpoint
        if ip.startswith("https://"):
            ip = ip[len("https://"):]
        suffix = f":{Config.API_SERVER_PORT}"
        if ip.endswith(suffix):
            ip = ip[:-len(suffix)]
        return ip

    openstack = output_value(outputs, "openstack_cluster") or {}
    if openstack.get("loadbalancer_ip"):
        return openstack["loadbalancer_ip"]

    raise TopologyError("Could not determine load balancer IP")
