"""
Ownership rules for OpenStack resources left behind by Kubernetes.

Every deletion decision made by the cleanup engine goes through one of the
functions below. Terraform names its load balancer ``{cluster}-lb``; the
OpenStack cloud-controller-manager names the ones it creates
``kube_service_<cluster>_<namespace>_<service>`` (older releases use a
``kube-`` prefix).
"""
from enum import Enum
from typing import Iterable, List, Optional, Set

from .models import FloatingIP, LoadBalancer, Port, SecurityGroup

KUBERNETES_LB_PREFIXES = ("kube_service_", "kube-")
TERRAFORM_LB_SUFFIX = "-lb"
OCTAVIA_OWNER_PREFIXES = ("Octavia", "octavia")
KUBERNETES_SG_PREFIX = "lb-sg-"


class PortOwner(Enum):
    COMPUTE = "compute"
    ROUTER = "router"
    DHCP = "dhcp"
    LOADBALANCER = "loadbalancer"
    UNCLASSIFIED = "unclassified"


PROTECTED_PORT_OWNERS = frozenset({PortOwner.COMPUTE, PortOwner.ROUTER, PortOwner.DHCP})


def is_terraform_loadbalancer(lb: LoadBalancer) -> bool:
    return lb.name.endswith(TERRAFORM_LB_SUFFIX)


def is_kubernetes_loadbalancer(lb: LoadBalancer) -> bool:
    """True for load balancers created by the cloud-controller-manager.

    A name ending in ``-lb`` always wins, even with a ``kube-`` prefix.
    """
    if is_terraform_loadbalancer(lb):
        return False
    return lb.name.startswith(KUBERNETES_LB_PREFIXES)


def loadbalancer_candidates(lbs: Iterable[LoadBalancer], network_id: str) -> List[LoadBalancer]:
    """Kubernetes-owned load balancers on ``network_id``, each listed once."""
    seen: Set[str] = set()
    candidates = []
    for lb in lbs:
        if lb.vip_network_id != network_id or not is_kubernetes_loadbalancer(lb):
            continue
        if lb.id in seen:
            continue
        seen.add(lb.id)
        candidates.append(lb)
    return candidates


def terraform_loadbalancer_ids(lbs: Iterable[LoadBalancer], network_id: Optional[str] = None) -> Set[str]:
    """Ids of terraform-managed load balancers, on ``network_id`` or anywhere in the project."""
    return {
        lb.id for lb in lbs
        if is_terraform_loadbalancer(lb) and (network_id is None or lb.vip_network_id == network_id)
    }


def classify_port(port: Port) -> PortOwner:
    owner = port.device_owner
    if owner.startswith("compute:"):
        return PortOwner.COMPUTE
    if owner.startswith("network:router_"):
        return PortOwner.ROUTER
    if owner.startswith("network:dhcp"):
        return PortOwner.DHCP
    if owner.startswith(OCTAVIA_OWNER_PREFIXES):
        return PortOwner.LOADBALANCER
    return PortOwner.UNCLASSIFIED


def references_loadbalancer(port: Port, lb_ids: Iterable[str]) -> bool:
    """Octavia names VIP ports ``octavia-lb-<lb id>``."""
    return any(lb_id in port.name for lb_id in lb_ids)


def loadbalancer_port_candidates(ports: Iterable[Port], protected_lb_ids: Iterable[str] = ()) -> List[Port]:
    """Octavia-owned ports that do not belong to a protected load balancer."""
    protected = list(protected_lb_ids)
    return [
        port for port in ports
        if classify_port(port) is PortOwner.LOADBALANCER
        and not references_loadbalancer(port, protected)
    ]


def network_port_candidates(ports: Iterable[Port], protected_lb_ids: Iterable[str] = ()) -> List[Port]:
    """Ports a network-wide sweep may delete: not owned by compute, router or DHCP."""
    protected = list(protected_lb_ids)
    return [
        port for port in ports
        if classify_port(port) not in PROTECTED_PORT_OWNERS
        and not references_loadbalancer(port, protected)
    ]


def is_orphaned_floating_ip(fip: FloatingIP) -> bool:
    return fip.status.lower() == "down" or not fip.port_id


def is_cleanup_security_group(sg: SecurityGroup, cluster_name: str) -> bool:
    """Kubernetes LB groups, plus the cluster's own groups if terraform left them behind."""
    if sg.name.startswith(KUBERNETES_SG_PREFIX):
        return True
    return sg.name in (f"{cluster_name}-server", f"{cluster_name}-agent")
