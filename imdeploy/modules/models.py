"""
Data models for OpenStack resources and cleanup results.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class LoadBalancer:
    """An Octavia load balancer."""
    id: str
    name: str
    vip_network_id: str
    provisioning_status: str = ""

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "LoadBalancer":
        return cls(
            id=data["id"],
            name=data.get("name") or "",
            vip_network_id=data.get("vip_network_id") or "",
            provisioning_status=data.get("provisioning_status") or "",
        )


@dataclass(frozen=True)
class Port:
    """A Neutron port."""
    id: str
    name: str
    device_owner: str
    network_id: str

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Port":
        return cls(
            id=data["id"],
            name=data.get("name") or "",
            device_owner=data.get("device_owner") or "",
            network_id=data.get("network_id") or "",
        )


@dataclass(frozen=True)
class FloatingIP:
    """A Neutron floating IP."""
    id: str
    floating_ip_address: str
    status: str
    port_id: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "FloatingIP":
        return cls(
            id=data["id"],
            floating_ip_address=data.get("floating_ip_address") or "",
            status=data.get("status") or "",
            port_id=data.get("port_id"),
        )


@dataclass(frozen=True)
class SecurityGroup:
    """A Neutron security group."""
    id: str
    name: str
    description: str = ""

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "SecurityGroup":
        return cls(
            id=data["id"],
            name=data.get("name") or "",
            description=data.get("description") or "",
        )


@dataclass
class CleanupStats:
    """Tally of one cleanup step for a single resource type."""
    resource: str
    candidates: int = 0
    deleted: int = 0
    failed: int = 0
    in_use: int = 0
    skipped: int = 0
    timed_out: int = 0
    list_error: Optional[str] = None
    failures: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True when nothing failed. In-use conflicts and dry-run skips are not failures."""
        return self.failed == 0 and self.list_error is None

    def record_failure(self, name: str, reason: str):
        self.failed += 1
        self.failures.append(f"{name}: {reason}")

    def summary(self) -> str:
        text = f"{self.resource}: {self.deleted} deleted, {self.failed} failed"
        if self.timed_out:
            text += f" ({self.timed_out} timed out)"
        if self.in_use:
            text += f", {self.in_use} still in use"
        if self.skipped:
            text += f", {self.skipped} skipped (dry run)"
        if self.list_error:
            text += f", listing failed: {self.list_error}"
        return text


@dataclass
class CleanupReport:
    """Results of one reconciliation call, in the order the steps ran."""
    name: str
    steps: List[CleanupStats] = field(default_factory=list)

    def add(self, stats: CleanupStats) -> CleanupStats:
        self.steps.append(stats)
        return stats

    def get(self, resource: str) -> Optional[CleanupStats]:
        for stats in self.steps:
            if stats.resource == resource:
                return stats
        return None

    @property
    def ok(self) -> bool:
        return all(stats.ok for stats in self.steps)

    @property
    def failed(self) -> int:
        return sum(stats.failed for stats in self.steps)

    @property
    def deleted(self) -> int:
        return sum(stats.deleted for stats in self.steps)
