"""
Cluster formation monitor.

Watches a freshly applied cluster from the first server node:

1. wait until every expected node reports ``Ready``
2. GPU Operator install (when enabled)
3. ArgoCD install (when enabled)
4. Tailscale Serve for ArgoCD (when ArgoCD is enabled)

Install phases are driven by cloud-init on the server. Each phase first waits
for its start marker in ``/var/log/k3s-server.log`` and then tails the phase's
own log until the completion marker shows up.

State transitions are pure functions over :class:`MonitorState`; the
:class:`ClusterMonitor` runner does the I/O.
"""
import dataclasses
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

import typer

from ..config import Config
from ..errors import (BootstrapFailedError, InstallPhaseFailedError, MonitorError,
                      SSHError)
from ..utils import format_duration, poll_until
from .services import ServiceInfo, get_k8s_secret
from .ssh import ConnectionStrategy, TailscaleConnection
from .topology import ClusterInfo

logger = logging.getLogger(__name__)

SERVER_LOG = "/var/log/k3s-server.log"
ACCESS_INFO_DELIMITER = "=" * 68
ACCESS_INFO_LINES = 10


class Phase(Enum):
    NODES = "Cluster nodes ready"
    GPU_OPERATOR = "GPU Operator installation"
    ARGOCD = "ArgoCD installation"
    ARGOCD_SERVE = "ArgoCD Tailscale Serve setup"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class InstallPhase:
    """An optional install step run by cloud-init on the first server."""
    phase: Phase
    title: str
    start_marker: str
    log_path: str
    completion_marker: str
    show_access_info: bool = False

    @property
    def label(self) -> str:
        return self.phase.value


GPU_OPERATOR_PHASE = InstallPhase(
    phase=Phase.GPU_OPERATOR,
    title="GPU Operator",
    start_marker="Installing NVIDIA GPU Operator...",
    log_path="/var/log/gpu-operator-install.log",
    completion_marker="GPU Operator installation complete!",
)

ARGOCD_PHASE = InstallPhase(
    phase=Phase.ARGOCD,
    title="ArgoCD",
    start_marker="Installing ArgoCD...",
    log_path="/var/log/argocd-install.log",
    completion_marker="ArgoCD installation complete!",
)

ARGOCD_SERVE_PHASE = InstallPhase(
    phase=Phase.ARGOCD_SERVE,
    title="Tailscale ArgoCD Serve",
    start_marker="Setting up Tailscale Serve for ArgoCD...",
    log_path="/var/log/tailscale-argocd-serve.log",
    completion_marker="Tailscale Serve configured successfully for ArgoCD",
    show_access_info=True,
)


def install_phases(gpu_enabled: bool, argocd_enabled: bool) -> List[InstallPhase]:
    phases = []
    if gpu_enabled:
        phases.append(GPU_OPERATOR_PHASE)
    if argocd_enabled:
        phases += [ARGOCD_PHASE, ARGOCD_SERVE_PHASE]
    return phases


# ----------------------------------------------------------------------
# Pure evaluation
# ----------------------------------------------------------------------

@dataclass
class NodeStatus:
    ready: int
    total: int
    output: str


def parse_node_status(output: str) -> NodeStatus:
    """Count nodes in ``kubectl get nodes --no-headers`` output."""
    lines = [line for line in output.splitlines() if line.strip()]
    ready = sum(1 for line in lines if " Ready " in line)
    return NodeStatus(ready=ready, total=len(lines), output=output)


def nodes_ready(status: NodeStatus, expected: int) -> bool:
    return status.ready >= expected and status.total >= expected


def server_log_has_error(log: str) -> bool:
    return any("ERROR" in line or "FATAL" in line for line in log.splitlines())


class PhaseStatus(Enum):
    WAITING = "waiting"
    RUNNING = "running"
    WARNING = "warning"
    COMPLETE = "complete"
    FAILED = "failed"


def evaluate_phase_log(phase: InstallPhase, log_tail: str) -> PhaseStatus:
    """Classify the tail of a phase log. Completion wins over error markers."""
    if phase.completion_marker in log_tail:
        return PhaseStatus.COMPLETE
    if "ERROR" in log_tail:
        return PhaseStatus.FAILED
    if "WARNING" in log_tail:
        return PhaseStatus.WARNING
    return PhaseStatus.RUNNING


def extract_access_info(full_log: str) -> Optional[str]:
    """The block printed by the Serve setup script, starting at its delimiter line."""
    start = full_log.find(ACCESS_INFO_DELIMITER)
    if start == -1:
        return None
    return "\n".join(full_log[start:].splitlines()[:ACCESS_INFO_LINES])


# ----------------------------------------------------------------------
# State machine
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class MonitorState:
    phase: Phase
    started_at: float
    phase_started_at: float
    completions: Dict[Phase, float] = field(default_factory=dict)
    failures: Dict[Phase, str] = field(default_factory=dict)
    checks: int = 0

    @property
    def finished(self) -> bool:
        return self.phase in (Phase.DONE, Phase.FAILED)

    def elapsed(self, now: float) -> float:
        return now - self.started_at


def start_monitor(now: float) -> MonitorState:
    return MonitorState(phase=Phase.NODES, started_at=now, phase_started_at=now)


def record_check(state: MonitorState) -> MonitorState:
    return dataclasses.replace(state, checks=state.checks + 1)


def enter_phase(state: MonitorState, phase: Phase, now: float) -> MonitorState:
    return dataclasses.replace(state, phase=phase, phase_started_at=now)


def complete_phase(state: MonitorState, now: float, next_phase: Phase = Phase.DONE) -> MonitorState:
    """Record the current phase as complete and move on.

    The nodes phase is timed from the start of monitoring, install phases from
    when monitoring of that phase began.
    """
    if state.phase is Phase.NODES:
        duration = now - state.started_at
    else:
        duration = now - state.phase_started_at
    completions = dict(state.completions)
    completions[state.phase] = duration
    return dataclasses.replace(state, phase=next_phase, phase_started_at=now, completions=completions)


def fail_phase(state: MonitorState, reason: str) -> MonitorState:
    failures = dict(state.failures)
    failures[state.phase] = reason
    return dataclasses.replace(state, phase=Phase.FAILED, failures=failures)


def render_summary(state: MonitorState, now: float) -> str:
    lines = ["", "", "=== Deployment Complete ==="]
    for phase in (Phase.NODES, Phase.GPU_OPERATOR, Phase.ARGOCD, Phase.ARGOCD_SERVE):
        if phase in state.completions:
            lines.append(f"{phase.value + ':':<31}{format_duration(state.completions[phase])}")
        elif phase in state.failures:
            lines.append(f"{phase.value + ':':<31}FAILED ({state.failures[phase]})")
    lines.append(f"{'Total deployment time:':<31}{format_duration(state.elapsed(now))}")
    lines.append("===========================")
    return "\n".join(lines)


# ----------------------------------------------------------------------
# Runner
# ----------------------------------------------------------------------

class ClusterMonitor:
    """Polls the first server node until the cluster and its add-ons are up."""

    def __init__(
        self,
        cluster: ClusterInfo,
        connection: ConnectionStrategy,
        interval: float = Config.MONITOR_INTERVAL,
        connect_timeout: int = Config.SSH_CONNECT_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.cluster = cluster
        self.connection = connection
        self.interval = interval
        self.connect_timeout = connect_timeout
        self.expected = cluster.total_expected_nodes
        self.phases = install_phases(cluster.gpu_enabled, cluster.argocd_enabled)
        self._clock = clock
        self._sleep = sleep
        self.state: Optional[MonitorState] = None

    def _remote(self, command: str, connect_timeout: Optional[int] = None) -> Optional[str]:
        """Run a command on the server; None means "not reachable yet"."""
        try:
            return self.connection.execute_command(command, connect_timeout=connect_timeout).stdout
        except SSHError as e:
            logger.debug(f"Remote command not ready: {e}")
            return None

    def _runtime(self) -> str:
        return format_duration(self.state.elapsed(self._clock()))

    def _banner(self, title: str, width: int):
        typer.clear()
        typer.echo(f"=== {title} ===")
        typer.echo(f"Runtime: {self._runtime()}")
        typer.echo("=" * width + "\n")

    # Phase 1 ---------------------------------------------------------

    def check_nodes(self) -> Optional[NodeStatus]:
        self.state = record_check(self.state)
        typer.clear()
        typer.echo("=== K3s Cluster Monitor ===")
        typer.echo(f"Runtime: {self._runtime()} | Check #{self.state.checks}")
        typer.echo(
            f"Expected: {self.expected} nodes "
            f"({self.cluster.expected_servers} servers + {self.cluster.expected_agents} agents)"
        )
        typer.echo(f"Connection: {self.connection.name.capitalize()}")
        typer.echo("================================\n")

        output = self._remote("sudo kubectl get nodes --no-headers 2>/dev/null", self.connect_timeout)
        if not output or not output.strip():
            typer.echo("Waiting for k3s API server to be ready...")
            typer.echo(f"\nNext check in {self.interval:g} seconds...")
            return None

        status = parse_node_status(output)
        typer.echo("Cluster Nodes:")
        typer.echo(output)
        typer.echo(f"Ready nodes: {status.ready}/{self.expected}")
        if nodes_ready(status, self.expected):
            return status

        typer.echo(f"\nNext check in {self.interval:g} seconds...")
        return None

    def wait_for_nodes(self) -> NodeStatus:
        result = poll_until(self.check_nodes, self.interval, clock=self._clock, sleep=self._sleep)
        typer.echo(f"\nAll {self.expected} nodes are Ready!")
        detail = self._remote("sudo kubectl get nodes -o wide")
        if detail:
            typer.echo(f"\n{detail}")
        self.state = complete_phase(self.state, self._clock(), next_phase=Phase.DONE)
        typer.echo(f"Cluster ready time: {format_duration(self.state.completions[Phase.NODES])}")
        return result.value

    # Phases 2-4 ------------------------------------------------------

    def check_install_phase(self, phase: InstallPhase) -> Optional[PhaseStatus]:
        """One poll of an install phase. Returns COMPLETE or FAILED when the phase ends.

        Raises:
            BootstrapFailedError: If the server log reports ERROR or FATAL
        """
        self.state = record_check(self.state)
        server_log = self._remote(f"sudo cat {SERVER_LOG} 2>/dev/null", self.connect_timeout)
        if server_log is None:
            return None

        if server_log_has_error(server_log):
            typer.secho(f"\nERROR detected in k3s-server.log before {phase.title} installation!",
                        fg=typer.colors.RED)
            typer.echo("Full k3s-server.log:\n")
            typer.echo(server_log)
            raise BootstrapFailedError("Server initialization failed")

        if phase.start_marker not in server_log:
            self._banner(f"Waiting for {phase.title} Installation", 47)
            typer.echo(f"Waiting for cloud-init to reach {phase.title} installation phase...")
            typer.echo(f"(checking k3s-server.log for '{phase.start_marker}')")
            return None

        typer.echo(f"{phase.title} installation started...")
        tail = self._remote(f"sudo tail -n 5 {phase.log_path} 2>/dev/null", self.connect_timeout)
        if tail is None:
            return None

        self._banner(f"{phase.title} Installation", 32)
        typer.echo("Recent log entries:")
        typer.echo(tail)

        status = evaluate_phase_log(phase, tail)
        if status is PhaseStatus.COMPLETE:
            typer.secho(f"\n{phase.label} complete!", fg=typer.colors.GREEN)
            if phase.show_access_info:
                self._print_access_info(phase)
            return status
        if status is PhaseStatus.FAILED:
            typer.secho(f"\nERROR detected in {phase.label}!", fg=typer.colors.RED)
            full_log = self._remote(f"sudo cat {phase.log_path}")
            if full_log is not None:
                typer.echo(f"\nFull {phase.title} log:")
                typer.echo(full_log)
            return status
        if status is PhaseStatus.WARNING:
            typer.secho(f"\nWARNING in {phase.label} (continuing...)", fg=typer.colors.YELLOW)
        return None

    def _print_access_info(self, phase: InstallPhase):
        full_log = self._remote(f"sudo cat {phase.log_path}")
        info = extract_access_info(full_log) if full_log else None
        if info:
            typer.echo(f"\n{info}")

    def wait_for_phase(self, phase: InstallPhase) -> PhaseStatus:
        typer.echo(f"\n=== Monitoring {phase.label} ===\n")
        self.state = enter_phase(self.state, phase.phase, self._clock())
        result = poll_until(
            lambda: self.check_install_phase(phase),
            self.interval,
            sleep_first=True,
            clock=self._clock,
            sleep=self._sleep,
        )
        if result.value is PhaseStatus.FAILED:
            self.state = fail_phase(self.state, "error in install log")
        else:
            self.state = complete_phase(self.state, self._clock())
        return result.value

    # -----------------------------------------------------------------

    def argocd_service(self) -> ServiceInfo:
        """ArgoCD access details, with the initial admin password when readable."""
        service = ServiceInfo("ArgoCD")
        if isinstance(self.connection, TailscaleConnection):
            service.with_url(f"https://{self.connection.hostname}")
        try:
            password = get_k8s_secret(self.connection, "argocd-initial-admin-secret", "argocd", "password")
        except SSHError as e:
            logger.debug(f"Could not read ArgoCD admin secret: {e}")
            password = ""
        if password:
            service.with_credentials("admin", password)
        else:
            service.with_note("Initial admin password not available (secret may have been deleted)")
        return service

    def run(self) -> MonitorState:
        """Monitor until every enabled phase has finished.

        Raises:
            MonitorError: If no nodes are expected
            BootstrapFailedError: If the server bootstrap log reports an error
            InstallPhaseFailedError: If an install phase fails
        """
        if self.expected == 0:
            raise MonitorError("No nodes found in Terraform outputs. Check all_server_ips and all_agent_ips.")

        typer.echo("Monitoring k3s cluster formation...")
        typer.echo(f"Connection: {self.connection}")
        typer.echo(
            f"Expected nodes: {self.expected} "
            f"({self.cluster.expected_servers} servers + {self.cluster.expected_agents} agents)"
        )
        if self.cluster.gpu_enabled:
            typer.echo("GPU Operator: enabled")
        if self.cluster.argocd_enabled:
            typer.echo("ArgoCD: enabled (with Tailscale Serve)")
        typer.echo(f"Checking every {self.interval:g} seconds")
        typer.echo("Press Ctrl+C to stop\n")

        self.state = start_monitor(self._clock())
        self.wait_for_nodes()

        failed: Optional[InstallPhase] = None
        for phase in self.phases:
            if self.wait_for_phase(phase) is PhaseStatus.FAILED:
                failed = phase
                break

        typer.echo(render_summary(self.state, self._clock()))
        if Phase.ARGOCD in self.state.completions:
            typer.echo(f"\n{self.argocd_service()}\n")

        if failed is not None:
            raise InstallPhaseFailedError(failed.label)
        return self.state
