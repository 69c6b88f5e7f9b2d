"""
OpenStack API client and orphaned-resource cleanup.

Kubernetes creates load balancers, ports, floating IPs and security groups
through the OpenStack cloud-controller-manager. Terraform does not track them,
yet they hold references into the terraform-managed network, so they have to be
removed before ``terraform destroy`` (or it blocks forever) and swept up again
afterwards.

Deletion always runs in this order::

    load balancers (cascade, then wait) -> their ports -> floating IPs -> security groups

Security groups cannot be deleted while a port still references them, and
Octavia deletes load balancers asynchronously, which is why the order matters.
"""
import logging
import os
import time
from typing import Callable, Dict, Iterable, List, Optional, Type, TypeVar

import requests
import urllib3

from ..config import CloudCredentials, Config
from ..errors import AuthenticationError, ResourceOperationError
from ..utils.poll import PollResult, poll_until
from . import classify
from .models import (CleanupReport, CleanupStats, FloatingIP, LoadBalancer, Port,
                     SecurityGroup)

logger = logging.getLogger(__name__)

T = TypeVar('T')

IDENTITY_PATH = ":5000/v3"
NETWORK_PATH = ":9696/v2.0"
LOADBALANCER_PATH = ":9876/v2.0"

LB_TERMINAL_STATUSES = ("DELETED", "ERROR")


def derive_endpoint(auth_url: str, service_path: str) -> str:
    """Derive a service endpoint from the identity URL.

    Assumes every service lives on the same host as Keystone and only the port
    and version path differ, which holds for the deployments this tool targets
    but not for OpenStack clouds in general (those publish a service catalog).
    """
    return auth_url.rstrip('/').replace(IDENTITY_PATH, service_path)


def _is_success(response: requests.Response) -> bool:
    return 200 <= response.status_code < 300


class OpenStackClient:
    """Client for the Neutron and Octavia APIs used by the cleanup steps."""

    def __init__(
        self,
        session: requests.Session,
        token: str,
        network_endpoint: str,
        loadbalancer_endpoint: str,
        timeout: float = Config.HTTP_TIMEOUT,
        dry_run: bool = False,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the client with an already issued token.

        Use :meth:`authenticate` to obtain one from credentials.

        Args:
            session: HTTP session with TLS verification already configured
            token: Keystone token sent as ``X-Auth-Token``
            network_endpoint: Neutron base URL
            loadbalancer_endpoint: Octavia base URL
            timeout: Per-request timeout in seconds
            dry_run: List and classify only, never issue DELETE requests
            sleep: Sleep function used while waiting on Octavia
            clock: Monotonic time source used while waiting on Octavia
        """
        self.session = session
        self.token = token
        self.network_endpoint = network_endpoint.rstrip('/')
        self.loadbalancer_endpoint = loadbalancer_endpoint.rstrip('/')
        self.timeout = timeout
        self.dry_run = dry_run
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def authenticate(
        cls,
        credentials: CloudCredentials,
        session: Optional[requests.Session] = None,
        **kwargs,
    ) -> "OpenStackClient":
        """Obtain a project-scoped token and build a client.

        Args:
            credentials: OpenStack credentials
            session: Optional HTTP session (a new one is created otherwise)
            **kwargs: Passed through to the constructor

        Returns:
            Authenticated OpenStackClient

        Raises:
            AuthenticationError: If no token could be obtained
        """
        session = session or requests.Session()
        timeout = kwargs.get("timeout", Config.HTTP_TIMEOUT)

        # insecure wins over a CA bundle
        if credentials.insecure:
            session.verify = False
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
        elif credentials.cacert_file:
            cacert = os.path.expanduser(credentials.cacert_file)
            if not os.path.isfile(cacert):
                raise AuthenticationError(f"Failed to read CA certificate from {cacert}")
            session.verify = cacert

        auth_url = credentials.auth_url.rstrip('/')
        payload = {
            "auth": {
                "identity": {
                    "methods": ["password"],
                    "password": {
                        "user": {
                            "name": credentials.username,
                            "domain": {"name": Config.DEFAULT_DOMAIN},
                            "password": credentials.password,
                        }
                    },
                },
                "scope": {
                    "project": {
                        "name": credentials.project_name,
                        "domain": {"name": Config.DEFAULT_DOMAIN},
                    }
                },
            }
        }

        logger.info(f"Authenticating with OpenStack at {auth_url} as {credentials.username}")
        try:
            response = session.request("POST", f"{auth_url}/auth/tokens", json=payload, timeout=timeout)
        except requests.RequestException as e:
            raise AuthenticationError(f"Failed to reach identity service: {e}") from e

        if not _is_success(response):
            raise AuthenticationError("OpenStack rejected credentials",
                                      status=response.status_code, body=response.text)

        token = response.headers.get("X-Subject-Token")
        if not token:
            raise AuthenticationError("No X-Subject-Token in response")

        logger.info("Authenticated successfully")
        return cls(
            session=session,
            token=token,
            network_endpoint=derive_endpoint(auth_url, NETWORK_PATH),
            loadbalancer_endpoint=derive_endpoint(auth_url, LOADBALANCER_PATH),
            **kwargs,
        )

    # ------------------------------------------------------------------
    # HTTP primitives
    # ------------------------------------------------------------------

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        headers = kwargs.pop("headers", {})
        headers["X-Auth-Token"] = self.token
        logger.debug(f"{method} {url}")
        return self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)

    def _list(self, url: str, key: str, model: Type[T], resource: str,
              params: Optional[Dict[str, str]] = None) -> List[T]:
        try:
            response = self._request("GET", url, params=params)
        except requests.RequestException as e:
            raise ResourceOperationError("list", resource, str(e)) from e

        if not _is_success(response):
            raise ResourceOperationError("list", resource, response.text, status=response.status_code)

        try:
            return [model.from_api(item) for item in response.json()[key]]
        except (ValueError, KeyError, TypeError) as e:
            raise ResourceOperationError("parse", resource, f"unexpected response: {e}") from e

    def list_loadbalancers(self) -> List[LoadBalancer]:
        return self._list(f"{self.loadbalancer_endpoint}/lbaas/loadbalancers",
                          "loadbalancers", LoadBalancer, "load balancers")

    def list_ports(self, network_id: Optional[str] = None) -> List[Port]:
        params = {"network_id": network_id} if network_id else None
        return self._list(f"{self.network_endpoint}/ports", "ports", Port, "ports", params=params)

    def list_floating_ips(self) -> List[FloatingIP]:
        return self._list(f"{self.network_endpoint}/floatingips",
                          "floatingips", FloatingIP, "floating IPs")

    def list_security_groups(self) -> List[SecurityGroup]:
        return self._list(f"{self.network_endpoint}/security-groups",
                          "security_groups", SecurityGroup, "security groups")

    def _delete(self, url: str, kind: str, name: str, resource_id: str,
                stats: CleanupStats, conflict_is_in_use: bool = False) -> bool:
        """Issue one DELETE and record the outcome in ``stats``.

        2xx and 404 both count as deleted. Never raises.
        """
        if self.dry_run:
            logger.info(f"    Would delete {kind}: {name} ({resource_id})")
            stats.skipped += 1
            return False

        try:
            response = self._request("DELETE", url)
        except requests.RequestException as e:
            logger.error(f"    Failed to delete {kind} {name} ({resource_id}): {e}")
            stats.record_failure(name, str(e))
            return False

        if _is_success(response) or response.status_code == 404:
            return True

        if conflict_is_in_use and response.status_code == 409:
            logger.warning(
                f"    {kind.capitalize()} {name} ({resource_id}) still in use "
                f"(will be cleaned up by OpenStack eventually)"
            )
            stats.in_use += 1
            return False

        logger.error(
            f"    Failed to delete {kind} {name} ({resource_id}): "
            f"{response.status_code} - {response.text}"
        )
        stats.record_failure(name, f"HTTP {response.status_code}")
        return False

    # ------------------------------------------------------------------
    # Load balancers
    # ------------------------------------------------------------------

    def loadbalancer_deleted(self, lb_id: str) -> Optional[str]:
        """Check once whether Octavia has finished deleting a load balancer.

        Returns:
            ``"NOT_FOUND"`` on 404, ``"DELETED"``/``"ERROR"`` for terminal
            provisioning states, None while deletion is still in progress or the
            check itself failed
        """
        url = f"{self.loadbalancer_endpoint}/lbaas/loadbalancers/{lb_id}"
        try:
            response = self._request("GET", url)
        except requests.RequestException as e:
            logger.debug(f"Load balancer {lb_id} status check failed: {e}")
            return None

        if response.status_code == 404:
            return "NOT_FOUND"
        if not _is_success(response):
            return None

        try:
            status = response.json().get("loadbalancer", {}).get("provisioning_status")
        except (ValueError, AttributeError):
            return None
        if status in LB_TERMINAL_STATUSES:
            return status
        logger.debug(f"Load balancer {lb_id} is {status}")
        return None

    def wait_for_lb_deletion(self, lb_id: str, timeout: float = Config.LB_DELETE_TIMEOUT,
                             interval: float = Config.LB_POLL_INTERVAL) -> PollResult:
        """Wait until a load balancer is gone or reaches DELETED/ERROR."""
        return poll_until(
            lambda: self.loadbalancer_deleted(lb_id),
            interval=interval,
            timeout=timeout,
            clock=self._clock,
            sleep=self._sleep,
        )

    def cleanup_loadbalancers(self, network_id: str) -> CleanupStats:
        """Cascade-delete Kubernetes-created load balancers on ``network_id``."""
        stats = CleanupStats("load balancers")
        logger.info("Checking for dynamically created load balancers...")

        try:
            lbs = self.list_loadbalancers()
        except ResourceOperationError as e:
            logger.warning(f"  {e}")
            stats.list_error = str(e)
            return stats

        candidates = classify.loadbalancer_candidates(lbs, network_id)
        stats.candidates = len(candidates)
        if not candidates:
            logger.info(f"  -> No dynamically created load balancers found on network {network_id}")
            logger.info("     (Terraform-managed load balancers are preserved)")
            return stats

        logger.info(f"  Found {len(candidates)} dynamically created load balancer(s) to delete:")
        for lb in candidates:
            logger.info(f"    - {lb.name} ({lb.id}) [status: {lb.provisioning_status}]")

        for lb in candidates:
            url = f"{self.loadbalancer_endpoint}/lbaas/loadbalancers/{lb.id}?cascade=true"
            if not self._delete(url, "load balancer", lb.name, lb.id, stats):
                continue

            result = self.wait_for_lb_deletion(lb.id)
            if result.done:
                logger.info(f"    -> Deleted load balancer: {lb.name} (cascade, {result.value})")
                stats.deleted += 1
            else:
                logger.warning(
                    f"    Load balancer {lb.name} ({lb.id}) deletion timed out after "
                    f"{result.elapsed:.0f}s (may still be deleting)"
                )
                stats.timed_out += 1
                stats.record_failure(lb.name, "deletion timed out")

        logger.info(f"  {stats.summary()}")
        if stats.failed:
            logger.warning("  Some load balancers could not be deleted. Terraform destroy may still block.")
            logger.warning("  1. Wait a few minutes and retry destroy")
            logger.warning("  2. Manually delete the load balancers from the OpenStack dashboard")
        return stats

    # ------------------------------------------------------------------
    # Ports
    # ------------------------------------------------------------------

    def _delete_ports(self, ports: List[Port], stats: CleanupStats, kind: str = "port"):
        stats.candidates = len(ports)
        for port in ports:
            logger.info(f"    - {port.name} ({port.id}) [{port.device_owner}]")
        for port in ports:
            url = f"{self.network_endpoint}/ports/{port.id}"
            if self._delete(url, kind, port.name, port.id, stats):
                logger.info(f"    -> Deleted {kind}: {port.name or port.id}")
                stats.deleted += 1

    def cleanup_octavia_ports(self, network_id: str) -> CleanupStats:
        """Delete Octavia ports on the cluster network that outlived their load balancer.

        Ports of terraform-managed load balancers on the same network are kept.
        """
        stats = CleanupStats("octavia ports")
        logger.info("Cleaning up Octavia load balancer ports...")

        if not self.dry_run:
            # Octavia releases VIP ports shortly after the LB is gone
            self._sleep(Config.PORT_SETTLE_DELAY)

        try:
            terraform_ids = classify.terraform_loadbalancer_ids(self.list_loadbalancers(), network_id)
        except ResourceOperationError as e:
            # Without the terraform LB ids we cannot tell whose ports are whose
            logger.warning(f"  {e}; skipping Octavia port cleanup")
            stats.list_error = str(e)
            return stats

        try:
            ports = self.list_ports(network_id)
        except ResourceOperationError as e:
            logger.warning(f"  {e}")
            stats.list_error = str(e)
            return stats

        candidates = classify.loadbalancer_port_candidates(ports, terraform_ids)
        if not candidates:
            logger.info("  -> No orphaned Octavia ports found on network")
            logger.info("     (Terraform-managed LB ports are preserved)")
            return stats

        logger.info(f"  Found {len(candidates)} orphaned Octavia port(s) to delete:")
        self._delete_ports(candidates, stats, kind="Octavia port")
        logger.info(f"  {stats.summary()}")
        if stats.failed:
            logger.warning("  Some ports could not be deleted. Terraform destroy may still block.")
            logger.warning("  Wait a moment and retry, or check the OpenStack dashboard.")
        return stats

    def cleanup_loadbalancer_ports(self, protected_lb_ids: Iterable[str] = ()) -> CleanupStats:
        """Delete every Octavia-owned port in the project.

        Ports whose name references one of ``protected_lb_ids`` are kept.
        """
        stats = CleanupStats("load balancer ports")
        logger.info("Checking for orphaned load balancer ports...")
        try:
            ports = self.list_ports()
        except ResourceOperationError as e:
            logger.warning(f"  {e}")
            stats.list_error = str(e)
            return stats

        candidates = classify.loadbalancer_port_candidates(ports, protected_lb_ids)
        if not candidates:
            logger.info("  -> No orphaned load balancer ports found")
            return stats

        logger.info(f"  Found {len(candidates)} load balancer port(s):")
        self._delete_ports(candidates, stats)
        logger.info(f"  {stats.summary()}")
        return stats

    def cleanup_network_ports(self, network_id: str) -> CleanupStats:
        """Delete ports on ``network_id`` not owned by compute, router or DHCP."""
        stats = CleanupStats("network ports")
        logger.info(f"Checking for orphaned network ports on {network_id}...")
        try:
            terraform_ids = classify.terraform_loadbalancer_ids(self.list_loadbalancers(), network_id)
            ports = self.list_ports(network_id)
        except ResourceOperationError as e:
            logger.warning(f"  {e}")
            stats.list_error = str(e)
            return stats

        candidates = classify.network_port_candidates(ports, terraform_ids)
        if not candidates:
            logger.info("  -> No orphaned network ports found")
            return stats

        logger.info(f"  Found {len(candidates)} orphaned network port(s):")
        self._delete_ports(candidates, stats)
        logger.info(f"  {stats.summary()}")
        return stats

    # ------------------------------------------------------------------
    # Floating IPs and security groups
    # ------------------------------------------------------------------

    def cleanup_floating_ips(self) -> CleanupStats:
        """Delete floating IPs that are DOWN or not bound to a port."""
        stats = CleanupStats("floating IPs")
        logger.info("Checking for orphaned floating IPs...")
        try:
            fips = self.list_floating_ips()
        except ResourceOperationError as e:
            logger.warning(f"  {e}")
            stats.list_error = str(e)
            return stats

        orphaned = [fip for fip in fips if classify.is_orphaned_floating_ip(fip)]
        stats.candidates = len(orphaned)
        if not orphaned:
            logger.info("  -> No orphaned floating IPs found")
            return stats

        logger.info(f"  Found {len(orphaned)} orphaned floating IP(s):")
        for fip in orphaned:
            logger.info(f"    - {fip.floating_ip_address} ({fip.id})")

        for fip in orphaned:
            url = f"{self.network_endpoint}/floatingips/{fip.id}"
            if self._delete(url, "floating IP", fip.floating_ip_address, fip.id, stats):
                logger.info(f"    -> Deleted floating IP: {fip.floating_ip_address}")
                stats.deleted += 1

        logger.info(f"  {stats.summary()}")
        return stats

    def cleanup_security_groups(self, cluster_name: str) -> CleanupStats:
        """Delete Kubernetes LB security groups and the cluster's leftover groups.

        Must run after every port and load balancer is gone.
        """
        stats = CleanupStats("security groups")
        logger.info("Checking for orphaned security groups...")
        try:
            groups = self.list_security_groups()
        except ResourceOperationError as e:
            logger.warning(f"  {e}")
            stats.list_error = str(e)
            return stats

        orphaned = [sg for sg in groups if classify.is_cleanup_security_group(sg, cluster_name)]
        stats.candidates = len(orphaned)
        if not orphaned:
            logger.info("  -> No orphaned security groups found")
            return stats

        logger.info(f"  Found {len(orphaned)} orphaned security group(s):")
        for sg in orphaned:
            logger.info(f"    - {sg.name} ({sg.id})")

        for sg in orphaned:
            url = f"{self.network_endpoint}/security-groups/{sg.id}"
            if self._delete(url, "security group", sg.name, sg.id, stats, conflict_is_in_use=True):
                logger.info(f"    -> Deleted security group: {sg.name}")
                stats.deleted += 1

        logger.info(f"  {stats.summary()}")
        if stats.in_use:
            logger.info("  Note: Security groups still in use will be cleaned up automatically by OpenStack")
        return stats

    # ------------------------------------------------------------------
    # Cleanup entry points
    # ------------------------------------------------------------------

    def cleanup_before_destroy(self, network_id: str, cluster_name: str) -> CleanupReport:
        """Remove Kubernetes-created resources that would block ``terraform destroy``.

        Args:
            network_id: ID of the terraform-managed cluster network
            cluster_name: Cluster name (for logging)

        Returns:
            CleanupReport with one entry per step. Failures are reported, not raised.
        """
        logger.info(f"=== Pre-destroy cleanup for {cluster_name} ===")
        logger.info("Removing dynamic resources to prevent terraform destroy from blocking...")
        report = CleanupReport("pre-destroy")
        report.add(self.cleanup_loadbalancers(network_id))
        # Cascade delete should release the VIP ports but sometimes they linger
        report.add(self.cleanup_octavia_ports(network_id))
        logger.info("=== Pre-destroy cleanup complete ===")
        return report

    def cleanup_after_destroy(self, cluster_name: str) -> CleanupReport:
        """Sweep up resources terraform never owned once the cluster is gone."""
        logger.info(f"=== Post-destroy cleanup for {cluster_name} ===")
        report = CleanupReport("post-destroy")
        report.add(self.cleanup_floating_ips())
        report.add(self.cleanup_loadbalancer_ports())
        report.add(self.cleanup_security_groups(cluster_name))
        logger.info("=== Post-destroy cleanup complete ===")
        return report

    def cleanup_orphaned_resources(self, network_id: Optional[str] = None,
                                   cluster_name: Optional[str] = None) -> CleanupReport:
        """Clean up orphaned resources outside of a destroy run.

        With ``network_id`` the Kubernetes load balancers and stray ports on that
        network are removed first; security groups are only considered when
        ``cluster_name`` is given.
        """
        logger.info("=== Cleanup orphaned resources ===")
        report = CleanupReport("orphaned")
        if network_id:
            report.add(self.cleanup_loadbalancers(network_id))
            report.add(self.cleanup_network_ports(network_id))
        # The cluster is still up: keep the VIP ports of every terraform LB
        try:
            protected = classify.terraform_loadbalancer_ids(self.list_loadbalancers())
        except ResourceOperationError as e:
            logger.warning(f"  {e}; skipping load balancer port cleanup")
            stats = CleanupStats("load balancer ports")
            stats.list_error = str(e)
            report.add(stats)
        else:
            report.add(self.cleanup_loadbalancer_ports(protected_lb_ids=protected))
        report.add(self.cleanup_floating_ips())
        if cluster_name:
            report.add(self.cleanup_security_groups(cluster_name))
        return report
