import pytest

from imdeploy.modules import classify
from imdeploy.modules.classify import PortOwner
from imdeploy.modules.models import FloatingIP, LoadBalancer, Port, SecurityGroup

NET = "net-123"


def make_lb(name, id=None, network=NET):
    return LoadBalancer(id=id or name, name=name, vip_network_id=network)


@pytest.mark.parametrize("name", [
    "k3s-test-lb",
    "kube-k3s-test-lb",
    "kube_service_k3s-test_default_web-lb",
])
def test_terraform_lbs_are_never_candidates(name):
    for network in (NET, "net-other"):
        assert classify.loadbalancer_candidates([make_lb(name, network=network)], network) == []


@pytest.mark.parametrize("name", [
    "kube_service_k3s-test_default_web",
    "kube-legacy-service",
])
def test_kubernetes_lbs_on_network_are_candidates(name):
    assert classify.loadbalancer_candidates([make_lb(name)], NET) == [make_lb(name)]


def test_candidates_are_listed_once():
    lb = make_lb("kube_service_a", id="lb-1")
    assert classify.loadbalancer_candidates([lb, lb], NET) == [lb]


def test_other_networks_and_unknown_names_are_ignored():
    lbs = [make_lb("kube_service_a", network="net-other"), make_lb("my-manual-balancer")]
    assert classify.loadbalancer_candidates(lbs, NET) == []


def test_terraform_loadbalancer_ids():
    lbs = [make_lb("k3s-test-lb", id="tf-1"), make_lb("kube_service_a", id="k-1"),
           make_lb("other-lb", id="tf-2", network="net-other")]
    assert classify.terraform_loadbalancer_ids(lbs, NET) == {"tf-1"}
    assert classify.terraform_loadbalancer_ids(lbs) == {"tf-1", "tf-2"}


@pytest.mark.parametrize("owner,expected", [
    ("compute:nova", PortOwner.COMPUTE),
    ("network:router_interface", PortOwner.ROUTER),
    ("network:router_gateway", PortOwner.ROUTER),
    ("network:dhcp", PortOwner.DHCP),
    ("Octavia", PortOwner.LOADBALANCER),
    ("octavia:amphora", PortOwner.LOADBALANCER),
    ("", PortOwner.UNCLASSIFIED),
    ("network:floatingip", PortOwner.UNCLASSIFIED),
])
def test_classify_port(owner, expected):
    assert classify.classify_port(Port("p", "", owner, NET)) is expected


def test_loadbalancer_ports_exclude_protected_lbs():
    ports = [
        Port("p-1", "octavia-lb-tf-1", "Octavia", NET),
        Port("p-2", "octavia-lb-k-1", "Octavia", NET),
        Port("p-3", "", "compute:nova", NET),
    ]
    assert [p.id for p in classify.loadbalancer_port_candidates(ports, {"tf-1"})] == ["p-2"]
    assert [p.id for p in classify.loadbalancer_port_candidates(ports)] == ["p-1", "p-2"]


def test_network_sweep_protects_infrastructure_ports():
    ports = [
        Port("p-vm", "", "compute:nova", NET),
        Port("p-router", "", "network:router_interface", NET),
        Port("p-dhcp", "", "network:dhcp", NET),
        Port("p-stray", "leftover", "", NET),
        Port("p-lb", "octavia-lb-k-1", "Octavia", NET),
        Port("p-tf", "octavia-lb-tf-1", "Octavia", NET),
    ]
    candidates = classify.network_port_candidates(ports, {"tf-1"})
    assert [p.id for p in candidates] == ["p-stray", "p-lb"]


@pytest.mark.parametrize("status,port_id,orphaned", [
    ("DOWN", "p-1", True),
    ("down", "p-1", True),
    ("ACTIVE", None, True),
    ("ACTIVE", "", True),
    ("ACTIVE", "p-1", False),
])
def test_orphaned_floating_ip(status, port_id, orphaned):
    fip = FloatingIP("f", "5.6.7.8", status, port_id)
    assert classify.is_orphaned_floating_ip(fip) is orphaned


@pytest.mark.parametrize("name,expected", [
    ("lb-sg-1234", True),
    ("k3s-test-server", True),
    ("k3s-test-agent", True),
    ("k3s-test-bastion", False),
    ("other-server", False),
    ("default", False),
])
def test_cleanup_security_group(name, expected):
    assert classify.is_cleanup_security_group(SecurityGroup("sg", name), "k3s-test") is expected
