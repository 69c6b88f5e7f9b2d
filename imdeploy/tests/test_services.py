from imdeploy.modules import services
from imdeploy.modules import ssh as ssh_module
from imdeploy.modules.services import ServiceInfo
from imdeploy.modules.ssh import TailscaleConnection

from .conftest import FakeSSH


def test_service_without_auth():
    info = ServiceInfo("Grafana")
    assert str(info) == "Grafana:\n  URL:      Not available\n  Auth:     None"


def test_service_with_credentials_and_note():
    info = (ServiceInfo("ArgoCD")
            .with_url("https://k3s-test-server-0")
            .with_credentials("admin", "hunter2")
            .with_note("Change the password after first login"))

    assert str(info).splitlines() == [
        "ArgoCD:",
        "  URL:      https://k3s-test-server-0",
        "  Username: admin",
        "  Password: hunter2",
        "  Notes:    Change the password after first login",
    ]


def test_get_k8s_secret_decodes_on_node(monkeypatch):
    fake = FakeSSH({"argocd-initial-admin-secret": [(0, "s3cret\n")]})
    monkeypatch.setattr(ssh_module.subprocess, "run", fake)

    password = services.get_k8s_secret(
        TailscaleConnection("k3s-test-server-0"), "argocd-initial-admin-secret", "argocd", "password"
    )

    assert password == "s3cret"
    remote = fake.commands[0][-1]
    assert remote.startswith("sudo kubectl get secret argocd-initial-admin-secret -n argocd")
    assert remote.endswith("| base64 -d")
