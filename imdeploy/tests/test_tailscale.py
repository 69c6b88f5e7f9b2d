import json
import subprocess

import pytest

from imdeploy.errors import AuthenticationError, TailscaleError
from imdeploy.modules import tailscale
from imdeploy.modules.tailscale import TailscaleClient

from .conftest import FakeResponse

API = "https://api.tailscale.com/api/v2"
DEVICES = f"{API}/tailnet/example.github.ts.net/devices"


@pytest.fixture
def client(session):
    return TailscaleClient("tskey-api-123", "example.github.ts.net", session=session)


def devices(*items):
    return FakeResponse(200, {"devices": list(items)})


def test_cleanup_deletes_only_tagged_devices(client, session):
    session.add("GET", DEVICES, devices(
        {"id": "d1", "name": "k3s-test-server-0", "tags": ["tag:k3s-test-openstack"]},
        {"id": "d2", "name": "laptop", "tags": []},
        {"id": "d3", "name": "k3s-other-server-0", "tags": ["tag:k3s-other-openstack"]},
        {"id": "d4", "name": "k3s-test-agent-0", "tags": ["tag:k3s-test-openstack", "tag:gpu"]},
    ))
    session.add("DELETE", f"{API}/device/d1", FakeResponse(200))
    session.add("DELETE", f"{API}/device/d4", FakeResponse(500, text="oops"))

    stats = client.cleanup_devices_by_tag("k3s-test-openstack")

    assert session.requested("DELETE") == [f"{API}/device/d1", f"{API}/device/d4"]
    assert stats.deleted == 1
    assert stats.failed == 1
    assert session.calls[0]["headers"]["Authorization"] == "Bearer tskey-api-123"


def test_cleanup_dry_run(client, session):
    session.add("GET", DEVICES, devices({"id": "d1", "name": "n", "tags": ["tag:k3s-test-openstack"]}))

    stats = client.cleanup_devices_by_tag("k3s-test-openstack", dry_run=True)

    assert session.requested("DELETE") == []
    assert stats.skipped == 1


def test_cleanup_progress_goes_through_typer(client, session, monkeypatch):
    echoed = []
    monkeypatch.setattr(tailscale.typer, "echo", lambda message="", **kwargs: echoed.append(message))
    session.add("GET", DEVICES, devices({"id": "d1", "name": "n", "tags": ["tag:k3s-test-openstack"]}))
    session.add("DELETE", f"{API}/device/d1", FakeResponse(200))

    client.cleanup_devices_by_tag("k3s-test-openstack")

    assert "    -> Deleted device: n" in echoed
    assert echoed[-1] == "\nTailscale cleanup complete: 1 deleted, 0 failed"


def test_rejected_api_key(client, session):
    session.add("GET", DEVICES, FakeResponse(401, text="invalid key"))

    with pytest.raises(AuthenticationError):
        client.list_devices()


def test_api_error(client, session):
    session.add("GET", DEVICES, FakeResponse(500, text="internal"))

    with pytest.raises(TailscaleError, match="500"):
        client.list_devices()


def fake_status(monkeypatch, status, returncode=0):
    calls = []

    def fake_run(args, **kwargs):
        calls.append(args)
        return subprocess.CompletedProcess(args, returncode, stdout=json.dumps(status), stderr="")

    monkeypatch.setattr(tailscale.shutil, "which", lambda name: "/usr/bin/tailscale")
    monkeypatch.setattr(tailscale.subprocess, "run", fake_run)
    return calls


def test_verify_not_installed(monkeypatch):
    monkeypatch.setattr(tailscale.shutil, "which", lambda name: None)
    with pytest.raises(TailscaleError, match="not installed"):
        tailscale.verify_tailscale_connection("example.github")


def test_verify_not_running(monkeypatch):
    fake_status(monkeypatch, {"BackendState": "Stopped"})
    with pytest.raises(TailscaleError, match="not running"):
        tailscale.verify_tailscale_connection("example.github")


def test_verify_right_account(monkeypatch):
    calls = fake_status(monkeypatch, {"BackendState": "Running", "CurrentTailnet": {"Name": "example.github"}})
    tailscale.verify_tailscale_connection("example.github")
    assert calls == [["tailscale", "status", "--json"]]


def test_verify_offers_account_switch(monkeypatch):
    calls = fake_status(monkeypatch, {"BackendState": "Running", "CurrentTailnet": {"Name": "someone-else"}})
    monkeypatch.setattr(tailscale.typer, "confirm", lambda *args, **kwargs: True)

    tailscale.verify_tailscale_connection("example.github")

    assert calls[-1] == ["sudo", "tailscale", "switch", "example.github"]


def test_verify_auto_confirm_keeps_account(monkeypatch):
    calls = fake_status(monkeypatch, {"BackendState": "Running", "CurrentTailnet": {"Name": "someone-else"}})

    tailscale.verify_tailscale_connection("example.github", auto_confirm=True)

    assert len(calls) == 1
