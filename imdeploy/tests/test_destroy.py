import pytest
from typer.testing import CliRunner

from imdeploy.cli import app
from imdeploy.commands import destroy as destroy_cmd
from imdeploy.config import build_config
from imdeploy.errors import AuthenticationError, TailscaleError, TerraformError
from imdeploy.modules.models import CleanupReport, CleanupStats

from .conftest import FakeTerraform

runner = CliRunner()

CREDENTIALS = {"user_name": "alice", "user_password": "pw", "tenant_name": "project-a"}


@pytest.fixture
def terraform(terraform_outputs):
    return FakeTerraform(terraform_outputs)


@pytest.fixture
def patch_context(monkeypatch, tmp_path, terraform):
    def patch(values=None):
        def fake_load_context(options):
            return build_config(values or {}, tmp_path, "tofu", dry_run=options.dry_run), terraform

        monkeypatch.setattr(destroy_cmd, "load_context", fake_load_context)

    return patch


def failed_report(name):
    stats = CleanupStats("load balancers", timed_out=1)
    stats.record_failure("lb-1", "deletion timed out")
    return CleanupReport(name, [stats])


class FakeOpenStack:
    def __init__(self, before=None, after=None):
        self.before = before or CleanupReport("pre-destroy")
        self.after = after or CleanupReport("post-destroy")
        self.calls = []

    def cleanup_before_destroy(self, network_id, cluster_name):
        self.calls.append(("before", network_id, cluster_name))
        return self.before

    def cleanup_after_destroy(self, cluster_name):
        self.calls.append(("after", cluster_name))
        return self.after


def test_destroy_cancelled_at_first_prompt(patch_context, terraform):
    patch_context()

    result = runner.invoke(app, ["destroy"], input="n\n")

    assert result.exit_code == 0
    assert "Destroy cancelled." in result.output
    assert terraform.calls == []


def test_destroy_full_sequence(patch_context, terraform, monkeypatch):
    patch_context(CREDENTIALS)
    client = FakeOpenStack()
    monkeypatch.setattr(destroy_cmd, "openstack_client", lambda config: client)

    result = runner.invoke(app, ["--yes", "destroy"])

    assert result.exit_code == 0, result.output
    assert terraform.calls == ["output", ("state_rm", destroy_cmd.LONGHORN_BACKUP_CONTAINER), "destroy"]
    assert client.calls == [("before", "net-123", "k3s-test"), ("after", "k3s-test")]
    assert "Step 1: Tailscale cleanup skipped (not enabled)" in result.output
    assert "Cluster destroyed!" in result.output


def test_destroy_dry_run_stops_before_state_changes(patch_context, terraform, monkeypatch):
    patch_context(CREDENTIALS)
    client = FakeOpenStack()
    monkeypatch.setattr(destroy_cmd, "openstack_client", lambda config: client)

    result = runner.invoke(app, ["--yes", "--dry-run", "destroy"])

    assert result.exit_code == 0
    assert terraform.calls == ["output"]
    assert client.calls == [("before", "net-123", "k3s-test")]


def test_state_rm_failure_is_only_a_note(patch_context, terraform, monkeypatch):
    patch_context()

    def failing_state_rm(address):
        raise TerraformError(f"tofu state rm {address}", 1, "No matching objects found")

    monkeypatch.setattr(terraform, "state_rm", failing_state_rm)

    result = runner.invoke(app, ["--yes", "destroy"])

    assert result.exit_code == 0
    assert "Could not remove backup container from state" in result.output
    assert terraform.calls[-1] == "destroy"


def test_pre_destroy_failure_prompts_even_with_yes(patch_context, terraform, monkeypatch):
    patch_context(CREDENTIALS)
    client = FakeOpenStack(before=failed_report("pre-destroy"))
    monkeypatch.setattr(destroy_cmd, "openstack_client", lambda config: client)

    result = runner.invoke(app, ["--yes", "destroy"], input="n\n")

    assert result.exit_code == 0
    assert "Terraform destroy may block. Continue anyway?" in result.output
    assert "Please clean up load balancers manually" in result.output
    assert "destroy" not in terraform.calls


def test_pre_destroy_failure_continue(patch_context, terraform, monkeypatch):
    patch_context(CREDENTIALS)
    client = FakeOpenStack(before=failed_report("pre-destroy"), after=failed_report("post-destroy"))
    monkeypatch.setattr(destroy_cmd, "openstack_client", lambda config: client)

    result = runner.invoke(app, ["--yes", "destroy"], input="y\n")

    assert result.exit_code == 0
    assert terraform.calls[-1] == "destroy"
    assert "Post-destroy OpenStack cleanup incomplete" in result.output


def test_auth_failure_prompts(tmp_path, monkeypatch):
    config = build_config(CREDENTIALS, tmp_path, "tofu")

    def reject(config):
        raise AuthenticationError("bad password", status=401, body="")

    prompts = []
    monkeypatch.setattr(destroy_cmd, "openstack_client", reject)
    monkeypatch.setattr(destroy_cmd.typer, "confirm", lambda text, default: prompts.append(text) or False)

    assert destroy_cmd.cleanup_before_destroy(config, "net-123", "k3s-test") is False
    assert prompts == ["Terraform destroy may block without cleanup. Continue anyway?"]


@pytest.mark.parametrize("network_id, cluster_name", [(None, "k3s-test"), ("net-123", None)])
def test_pre_destroy_skipped_without_identity(tmp_path, monkeypatch, network_id, cluster_name):
    config = build_config(CREDENTIALS, tmp_path, "tofu")
    monkeypatch.setattr(destroy_cmd, "openstack_client", lambda config: pytest.fail("no client expected"))

    assert destroy_cmd.cleanup_before_destroy(config, network_id, cluster_name) is True


def test_read_cluster_identity_without_outputs():
    assert destroy_cmd.read_cluster_identity(FakeTerraform(None)) == (None, None)


def test_tailscale_verification_failure_can_cancel(tmp_path, monkeypatch):
    config = build_config(
        {"enable_tailscale": True, "tailscale_api_key": "k", "tailscale_tailnet": "t.ts.net"}, tmp_path, "tofu"
    )

    def not_running(*args, **kwargs):
        raise TailscaleError("Tailscale is not running")

    monkeypatch.setattr(destroy_cmd, "verify_tailscale_connection", not_running)
    monkeypatch.setattr(destroy_cmd.typer, "confirm", lambda text, default: False)

    options = destroy_cmd.CliOptions()
    assert destroy_cmd.cleanup_tailscale(config, options) is False
