import pytest

from imdeploy import config as config_module
from imdeploy.config import Config, build_config, detect_terraform_dir, load_config, parse_tfvars
from imdeploy.errors import ConfigError, MissingFieldError
from imdeploy.utils import redact_sensitive_data


@pytest.fixture
def binary(monkeypatch):
    monkeypatch.setattr(config_module.shutil, "which", lambda name: f"/usr/bin/{name}" if name == "tofu" else None)


def test_load_config_from_project_root(terraform_project, binary):
    config = load_config(cwd=terraform_project)

    assert config.terraform_dir == terraform_project / "terraform"
    assert config.terraform_bin == "tofu"
    assert config.cluster_name == "k3s-test"
    assert config.tailscale.api_key == "tskey-api-123"
    assert config.tailscale.account_name == "example.github"
    assert config.openstack.username == "alice"
    assert config.openstack.project_name == "project-a"
    assert config.openstack.region == "RegionTwo"
    assert config.openstack.insecure is False
    assert config.openstack.auth_url == Config.DEFAULT_AUTH_URL


def test_detects_parent_terraform_dir(terraform_project):
    subdir = terraform_project / "im-deploy"
    subdir.mkdir()
    assert detect_terraform_dir(subdir) == terraform_project / "terraform"


def test_missing_terraform_dir(tmp_path):
    with pytest.raises(ConfigError, match="Terraform directory not found"):
        detect_terraform_dir(tmp_path)


def test_terraform_fallback_binary(monkeypatch):
    monkeypatch.setattr(config_module.shutil, "which", lambda name: "/bin/terraform" if name == "terraform" else None)
    assert config_module.find_terraform_binary() == "terraform"


def test_no_binary(monkeypatch):
    monkeypatch.setattr(config_module.shutil, "which", lambda name: None)
    with pytest.raises(ConfigError):
        config_module.find_terraform_binary()


def test_defaults(tmp_path):
    config = build_config({}, tmp_path, "terraform")

    assert config.cluster_name == "k3s-multicloud"
    assert config.tailscale is None
    assert config.openstack is None


def test_openstack_requires_both_user_and_password(tmp_path):
    assert build_config({"user_name": "alice"}, tmp_path, "terraform").openstack is None


def test_openstack_defaults(tmp_path):
    config = build_config(
        {"user_name": "alice", "user_password": "pw", "tenant_name": "p"}, tmp_path, "terraform"
    )
    assert config.openstack.insecure is True
    assert config.openstack.region == "RegionOne"
    assert config.openstack.cacert_file is None


def test_missing_tenant_name(tmp_path):
    with pytest.raises(MissingFieldError) as exc:
        build_config({"user_name": "alice", "user_password": "pw"}, tmp_path, "terraform")
    assert exc.value.field == "tenant_name"


def test_tailscale_requires_api_key(tmp_path):
    with pytest.raises(MissingFieldError, match="tailscale_api_key"):
        build_config({"enable_tailscale": True, "tailscale_tailnet": "x.ts.net"}, tmp_path, "terraform")


def test_unparseable_tfvars(tmp_path):
    path = tmp_path / "terraform.tfvars"
    path.write_text('server_count = 3\nlocals { x = 1 }\n')
    with pytest.raises(ConfigError, match="Failed to parse terraform.tfvars"):
        parse_tfvars(path)


def test_config_dump_is_redacted(terraform_project, binary):
    dump = redact_sensitive_data(load_config(cwd=terraform_project).as_dict())

    assert dump["openstack"]["password"] == "[REDACTED]"
    assert dump["tailscale"]["api_key"] == "[REDACTED]"
    assert dump["openstack"]["username"] == "alice"
