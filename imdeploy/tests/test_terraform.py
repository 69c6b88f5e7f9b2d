import json
import subprocess

import pytest

from imdeploy.errors import TerraformError
from imdeploy.modules import terraform as terraform_module
from imdeploy.modules.terraform import TerraformClient


class FakeRun:
    def __init__(self, results=None):
        self.results = results or {}
        self.calls = []

    def __call__(self, cmd, **kwargs):
        self.calls.append((cmd, kwargs))
        code, stdout = self.results.get(cmd[1], (0, ""))
        return subprocess.CompletedProcess(cmd, code, stdout=stdout, stderr="boom" if code else "")


@pytest.fixture
def workdir(tmp_path):
    (tmp_path / "main.tf").write_text("")
    return tmp_path


def test_init_runs_when_state_dir_missing(monkeypatch, workdir):
    run = FakeRun()
    monkeypatch.setattr(terraform_module.subprocess, "run", run)

    TerraformClient(workdir, "tofu").apply()

    assert [c[0] for c in run.calls] == [["tofu", "init", "-input=false"], ["tofu", "apply", "--auto-approve"]]
    assert run.calls[1][1]["cwd"] == workdir


def test_init_skipped_when_initialized(monkeypatch, workdir):
    (workdir / ".terraform").mkdir()
    run = FakeRun()
    monkeypatch.setattr(terraform_module.subprocess, "run", run)

    TerraformClient(workdir).destroy()

    assert [c[0] for c in run.calls] == [["terraform", "destroy", "--auto-approve"]]


def test_failure_raises_with_exit_code(monkeypatch, workdir):
    (workdir / ".terraform").mkdir()
    monkeypatch.setattr(terraform_module.subprocess, "run", FakeRun({"apply": (1, "")}))

    with pytest.raises(TerraformError) as exc:
        TerraformClient(workdir).apply()

    assert exc.value.code == 1
    assert "exit code: 1" in str(exc.value)


def test_output_json(monkeypatch, workdir, terraform_outputs):
    (workdir / ".terraform").mkdir()
    monkeypatch.setattr(terraform_module.subprocess, "run",
                        FakeRun({"output": (0, json.dumps(terraform_outputs))}))

    assert TerraformClient(workdir).output_json() == terraform_outputs


def test_output_json_unparseable(monkeypatch, workdir):
    (workdir / ".terraform").mkdir()
    monkeypatch.setattr(terraform_module.subprocess, "run", FakeRun({"output": (0, "not json")}))

    with pytest.raises(TerraformError, match="Failed to parse terraform outputs"):
        TerraformClient(workdir).output_json()


def test_state_rm_captures_error(monkeypatch, workdir):
    (workdir / ".terraform").mkdir()
    monkeypatch.setattr(terraform_module.subprocess, "run", FakeRun({"state": (1, "")}))

    with pytest.raises(TerraformError, match="boom"):
        TerraformClient(workdir).state_rm("module.x")


def test_missing_binary(monkeypatch, workdir):
    (workdir / ".terraform").mkdir()

    def fake_run(cmd, **kwargs):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(terraform_module.subprocess, "run", fake_run)

    with pytest.raises(TerraformError):
        TerraformClient(workdir, "tofu").plan()
