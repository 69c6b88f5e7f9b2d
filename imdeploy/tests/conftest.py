import json
import subprocess
from pathlib import Path
from urllib.parse import urlencode

import pytest

from imdeploy.errors import TerraformError

FIXTURES = Path(__file__).parent / "fixtures"

NETWORK_URL = "https://cloud.example:9696/v2.0"
LB_URL = "https://cloud.example:9876/v2.0"


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, text="", headers=None):
        self.status_code = status_code
        self._json = json_data
        self.text = text or (json.dumps(json_data) if json_data is not None else "")
        self.headers = headers or {}

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self._json is None:
            raise ValueError("No JSON body")
        return self._json


class FakeSession:
    """Records requests and answers them from a route table.

    Each route holds a queue of responses; the last one repeats. An exception
    instance in the queue is raised instead of returned.
    """

    def __init__(self):
        self.routes = {}
        self.calls = []
        self.verify = True

    def add(self, method, url, *responses):
        self.routes[(method, url)] = list(responses)
        return self

    def request(self, method, url, headers=None, timeout=None, params=None, json=None):
        if params:
            url = f"{url}?{urlencode(params)}"
        self.calls.append({"method": method, "url": url, "headers": headers or {},
                           "timeout": timeout, "json": json})
        queue = self.routes.get((method, url))
        if not queue:
            raise AssertionError(f"Unexpected request: {method} {url}")
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, Exception):
            raise response
        return response

    def requested(self, method=None):
        return [c["url"] for c in self.calls if method is None or c["method"] == method]


class FakeClock:
    """Monotonic clock that only advances when sleep is called."""

    def __init__(self, start=1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class FakeSSH:
    """Stand-in for subprocess.run answering ssh commands from a script.

    ``responses`` maps a substring of the remote command to a list of
    (returncode, stdout) tuples; the last one repeats.
    """

    def __init__(self, responses=None):
        self.responses = {k: list(v) for k, v in (responses or {}).items()}
        self.commands = []

    def __call__(self, args, **kwargs):
        self.commands.append(args)
        remote = args[-1]
        for key, queue in self.responses.items():
            if key in remote:
                code, stdout = queue.pop(0) if len(queue) > 1 else queue[0]
                return subprocess.CompletedProcess(args, code, stdout=stdout, stderr="")
        return subprocess.CompletedProcess(args, 255, stdout="", stderr="ssh: connect timed out")


class FakeTerraform:
    """Stand-in for TerraformClient recording the commands it was asked to run."""

    def __init__(self, outputs=None):
        self.outputs = outputs
        self.calls = []

    def apply(self):
        self.calls.append("apply")

    def plan(self):
        self.calls.append("plan")

    def destroy(self):
        self.calls.append("destroy")

    def state_rm(self, address):
        self.calls.append(("state_rm", address))

    def output_json(self):
        self.calls.append("output")
        if self.outputs is None:
            raise TerraformError("output -json", 1)
        return self.outputs


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def terraform_outputs():
    with open(FIXTURES / "terraform_outputs.json") as f:
        return json.load(f)


@pytest.fixture
def terraform_outputs_no_tailscale():
    with open(FIXTURES / "terraform_outputs_no_tailscale.json") as f:
        return json.load(f)


@pytest.fixture
def kubeconfig_text():
    return (FIXTURES / "kubeconfig.yaml").read_text()


@pytest.fixture
def terraform_project(tmp_path):
    """A project checkout with terraform/main.tf and terraform.tfvars."""
    terraform_dir = tmp_path / "terraform"
    terraform_dir.mkdir()
    (terraform_dir / "main.tf").write_text("# main\n")
    (terraform_dir / "terraform.tfvars").write_text((FIXTURES / "terraform.tfvars").read_text())
    return tmp_path
