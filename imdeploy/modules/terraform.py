"""
Thin wrapper around the terraform / tofu binary.
"""
import json
import logging
import subprocess
from pathlib import Path
from typing import Any, Dict, List

from ..config import Config
from ..errors import TerraformError

logger = logging.getLogger(__name__)


class TerraformClient:
    """Runs terraform commands inside the cluster's terraform directory."""

    def __init__(self, workdir: Path, binary: str = "terraform"):
        self.workdir = Path(workdir)
        self.binary = binary

    def run_command(self, args: List[str], capture_output: bool = False) -> subprocess.CompletedProcess:
        """Run ``binary args...`` in the working directory.

        Without ``capture_output`` the command inherits the terminal so the
        operator sees terraform's own progress output.

        Raises:
            TerraformError: If the binary cannot be started or exits non-zero
        """
        cmd = [self.binary] + args
        cmd_str = ' '.join(cmd)
        logger.debug(f"Running: {cmd_str} (in {self.workdir})")
        try:
            result = subprocess.run(
                cmd,
                cwd=self.workdir,
                text=True,
                stdout=subprocess.PIPE if capture_output else None,
                stderr=subprocess.PIPE if capture_output else None,
            )
        except OSError as e:
            raise TerraformError(cmd_str, message=str(e)) from e

        if result.returncode != 0:
            message = (result.stderr or "").strip() if capture_output else ""
            raise TerraformError(cmd_str, result.returncode, message)
        return result

    def ensure_initialized(self):
        """Run ``init`` when the working directory has never been initialized."""
        if (self.workdir / Config.STATE_DIR).exists():
            return
        print(f"--- {Config.STATE_DIR} directory not found, running init first...")
        self.run_command(["init", "-input=false"])
        print("--- Terraform init completed successfully\n")

    def apply(self):
        self.ensure_initialized()
        self.run_command(["apply", "--auto-approve"])

    def plan(self):
        self.ensure_initialized()
        self.run_command(["plan"])

    def destroy(self):
        self.ensure_initialized()
        self.run_command(["destroy", "--auto-approve"])

    def state_rm(self, address: str):
        self.ensure_initialized()
        self.run_command(["state", "rm", address], capture_output=True)

    def output_json(self) -> Dict[str, Any]:
        """Return the parsed ``output -json`` document."""
        self.ensure_initialized()
        result = self.run_command(["output", "-json"], capture_output=True)
        try:
            outputs = json.loads(result.stdout or "{}")
        except json.JSONDecodeError as e:
            raise TerraformError("output -json", message=f"Failed to parse terraform outputs: {e}") from e
        if not isinstance(outputs, dict):
            raise TerraformError("output -json", message="Failed to parse terraform outputs: not an object")
        return outputs
