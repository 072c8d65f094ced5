"""kubectl wrapper used to apply and delete manifests on a downstream cluster.

The kubeconfig is written to a private temporary file for the duration of
a single command and removed afterwards.
"""

import os
import re
import subprocess
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager

import yaml

from cluster_agent.exceptions import KubectlError
from cluster_agent.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 120

_TOKEN_PATTERN = re.compile(r'^.*?"token":"(.*?)"')
REDACTED = "REDACTED"


def format_apply_output(output: str) -> str:
    """Compact kubectl output for error and condition messages.

    Newlines become spaces and the value of the first ``"token":"..."``
    occurrence is replaced with REDACTED.
    """
    output = output.replace("\n", " ")
    match = _TOKEN_PATTERN.search(output)
    if match and match.group(1):
        output = output.replace(match.group(1), REDACTED, 1)
    return output


def is_not_found(output: str, kind: str, name: str) -> bool:
    """True if kubectl reported that ``kind`` ``name`` does not exist."""
    return f'{kind} "{name}" not found' in output


@contextmanager
def _kubeconfig_file(kubeconfig: dict) -> Iterator[str]:
    fd, path = tempfile.mkstemp(prefix="kubeconfig-", suffix=".yaml")
    try:
        with os.fdopen(fd, "w") as f:
            yaml.safe_dump(kubeconfig, f, default_flow_style=False)
        yield path
    finally:
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass


class Kubectl:
    """Runs kubectl against a downstream cluster."""

    def __init__(self, binary: str = "kubectl", timeout: int = DEFAULT_TIMEOUT_SECONDS):
        """Initialize the runner.

        Args:
            binary: kubectl executable name or path
            timeout: Per-command timeout in seconds
        """
        self.binary = binary
        self.timeout = timeout

    def apply(self, manifest: bytes, kubeconfig: dict) -> str:
        """Apply ``manifest`` and return the combined command output.

        Raises:
            KubectlError: If kubectl fails, times out or is not installed
        """
        return self._run(["apply", "-f", "-"], manifest, kubeconfig)

    def delete(self, manifest: bytes, kubeconfig: dict) -> str:
        """Delete the resources described by ``manifest``.

        Raises:
            KubectlError: If kubectl fails; ``output`` carries the "not found"
                message when the resources do not exist
        """
        return self._run(["delete", "-f", "-"], manifest, kubeconfig)

    def _run(self, args: list[str], manifest: bytes, kubeconfig: dict) -> str:
        with _kubeconfig_file(kubeconfig) as path:
            cmd = [self.binary, "--kubeconfig", path, *args]
            logger.debug(f"Running: {self.binary} {' '.join(args)}")
            try:
                result = subprocess.run(
                    cmd,
                    input=manifest,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.STDOUT,
                    check=True,
                    timeout=self.timeout,
                )
            except subprocess.CalledProcessError as e:
                output = (e.stdout or b"").decode("utf-8", errors="replace")
                logger.debug(f"kubectl {args[0]} exited with {e.returncode}")
                raise KubectlError(
                    f"kubectl {args[0]} failed with exit code {e.returncode}",
                    output=output,
                    returncode=e.returncode,
                ) from e
            except subprocess.TimeoutExpired as e:
                output = (e.stdout or b"").decode("utf-8", errors="replace")
                raise KubectlError(
                    f"kubectl {args[0]} timed out after {self.timeout} seconds", output=output
                ) from e
            except FileNotFoundError as e:
                raise KubectlError(
                    f"kubectl binary not found: {self.binary}",
                    output="Install kubectl or set CLUSTER_AGENT_KUBECTL to its path",
                ) from e

        return result.stdout.decode("utf-8", errors="replace")
