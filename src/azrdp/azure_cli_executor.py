"""Azure CLI subprocess execution.

The only place in azrdp that talks to Azure. Each call runs exactly one
``az`` verb synchronously and returns its stdout, or raises AzureCLIError.

There is deliberately no retry here: a failed az call is reported to the
caller as-is, and only the deletion-confirmation poll in vm_lifecycle
repeats a query.

Usage:
    from azrdp.azure_cli_executor import AzureCLIExecutor

    az = AzureCLIExecutor()
    ip = az.run(["vm", "show", "-d", "-g", "rg", "-n", "vm1", "--query", "publicIps", "-o", "tsv"])

Security:
- No shell=True; arguments are passed as a list
- Commands are sanitized before they are logged or put into error messages
"""

import logging
import subprocess

from azrdp.security import sanitize_azure_command

logger = logging.getLogger(__name__)


class AzureCLIError(Exception):
    """Raised when an az command fails, times out, or cannot be started."""

    def __init__(
        self,
        message: str,
        cmd: str | None = None,
        returncode: int | None = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr


def run_az_command(
    cmd: list[str],
    *,
    timeout: float | None = None,
) -> subprocess.CompletedProcess[str]:
    """Execute an Azure CLI command.

    Args:
        cmd: Command list starting with "az", e.g. ["az", "vm", "list"]
        timeout: Subprocess timeout in seconds (default: no limit)

    Returns:
        subprocess.CompletedProcess with stdout/stderr

    Raises:
        AzureCLIError: On non-zero exit, timeout, or missing az binary
    """
    safe_cmd = sanitize_azure_command(cmd)
    logger.debug(f"Running: {safe_cmd}")

    try:
        return subprocess.run(cmd, capture_output=True, text=True, check=True, timeout=timeout)
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or "").strip()
        raise AzureCLIError(
            f"Command failed ({e.returncode}): {safe_cmd}: {stderr}",
            cmd=safe_cmd,
            returncode=e.returncode,
            stderr=stderr,
        ) from e
    except subprocess.TimeoutExpired as e:
        raise AzureCLIError(f"Command timed out after {timeout}s: {safe_cmd}", cmd=safe_cmd) from e
    except FileNotFoundError as e:
        raise AzureCLIError(
            f"Azure CLI executable not found: {cmd[0]}. Install it from https://aka.ms/azcli",
            cmd=safe_cmd,
        ) from e


class AzureCLIExecutor:
    """Run az verbs and return their textual output.

    One instance is shared by the provisioner, the lifecycle manager and the
    lifecycle controller. It holds no state besides its settings.
    """

    def __init__(self, az_path: str = "az", timeout: float | None = None) -> None:
        self.az_path = az_path
        self.timeout = timeout

    def run(self, args: list[str], *, timeout: float | None = None) -> str:
        """Run ``az <args>`` and return stdout.

        Args:
            args: Arguments after the az executable, e.g. ["vm", "start", "-n", "vm1"]
            timeout: Per-call override of the executor timeout

        Raises:
            AzureCLIError: If the command fails
        """
        result = run_az_command(
            [self.az_path, *args],
            timeout=timeout if timeout is not None else self.timeout,
        )
        return result.stdout


__all__ = ["AzureCLIError", "AzureCLIExecutor", "run_az_command"]
