"""
Shared test fixtures for azrdp tests.

This module provides common fixtures used across all test types:
- A fake Azure CLI gateway that records calls
- Temporary credential store and config directories
- subprocess.run fakes for CLI-level tests
"""

import subprocess
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from azrdp.azure_cli_executor import AzureCLIError
from azrdp.credential_store import CredentialStore

# ============================================================================
# AZURE CLI FAKES
# ============================================================================


class FakeAzureCLI:
    """Stand-in for AzureCLIExecutor.

    Responses are registered per argument prefix; the longest matching prefix
    wins. A response may be a string, an exception, a callable taking the
    argument list, or a list of those consumed one per call (the last entry
    repeats).
    """

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self._handlers: list[tuple[tuple[str, ...], Any]] = []

    def on(self, *prefix: str, returns: Any = "") -> "FakeAzureCLI":
        if isinstance(returns, list):
            returns = list(returns)
        self._handlers.append((prefix, returns))
        return self

    def fail(self, *prefix: str, message: str = "ResourceNotFound") -> "FakeAzureCLI":
        return self.on(*prefix, returns=AzureCLIError(message, returncode=3, stderr=message))

    def run(self, args: list[str], *, timeout: float | None = None) -> str:
        self.calls.append(list(args))

        best: tuple[tuple[str, ...], Any] | None = None
        for prefix, response in self._handlers:
            if tuple(args[: len(prefix)]) == prefix and (best is None or len(prefix) >= len(best[0])):
                best = (prefix, response)

        if best is None:
            return ""

        response = best[1]
        if isinstance(response, list):
            response = response.pop(0) if len(response) > 1 else response[0]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(args)
        return response

    def calls_starting(self, *prefix: str) -> list[list[str]]:
        return [call for call in self.calls if tuple(call[: len(prefix)]) == prefix]


@pytest.fixture
def fake_az() -> FakeAzureCLI:
    """Fake Azure CLI gateway with no registered responses."""
    return FakeAzureCLI()


@pytest.fixture
def az_subprocess(monkeypatch) -> Callable[..., Any]:
    """Patch subprocess.run inside azrdp.azure_cli_executor.

    Returns a registration function: ``az_subprocess(("vm", "show"), stdout="...")``
    or ``az_subprocess(("vm", "show"), returncode=3, stderr="ResourceNotFound")``.
    Unregistered commands succeed with empty output. Recorded commands are
    available as ``az_subprocess.calls``.
    """
    responses: list[tuple[tuple[str, ...], int, str, str]] = []
    calls: list[list[str]] = []

    def fake_run(cmd, **kwargs):
        calls.append(list(cmd))
        args = tuple(cmd[1:])
        match = None
        for prefix, returncode, stdout, stderr in responses:
            if args[: len(prefix)] == prefix and (match is None or len(prefix) >= len(match[0])):
                match = (prefix, returncode, stdout, stderr)

        returncode, stdout, stderr = (0, "", "") if match is None else match[1:]
        if returncode != 0:
            raise subprocess.CalledProcessError(returncode, cmd, output=stdout, stderr=stderr)
        return subprocess.CompletedProcess(args=cmd, returncode=0, stdout=stdout, stderr=stderr)

    def register(prefix: tuple[str, ...], stdout: str = "", returncode: int = 0, stderr: str = "") -> None:
        responses.append((prefix, returncode, stdout, stderr))

    register.calls = calls  # type: ignore[attr-defined]
    monkeypatch.setattr("azrdp.azure_cli_executor.subprocess.run", fake_run)
    return register


# ============================================================================
# DIRECTORY FIXTURES
# ============================================================================


@pytest.fixture
def temp_config_dir(tmp_path) -> Path:
    """Temporary .azrdp directory for config and credential files."""
    config_dir = tmp_path / ".azrdp"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def store(tmp_path) -> CredentialStore:
    """Loaded, empty credential store in tmp_path."""
    credential_store = CredentialStore(tmp_path / "data" / "vms.json")
    credential_store.load()
    return credential_store


@pytest.fixture(autouse=True)
def clear_azrdp_env(monkeypatch):
    """Keep AZRDP_* variables from the developer's shell out of tests."""
    for var in (
        "AZRDP_RESOURCE_GROUP",
        "AZRDP_LOCATION",
        "AZRDP_ADMIN_USERNAME",
        "AZRDP_CREDENTIALS_PATH",
        "AZRDP_OWNER_ID",
    ):
        monkeypatch.delenv(var, raising=False)
