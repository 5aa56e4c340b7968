"""Pytest configuration and fixtures for azrdp tests.

CRITICAL: Protects real configuration and credentials from test modifications.
"""

import shutil
from pathlib import Path

import pytest

PROTECTED_FILES = ("config.toml", "vms.json")


@pytest.fixture(scope="session", autouse=True)
def protect_production_files():
    """Protect ~/.azrdp/config.toml and ~/.azrdp/vms.json from being modified by tests.

    This fixture:
    1. Backs up the real files before any tests run
    2. Restores them after all tests complete
    """
    azrdp_dir = Path.home() / ".azrdp"
    backups: list[tuple[Path, Path]] = []

    for name in PROTECTED_FILES:
        path = azrdp_dir / name
        backup_path = azrdp_dir / f".{name}.pytest-backup"
        if path.exists():
            shutil.copy2(path, backup_path)
            backups.append((path, backup_path))
            print(f"\n[PYTEST] Protected {name} - backup at {backup_path}")

    yield

    for path, backup_path in backups:
        if backup_path.exists():
            shutil.copy2(backup_path, path)
            backup_path.unlink()
            print(f"\n[PYTEST] Restored {path.name} from backup")
