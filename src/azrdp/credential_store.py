"""Local store of credentials issued to VMs.

The store is a JSON object mapping VM name to {"username", "password"},
read once at startup and rewritten in full on every mutation.

Consistency:
- One CredentialStore per process, passed to every consumer
- All writes go through a single lock, so overlapping deletions and
  creations inside one process never drop each other's updates
- Each write goes to a temp file that is renamed over the store, so
  readers never see a half-written file
- Separate processes sharing one file are still last-writer-wins

Security:
- Store file permissions: 0600 (owner read/write only)
"""

import json
import logging
import os
import threading
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class CredentialStoreError(Exception):
    """Raised when the credential store cannot be persisted."""

    pass


@dataclass
class VMRecord:
    """Credentials issued to a VM at creation time."""

    username: str
    password: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VMRecord":
        return cls(username=str(data.get("username", "")), password=str(data.get("password", "")))


class CredentialStore:
    """Persisted mapping of VM name to VMRecord."""

    DEFAULT_PATH = Path.home() / ".azrdp" / "vms.json"

    def __init__(self, path: Path | str | None = None) -> None:
        self.path = Path(path).expanduser() if path else self.DEFAULT_PATH
        self._records: dict[str, VMRecord] = {}
        self._lock = threading.Lock()

    def load(self) -> None:
        """Read the store file, degrading to an empty store on any problem.

        A missing, empty or unparseable file is replaced with ``{}``.
        """
        records = self._read_file()

        with self._lock:
            if records is None:
                self._records = {}
                self._write_locked()
            else:
                self._records = records

        logger.debug(f"Loaded {len(self._records)} credential records from {self.path}")

    def _read_file(self) -> dict[str, VMRecord] | None:
        if not self.path.exists():
            logger.debug(f"Credential store not found, creating {self.path}")
            return None

        try:
            content = self.path.read_text(encoding="utf-8")
        except OSError as e:
            logger.warning(f"Could not read credential store {self.path}: {e}")
            return None

        if not content.strip():
            return None

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            logger.warning(f"Error parsing {self.path} ({e}), starting with an empty store")
            return None

        if not isinstance(data, dict):
            logger.warning(f"Credential store {self.path} is not a JSON object, starting empty")
            return None

        return {
            str(name): VMRecord.from_dict(info)
            for name, info in data.items()
            if isinstance(info, dict)
        }

    def save(self, name: str, record: VMRecord) -> None:
        """Insert or overwrite the record for name and persist the store."""
        with self._lock:
            self._records[name] = record
            self._write_locked()
        logger.debug(f"Saved credentials for {name}")

    def get(self, name: str) -> VMRecord | None:
        with self._lock:
            return self._records.get(name)

    def list(self) -> list[tuple[str, str]]:
        """Return (name, username) pairs in insertion order."""
        with self._lock:
            items = list(self._records.items())
        return [(name, record.username) for name, record in items]

    def format_listing(self) -> str:
        """Render the store as ``name - username`` lines (empty string if empty)."""
        return "\n".join(f"{name} - {username}" for name, username in self.list())

    def remove(self, name: str) -> bool:
        """Remove the record for name.

        Removing an absent name is a no-op.

        Returns:
            True if a record was removed
        """
        with self._lock:
            if name not in self._records:
                return False
            del self._records[name]
            self._write_locked()
        logger.debug(f"Removed credentials for {name}")
        return True

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._records

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def _write_locked(self) -> None:
        """Serialize the whole mapping and atomically replace the store file.

        Caller must hold self._lock.
        """
        data = {name: record.to_dict() for name, record in self._records.items()}
        temp_path = self.path.with_suffix(self.path.suffix + ".tmp")

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.chmod(temp_path, 0o600)
            temp_path.replace(self.path)
        except OSError as e:
            if temp_path.exists():
                temp_path.unlink()
            raise CredentialStoreError(f"Failed to write credential store {self.path}: {e}") from e


__all__ = ["CredentialStore", "CredentialStoreError", "VMRecord"]
