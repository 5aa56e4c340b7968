"""Configuration management module.

Persistent configuration is stored in TOML at ~/.azrdp/config.toml and can
be overridden by AZRDP_* environment variables and then by CLI options.

Precedence: CLI value > environment > config file > defaults.

Security:
- Config file permissions: 0600 (owner read/write only)
- Atomic writes via temp file + rename
"""

import logging
import os
import tomllib
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

import tomlkit

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration operations fail."""

    pass


@dataclass
class AzrdpConfig:
    """azrdp configuration data."""

    resource_group: str | None = None
    location: str = "eastus"
    admin_username: str = "azureuser"
    vm_image: str = "Win2022Datacenter"
    vm_size: str = "Standard_B2s"
    custom_data: str | None = None  # e.g. init.ps1, passed as --custom-data
    credentials_path: str = "~/.azrdp/vms.json"
    owner_id: int | None = None  # chat user allowed to run privileged commands
    poll_interval: float = 5.0
    poll_max_attempts: int = 24

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, excluding None values."""
        data = asdict(self)
        # TOML has no null
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AzrdpConfig":
        """Create from dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {', '.join(sorted(unknown))}")

        config = cls(**{k: v for k, v in data.items() if k in known})
        config.validate()
        return config

    def validate(self) -> None:
        """Check value types and ranges.

        Raises:
            ConfigError: If a value is invalid
        """
        if self.owner_id is not None and not isinstance(self.owner_id, int):
            raise ConfigError(f"owner_id must be an integer, got {self.owner_id!r}")
        if not isinstance(self.poll_interval, (int, float)) or self.poll_interval < 0:
            raise ConfigError(f"poll_interval must be a non-negative number: {self.poll_interval!r}")
        if not isinstance(self.poll_max_attempts, int) or self.poll_max_attempts < 1:
            raise ConfigError(f"poll_max_attempts must be a positive integer: {self.poll_max_attempts!r}")

    @classmethod
    def parse_value(cls, key: str, raw: str) -> Any:
        """Convert a string (from the CLI) to the type of config field key.

        Raises:
            ConfigError: On unknown keys or unconvertible values
        """
        defaults = cls()
        if not hasattr(defaults, key):
            raise ConfigError(f"Unknown config key: {key}")

        if key == "owner_id":
            convert: Any = int
        elif key == "poll_interval":
            convert = float
        elif key == "poll_max_attempts":
            convert = int
        else:
            convert = str

        try:
            return convert(raw)
        except ValueError as e:
            raise ConfigError(f"Invalid value for {key}: {raw!r}") from e

    @property
    def credentials_file(self) -> Path:
        return Path(self.credentials_path).expanduser()


class ConfigManager:
    """Manage the azrdp configuration file."""

    DEFAULT_CONFIG_DIR = Path.home() / ".azrdp"
    DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.toml"

    # env var -> (config key, converter)
    ENV_OVERRIDES: dict[str, tuple[str, Any]] = {
        "AZRDP_RESOURCE_GROUP": ("resource_group", str),
        "AZRDP_LOCATION": ("location", str),
        "AZRDP_ADMIN_USERNAME": ("admin_username", str),
        "AZRDP_CREDENTIALS_PATH": ("credentials_path", str),
        "AZRDP_OWNER_ID": ("owner_id", int),
    }

    @classmethod
    def get_config_path(cls, custom_path: str | None = None) -> Path:
        """Get configuration file path.

        Raises:
            ConfigError: If an explicit custom path does not exist
        """
        if custom_path:
            path = Path(custom_path).expanduser().resolve()
            if not path.exists():
                raise ConfigError(f"Config file not found: {path}")
            return path

        return cls.DEFAULT_CONFIG_FILE

    @classmethod
    def load_config(cls, custom_path: str | None = None) -> AzrdpConfig:
        """Load configuration from file and environment.

        Raises:
            ConfigError: If the file cannot be parsed or holds invalid values
        """
        config_path = cls.get_config_path(custom_path)
        data: dict[str, Any] = {}

        if config_path.exists():
            mode = config_path.stat().st_mode & 0o777
            if mode & 0o077:
                logger.warning(f"Config file has insecure permissions: {oct(mode)}. Fixing to 0600...")
                os.chmod(config_path, 0o600)

            try:
                with open(config_path, "rb") as f:
                    data = tomllib.load(f)
            except (OSError, tomllib.TOMLDecodeError) as e:
                raise ConfigError(f"Failed to load config: {e}") from e

            logger.debug(f"Loaded config from: {config_path}")
        else:
            logger.debug("Config file not found, using defaults")

        data.update(cls._env_overrides())
        return AzrdpConfig.from_dict(data)

    @classmethod
    def _env_overrides(cls) -> dict[str, Any]:
        overrides: dict[str, Any] = {}
        for env_var, (key, convert) in cls.ENV_OVERRIDES.items():
            value = os.environ.get(env_var)
            if not value:
                continue
            try:
                overrides[key] = convert(value)
            except ValueError as e:
                raise ConfigError(f"Invalid value for {env_var}: {value!r}") from e
        return overrides

    @classmethod
    def save_config(cls, config: AzrdpConfig, custom_path: str | None = None) -> Path:
        """Save configuration to file, preserving comments in an existing file.

        Returns:
            Path written

        Raises:
            ConfigError: If saving fails
        """
        config_path = Path(custom_path).expanduser().resolve() if custom_path else cls.DEFAULT_CONFIG_FILE
        temp_path = config_path.with_suffix(".tmp")

        try:
            config_path.parent.mkdir(parents=True, exist_ok=True)

            if config_path.exists():
                with open(config_path) as f:
                    doc = tomlkit.load(f)
            else:
                doc = tomlkit.document()

            for key, value in config.to_dict().items():
                doc[key] = value

            with open(temp_path, "w") as f:
                tomlkit.dump(doc, f)

            os.chmod(temp_path, 0o600)
            temp_path.replace(config_path)

            logger.debug(f"Saved config to: {config_path}")
            return config_path

        except Exception as e:
            if temp_path.exists():
                temp_path.unlink()
            raise ConfigError(f"Failed to save config: {e}") from e

    @classmethod
    def update_config(cls, custom_path: str | None = None, **updates: Any) -> AzrdpConfig:
        """Update configuration values and save.

        Raises:
            ConfigError: On unknown keys or invalid values
        """
        config_path = cls.get_config_path(custom_path)
        data: dict[str, Any] = {}
        if config_path.exists():
            try:
                with open(config_path, "rb") as f:
                    data = tomllib.load(f)
            except (OSError, tomllib.TOMLDecodeError) as e:
                raise ConfigError(f"Failed to load config: {e}") from e

        config = AzrdpConfig.from_dict(data)
        for key, value in updates.items():
            if not hasattr(config, key):
                raise ConfigError(f"Unknown config key: {key}")
            setattr(config, key, value)
        config.validate()

        cls.save_config(config, str(config_path) if custom_path else None)
        return config

    @classmethod
    def get_resource_group(cls, cli_value: str | None, config: AzrdpConfig) -> str:
        """Resolve the resource group with CLI override.

        Raises:
            ConfigError: If no resource group is configured anywhere
        """
        resource_group = cli_value or config.resource_group
        if not resource_group:
            raise ConfigError(
                "No resource group configured. Use --resource-group, "
                "AZRDP_RESOURCE_GROUP, or set resource_group in ~/.azrdp/config.toml"
            )
        return resource_group


__all__ = ["AzrdpConfig", "ConfigError", "ConfigManager"]
