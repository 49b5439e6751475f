"""
Vault Configuration — Data directory resolution and validated settings.

Reads optional overrides from environment variables:
    DEVICE_VAULT_APP_NAME = <directory name under the platform data root>
    DEVICE_VAULT_DATA_DIR = <explicit data directory>
    DEVICE_VAULT_IDENTITY_TIMEOUT = <seconds>

Security Note:
    The data directory holds the key salt. Never log salt or key bytes,
    only paths.
"""
import os
import platform
import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ..exceptions import StorageUnavailable

logger = logging.getLogger("device_vault.vault")

DEFAULT_APP_NAME = "DeviceVault"
DEFAULT_SALT_FILENAME = "key.salt"
DEFAULT_SETTINGS_FILENAME = "settings.json"
DEFAULT_IDENTITY_TIMEOUT = 5.0


def app_data_dir(app_name: str, system: Optional[str] = None) -> Path:
    """Return the per-user application data directory for this platform.

    Args:
        app_name: Directory name for the application.
        system: Platform name as reported by ``platform.system()``.
            Defaults to the running platform.

    Returns:
        Path to the (possibly not yet created) data directory.

    Raises:
        StorageUnavailable: If the user's home directory cannot be resolved.
    """
    system = system or platform.system()
    try:
        if system == "Darwin":
            base = Path.home() / "Library" / "Application Support"
        elif system == "Windows":
            appdata = os.environ.get("APPDATA")
            base = Path(appdata) if appdata else Path.home() / "AppData" / "Roaming"
        else:
            xdg_data = os.environ.get("XDG_DATA_HOME")
            base = Path(xdg_data) if xdg_data else Path.home() / ".local" / "share"
    except (RuntimeError, KeyError) as err:
        raise StorageUnavailable(
            f"Could not resolve application data directory: {err}"
        ) from err
    return base / app_name


class VaultConfig(BaseModel):
    """Validated device vault configuration."""

    app_name: str = Field(default=DEFAULT_APP_NAME, min_length=1)
    data_dir: Optional[Path] = None
    salt_filename: str = Field(default=DEFAULT_SALT_FILENAME)
    settings_filename: str = Field(default=DEFAULT_SETTINGS_FILENAME)
    identity_timeout: float = Field(default=DEFAULT_IDENTITY_TIMEOUT, gt=0, le=120)

    @field_validator("app_name", "salt_filename", "settings_filename")
    @classmethod
    def validate_plain_name(cls, v: str) -> str:
        """Reject empty names and names containing path separators."""
        if not v or v.strip() != v:
            raise ValueError("Name cannot be empty or padded with whitespace")
        if "/" in v or "\\" in v or v in (".", ".."):
            raise ValueError(f"Name must not contain path separators: {v!r}")
        return v

    def resolve_data_dir(self) -> Path:
        """Return the configured data directory or the platform default."""
        if self.data_dir is not None:
            return self.data_dir
        return app_data_dir(self.app_name)

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Returns:
            Populated VaultConfig instance.
        """
        values: dict = {}
        app_name = os.environ.get("DEVICE_VAULT_APP_NAME")
        if app_name:
            values["app_name"] = app_name
        data_dir = os.environ.get("DEVICE_VAULT_DATA_DIR")
        if data_dir:
            values["data_dir"] = Path(data_dir).expanduser()
        timeout = os.environ.get("DEVICE_VAULT_IDENTITY_TIMEOUT")
        if timeout:
            values["identity_timeout"] = float(timeout)
        config = cls(**values)
        logger.debug(
            "Vault config loaded: app_name=%s data_dir=%s",
            config.app_name, config.data_dir,
        )
        return config
