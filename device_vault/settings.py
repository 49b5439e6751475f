"""
Application Settings — Chat defaults and API provider credentials on disk.

The document is JSON with camelCase keys. Provider ``apiKey`` values are
stored encrypted (base64 envelopes from DeviceVault) and decrypted on load.

Security Note:
    Never log API keys, encrypted or not. Only provider display names.
"""
import os
import asyncio
import secrets
import logging
from pathlib import Path
from typing import Optional

import orjson
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from .exceptions import SettingsError, VaultError
from .vault import DeviceVault, VaultConfig

logger = logging.getLogger("device_vault.settings")


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChatSettings(_CamelModel):
    """Default parameters for new chats."""

    model: str = "gpt-4o-mini"
    temperature: float = 0.7
    system_prompt: Optional[str] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None


class ApiProviderConfig(_CamelModel):
    """A configured API provider and its credential."""

    id: str
    provider_id: str
    name: str
    api_key: str = Field(default="", repr=False)
    base_url: Optional[str] = None


class AppSettings(_CamelModel):
    """Top-level settings document."""

    default_chat_settings: ChatSettings = Field(default_factory=ChatSettings)
    api_providers: list[ApiProviderConfig] = Field(default_factory=list)
    send_with_enter: bool = True

    def to_json(self) -> bytes:
        """Serialize to the on-disk JSON layout (camelCase, unset fields omitted)."""
        data = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        return orjson.dumps(data, option=orjson.OPT_INDENT_2)

    @classmethod
    def from_json(cls, raw: bytes) -> "AppSettings":
        """Parse the on-disk JSON layout.

        Raises:
            SettingsError: If the document is not valid JSON or fails validation.
        """
        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError as err:
            raise SettingsError(f"Settings file is not valid JSON: {err}") from err
        if not isinstance(data, dict):
            raise SettingsError("Settings document root is not an object")
        try:
            return cls.model_validate(data)
        except ValidationError as err:
            raise SettingsError(
                f"Settings document is invalid ({err.error_count()} error(s))"
            ) from err


class SettingsStore:
    """Loads and saves AppSettings, encrypting provider keys via DeviceVault.

    A provider key that cannot be decrypted is replaced by an empty string
    so the rest of the document still loads. Any encryption failure aborts
    the save; nothing is written.
    """

    def __init__(self, vault: DeviceVault, path: Path):
        self._vault = vault
        self._path = Path(path)

    def __repr__(self) -> str:
        return f"<SettingsStore path={self._path}>"

    @property
    def path(self) -> Path:
        return self._path

    @classmethod
    def from_config(
        cls,
        vault: DeviceVault,
        config: Optional[VaultConfig] = None,
    ) -> "SettingsStore":
        """Place the settings file next to the key salt."""
        if config is None:
            config = VaultConfig.from_env()
        return cls(vault, config.resolve_data_dir() / config.settings_filename)

    def _read(self) -> Optional[bytes]:
        try:
            return self._path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as err:
            raise SettingsError(f"Failed to read settings file {self._path}: {err}") from err

    def _write(self, payload: bytes) -> None:
        tmp = self._path.with_name(
            f".{self._path.name}.{os.getpid()}.{secrets.token_hex(4)}.tmp"
        )
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(payload)
            os.replace(tmp, self._path)
        except OSError as err:
            raise SettingsError(f"Failed to write settings file {self._path}: {err}") from err
        finally:
            try:
                tmp.unlink()
            except FileNotFoundError:
                pass
            except OSError as err:
                logger.warning("Cannot remove temporary settings file %s: %s", tmp, err)

    async def load(self) -> AppSettings:
        """Read settings and decrypt provider keys.

        Returns:
            Stored settings, or defaults if the file is missing or blank.

        Raises:
            SettingsError: If the file cannot be read or parsed.
        """
        raw = await asyncio.to_thread(self._read)
        if raw is None:
            logger.info("Settings file %s not found, using defaults", self._path)
            return AppSettings()
        if not raw.strip():
            logger.info("Settings file %s is empty, using defaults", self._path)
            return AppSettings()

        settings = AppSettings.from_json(raw)
        for provider in settings.api_providers:
            if not provider.api_key:
                continue
            try:
                provider.api_key = await self._vault.decrypt_from_text(provider.api_key)
            except VaultError as err:
                logger.warning(
                    "Failed to decrypt API key for '%s': %s", provider.name, err,
                )
                provider.api_key = ""
        logger.debug(
            "Settings loaded from %s: %d provider(s)",
            self._path, len(settings.api_providers),
        )
        return settings

    async def save(self, settings: AppSettings) -> None:
        """Encrypt provider keys and write settings atomically.

        The caller's object is left untouched.

        Raises:
            SettingsError: If a key cannot be encrypted or the file cannot
                be written.
        """
        to_save = settings.model_copy(deep=True)
        for provider in to_save.api_providers:
            if not provider.api_key:
                continue
            try:
                provider.api_key = await self._vault.encrypt_to_text(provider.api_key)
            except VaultError as err:
                raise SettingsError(
                    f"Failed to encrypt API key for '{provider.name}': {err}"
                ) from err

        await asyncio.to_thread(self._write, to_save.to_json())
        logger.info("Settings saved to %s", self._path)
