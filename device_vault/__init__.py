"""Device Vault.

Application settings with provider credentials encrypted at rest.
"""
from .version import __version__
from .exceptions import (
    VaultError,
    IdentityUnavailable,
    StorageUnavailable,
    MalformedEnvelope,
    DecodingInvalid,
    AuthenticationFailed,
    EncodingInvalid,
    CryptoOperationFailed,
    SettingsError,
)
from .vault import DeviceVault, KeyStore, VaultConfig
from .settings import (
    AppSettings,
    ApiProviderConfig,
    ChatSettings,
    SettingsStore,
)

__all__ = [
    "__version__",
    "VaultError",
    "IdentityUnavailable",
    "StorageUnavailable",
    "MalformedEnvelope",
    "DecodingInvalid",
    "AuthenticationFailed",
    "EncodingInvalid",
    "CryptoOperationFailed",
    "SettingsError",
    "DeviceVault",
    "KeyStore",
    "VaultConfig",
    "AppSettings",
    "ApiProviderConfig",
    "ChatSettings",
    "SettingsStore",
]
