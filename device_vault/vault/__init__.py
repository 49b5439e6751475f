"""Device Vault — Secrets encrypted with a key bound to this machine.

Security Note (Threat Model):
    The key is SHA-256(machine identity ++ installation salt). Copying the
    settings file, or even the salt file, to another machine yields a
    different key and the secrets cannot be opened there. Anyone who can
    run code as the same user on the same machine can derive the key;
    this is an accepted limitation.
"""

from .device_vault import DeviceVault
from .keystore import KeyStore
from .config import VaultConfig, app_data_dir
from .identity import (
    IdentitySource,
    StaticIdentitySource,
    MachineIdFileSource,
    IORegIdentitySource,
    WmicIdentitySource,
    select_identity_source,
)

__all__ = [
    "DeviceVault",
    "KeyStore",
    "VaultConfig",
    "app_data_dir",
    "IdentitySource",
    "StaticIdentitySource",
    "MachineIdFileSource",
    "IORegIdentitySource",
    "WmicIdentitySource",
    "select_identity_source",
]
