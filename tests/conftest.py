"""Shared fixtures for device vault tests."""
import pytest

from device_vault.vault import DeviceVault, KeyStore, StaticIdentitySource


@pytest.fixture
def identity():
    """Fixed machine identity."""
    return StaticIdentitySource("fixed-id")


@pytest.fixture
def data_dir(tmp_path):
    """Application data directory that does not exist yet."""
    return tmp_path / "appdata"


@pytest.fixture
def keystore(data_dir, identity):
    """KeyStore on a fresh installation."""
    return KeyStore(data_dir, identity)


@pytest.fixture
def vault(keystore):
    """DeviceVault on a fresh installation."""
    return DeviceVault(keystore)
