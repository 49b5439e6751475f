"""
DeviceVault — Encrypt and decrypt secrets with the device-bound key.

Provides the public API used by the settings layer:
- ``encrypt_to_text(plaintext)`` — encrypt and base64-encode a secret
- ``decrypt_from_text(text)`` — decode and decrypt a stored secret
- ``encrypt(plaintext)`` / ``decrypt(envelope)`` — raw envelope variants
- ``from_config()`` — factory that resolves data directory and identity

Security Note:
    Never log plaintext or ciphertext values. Only log operation names.
    Anyone able to run code as the same user on the same machine can
    derive the key; the vault protects against copied files, not local
    attackers.
"""
import logging
from typing import Optional

from .config import VaultConfig
from .crypto import decrypt, encrypt, from_text, to_text
from .identity import IdentitySource
from .keystore import KeyStore

logger = logging.getLogger("device_vault.vault")


class DeviceVault:
    """Secret codec bound to this machine.

    Every call derives the key afresh from the KeyStore; nothing but the
    salt file is shared between calls.
    """

    def __init__(self, keystore: KeyStore):
        self._keystore = keystore

    def __repr__(self) -> str:
        return f"<DeviceVault keystore={self._keystore!r}>"

    @property
    def keystore(self) -> KeyStore:
        return self._keystore

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def encrypt(self, plaintext: str) -> bytes:
        """Encrypt a secret into an envelope.

        Raises:
            StorageUnavailable: If the salt cannot be loaded or created.
            IdentityUnavailable: If the machine identity cannot be resolved.
            CryptoOperationFailed: If the cipher rejects the operation.
        """
        key = await self._keystore.get_key()
        envelope = encrypt(plaintext, key)
        logger.debug("Vault encrypt: %d byte envelope", len(envelope))
        return envelope

    async def decrypt(self, envelope: bytes) -> str:
        """Decrypt an envelope into the original secret.

        Raises:
            MalformedEnvelope: If the envelope is too short.
            AuthenticationFailed: If the key is wrong or data was altered.
            EncodingInvalid: If the plaintext is not UTF-8.
            StorageUnavailable / IdentityUnavailable: As for ``encrypt``.
        """
        key = await self._keystore.get_key()
        plaintext = decrypt(envelope, key)
        logger.debug("Vault decrypt: %d byte envelope", len(envelope))
        return plaintext

    async def encrypt_to_text(self, plaintext: str) -> str:
        """Encrypt a secret and return it as base64 text."""
        envelope = await self.encrypt(plaintext)
        return to_text(envelope)

    async def decrypt_from_text(self, text: str) -> str:
        """Decode base64 text and decrypt it.

        Raises:
            DecodingInvalid: If ``text`` is not valid base64.
        """
        envelope = from_text(text)
        return await self.decrypt(envelope)

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @classmethod
    def from_config(
        cls,
        config: Optional[VaultConfig] = None,
        identity_source: Optional[IdentitySource] = None,
    ) -> "DeviceVault":
        """Build a vault for this process.

        Args:
            config: Vault configuration; read from the environment when omitted.
            identity_source: Identity strategy; picked for the running
                platform when omitted.

        Returns:
            DeviceVault bound to the resolved data directory.
        """
        if config is None:
            config = VaultConfig.from_env()
        keystore = KeyStore.from_config(config, identity_source=identity_source)
        logger.info("Device vault ready at %s", keystore.data_dir)
        return cls(keystore)
