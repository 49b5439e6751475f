"""Device Vault exceptions.

Security Note:
    Exception messages must never carry plaintext, ciphertext or key
    material. Callers may log them as-is.
"""


class VaultError(Exception):
    """Base class for device vault failures."""


class IdentityUnavailable(VaultError):
    """The machine identity could not be determined."""


class StorageUnavailable(VaultError):
    """The application data directory or salt file is not usable."""


class MalformedEnvelope(VaultError, ValueError):
    """Envelope is too short to contain a nonce and ciphertext."""


class DecodingInvalid(VaultError, ValueError):
    """Text is not valid base64."""


class AuthenticationFailed(VaultError):
    """Authentication tag did not verify (wrong key or tampered data)."""


class EncodingInvalid(VaultError, ValueError):
    """Decrypted bytes are not valid UTF-8 text."""


class CryptoOperationFailed(VaultError):
    """The underlying cipher library reported an error."""


class SettingsError(Exception):
    """The settings document could not be loaded or saved."""
