"""
Vault Crypto Core — Key derivation, encryption/decryption, and text transport.

Implements device-bound encryption for stored secrets:
- Key: SHA-256(machine_id ++ salt) → 32-byte AES-256 key
- Envelope: [nonce 12B][encrypted_payload + GCM_tag 16B]
- Transport: standard padded base64 for embedding in JSON documents

Security Note:
    Never log plaintext or ciphertext values.
    Nonces are random 96-bit; collision probability negligible under normal usage.
"""
import os
import base64
import binascii
import logging

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..exceptions import (
    AuthenticationFailed,
    CryptoOperationFailed,
    DecodingInvalid,
    EncodingInvalid,
    MalformedEnvelope,
)

logger = logging.getLogger("device_vault.vault")

NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16  # 128-bit GCM tag
KEY_LENGTH = 32  # AES-256
SALT_SIZE = 16


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_key(machine_id: str, salt: bytes) -> bytes:
    """Derive a 32-byte encryption key from machine identity and salt.

    Args:
        machine_id: Trimmed machine identifier.
        salt: Installation salt, as read from the salt file.

    Returns:
        32-byte derived key.
    """
    digest = hashes.Hash(hashes.SHA256())
    digest.update(machine_id.encode("utf-8"))
    digest.update(salt)
    return digest.finalize()[:KEY_LENGTH]


# ---------------------------------------------------------------------------
# Authenticated encryption
# ---------------------------------------------------------------------------

def _cipher(key: bytes) -> AESGCM:
    try:
        return AESGCM(key)
    except (TypeError, ValueError) as err:
        raise CryptoOperationFailed(f"Invalid encryption key: {err}") from err


def encrypt(plaintext: str, key: bytes) -> bytes:
    """Encrypt a secret string.

    Format: [nonce 12B][encrypted_payload + GCM_tag 16B]

    Args:
        plaintext: Secret to encrypt.
        key: 32-byte derived key.

    Returns:
        Envelope bytes.

    Raises:
        CryptoOperationFailed: If the cipher library rejects the operation.
    """
    cipher = _cipher(key)
    nonce = os.urandom(NONCE_SIZE)
    try:
        ct = cipher.encrypt(nonce, plaintext.encode("utf-8"), None)
    except (UnicodeEncodeError, OverflowError, ValueError) as err:
        raise CryptoOperationFailed(f"Encryption failed: {type(err).__name__}") from err
    return nonce + ct


def decrypt(envelope: bytes, key: bytes) -> str:
    """Decrypt an envelope produced by ``encrypt``.

    Args:
        envelope: Bytes in format [nonce 12B][payload+tag].
        key: 32-byte derived key.

    Returns:
        Decrypted secret string.

    Raises:
        MalformedEnvelope: If the envelope is not longer than a nonce.
        AuthenticationFailed: If the tag does not verify.
        EncodingInvalid: If the plaintext is not valid UTF-8.
    """
    if len(envelope) <= NONCE_SIZE:
        raise MalformedEnvelope(
            f"envelope too short: {len(envelope)} bytes "
            f"(must exceed {NONCE_SIZE})"
        )
    cipher = _cipher(key)
    nonce = envelope[:NONCE_SIZE]
    ct = envelope[NONCE_SIZE:]
    try:
        plaintext = cipher.decrypt(nonce, ct, None)
    except InvalidTag as err:
        raise AuthenticationFailed(
            "Authentication failed: wrong key or corrupted data"
        ) from err
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as err:
        raise EncodingInvalid("Decrypted data is not valid UTF-8") from err


# ---------------------------------------------------------------------------
# Text transport
# ---------------------------------------------------------------------------

def to_text(envelope: bytes) -> str:
    """Encode an envelope as standard padded base64."""
    return base64.b64encode(envelope).decode("ascii")


def from_text(text: str) -> bytes:
    """Decode standard padded base64 back to envelope bytes.

    Raises:
        DecodingInvalid: On characters outside the alphabet or bad padding.
    """
    try:
        return base64.b64decode(text.encode("ascii"), validate=True)
    except (UnicodeEncodeError, binascii.Error) as err:
        raise DecodingInvalid(f"Invalid base64 text: {err}") from err
