"""
KeyStore — Device-bound key derivation backed by a persisted salt.

The salt file is the only persistent state: its presence marks an
installation whose key is established. Deleting it makes every secret
encrypted so far undecryptable.

Security Note:
    The derived key is recomputed on each call and never cached, logged
    or written to disk.
"""
import os
import asyncio
import secrets
import logging
import threading
from pathlib import Path
from typing import Optional

from ..exceptions import StorageUnavailable
from .config import VaultConfig, DEFAULT_SALT_FILENAME
from .crypto import SALT_SIZE, derive_key
from .identity import IdentitySource, select_identity_source

logger = logging.getLogger("device_vault.vault")


class KeyStore:
    """Derives the device key from machine identity and an installation salt.

    Salt creation is at-most-once: a ``threading.Lock`` held in the worker
    thread serializes first use within the process, whichever event loop
    the caller runs on. The salt is published with ``os.link`` so a
    concurrent process either wins or reuses the winner's salt.
    """

    def __init__(
        self,
        data_dir: Path,
        identity_source: IdentitySource,
        salt_filename: str = DEFAULT_SALT_FILENAME,
    ):
        self._data_dir = Path(data_dir)
        self._identity = identity_source
        self._salt_path = self._data_dir / salt_filename
        self._salt_lock = threading.Lock()

    def __repr__(self) -> str:
        return f"<KeyStore data_dir={self._data_dir} identity={self._identity.name}>"

    @classmethod
    def from_config(
        cls,
        config: VaultConfig,
        identity_source: Optional[IdentitySource] = None,
    ) -> "KeyStore":
        """Build a KeyStore for the configured data directory.

        Args:
            config: Vault configuration.
            identity_source: Identity strategy; picked for the running
                platform when omitted.

        Raises:
            StorageUnavailable: If the data directory cannot be resolved.
        """
        if identity_source is None:
            identity_source = select_identity_source(
                timeout=config.identity_timeout,
            )
        return cls(
            config.resolve_data_dir(),
            identity_source,
            salt_filename=config.salt_filename,
        )

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    @property
    def salt_path(self) -> Path:
        return self._salt_path

    @property
    def identity_source(self) -> IdentitySource:
        return self._identity

    @property
    def has_salt(self) -> bool:
        """Check if the installation salt has been established."""
        return self._salt_path.exists()

    # ------------------------------------------------------------------
    # Salt handling (blocking, run in a worker thread)
    # ------------------------------------------------------------------

    def _ensure_data_dir(self) -> None:
        try:
            self._data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as err:
            raise StorageUnavailable(
                f"Cannot create data directory {self._data_dir}: {err}"
            ) from err

    def _read_salt(self) -> Optional[bytes]:
        try:
            salt = self._salt_path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as err:
            raise StorageUnavailable(
                f"Cannot read salt file {self._salt_path}: {err}"
            ) from err
        if len(salt) != SALT_SIZE:
            logger.warning(
                "Salt file %s has %d bytes (expected %d); "
                "existing secrets may not decrypt",
                self._salt_path, len(salt), SALT_SIZE,
            )
        return salt

    def _reuse_existing_salt(self) -> bytes:
        existing = self._read_salt()
        if existing is None:
            raise StorageUnavailable(
                f"Salt file {self._salt_path} vanished during creation"
            )
        logger.info(
            "Salt file %s was created concurrently; reusing it",
            self._salt_path,
        )
        return existing

    def _write_salt_exclusive(self, salt: bytes) -> Optional[bytes]:
        """Create the salt file in place with O_EXCL.

        Used where the filesystem has no hard links. Returns the winner's
        salt if the file already exists, None if ours was written.
        """
        try:
            fd = os.open(
                self._salt_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600,
            )
        except FileExistsError:
            return self._reuse_existing_salt()
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(salt)
                fh.flush()
                os.fsync(fh.fileno())
        except OSError:
            # never leave a truncated salt behind
            self._salt_path.unlink(missing_ok=True)
            raise
        return None

    def _create_salt(self) -> bytes:
        """Write a fresh salt to a temp file, then publish it with os.link.

        os.link fails if the salt already exists, so a concurrent writer
        never overwrites it, and readers never see a partially written file.
        Filesystems without hard links fall back to an exclusive create.
        """
        salt = secrets.token_bytes(SALT_SIZE)
        tmp_path = self._data_dir / (
            f".{self._salt_path.name}.{os.getpid()}.{secrets.token_hex(4)}.tmp"
        )
        try:
            fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            with os.fdopen(fd, "wb") as fh:
                fh.write(salt)
                fh.flush()
                os.fsync(fh.fileno())
            try:
                os.link(tmp_path, self._salt_path)
            except FileExistsError:
                return self._reuse_existing_salt()
            except OSError as err:
                logger.info(
                    "Hard links unavailable in %s (%s); creating salt in place",
                    self._data_dir, err,
                )
                existing = self._write_salt_exclusive(salt)
                if existing is not None:
                    return existing
        except OSError as err:
            raise StorageUnavailable(
                f"Cannot write salt file {self._salt_path}: {err}"
            ) from err
        finally:
            try:
                tmp_path.unlink()
            except FileNotFoundError:
                pass
            except OSError as err:
                logger.warning("Cannot remove temporary salt file %s: %s", tmp_path, err)
        logger.info("Created new key salt at %s", self._salt_path)
        return salt

    def _load_or_create_salt(self) -> bytes:
        with self._salt_lock:
            self._ensure_data_dir()
            salt = self._read_salt()
            if salt is not None:
                return salt
            return self._create_salt()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_salt(self) -> bytes:
        """Return the installation salt, creating it on first use.

        Raises:
            StorageUnavailable: If the directory or salt file is unusable.
        """
        return await asyncio.to_thread(self._load_or_create_salt)

    async def get_key(self) -> bytes:
        """Derive the device key.

        Returns:
            32-byte key, identical across calls while the salt file and
            machine identity are unchanged.

        Raises:
            StorageUnavailable: If the directory or salt file is unusable.
            IdentityUnavailable: If the machine identity cannot be resolved.
        """
        salt = await self.get_salt()
        machine_id = await self._identity.resolve()
        return derive_key(machine_id, salt)
