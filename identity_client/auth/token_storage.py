"""
Storage backends for persisted session state.

This module provides an in-memory store and a secure store that uses the
system keyring when available, falling back to an encrypted file.
"""

import os
import json
import asyncio
import logging
import tempfile
import threading
from typing import Optional, Dict
from pathlib import Path

import keyring
from keyring.errors import KeyringError, PasswordDeleteError
from cryptography.fernet import Fernet, InvalidToken

from identity_shared.exceptions import StorageError, ErrorCode
from identity_shared.interfaces import IAuthStorage

logger = logging.getLogger(__name__)


_STORAGE_FAILURES = (OSError, ValueError, InvalidToken, KeyringError)


class MemoryTokenStorage(IAuthStorage):
    """Process-local storage; nothing survives the process."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._data


class SecureTokenStorage(IAuthStorage):
    """
    Secure storage for session records.

    Uses the system keyring when available, falls back to a Fernet-encrypted
    JSON file. Blocking keyring and file access runs in a worker thread.
    """

    KEY_NAME = "encryption_key"

    def __init__(
        self,
        service_name: str = "identity-session",
        storage_path: Optional[Path] = None,
        use_keyring: Optional[bool] = None
    ):
        self.service_name = service_name
        if use_keyring is None:
            use_keyring = self._check_keyring_availability()
        self.keyring_available = use_keyring
        self.storage_path = Path(storage_path) if storage_path else self._get_storage_path()

        # Encryption key for file storage
        self._encryption_key: Optional[bytes] = None
        # Serializes read-modify-write of the file across worker threads
        self._file_lock = threading.RLock()

        logger.info(f"Token storage initialized (keyring: {self.keyring_available})")

    def _check_keyring_availability(self) -> bool:
        """Check if system keyring is available."""
        try:
            # Test keyring functionality
            test_key = f"{self.service_name}_test"
            keyring.set_password(self.service_name, test_key, "test")
            result = keyring.get_password(self.service_name, test_key)
            keyring.delete_password(self.service_name, test_key)
            return result == "test"
        except Exception as e:
            logger.debug(f"Keyring not available: {e}")
            return False

    def _get_storage_path(self) -> Path:
        """Get path for encrypted file storage."""
        # Use XDG config directory
        xdg_config = os.environ.get('XDG_CONFIG_HOME')
        if xdg_config:
            config_dir = Path(xdg_config) / 'identity-session'
        else:
            config_dir = Path.home() / '.config' / 'identity-session'

        return config_dir / 'session_store.enc'

    @property
    def key_path(self) -> Path:
        return self.storage_path.with_suffix('.key')

    def _get_encryption_key(self) -> bytes:
        """Get or create the encryption key for file storage."""
        with self._file_lock:
            if self._encryption_key:
                return self._encryption_key

            if self.key_path.exists():
                self._encryption_key = self.key_path.read_bytes().strip()
                return self._encryption_key

            key = Fernet.generate_key()
            self._write_atomic(self.key_path, key)

            self._encryption_key = key
            return key

    def _write_atomic(self, path: Path, data: bytes) -> None:
        """Write through a 0600 temp file in the same directory, then rename it into place."""
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(data)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, path)
        except OSError:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def _read_file(self) -> Dict[str, str]:
        if not self.storage_path.exists():
            return {}
        fernet = Fernet(self._get_encryption_key())
        decrypted = fernet.decrypt(self.storage_path.read_bytes()).decode()
        return json.loads(decrypted)

    def _write_file(self, records: Dict[str, str]) -> None:
        if not records:
            # Remove file if no records left
            if self.storage_path.exists():
                self.storage_path.unlink()
            return
        fernet = Fernet(self._get_encryption_key())
        self._write_atomic(self.storage_path, fernet.encrypt(json.dumps(records).encode()))

    def _set_sync(self, key: str, value: str) -> None:
        if self.keyring_available:
            keyring.set_password(self.service_name, key, value)
            return
        with self._file_lock:
            records = self._read_file()
            records[key] = value
            self._write_file(records)

    def _get_sync(self, key: str) -> Optional[str]:
        if self.keyring_available:
            return keyring.get_password(self.service_name, key)
        with self._file_lock:
            return self._read_file().get(key)

    def _remove_sync(self, key: str) -> None:
        if self.keyring_available:
            try:
                keyring.delete_password(self.service_name, key)
            except PasswordDeleteError:
                # nothing stored under this key
                pass
            return
        with self._file_lock:
            records = self._read_file()
            if records.pop(key, None) is not None:
                self._write_file(records)

    async def set(self, key: str, value: str) -> None:
        try:
            await asyncio.to_thread(self._set_sync, key, value)
        except _STORAGE_FAILURES as e:
            logger.error(f"Failed to store {key}: {e}")
            raise StorageError(f"Failed to store value: {e}", ErrorCode.STORAGE_WRITE_FAILED, key=key, cause=e)

    async def get(self, key: str) -> Optional[str]:
        try:
            return await asyncio.to_thread(self._get_sync, key)
        except _STORAGE_FAILURES as e:
            logger.error(f"Failed to read {key}: {e}")
            raise StorageError(f"Failed to read value: {e}", ErrorCode.STORAGE_READ_FAILED, key=key, cause=e)

    async def remove(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._remove_sync, key)
        except _STORAGE_FAILURES as e:
            logger.error(f"Failed to remove {key}: {e}")
            raise StorageError(f"Failed to remove value: {e}", ErrorCode.STORAGE_REMOVE_FAILED, key=key, cause=e)
