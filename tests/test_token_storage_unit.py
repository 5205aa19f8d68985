#!/usr/bin/env python3
"""
Unit tests for the bundled storage backends.
"""

import asyncio
import pytest
from unittest.mock import patch
from keyring.errors import PasswordDeleteError, KeyringError

from identity_client.auth.token_storage import MemoryTokenStorage, SecureTokenStorage
from identity_shared.exceptions import StorageError, ErrorCode


class TestMemoryTokenStorage:
    """Test MemoryTokenStorage."""

    @pytest.mark.asyncio
    async def test_set_get_remove(self):
        storage = MemoryTokenStorage()

        assert await storage.get("k") is None
        await storage.set("k", "v")
        assert await storage.get("k") == "v"
        await storage.remove("k")
        assert await storage.get("k") is None

    @pytest.mark.asyncio
    async def test_remove_missing_key(self):
        storage = MemoryTokenStorage({"a": "1"})

        await storage.remove("missing")

        assert "a" in storage


class TestSecureTokenStorageFile:
    """Test SecureTokenStorage with the encrypted file fallback."""

    @pytest.fixture
    def storage(self, tmp_path):
        return SecureTokenStorage(storage_path=tmp_path / "store.enc", use_keyring=False)

    @pytest.mark.asyncio
    async def test_round_trip_is_encrypted(self, storage):
        await storage.set("auth:user::key", '{"localId": "u1"}')

        assert await storage.get("auth:user::key") == '{"localId": "u1"}'
        assert b"u1" not in storage.storage_path.read_bytes()
        assert storage.storage_path.stat().st_mode & 0o777 == 0o600
        assert storage.key_path.stat().st_mode & 0o777 == 0o600

    @pytest.mark.asyncio
    async def test_records_survive_new_instance(self, storage, tmp_path):
        await storage.set("k", "v")

        reopened = SecureTokenStorage(storage_path=tmp_path / "store.enc", use_keyring=False)

        assert await reopened.get("k") == "v"

    @pytest.mark.asyncio
    async def test_removing_last_record_deletes_file(self, storage):
        await storage.set("a", "1")
        await storage.set("b", "2")

        await storage.remove("a")
        assert storage.storage_path.exists()
        assert await storage.get("b") == "2"

        await storage.remove("b")
        assert not storage.storage_path.exists()

    @pytest.mark.asyncio
    async def test_missing_file_reads_as_empty(self, storage):
        assert await storage.get("k") is None
        await storage.remove("k")

    @pytest.mark.asyncio
    async def test_concurrent_writes_keep_every_record(self, storage):
        for round_number in range(5):
            keys = [f"k{round_number}_{i}" for i in range(8)]

            await asyncio.gather(*(storage.set(key, "v") for key in keys))

            values = await asyncio.gather(*(storage.get(key) for key in keys))
            assert values == ["v"] * len(keys)

    @pytest.mark.asyncio
    async def test_concurrent_set_and_remove(self, storage):
        await storage.set("auth:user:t1:key", "identity")

        await asyncio.gather(
            storage.set("auth:email:t1:key", "a@b.com"),
            storage.remove("auth:user:t1:key"),
            storage.set("other", "x"),
        )

        assert await storage.get("auth:email:t1:key") == "a@b.com"
        assert await storage.get("auth:user:t1:key") is None
        assert await storage.get("other") == "x"
        assert [p.name for p in storage.storage_path.parent.iterdir() if p.suffix == ".tmp"] == []

    @pytest.mark.asyncio
    async def test_corrupt_file_raises_storage_error(self, storage):
        await storage.set("k", "v")
        storage.storage_path.write_bytes(b"garbage")

        with pytest.raises(StorageError) as exc_info:
            await storage.get("k")

        assert exc_info.value.error_code == ErrorCode.STORAGE_READ_FAILED
        assert exc_info.value.context['key'] == "k"

    @pytest.mark.asyncio
    async def test_unwritable_location_raises_storage_error(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        storage = SecureTokenStorage(storage_path=blocker / "store.enc", use_keyring=False)

        with pytest.raises(StorageError) as exc_info:
            await storage.set("k", "v")

        assert exc_info.value.error_code == ErrorCode.STORAGE_WRITE_FAILED


class TestSecureTokenStorageKeyring:
    """Test SecureTokenStorage backed by the system keyring."""

    @pytest.fixture
    def keyring_mock(self):
        with patch('identity_client.auth.token_storage.keyring') as mock_keyring:
            yield mock_keyring

    @pytest.fixture
    def storage(self, keyring_mock, tmp_path):
        return SecureTokenStorage(service_name="svc", storage_path=tmp_path / "store.enc", use_keyring=True)

    @pytest.mark.asyncio
    async def test_set_and_get_use_keyring(self, storage, keyring_mock):
        keyring_mock.get_password.return_value = "v"

        await storage.set("k", "v")
        value = await storage.get("k")

        keyring_mock.set_password.assert_called_once_with("svc", "k", "v")
        keyring_mock.get_password.assert_called_once_with("svc", "k")
        assert value == "v"
        assert not storage.storage_path.exists()

    @pytest.mark.asyncio
    async def test_remove_missing_entry_is_ignored(self, storage, keyring_mock):
        keyring_mock.delete_password.side_effect = PasswordDeleteError("not found")

        await storage.remove("k")

        keyring_mock.delete_password.assert_called_once_with("svc", "k")

    @pytest.mark.asyncio
    async def test_keyring_failure_raises_storage_error(self, storage, keyring_mock):
        keyring_mock.set_password.side_effect = KeyringError("locked")

        with pytest.raises(StorageError) as exc_info:
            await storage.set("k", "v")

        assert exc_info.value.error_code == ErrorCode.STORAGE_WRITE_FAILED
        assert exc_info.value.context['cause_type'] == "KeyringError"

    def test_keyring_availability_check(self, keyring_mock, tmp_path):
        keyring_mock.get_password.return_value = "test"

        storage = SecureTokenStorage(service_name="svc", storage_path=tmp_path / "store.enc")

        assert storage.keyring_available is True
        keyring_mock.delete_password.assert_called_once_with("svc", "svc_test")

    def test_unavailable_keyring_falls_back_to_file(self, keyring_mock, tmp_path):
        keyring_mock.set_password.side_effect = KeyringError("no backend")

        storage = SecureTokenStorage(service_name="svc", storage_path=tmp_path / "store.enc")

        assert storage.keyring_available is False
