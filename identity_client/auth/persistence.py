"""
Persistence of session state in the injected key/value storage.

Two keys are kept per session, both namespaced by purpose, session name and
API key so that independent sessions can share one storage backend.
"""

import logging
from typing import Optional

from identity_shared.exceptions import StorageError, ErrorCode
from identity_shared.interfaces import IAuthStorage
from identity_shared.models import Identity

logger = logging.getLogger(__name__)


def storage_key(purpose: str, name: str, api_key: str) -> str:
    """Build a namespaced storage key: ``auth:<purpose>:<name>:<api_key>``."""
    return f"auth:{purpose}:{name}:{api_key}"


class SessionPersistence:
    """
    Reads and writes the persisted identity and the pending sign-in email.

    Errors from the storage backend propagate unchanged.
    """

    def __init__(self, storage: IAuthStorage, api_key: str, name: str = ""):
        self.storage = storage
        self.user_key = storage_key("user", name, api_key)
        self.email_key = storage_key("email", name, api_key)

    async def load_identity(self) -> Optional[Identity]:
        """
        Load the persisted identity.

        Returns:
            The stored identity, or None if nothing is stored

        Raises:
            StorageError: if the stored record cannot be decoded
        """
        raw = await self.storage.get(self.user_key)
        if not raw:
            return None
        try:
            return Identity.from_json(raw)
        except (ValueError, KeyError, TypeError) as e:
            raise StorageError(
                f"Stored identity record is corrupt: {e}",
                ErrorCode.STORAGE_CORRUPT_RECORD,
                key=self.user_key,
                cause=e
            )

    async def save_identity(self, identity: Identity) -> None:
        await self.storage.set(self.user_key, identity.to_json())
        logger.debug(f"Persisted identity under {self.user_key}")

    async def clear_identity(self) -> None:
        await self.storage.remove(self.user_key)
        logger.debug(f"Removed identity record {self.user_key}")

    async def save_pending_email(self, email: str) -> None:
        await self.storage.set(self.email_key, email)

    async def load_pending_email(self) -> Optional[str]:
        return await self.storage.get(self.email_key) or None

    async def clear_pending_email(self) -> None:
        await self.storage.remove(self.email_key)
