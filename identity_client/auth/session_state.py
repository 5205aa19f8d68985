"""
In-memory session state.

Holds at most one identity. Every mutation goes through ``replace_identity``,
which persists the change and notifies observers when the signed-in subject
changes.
"""

import logging
from typing import Optional, Dict, Any

from identity_shared.models import Identity
from identity_client.auth.observers import ObserverRegistry
from identity_client.auth.persistence import SessionPersistence

logger = logging.getLogger(__name__)


class SessionState:
    """Current identity of one session, with its persistence and observers."""

    def __init__(self, persistence: SessionPersistence, observers: ObserverRegistry):
        self.persistence = persistence
        self.observers = observers
        self._identity: Optional[Identity] = None

    @property
    def identity(self) -> Optional[Identity]:
        return self._identity

    async def replace_identity(self, identity: Optional[Identity], save: bool = True) -> None:
        """
        Install a new identity, or None to sign out.

        Args:
            identity: The replacement identity
            save: Persist the change; False only when installing what was just loaded
        """
        old_id = self._identity.local_id if self._identity else None
        new_id = identity.local_id if identity else None

        self._identity = identity

        if save:
            if identity is not None:
                await self.persistence.save_identity(identity)
            else:
                await self.persistence.clear_identity()

        # Token updates for the same subject are silent
        if old_id != new_id:
            logger.info(f"Session subject changed: {old_id or '<none>'} -> {new_id or '<none>'}")
            self.observers.notify(identity)

    async def handle_response(self, data: Dict[str, Any]) -> Identity:
        """Fold a service response into a new identity and install it."""
        identity = Identity.from_response(data, previous=self._identity)
        await self.replace_identity(identity)
        return identity
