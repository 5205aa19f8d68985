"""
Token Manager for the identity session client.

This module keeps the bearer token valid, collapsing concurrent refresh demand
into a single exchange with the token endpoint.
"""

import asyncio
import logging
from typing import Optional, Dict, Any

from identity_shared.exceptions import RequestError, IdentitySessionError, ErrorCode
from identity_shared.interfaces import IIdentityAPIClient
from identity_shared.logging_config import AuditLogger, log_structured_error
from identity_shared.models import Operation, current_time_ms
from identity_client.auth.session_state import SessionState

logger = logging.getLogger(__name__)


class TokenManager:
    """
    Refreshes the bearer token of one session.

    At most one refresh exchange is in flight at a time. Callers that need a
    token while it is running wait on the same task instead of starting their
    own; the slot is emptied before any of them resumes, so a failed refresh
    can be retried by the next caller.
    """

    def __init__(
        self,
        state: SessionState,
        api_client: IIdentityAPIClient,
        audit_logger: Optional[AuditLogger] = None,
        session_name: str = ""
    ):
        self.state = state
        self.api_client = api_client
        self.audit = audit_logger or AuditLogger()
        self.session_name = session_name

        self._pending_refresh: Optional[asyncio.Task] = None

    @property
    def is_refreshing(self) -> bool:
        """True while a refresh exchange is outstanding."""
        return self._pending_refresh is not None

    async def refresh(self) -> None:
        """
        Make sure the current bearer token has not expired.

        Raises:
            RequestError: if there is no identity to refresh
            RemoteError: if the refresh exchange was rejected
        """
        identity = self.state.identity
        if identity is None:
            raise RequestError(
                "refresh called without existing identity",
                ErrorCode.REQUEST_NO_IDENTITY
            )

        if current_time_ms() < identity.expires_at:
            return

        if self._pending_refresh is None:
            logger.info("Bearer token expired, starting refresh")
            self._pending_refresh = asyncio.ensure_future(
                self._run_refresh(identity.refresh_token, identity.local_id)
            )
        else:
            logger.debug("Joining in-flight token refresh")

        await asyncio.shield(self._pending_refresh)

    async def _run_refresh(self, refresh_token: str, local_id: str) -> None:
        try:
            data: Dict[str, Any] = await self.api_client.call(Operation.TOKEN, {
                'grant_type': 'refresh_token',
                'refresh_token': refresh_token,
            })
            await self.state.handle_response(data)
        except IdentitySessionError as e:
            log_structured_error(logger, e, self.session_name)
            self.audit.log_token_refresh(self.session_name, local_id, success=False, failure_reason=e.message)
            raise
        else:
            self.audit.log_token_refresh(self.session_name, local_id)
        finally:
            self._pending_refresh = None

    async def get_bearer_token(self) -> Optional[str]:
        """
        Get a valid bearer token, refreshing it first if it has expired.

        Returns:
            The bearer token, or None when signed out
        """
        identity = self.state.identity
        if identity is None or not identity.refresh_token:
            return None

        await self.refresh()

        identity = self.state.identity
        return identity.id_token if identity else None
