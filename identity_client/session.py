"""
Session facade for the identity session client.

``Auth`` owns one session: its current identity, the persisted copy of it,
the bearer token refresh and the observers of identity changes.
"""

import logging
import re
from typing import Optional, Dict, Any, Callable, Union
from urllib.parse import unquote

from identity_shared.exceptions import RequestError, IdentitySessionError, ErrorCode
from identity_shared.interfaces import IAuthStorage, IIdentityAPIClient
from identity_shared.logging_config import AuditLogger, AuditEventType
from identity_shared.models import (
    Identity, Operation, RequestPayload, SignUpRequest, SignInRequest,
    ResetPasswordRequest, request_payload
)
from identity_client.api_client import IdentityAPIClient
from identity_client.config import ClientConfiguration
from identity_client.auth.observers import ObserverRegistry, IdentityCallback
from identity_client.auth.persistence import SessionPersistence
from identity_client.auth.session_state import SessionState
from identity_client.auth.token_manager import TokenManager

logger = logging.getLogger(__name__)


_OOB_CODE_PATTERN = re.compile(r'[?&]oobCode=([^&]+)')


class Auth:
    """
    Authentication and authorization for one named session.

    Construct with ``await Auth.create(...)``; the persisted identity is loaded
    before the instance is returned.
    """

    def __init__(
        self,
        api_key: str,
        storage: IAuthStorage,
        name: str = "",
        api_client: Optional[IIdentityAPIClient] = None
    ):
        self.api_key = api_key
        self.name = name

        self._owns_client = api_client is None
        self.api_client = api_client or IdentityAPIClient(api_key)

        self.audit = AuditLogger()
        self.persistence = SessionPersistence(storage, api_key, name)
        self.observers = ObserverRegistry()
        self.state = SessionState(self.persistence, self.observers)
        self.token_manager = TokenManager(self.state, self.api_client, self.audit, name)

    @classmethod
    async def create(
        cls,
        api_key: str,
        storage: IAuthStorage,
        name: str = "",
        api_client: Optional[IIdentityAPIClient] = None
    ) -> "Auth":
        """
        Construct a session and load its persisted identity.

        The stored identity is installed without writing it back.
        """
        auth = cls(api_key, storage, name, api_client)
        try:
            identity = await auth.persistence.load_identity()
        except IdentitySessionError as e:
            auth.audit.log_error(e, name)
            raise
        if identity is not None:
            await auth.state.replace_identity(identity, save=False)
            logger.info(f"Restored session '{name}' for {identity.local_id}")
        return auth

    @classmethod
    async def from_config(cls, config: ClientConfiguration, storage: Optional[IAuthStorage] = None) -> "Auth":
        """
        Construct a session from a ``ClientConfiguration``.

        Args:
            config: Client configuration
            storage: Storage to use instead of the configured backend
        """
        api_key = config.get_api_key()
        api_client = IdentityAPIClient(
            api_key,
            accounts_url=config.get_accounts_url(),
            token_url=config.get_token_url(),
            timeout=config.get_timeout()
        )
        auth = await cls.create(
            api_key,
            storage or config.create_storage(),
            name=config.get_session_name(),
            api_client=api_client
        )
        auth._owns_client = True
        return auth

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        """Release the HTTP session if this instance created the client."""
        if self._owns_client:
            await self.api_client.close()

    @property
    def user(self) -> Optional[Identity]:
        """The current identity, or None when signed out."""
        return self.state.identity

    async def sign_up(self, request: Union[SignUpRequest, Dict[str, Any]]) -> Identity:
        """Create a new account and sign in as it."""
        return await self._authenticate(AuditEventType.SIGN_UP, Operation.SIGN_UP, request)

    async def sign_in(self, request: Union[SignInRequest, Dict[str, Any]]) -> Identity:
        """Sign in an existing account with email and password."""
        return await self._authenticate(AuditEventType.SIGN_IN, Operation.SIGN_IN_WITH_PASSWORD, request)

    async def _authenticate(self, event: AuditEventType, operation: Operation, request: RequestPayload) -> Identity:
        try:
            data = await self.api_client.call(operation, request_payload(request))
            identity = await self.state.handle_response(data)
        except IdentitySessionError as e:
            self.audit.log_identity_change(event, self.name, success=False, failure_reason=e.message)
            raise
        self.audit.log_identity_change(event, self.name, local_id=identity.local_id)
        return identity

    async def reset_password(self, request: Union[ResetPasswordRequest, Dict[str, Any]]) -> None:
        """Reset the password of an account; the current identity is untouched."""
        await self.api_client.call(Operation.RESET_PASSWORD, request_payload(request))
        self.audit.log_identity_change(AuditEventType.PASSWORD_RESET, self.name)

    async def sign_out(self) -> None:
        """Sign out and clear the stored identity."""
        local_id = self.user.local_id if self.user else None
        await self.state.replace_identity(None)
        self.audit.log_identity_change(AuditEventType.SIGN_OUT, self.name, local_id=local_id)

    async def delete(self) -> None:
        """
        Delete the account entirely, then sign out.

        If the service rejects the deletion the session stays signed in.
        """
        local_id = self.user.local_id if self.user else None
        await self.api_client.call(Operation.DELETE, {'idToken': self.user.id_token if self.user else None})
        self.audit.log_identity_change(AuditEventType.ACCOUNT_DELETE, self.name, local_id=local_id)
        await self.sign_out()

    async def get_bearer_token(self) -> Optional[str]:
        """
        Get the bearer token, refreshing it if it has expired.

        Returns:
            The bearer token, or None when signed out
        """
        return await self.token_manager.get_bearer_token()

    def subscribe(self, callback: IdentityCallback, invoke_immediately: bool = True) -> Callable[[], None]:
        """
        Get notified when the signed-in subject changes.

        Unless ``invoke_immediately`` is False the callback is called once right
        away with the current identity. The returned function unsubscribes.
        """
        return self.observers.subscribe(callback, self.user, invoke_immediately)

    async def send_email_signin_link(self, email: str) -> None:
        """Send a link to the provided email address that allows signing in."""
        await self.persistence.save_pending_email(email)
        await self.api_client.call(Operation.SEND_OOB_CODE, {
            'requestType': 'EMAIL_SIGNIN',
            'email': email,
        })
        self.audit.log_event(AuditEventType.EMAIL_LINK, "Sign-in link sent", session_name=self.name, result="sent")

    async def handle_email_signin_redirect(self, url: str) -> Identity:
        """
        Complete a sign-in from the URL the user landed on from an email link.

        Raises:
            RequestError: if the URL has no ``oobCode`` or no email is pending
        """
        match = _OOB_CODE_PATTERN.search(url)
        if not match:
            raise RequestError("oobCode not found in URL", ErrorCode.REQUEST_MISSING_OOB_CODE)
        oob_code = unquote(match.group(1))

        email = await self.persistence.load_pending_email()
        if not email:
            raise RequestError("email not found in storage", ErrorCode.REQUEST_MISSING_PENDING_EMAIL)

        identity = await self._authenticate(
            AuditEventType.EMAIL_LINK,
            Operation.SIGN_IN_WITH_EMAIL_LINK,
            {'oobCode': oob_code, 'email': email}
        )
        await self.persistence.clear_pending_email()
        return identity

    async def api(self, operation: Union[Operation, str], body: Dict[str, Any]) -> Dict[str, Any]:
        """Call any identity service operation directly."""
        return await self.api_client.call(operation, body)
