"""
HTTP API Client for the identity service.

This module performs the stateless request/response exchanges (sign up, sign in,
password reset, account deletion, email links and token refresh) against the
identity service REST endpoints.
"""

import asyncio
import json
import logging
from typing import Optional, Dict, Any, Union
import aiohttp
from aiohttp import ClientSession, ClientTimeout, ClientError

from identity_shared.exceptions import RemoteError, NetworkError, ErrorCode
from identity_shared.interfaces import IIdentityAPIClient
from identity_shared.models import Operation

logger = logging.getLogger(__name__)


DEFAULT_ACCOUNTS_URL = "https://identitytoolkit.googleapis.com/v1/accounts"
DEFAULT_TOKEN_URL = "https://securetoken.googleapis.com/v1/token"


class IdentityAPIClient(IIdentityAPIClient):
    """
    HTTP API client for the identity service.

    Each call is a single POST exchange. There are no retries: a failed
    exchange surfaces immediately to the caller.
    """

    def __init__(
        self,
        api_key: str,
        accounts_url: str = DEFAULT_ACCOUNTS_URL,
        token_url: str = DEFAULT_TOKEN_URL,
        timeout: Optional[float] = None,
        session: Optional[ClientSession] = None
    ):
        self.api_key = api_key
        self.accounts_url = accounts_url.rstrip('/')
        self.token_url = token_url.rstrip('/')
        self.timeout = ClientTimeout(total=timeout)

        self._session = session
        self._owns_session = session is None

        logger.debug(f"API client initialized for {self.accounts_url}")

    async def __aenter__(self):
        """Async context manager entry."""
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def _ensure_session(self) -> ClientSession:
        """Ensure HTTP session is available."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=10,
                keepalive_timeout=30,
            )
            self._session = ClientSession(
                connector=connector,
                timeout=self.timeout,
                headers={'Content-Type': 'application/json'}
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    def url_for(self, operation: Union[Operation, str]) -> str:
        """Address of the endpoint serving an operation."""
        name = operation.value if isinstance(operation, Operation) else operation
        if name == Operation.TOKEN.value:
            return self.token_url
        return f"{self.accounts_url}:{name}"

    async def call(self, operation: Union[Operation, str], body: Dict[str, Any]) -> Dict[str, Any]:
        """
        Perform one exchange with the identity service.

        Args:
            operation: Operation name; ``token`` goes to the token endpoint,
                everything else to the account-management family
            body: JSON request body

        Returns:
            Parsed response body

        Raises:
            RemoteError: the service answered with a non-success status
            NetworkError: the exchange could not be completed
        """
        session = await self._ensure_session()
        name = operation.value if isinstance(operation, Operation) else operation
        url = self.url_for(name)

        logger.debug(f"POST {url} ({name})")

        try:
            async with session.post(url, params={'key': self.api_key}, json=body) as response:
                if response.status >= 400:
                    error_data = await self._get_error_response(response)
                    logger.warning(f"Identity service rejected {name} ({response.status})")
                    raise RemoteError(
                        f"Identity service request {name} failed ({response.status})",
                        status_code=response.status,
                        body=error_data,
                        context={'operation': name}
                    )

                try:
                    data = await response.json(content_type=None)
                except json.JSONDecodeError as e:
                    raise RemoteError(
                        f"Identity service returned invalid JSON for {name}",
                        status_code=response.status,
                        body={'detail': str(e)},
                        error_code=ErrorCode.REMOTE_MALFORMED_RESPONSE,
                        context={'operation': name}
                    )
                return data if data is not None else {}

        except asyncio.TimeoutError as e:
            logger.warning(f"Timeout during {name}: {e}")
            raise NetworkError(
                f"Request {name} timed out",
                error_code=ErrorCode.NETWORK_TIMEOUT,
                cause=e,
                context={'operation': name}
            )
        except ClientError as e:
            logger.warning(f"Network error during {name}: {e}")
            raise NetworkError(
                f"Request {name} failed: {e}",
                cause=e,
                context={'operation': name}
            )

    async def _get_error_response(self, response) -> Dict[str, Any]:
        """Extract error information from response."""
        text = await response.text()
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            return {"detail": text or "Unknown error"}
        return data if isinstance(data, dict) else {"detail": data}
