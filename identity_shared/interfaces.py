"""
Core interfaces for the identity session library.

This module defines the abstract interfaces that injected collaborators must
implement so the session manager can use them interchangeably.
"""

from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, Union

from .models import Operation


class IAuthStorage(ABC):
    """
    Interface for the durable key/value store holding session state.

    Keys and values are strings. Only per-key atomicity is expected.
    """

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store a value under a key, replacing any previous value."""
        pass

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Get the value for a key, or None if absent."""
        pass

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Remove a key. Removing an absent key is not an error."""
        pass


class IIdentityAPIClient(ABC):
    """Interface for the request/response exchanges with the identity service."""

    @abstractmethod
    async def call(self, operation: Union[Operation, str], body: Dict[str, Any]) -> Dict[str, Any]:
        """Perform one exchange and return the parsed response body."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release any transport resources."""
        pass
