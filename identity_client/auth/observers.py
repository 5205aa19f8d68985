"""
Observer registry for identity changes.

Callbacks are invoked synchronously, in subscription order, with the new
identity (or None when signed out).
"""

import logging
from typing import Callable, List, Optional

from identity_shared.models import Identity

logger = logging.getLogger(__name__)


IdentityCallback = Callable[[Optional[Identity]], None]


class _Subscription:
    __slots__ = ('callback', 'active')

    def __init__(self, callback: IdentityCallback):
        self.callback = callback
        self.active = True


class ObserverRegistry:
    """
    Ordered list of identity observers.

    Every subscription is independent, so the same callable may be
    subscribed twice and unsubscribed once per handle.
    """

    def __init__(self):
        self._subscriptions: List[_Subscription] = []

    def __len__(self) -> int:
        return len(self._subscriptions)

    def subscribe(
        self,
        callback: IdentityCallback,
        current: Optional[Identity] = None,
        invoke_immediately: bool = True
    ) -> Callable[[], None]:
        """
        Register a callback for identity changes.

        Args:
            callback: Function called with the new identity or None
            current: Value passed to the immediate invocation
            invoke_immediately: Call the callback once right away with ``current``

        Returns:
            Function that cancels this subscription; calling it again is a no-op
        """
        # A callback that raises on its first call is never registered
        if invoke_immediately:
            callback(current)

        subscription = _Subscription(callback)
        self._subscriptions.append(subscription)

        def unsubscribe() -> None:
            if not subscription.active:
                return
            subscription.active = False
            self._subscriptions = [s for s in self._subscriptions if s is not subscription]

        return unsubscribe

    def notify(self, identity: Optional[Identity]) -> None:
        """Invoke every active subscription with the new identity."""
        snapshot = list(self._subscriptions)
        logger.debug(f"Notifying {len(snapshot)} identity observers")
        for subscription in snapshot:
            # cancelled earlier in this same pass
            if not subscription.active:
                continue
            subscription.callback(identity)
