"""
Keeps the live feed subscription equal to the set of books on screen.

Every time the desired set changes (or the connection comes up) the
reconciler sends at most one unsubscribe frame and one subscribe frame:

    to_remove = subscribed - desired
    to_add    = desired - subscribed

While the connection is down nothing is sent; the desired set is kept and
reconciled on the next CONNECTED transition.
"""

from __future__ import annotations

from typing import Any, Iterable, Protocol

from ..log import get_logger
from ..types import InstrumentId
from .messages import subscribe_frame, unsubscribe_frame

logger = get_logger("subscriptions")


class FrameSender(Protocol):
    @property
    def is_open(self) -> bool: ...

    def send_json(self, payload: Any) -> bool: ...


class SubscriptionReconciler:
    """Owns the subscribed set for one connection."""

    def __init__(self, sender: FrameSender) -> None:
        self._sender = sender
        self._subscribed: set[InstrumentId] = set()
        self._desired: set[InstrumentId] = set()

    @property
    def subscribed(self) -> frozenset[InstrumentId]:
        return frozenset(self._subscribed)

    @property
    def desired(self) -> frozenset[InstrumentId]:
        return frozenset(self._desired)

    def wants(self, instrument: InstrumentId) -> bool:
        return instrument in self._desired

    def set_desired(self, instruments: Iterable[InstrumentId]) -> tuple[frozenset[InstrumentId], frozenset[InstrumentId]]:
        """Record the new desired set and reconcile against it."""
        self._desired = set(instruments)
        return self.reconcile()

    def reconcile(self) -> tuple[frozenset[InstrumentId], frozenset[InstrumentId]]:
        """
        Send the minimal (un)subscribe frames.

        Returns (removed, added) as actually sent; both empty when deferred.
        """
        to_remove = self._subscribed - self._desired
        to_add = self._desired - self._subscribed

        if not to_remove and not to_add:
            return frozenset(), frozenset()

        if not self._sender.is_open:
            logger.debug(
                f"Connection not open, deferring +{len(to_add)}/-{len(to_remove)} subscriptions"
            )
            return frozenset(), frozenset()

        if to_remove:
            self._sender.send_json(unsubscribe_frame(to_remove))
            self._subscribed -= to_remove
            logger.debug(f"Unsubscribed {sorted(to_remove)}")

        if to_add:
            self._sender.send_json(subscribe_frame(to_add))
            self._subscribed |= to_add
            logger.debug(f"Subscribed {sorted(to_add)}")

        return frozenset(to_remove), frozenset(to_add)

    def reset(self) -> None:
        """Forget the server-side subscription (the transport went away)."""
        self._subscribed.clear()
