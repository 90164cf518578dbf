"""
In-process change notification for table mutations.

Mutating store operations publish a :class:`ChangeEvent` after their
transaction commits; subscribers register a handler for a table plus an
equality filter on the row (``{"researcher_id": "..."}``) and receive every
matching INSERT, UPDATE and DELETE. Subscribers treat events as a signal
only, the payload is informational. The feed is used from the event loop
thread only and holds no locks.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    type: str
    record: Dict[str, Any] = field(default_factory=dict)
    old_record: Optional[Dict[str, Any]] = None


Handler = Callable[[ChangeEvent], None]


class Subscription:
    def __init__(self, feed: "ChangeFeed", table: str, filters: Dict[str, Any], handler: Handler):
        self._feed = feed
        self.table = table
        self.filters = dict(filters)
        self.handler = handler
        self.active = True

    def matches(self, event: ChangeEvent) -> bool:
        if event.table != self.table:
            return False
        for row in (event.record, event.old_record):
            if row and all(row.get(key) == value for key, value in self.filters.items()):
                return True
        return False

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self._feed._remove(self)


class ChangeFeed:
    def __init__(self):
        self._subscriptions: List[Subscription] = []

    def subscribe(self, table: str, filters: Dict[str, Any], handler: Handler) -> Subscription:
        subscription = Subscription(self, table, filters, handler)
        self._subscriptions.append(subscription)
        logger.debug("Subscribed to %s where %s", table, filters)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
        logger.debug("Unsubscribed from %s where %s", subscription.table, subscription.filters)

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    def publish(self, event: ChangeEvent) -> int:
        """Deliver ``event`` to every matching subscriber, returns the delivery count."""
        targets = [s for s in self._subscriptions if s.matches(event)]
        delivered = 0
        for subscription in targets:
            if not subscription.active:
                continue
            try:
                subscription.handler(event)
                delivered += 1
            except Exception:
                # Handler errors never reach the publisher
                logger.exception(
                    "Change handler failed for %s %s", event.type, event.table
                )
        return delivered
