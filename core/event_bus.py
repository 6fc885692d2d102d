"""
Event bus for billing domain events.

Synchronous in-process pub/sub. Handlers execute immediately in the same
thread as the publisher. Handler errors are logged but never propagate:
the state change (DB write + activity entry) has already committed, and
notification delivery is best-effort.
"""

import logging
from typing import Callable, Dict, List

from core.events import BillingEvent

logger = logging.getLogger(__name__)


class EventBus:
    """
    In-process event bus for billing domain events.

    Subscribe by event class or class name, publish by event instance.
    Handlers are called synchronously in subscription order.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[Callable]] = {}

    def subscribe(self, event_type: str | type, callback: Callable):
        """
        Subscribe to events of a specific type.

        Args:
            event_type: Event class, or its name (e.g. 'InvoicePaid')
            callback: Function to call when event is published
        """
        name = event_type if isinstance(event_type, str) else event_type.__name__
        self._subscribers.setdefault(name, []).append(callback)

    def subscriber_count(self, event_type: str | type) -> int:
        name = event_type if isinstance(event_type, str) else event_type.__name__
        return len(self._subscribers.get(name, []))

    def publish(self, event: BillingEvent):
        """
        Publish an event to all subscribers of that type.

        Handler errors are logged and swallowed so one failing notification
        never blocks the others.

        Args:
            event: BillingEvent instance to publish
        """
        event_type = event.__class__.__name__

        for callback in self._subscribers.get(event_type, []):
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "Handler %s failed for %s (event_id=%s)",
                    getattr(callback, "__name__", repr(callback)),
                    event_type,
                    event.event_id,
                )
