# compensation_system/events/event_bus.py
"""
Event bus for decoupled notification of compensation results.
Handler errors are logged and never reach the emitting service.
"""
from typing import Dict, List, Callable, Any
import logging
import asyncio

logger = logging.getLogger(__name__)


class EventBus:
    """
    Simple in-process publish/subscribe.
    """

    _instance = None
    _handlers: Dict[str, List[Callable]] = {}

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._handlers = {}
        return cls._instance

    def subscribe(self, eventName: str, handler: Callable):
        """Subscribe handler to event."""
        if eventName not in self._handlers:
            self._handlers[eventName] = []

        self._handlers[eventName].append(handler)
        logger.debug(f"Handler {handler.__name__} subscribed to {eventName}")

    def unsubscribe(self, eventName: str, handler: Callable):
        """Unsubscribe handler from event."""
        if eventName in self._handlers and handler in self._handlers[eventName]:
            self._handlers[eventName].remove(handler)
            logger.debug(f"Handler {handler.__name__} unsubscribed from {eventName}")

    async def emit(self, eventName: str, data: Dict[str, Any]):
        """Emit event to all subscribers."""
        if eventName not in self._handlers:
            return

        logger.debug(f"Emitting event {eventName} with data: {data}")

        for handler in list(self._handlers[eventName]):
            try:
                if asyncio.iscoroutinefunction(handler):
                    await handler(data)
                else:
                    handler(data)
            except Exception as e:
                logger.error(f"Error in handler {handler.__name__} for event {eventName}: {e}")

    def clear(self):
        """Clear all event handlers."""
        self._handlers.clear()


# Global event bus instance
eventBus = EventBus()


class CompensationEvents:
    """Standard compensation engine events."""

    PARTICIPANT_ENROLLED = "participant.enrolled"
    PARTICIPANT_PLACED = "participant.placed"
    TIER_ASSIGNED = "tier.assigned"
    INVESTMENT_RECORDED = "investment.recorded"

    COMMISSIONS_CREATED = "commission.created"
    COMMISSION_PAID = "commission.paid"
    COMMISSION_FAILED = "commission.failed"
    COMMISSION_REVERSED = "commission.reversed"

    QUALIFICATION_EVALUATED = "qualification.evaluated"
    PERMANENT_STATUS_ACHIEVED = "qualification.permanent"

    DISTRIBUTION_CREATED = "distribution.created"
    DISTRIBUTION_APPROVED = "distribution.approved"
    DISTRIBUTION_PROCESSED = "distribution.processed"
