# MIT License
# Copyright (c) 2025 Hashborn

"""
Event system for chain lifecycle events.

Provides a simple pub/sub mechanism for block and transaction events:
`block_created`, `tx_included`, `tx_rejected`.
"""
from typing import Dict, List, Callable, Any, Optional
import logging
import threading

logger = logging.getLogger(__name__)


class EventBus:
    """
    Simple event bus for chain events.

    Subscriptions are guarded by a lock; events are delivered synchronously
    in the emitting thread (the block producer for block events).
    """

    def __init__(self):
        self.listeners: Dict[str, List[Callable]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event_type: str, callback: Callable) -> None:
        """
        Subscribe to an event type.

        Args:
            event_type: Event name (e.g., 'tx_included', 'tx_rejected')
            callback: Function to call when event is emitted
        """
        with self._lock:
            self.listeners.setdefault(event_type, []).append(callback)
        logger.debug(f"Subscribed to event: {event_type}")

    def unsubscribe(self, event_type: str, callback: Callable) -> None:
        with self._lock:
            if event_type in self.listeners:
                try:
                    self.listeners[event_type].remove(callback)
                    logger.debug(f"Unsubscribed from event: {event_type}")
                except ValueError:
                    logger.warning(f"Callback not found for event: {event_type}")

    def emit(self, event_type: str, **data: Any) -> None:
        """
        Emit an event to all subscribers.

        Args:
            event_type: Event name
            **data: Event data as keyword arguments
        """
        with self._lock:
            listeners = list(self.listeners.get(event_type, []))

        if not listeners:
            return

        logger.debug(f"Emitting event: {event_type} to {len(listeners)} listener(s)")

        for callback in listeners:
            try:
                callback(**data)
            except Exception as e:
                logger.error(f"Error in event callback for {event_type}: {e}", exc_info=True)

    def clear(self, event_type: Optional[str] = None) -> None:
        """Clear listeners for an event type, or all listeners if no type specified."""
        with self._lock:
            if event_type:
                self.listeners.pop(event_type, None)
            else:
                self.listeners.clear()
