"""
Event handling system for realtime communication.
Implements a basic pub/sub mechanism with async support.
"""

import inspect
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Union

logger = logging.getLogger(__name__)

Handler = Union[Callable[[Any], Any], Callable[[Any], Awaitable[Any]]]


class RealtimeEventHandler:
    """
    Base class to manage event listeners and dispatch events
    in a realtime asynchronous environment.

    Coroutine handlers are awaited one after another rather than spawned as
    tasks, so events reach listeners in the order they were dispatched.
    """

    def __init__(self) -> None:
        self.event_handlers: Dict[str, List[Handler]] = defaultdict(list)

    def on(self, event_name: str, handler: Handler) -> None:
        """
        Register a handler function for a specific event.

        Args:
            event_name (str): Name of the event to listen for.
            handler (Callable): Function or coroutine to be called when the event fires.
        """
        if not callable(handler):
            logger.error(f"Tried to register non-callable handler for event '{event_name}'.")
            raise TypeError("Handler must be callable.")
        self.event_handlers[event_name].append(handler)
        logger.debug(f"Handler registered for event '{event_name}'.")

    async def dispatch(self, event_name: str, event: Any) -> None:
        """
        Trigger all handlers associated with a specific event.

        A failing handler is logged and does not prevent the remaining
        handlers from running.

        Args:
            event_name (str): Name of the event to dispatch.
            event (Any): Data associated with the event.
        """
        handlers = list(self.event_handlers.get(event_name, []))
        if not handlers:
            logger.debug(f"No handlers registered for event '{event_name}'.")
            return

        for handler in handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Error dispatching event '{event_name}' to handler: {e}", exc_info=True)

    def clear_event_handlers(self) -> None:
        """
        Remove all registered event handlers.
        """
        self.event_handlers.clear()
        logger.debug("All event handlers cleared.")
