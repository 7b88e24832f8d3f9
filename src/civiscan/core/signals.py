"""
Signal bus

A small observer registry used for process-wide broadcasts such as
"session expired". The bus is passed explicitly to whoever emits, so
there is no ambient global state.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, List

logger = logging.getLogger(__name__)


class SignalBus:
    """
    Fire-and-forget broadcast to any number of subscribers.

    Subscribers may be plain callables or coroutine functions. Coroutine
    subscribers are scheduled on the running loop and not awaited.

    Example:
        bus = SignalBus("unauthorized")
        unsubscribe = bus.subscribe(lambda: print("session expired"))
        bus.emit()
        unsubscribe()
    """

    def __init__(self, name: str = "signal"):
        self.name = name
        self._subscribers: List[Callable[..., Any]] = []
        self._pending: set = set()

    def subscribe(self, callback: Callable[..., Any]) -> Callable[[], None]:
        """Register a subscriber. Returns a callable that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def emit(self, *args, **kwargs) -> None:
        """Deliver the signal to every subscriber; failures are logged, never raised."""
        logger.debug(f"Emitting signal '{self.name}' to {len(self._subscribers)} subscriber(s)")

        for callback in list(self._subscribers):
            try:
                result = callback(*args, **kwargs)
                if inspect.isawaitable(result):
                    self._schedule(result)
            except Exception as e:
                logger.warning(f"Subscriber of '{self.name}' failed: {e}")

    def _schedule(self, awaitable) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running loop for async subscriber of '{self.name}'")
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        task = loop.create_task(self._run(awaitable))
        # Keep a reference until done so the task is not garbage collected
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _run(self, awaitable) -> None:
        try:
            await awaitable
        except Exception as e:
            logger.warning(f"Async subscriber of '{self.name}' failed: {e}")
