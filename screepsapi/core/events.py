"""
Event emitter used by the API facade and the socket session.

Listeners may be plain callables or coroutine functions; coroutine results
are scheduled as tasks and kept referenced until they finish.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

logger = logging.getLogger(__name__)

Listener = Callable[..., Union[None, Awaitable[None]]]


class EventEmitter:
    """Named-event listener registry."""

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)
        self._listener_tasks: Set[asyncio.Task] = set()

    def on(self, event: str, listener: Optional[Listener] = None):
        """
        Register a listener for an event.

        Usable directly (``emitter.on("console", fn)``) or as a decorator
        (``@emitter.on("console")``).
        """
        if listener is None:

            def decorator(fn: Listener) -> Listener:
                self._listeners[event].append(fn)
                return fn

            return decorator

        self._listeners[event].append(listener)
        return listener

    def once(self, event: str, listener: Listener) -> Listener:
        """Register a listener that is removed after its first call."""

        def wrapper(*args: Any) -> Union[None, Awaitable[None]]:
            self.off(event, wrapper)
            return listener(*args)

        wrapper._wrapped = listener  # type: ignore[attr-defined]
        self._listeners[event].append(wrapper)
        return wrapper

    def off(self, event: str, listener: Listener) -> None:
        """Remove a listener (or the once-wrapper around it)."""
        listeners = self._listeners.get(event)
        if not listeners:
            return
        for registered in listeners:
            wrapped = getattr(registered, "_wrapped", None)
            if registered == listener or wrapped == listener:
                listeners.remove(registered)
                break
        if not listeners:
            del self._listeners[event]

    def remove_all_listeners(self, event: Optional[str] = None) -> None:
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event, None)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def emit(self, event: str, *args: Any) -> bool:
        """
        Call every listener registered for ``event``.

        Returns:
            True if at least one listener was called
        """
        listeners = list(self._listeners.get(event, ()))
        if not listeners:
            if event == "error" and args:
                logger.debug("[Events] Unhandled error event: %s", args[0])
            return False

        for listener in listeners:
            try:
                result = listener(*args)
                if asyncio.iscoroutine(result):
                    self._fire_task(result)
            except Exception as e:
                logger.error("[Events] Listener error for '%s': %s", event, e)
        return True

    async def wait_for(self, event: str, timeout: Optional[float] = None) -> Any:
        """
        Wait for the next emission of ``event``.

        Returns the single argument of the emission, a tuple when several
        were emitted, or None when there were none.
        """
        future = asyncio.get_running_loop().create_future()

        def resolve(*args: Any) -> None:
            if not future.done():
                future.set_result(args[0] if len(args) == 1 else (args or None))

        self.once(event, resolve)
        try:
            return await asyncio.wait_for(future, timeout)
        finally:
            self.off(event, resolve)

    def _fire_task(self, coro: Awaitable[None]) -> None:
        """Schedule a coroutine listener with a strong reference."""
        task = asyncio.ensure_future(coro)
        self._listener_tasks.add(task)
        task.add_done_callback(self._listener_task_done)

    def _listener_task_done(self, task: asyncio.Task) -> None:
        self._listener_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("[Events] Async listener failed: %s", task.exception())
