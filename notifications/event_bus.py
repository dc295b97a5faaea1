"""
In-process event bus.

Domain code publishes named events (``"guest.status.changed"``) with a plain
dict payload; the notification service and any other listener subscribe by
name. In a multi-process deployment this would be replaced by a message broker
like RabbitMQ, Redis streams or AWS SNS/SQS.

Design decisions:
- The bus is constructed and injected explicitly, there is no module-level
  singleton, so tests and the HTTP app each own their bus
- Name-based subscriptions plus a wildcard for audit logging
- Handlers run in registration order; each gets its own shallow copy of the
  payload so one handler cannot mutate what the next one sees
- ``publish`` never blocks on async handlers: coroutines are scheduled on the
  running loop; publishes made off any loop (worker threads, scripts) hand
  them to the bound loop (the HTTP app's), or else to one background loop
  thread owned by the bus
- No persistence and no replay: at most one invocation per subscriber

Key insight:
- Publishers don't know who is listening
- Subscribers don't know who is publishing
"""

import asyncio
import concurrent.futures
import inspect
import logging
import threading
import time
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger("event_bus")


# Handlers take the payload; wildcard handlers take (event_name, payload).
# Either may be a coroutine function.
EventHandler = Callable[[dict[str, Any]], Any]
WildcardHandler = Callable[[str, dict[str, Any]], Any]

WILDCARD = "*"


class EventBus:
    """
    Simple in-memory event bus implementing the pub/sub pattern.

    Example usage:
        bus = EventBus()

        async def on_guest_changed(payload):
            print(f"Guest {payload['guestName']} is now {payload['newStatus']}")

        bus.subscribe("guest.status.changed", on_guest_changed)
        bus.publish("guest.status.changed", {"guestName": "Ana", "newStatus": "confirmed"})
    """

    def __init__(self):
        # Map of event_name -> list of handlers
        self._subscribers: dict[str, list[Callable[..., Any]]] = defaultdict(list)
        self._lock = threading.Lock()

        # In-flight async handlers, kept so shutdown and tests can wait on them
        self._tasks: set[asyncio.Task] = set()
        self._futures: set[concurrent.futures.Future] = set()

        # Where off-loop publishes run their handlers
        self._bound_loop: Optional[asyncio.AbstractEventLoop] = None
        self._background_loop: Optional[asyncio.AbstractEventLoop] = None
        self._background_thread: Optional[threading.Thread] = None

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        """
        Subscribe to events with a specific name.

        Note: The same handler can be subscribed multiple times (will be called multiple times).
        """
        with self._lock:
            self._subscribers[event_name].append(handler)
        logger.debug(f"Subscribed handler to '{event_name}' events")

    def subscribe_all(self, handler: WildcardHandler) -> None:
        """
        Subscribe to ALL events (useful for logging, debugging, or audit).

        Wildcard handlers receive ``(event_name, payload)``.
        """
        with self._lock:
            self._subscribers[WILDCARD].append(handler)
        logger.debug("Subscribed handler to ALL events")

    def unsubscribe(self, event_name: str, handler: Callable[..., Any]) -> bool:
        """
        Unsubscribe a handler from an event name.

        Returns:
            True if the handler was found and removed, False otherwise
        """
        with self._lock:
            try:
                self._subscribers[event_name].remove(handler)
            except ValueError:
                return False
        logger.debug(f"Unsubscribed handler from '{event_name}' events")
        return True

    def publish(self, event_name: str, payload: Optional[dict[str, Any]] = None) -> int:
        """
        Publish an event to all subscribers.

        A ``timestamp`` (UTC) is stamped on the payload when absent.

        Returns:
            Number of handlers that received the event

        Note: If a handler raises an exception, it's logged but doesn't stop
        other handlers. Async handlers are scheduled, not awaited.
        """
        event = dict(payload or {})
        event.setdefault("timestamp", datetime.now(timezone.utc))

        with self._lock:
            type_handlers = list(self._subscribers.get(event_name, []))
            all_handlers = list(self._subscribers.get(WILDCARD, []))

        logger.info(f"Publishing: {event_name} ({len(type_handlers) + len(all_handlers)} handlers)")

        handlers_called = 0
        for handler in type_handlers:
            handlers_called += 1
            self._invoke(event_name, handler, dict(event))
        for handler in all_handlers:
            handlers_called += 1
            self._invoke(event_name, handler, event_name, dict(event))

        if handlers_called == 0:
            logger.warning(f"No handlers for event '{event_name}'")

        return handlers_called

    def get_subscriber_count(self, event_name: str) -> int:
        """Get the number of subscribers for an event name."""
        with self._lock:
            return len(self._subscribers.get(event_name, []))

    def clear_subscribers(self) -> None:
        """Remove all subscribers (useful for testing)."""
        with self._lock:
            self._subscribers.clear()

    # =========================================================================
    # Async handlers
    # =========================================================================

    def bind_loop(self, loop: Optional[asyncio.AbstractEventLoop]) -> None:
        """
        Run handlers of off-loop publishes on ``loop`` (None unbinds).

        The HTTP app binds its own loop at startup, so an event published from
        a worker thread is still handled on the loop that owns the WebSockets.
        """
        self._bound_loop = loop

    async def drain(self) -> None:
        """Wait until every handler scheduled on the running loop has finished."""
        loop = asyncio.get_running_loop()
        current = asyncio.current_task()
        while True:
            pending = [
                task for task in list(self._tasks)
                if task is not current and task.get_loop() is loop and not task.done()
            ]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for handlers that off-loop publishes handed to another loop,
        including anything those handlers published in turn.

        Must not be called from the thread running that loop.

        Returns:
            True if everything finished within ``timeout``
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            pending = [future for future in list(self._futures) if not future.done()]
            if not pending:
                loops = {
                    task.get_loop() for task in list(self._tasks)
                    if not task.done() and task.get_loop().is_running()
                }
                if not loops:
                    return True
                pending = [self._submit(loop, self.drain()) for loop in loops]
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            _, not_done = concurrent.futures.wait(pending, timeout=remaining)
            if not_done:
                logger.warning(f"{len(not_done)} event handlers still running after {timeout}s")
                return False

    def close(self) -> None:
        """Stop the background loop thread, if one was started."""
        with self._lock:
            loop, thread = self._background_loop, self._background_thread
            self._background_loop = self._background_thread = None
        if loop is None or thread is None:
            return
        loop.call_soon_threadsafe(loop.stop)
        thread.join(timeout=5)
        if not thread.is_alive():
            loop.close()

    def _invoke(self, event_name: str, handler: Callable[..., Any], *args: Any) -> None:
        try:
            result = handler(*args)
        except Exception:
            logger.exception(f"Handler raised exception for '{event_name}'")
            return
        if inspect.isawaitable(result):
            self._schedule(event_name, result)

    def _schedule(self, event_name: str, awaitable: Awaitable[Any]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is not None:
            self._track(loop.create_task(self._run_guarded(event_name, awaitable)))
            return

        self._submit(self._target_loop(), self._run_tracked(event_name, awaitable))

    def _target_loop(self) -> asyncio.AbstractEventLoop:
        bound = self._bound_loop
        if bound is not None and bound.is_running():
            return bound

        with self._lock:
            if self._background_loop is None:
                loop = asyncio.new_event_loop()
                thread = threading.Thread(
                    target=self._run_background_loop,
                    args=(loop,),
                    name="event-bus-loop",
                    daemon=True,
                )
                thread.start()
                self._background_loop, self._background_thread = loop, thread
                logger.debug("Started background loop for off-loop publishes")
            return self._background_loop

    @staticmethod
    def _run_background_loop(loop: asyncio.AbstractEventLoop) -> None:
        asyncio.set_event_loop(loop)
        loop.run_forever()

    def _submit(self, loop: asyncio.AbstractEventLoop, coro: Any) -> concurrent.futures.Future:
        future = asyncio.run_coroutine_threadsafe(coro, loop)
        self._futures.add(future)
        future.add_done_callback(self._futures.discard)
        return future

    def _track(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_tracked(self, event_name: str, awaitable: Awaitable[Any]) -> None:
        # Visible to drain() on the loop it was handed to
        self._track(asyncio.current_task())
        await self._run_guarded(event_name, awaitable)

    @staticmethod
    async def _run_guarded(event_name: str, awaitable: Awaitable[Any]) -> None:
        try:
            await awaitable
        except Exception:
            logger.exception(f"Async handler failed for '{event_name}'")
