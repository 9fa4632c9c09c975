"""
Request coalescing to prevent duplicate upstream API calls.

When multiple concurrent requests ask for the same data, only one
upstream call is made and all requesters share the result.
"""
import asyncio
import functools
import threading
import time
import logging
from typing import Any, Awaitable, Callable, Dict
from dataclasses import dataclass, field

logger = logging.getLogger("cache.coalescer")


@dataclass
class InFlightRequest:
    """Tracks an in-progress upstream request."""
    task: "asyncio.Future[Any]"
    started_at: float = field(default_factory=time.time)
    waiter_count: int = 0


class InFlightRequestRegistry:
    """
    Ensures concurrent requests for the same key share one upstream call.

    Pattern:
    - First request for a key starts the work as a task
    - Subsequent requests for the same key await that task
    - Every caller observes the same result or the same exception
    - The registration is dropped as soon as the task settles, so a failed
      fetch never blocks a retry

    Callers await a shield of the task: one caller being cancelled does not
    cancel the shared work.

    Usage:
        registry = InFlightRequestRegistry()
        result = await registry.dedupe(
            "usage:account:7:all:all:2024-01-01:2024-01-31",
            lambda: data_source.fetch_usage(scope, params, session),
        )
    """

    def __init__(self):
        self._in_flight: Dict[str, InFlightRequest] = {}
        self._lock = threading.Lock()

    async def dedupe(self, key: str, work: Callable[[], Awaitable[Any]]) -> Any:
        """
        Either join an existing in-flight request or start a new one.

        Args:
            key: Unique key for this request
            work: Coroutine factory performing the fetch

        Returns:
            The fetched data (shared among all concurrent callers)

        Raises:
            Exception: Any error from work is propagated to every caller
        """
        with self._lock:
            in_flight = self._in_flight.get(key)
            if in_flight is not None and not in_flight.task.done():
                in_flight.waiter_count += 1
                logger.debug(
                    f"Coalescing request for {key} "
                    f"(waiters: {in_flight.waiter_count})"
                )
            else:
                in_flight = InFlightRequest(task=asyncio.ensure_future(work()))
                self._in_flight[key] = in_flight
                in_flight.task.add_done_callback(
                    functools.partial(self._release, key, in_flight)
                )
                logger.debug(f"Initiating fetch for {key}")

        return await asyncio.shield(in_flight.task)

    def _release(self, key: str, in_flight: InFlightRequest, task: "asyncio.Future[Any]") -> None:
        with self._lock:
            if self._in_flight.get(key) is in_flight:
                del self._in_flight[key]

        if task.cancelled():
            return
        # Retrieving the exception here also keeps asyncio from reporting it
        # as never retrieved when every waiter has gone away
        error = task.exception()
        if error is not None:
            logger.warning(f"Fetch failed for {key}: {error}")

    def is_pending(self, key: str) -> bool:
        with self._lock:
            return key in self._in_flight

    def clear(self) -> None:
        """
        Forget all registrations.

        Running tasks are not cancelled; their waiters still get the result.
        """
        with self._lock:
            self._in_flight.clear()

    @property
    def active_requests(self) -> int:
        """Number of currently in-flight requests."""
        with self._lock:
            return len(self._in_flight)

    def get_stats(self) -> Dict[str, Any]:
        """Get registry statistics."""
        with self._lock:
            return {
                "active_requests": len(self._in_flight),
                "active_keys": list(self._in_flight.keys()),
            }
