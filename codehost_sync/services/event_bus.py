"""In-process domain event bus."""

from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Set, Union
import asyncio
import logging

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]

ISSUE_CLOSED_BY_COMMIT = "issue.closed_by_commit"


class EventBus:
    """Fire-and-forget publish/subscribe.

    ``emit`` never raises into the publisher. Coroutine handlers run as
    background tasks; a failing handler is logged.
    """

    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)
        self._tasks: Set[asyncio.Task] = set()

    def subscribe(self, event: str, handler: Handler) -> None:
        self._handlers[event].append(handler)

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        for handler in list(self._handlers.get(event, [])):
            try:
                result = handler(payload)
            except Exception:
                logger.exception(f"Handler for {event} failed")
                continue

            if asyncio.iscoroutine(result):
                task = asyncio.get_running_loop().create_task(result)
                self._tasks.add(task)
                task.add_done_callback(self._task_done(event))

    def _task_done(self, event: str) -> Callable[[asyncio.Task], None]:
        def done(task: asyncio.Task) -> None:
            self._tasks.discard(task)
            if not task.cancelled() and task.exception() is not None:
                logger.error(f"Handler for {event} failed: {task.exception()}")

        return done

    async def drain(self) -> None:
        """Wait for in-flight handler tasks, used on shutdown."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
