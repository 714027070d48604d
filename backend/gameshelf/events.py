"""In-process event publishing.

Components call ``publish`` explicitly after their transaction commits.
Delivery is fire-and-forget: a failing subscriber is logged and skipped,
and nothing is stored for late subscribers.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Event:
    """Base class for published events."""


@dataclass(frozen=True)
class LibraryCreated(Event):
    library_id: int


@dataclass(frozen=True)
class LibraryUpdated(Event):
    library_id: int


@dataclass(frozen=True)
class LibraryDeleted(Event):
    library_id: int


@dataclass(frozen=True)
class GameCreated(Event):
    game_id: int
    library_id: int | None


@dataclass(frozen=True)
class GameUpdated(Event):
    game_id: int
    library_id: int | None


@dataclass(frozen=True)
class GameDeleted(Event):
    game_id: int
    library_id: int | None


@dataclass(frozen=True)
class ScanProgressUpdated(Event):
    scan_id: str
    library_id: int
    snapshot: dict[str, Any] = field(default_factory=dict)


Subscriber = Callable[[Event], Any]


class EventPublisher:
    """Dispatches events to subscribers, optionally filtered by type."""

    def __init__(self) -> None:
        self._subscribers: list[tuple[type[Event], Subscriber]] = []
        self._pending: set[asyncio.Task] = set()

    def subscribe(
        self,
        callback: Subscriber,
        event_type: type[Event] = Event,
    ) -> Callable[[], None]:
        """Register a callback. Returns a function that unsubscribes it."""
        entry = (event_type, callback)
        self._subscribers.append(entry)

        def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    def publish(self, event: Event) -> None:
        for event_type, callback in list(self._subscribers):
            if not isinstance(event, event_type):
                continue
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._pending.add(task)
                    task.add_done_callback(self._task_done)
            except Exception as e:
                logger.warning(f"Subscriber {callback!r} failed for {type(event).__name__}: {e}")
                logger.debug("Subscriber failure", exc_info=True)

    def _task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Async subscriber failed: {task.exception()}")
