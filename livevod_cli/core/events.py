"""
Typed lifecycle events and the bus that delivers them to observers.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, ClassVar

from livevod_cli.models.job import JobSnapshot

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobEvent:
    """Base class of every event; subscribing to it receives all of them."""

    name: ClassVar[str] = "event"
    job_id: str


@dataclass(frozen=True)
class JobAdded(JobEvent):
    name: ClassVar[str] = "added"
    snapshot: JobSnapshot


@dataclass(frozen=True)
class JobStarted(JobEvent):
    name: ClassVar[str] = "started"


@dataclass(frozen=True)
class JobProgress(JobEvent):
    name: ClassVar[str] = "progress"
    percent: float
    current_time: float
    duration: float
    speed: float


@dataclass(frozen=True)
class JobCompleted(JobEvent):
    name: ClassVar[str] = "completed"
    output_path: str


@dataclass(frozen=True)
class JobFailed(JobEvent):
    name: ClassVar[str] = "failed"
    message: str


@dataclass(frozen=True)
class JobCancelled(JobEvent):
    name: ClassVar[str] = "cancelled"


@dataclass(frozen=True)
class JobRemoved(JobEvent):
    name: ClassVar[str] = "removed"


EventCallback = Callable[[JobEvent], None]


class EventBus:
    """
    Synchronous publish/subscribe hub.

    Callbacks run in publication order on the caller's thread. A callback that
    raises is logged and skipped; it never interrupts the engine or the other
    subscribers.
    """

    def __init__(self):
        self._subscribers: dict[type[JobEvent], list[EventCallback]] = defaultdict(
            list
        )

    def subscribe(
        self, callback: EventCallback, *event_types: type[JobEvent]
    ) -> Callable[[], None]:
        """
        Registers `callback` for the given event types (all events if none given).

        Returns:
            A function that removes the subscription.
        """
        types = event_types or (JobEvent,)
        for event_type in types:
            self._subscribers[event_type].append(callback)

        def unsubscribe() -> None:
            for event_type in types:
                if callback in self._subscribers[event_type]:
                    self._subscribers[event_type].remove(callback)

        return unsubscribe

    def publish(self, event: JobEvent) -> None:
        for event_type in type(event).__mro__:
            if event_type not in self._subscribers:
                continue
            for callback in list(self._subscribers[event_type]):
                try:
                    callback(event)
                except Exception as e:
                    log.error(
                        f"Event subscriber failed on '{event.name}' for job "
                        f"{event.job_id}: {e}",
                        exc_info=log.getEffectiveLevel() == logging.DEBUG,
                    )
