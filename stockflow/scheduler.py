"""Time-ordered queue of pending process completions.

:class:`EventScheduler` is a thin layer over the simpy event heap. Each
scheduled completion is a :class:`simpy.Event` placed on the environment's
heap with :meth:`simpy.Environment.schedule`; simpy orders the heap by
``(time, priority, insertion id)``, which gives increasing timestamp order with
FIFO tie-breaking for equal timestamps.

Unlike a generator-based simpy process, nothing is resumed when a completion
fires. :meth:`EventScheduler.advance` steps the environment until the next
live completion has been popped and returns it, leaving dispatch to the
caller (normally :meth:`stockflow.graph.Graph.run_to`).

"""
from typing import TYPE_CHECKING, Dict, NamedTuple, Optional

import simpy

if TYPE_CHECKING:
    from .simulation import SimEnvironment


class CausalityError(Exception):
    """An event was scheduled earlier than the current simulation time."""

    def __init__(self, message: str, time: float, component: str) -> None:
        super().__init__(message)
        self.time = time
        self.component = component
        self.operation = 'schedule'


class ScheduledEvent(NamedTuple):
    """A pending process completion."""

    time: float
    process: str
    seq: int


class _Completion(simpy.Event):
    def __init__(self, scheduler: 'EventScheduler', entry: ScheduledEvent) -> None:
        super().__init__(scheduler.env)
        self.entry = entry
        self.cancelled = False
        self.callbacks.append(scheduler._on_pop)
        self._ok = True
        self._value = entry
        scheduler.env.schedule(self, simpy.events.NORMAL, entry.time - self.env.now)


class EventScheduler:
    """Schedule and pop process completions in time order.

    :param SimEnvironment env: Environment whose event heap is used.

    """

    def __init__(self, env: 'SimEnvironment') -> None:
        self.env = env
        self._seq = 0
        self._pending: Dict[int, _Completion] = {}
        self._popped: Optional[ScheduledEvent] = None
        #: Timestamp of the most recently popped completion.
        self.last_time: float = env.now

    def schedule(self, at: float, process: str) -> int:
        """Schedule completion of `process` at time `at`.

        :returns: Event id usable with :meth:`cancel`.
        :raises CausalityError: If `at` is earlier than the current time.

        """
        if not at >= self.env.now:
            raise CausalityError(
                f'{process}: cannot schedule at {at}, current time is '
                f'{self.env.now}',
                time=self.env.now,
                component=process,
            )
        self._seq += 1
        entry = ScheduledEvent(at, process, self._seq)
        self._pending[entry.seq] = _Completion(self, entry)
        return entry.seq

    def cancel(self, seq: int) -> bool:
        """Cancel a not yet dispatched event.

        The cancelled event stays on the simpy heap but is skipped when popped.

        :returns: True if a pending event was cancelled.

        """
        completion = self._pending.pop(seq, None)
        if completion is None:
            return False
        completion.cancelled = True
        return True

    def clear(self) -> int:
        """Cancel all pending events; returns how many were cancelled."""
        count = 0
        for seq in list(self._pending):
            count += self.cancel(seq)
        return count

    def peek(self) -> float:
        """Time of the next event on the heap (`inf` if there is none)."""
        return self.env.peek()

    def advance(self, until: Optional[float] = None) -> Optional[ScheduledEvent]:
        """Pop the next pending completion.

        Other simpy events due before it (e.g. tracer timeouts) are processed
        on the way. Nothing is popped if the next completion lies beyond
        `until`.

        :returns: The popped :class:`ScheduledEvent` or None.

        """
        while self._pending:
            if until is not None and self.env.peek() > until:
                return None
            self._popped = None
            self.env.step()
            popped = self._popped
            if popped is not None:
                self.last_time = popped.time
                return popped
        return None

    def _on_pop(self, event: _Completion) -> None:
        if not event.cancelled:
            del self._pending[event.entry.seq]
            self._popped = event.entry

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, seq: int) -> bool:
        return seq in self._pending
