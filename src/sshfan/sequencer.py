"""Delivery of completion events to the presenter, as they arrive or in input order."""

import logging
from typing import Callable, Generic, Iterable, Optional, TypeVar

from sshfan.errors import SequencerError
from sshfan.models import CompletionEvent, HostSpec, Outcome

logger = logging.getLogger(__name__)

T = TypeVar("T")

Emit = Callable[[HostSpec, Outcome], None]


class ReorderBuffer(Generic[T]):
    """Fixed-size arena that releases items strictly in index order.

    Items may be pushed in any order. Each push returns the run of items that
    became releasable: everything from the cursor up to the first empty slot.
    """

    def __init__(self, size: int):
        if size < 0:
            raise ValueError(f"size must be >= 0, got {size}")
        self._slots: list[Optional[T]] = [None] * size
        self._filled = [False] * size
        self._cursor = 0

    @property
    def size(self) -> int:
        return len(self._slots)

    @property
    def cursor(self) -> int:
        """Index of the next item to release."""
        return self._cursor

    @property
    def pending(self) -> int:
        """Items held back waiting for a lower index."""
        return sum(self._filled[self._cursor:])

    @property
    def complete(self) -> bool:
        return self._cursor == self.size

    def push(self, index: int, item: T) -> list[T]:
        """Store an item and release whatever is now in order.

        Raises:
            IndexError: If index is outside ``[0, size)``.
            ValueError: If index was already pushed.
        """
        if not 0 <= index < self.size:
            raise IndexError(f"index {index} outside [0, {self.size})")
        if self._filled[index]:
            raise ValueError(f"index {index} pushed twice")

        self._slots[index] = item
        self._filled[index] = True

        ready = []
        while self._cursor < self.size and self._filled[self._cursor]:
            ready.append(self._slots[self._cursor])
            self._slots[self._cursor] = None
            self._cursor += 1
        return ready


class ResultSequencer:
    """Single consumer between the scheduler's queue and the presenter.

    Immediate mode emits events in completion order. Stable mode holds events
    in a ReorderBuffer and emits them in host input order.
    """

    def __init__(self, emit: Emit, stable: bool = False):
        self.emit = emit
        self.stable = stable

    def consume(self, events: Iterable[CompletionEvent], total: int) -> int:
        """Drain events until the source is exhausted.

        Args:
            events: Completion events, typically a CompletionQueue.
            total: Number of hosts in the run.

        Returns:
            Number of events emitted.

        Raises:
            SequencerError: If events are missing, duplicated or out of range.
        """
        if self.stable:
            emitted = self._consume_stable(events, total)
        else:
            emitted = self._consume_immediate(events, total)

        if emitted != total:
            raise SequencerError(f"queue closed after {emitted} of {total} results")
        return emitted

    def _consume_immediate(self, events: Iterable[CompletionEvent], total: int) -> int:
        seen: set[int] = set()
        for event in events:
            if not 0 <= event.index < total:
                raise SequencerError(f"index {event.index} outside [0, {total})")
            if event.index in seen:
                raise SequencerError(f"index {event.index} delivered twice")
            seen.add(event.index)
            self._emit(event)
        return len(seen)

    def _consume_stable(self, events: Iterable[CompletionEvent], total: int) -> int:
        buffer: ReorderBuffer[CompletionEvent] = ReorderBuffer(total)
        for event in events:
            try:
                ready = buffer.push(event.index, event)
            except (IndexError, ValueError) as e:
                raise SequencerError(str(e)) from e
            if not ready:
                logger.debug("Holding %s until index %d arrives", event.host.address, buffer.cursor)
            for item in ready:
                self._emit(item)
        return buffer.cursor

    def _emit(self, event: CompletionEvent) -> None:
        self.emit(event.host, event.outcome)
