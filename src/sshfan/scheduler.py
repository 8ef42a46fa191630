"""Concurrent fan-out of one operation over many hosts."""

import logging
import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import Iterator, Optional, Sequence

from sshfan.errors import SchedulerError
from sshfan.executor import HostExecutor
from sshfan.models import CompletionEvent, HostSpec, Operation
from sshfan.remote.base import RemoteSessionProvider
from sshfan.remote.ssh import SSHSessionProvider
from sshfan.sequencer import Emit, ResultSequencer

logger = logging.getLogger(__name__)


class QueueFullError(Exception):
    """Put on a queue already holding ``capacity`` events."""


class QueueClosedError(Exception):
    """Put on a queue that was already closed."""


class CompletionQueue:
    """Bounded, closable queue of completion events.

    Producers never block: ``put_nowait`` fails instead. The single consumer
    iterates until the queue is closed and empty. Closing with an error makes
    the consumer raise that error once buffered events are drained.
    """

    def __init__(self, capacity: int):
        if capacity < 0:
            raise ValueError(f"capacity must be >= 0, got {capacity}")
        self.capacity = capacity
        self._events: deque[CompletionEvent] = deque()
        self._cond = threading.Condition()
        self._closed = False
        self._error: Optional[BaseException] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def put_nowait(self, event: CompletionEvent) -> None:
        with self._cond:
            if self._closed:
                raise QueueClosedError(f"queue closed, dropping event {event.index}")
            if len(self._events) >= self.capacity:
                raise QueueFullError(f"queue full at {self.capacity}, dropping event {event.index}")
            self._events.append(event)
            self._cond.notify()

    def close(self, error: Optional[BaseException] = None) -> None:
        with self._cond:
            self._closed = True
            if error is not None and self._error is None:
                self._error = error
            self._cond.notify_all()

    def get(self) -> Optional[CompletionEvent]:
        """Block for the next event; ``None`` once closed and drained."""
        with self._cond:
            while not self._events and not self._closed:
                self._cond.wait()
            if self._events:
                return self._events.popleft()
            if self._error is not None:
                raise self._error
            return None

    def __iter__(self) -> Iterator[CompletionEvent]:
        while True:
            event = self.get()
            if event is None:
                return
            yield event


class FanOutScheduler:
    """Runs a HostExecutor over a host list with at most ``workers`` at once.

    Each run gets its own thread pool, so independent runs never share
    workers.
    """

    def __init__(self, executor: HostExecutor, workers: int = 1):
        """Initialize the scheduler.

        Args:
            executor: Per-host executor shared by all workers.
            workers: Maximum number of hosts in flight (1 means sequential).

        Raises:
            ValueError: If workers is less than 1.
        """
        if workers < 1:
            raise ValueError(f"workers must be >= 1, got {workers}")
        self.executor = executor
        self.workers = workers

    def start(self, hosts: Sequence[HostSpec], operation: Operation) -> CompletionQueue:
        """Dispatch the operation to every host in the background.

        Args:
            hosts: Hosts in input order; ``hosts[i].index`` must equal ``i``.
            operation: The operation to run on each host.

        Returns:
            A queue that receives exactly one event per host and is closed
            once all hosts have completed.
        """
        for position, host in enumerate(hosts):
            if host.index != position:
                raise ValueError(
                    f"host {host.address} has index {host.index} at position {position}"
                )

        queue = CompletionQueue(len(hosts))
        dispatcher = threading.Thread(
            target=self._dispatch,
            args=(list(hosts), operation, queue),
            name="sshfan-dispatch",
            daemon=True,
        )
        dispatcher.start()
        return queue

    def _dispatch(
        self, hosts: list[HostSpec], operation: Operation, queue: CompletionQueue
    ) -> None:
        logger.debug("Dispatching to %d hosts with %d workers", len(hosts), self.workers)
        try:
            with ThreadPoolExecutor(
                max_workers=self.workers, thread_name_prefix="sshfan-worker"
            ) as pool:
                futures = [
                    pool.submit(self._run_one, host, operation, queue) for host in hosts
                ]
                for future in futures:
                    future.result()
        except BaseException as e:
            logger.error("Aborting run: %s", e)
            error = e if isinstance(e, SchedulerError) else SchedulerError(f"dispatch failed: {e}")
            queue.close(error)
            return

        queue.close()

    def _run_one(self, host: HostSpec, operation: Operation, queue: CompletionQueue) -> None:
        result = self.executor.run(host, operation)
        event = CompletionEvent(index=host.index, host=host, result=result)
        try:
            queue.put_nowait(event)
        except (QueueFullError, QueueClosedError) as e:
            raise SchedulerError(f"cannot deliver result for {host.address}: {e}") from e


def run_operation(
    hosts: Sequence[HostSpec],
    operation: Operation,
    emit: Emit,
    provider: Optional[RemoteSessionProvider] = None,
    workers: int = 1,
    stable: bool = False,
) -> int:
    """Run an operation on every host and hand each outcome to ``emit``.

    Args:
        hosts: Hosts in input order.
        operation: RunCommand or SendFile.
        emit: Called as ``emit(host, outcome)`` once per host, from this thread.
        provider: Session provider; SSH when omitted.
        workers: Maximum number of hosts in flight.
        stable: Emit in host order instead of completion order.

    Returns:
        Number of outcomes emitted.
    """
    if provider is None:
        provider = SSHSessionProvider()
    scheduler = FanOutScheduler(HostExecutor(provider), workers=workers)
    queue = scheduler.start(hosts, operation)
    return ResultSequencer(emit, stable=stable).consume(queue, len(hosts))
