"""Bounded thread pool used by every probe that shells out per batch."""

from __future__ import annotations

import itertools
import logging
import queue
import threading
from typing import Any, Callable, Generic, Iterable, Iterator, TypeVar

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

MAX_WORKERS = 32
QUEUE_FACTOR = 4
POLL_SECONDS = 0.1

_DONE = object()


class _Failure:
    __slots__ = ("exc",)

    def __init__(self, exc: BaseException):
        self.exc = exc


def chunked(items: Iterable[T], size: int) -> Iterator[list[T]]:
    it = iter(items)
    while True:
        chunk = list(itertools.islice(it, size))
        if not chunk:
            return
        yield chunk


class WorkerPool(Generic[T, R]):
    """Map ``func`` over batches with at most ``concurrency`` in flight.

    Both the inbound and outbound queues hold at most ``4 * concurrency``
    items, so a slow consumer stalls the workers and the workers stall the
    feeder. The first exception raised by ``func`` is re-raised from the
    result iterator and the remaining workers are told to stop.
    """

    def __init__(self, concurrency: int, func: Callable[[T], R], name: str = "pool"):
        if not 1 <= concurrency <= MAX_WORKERS:
            raise ValueError(f"concurrency must be between 1 and {MAX_WORKERS}, got {concurrency}")
        self.concurrency = concurrency
        self.func = func
        self.name = name
        self.queue_size = QUEUE_FACTOR * concurrency

    def map(self, batches: Iterable[T]) -> Iterator[R]:
        inbound: queue.Queue[Any] = queue.Queue(maxsize=self.queue_size)
        outbound: queue.Queue[Any] = queue.Queue(maxsize=self.queue_size)
        stop = threading.Event()

        def put(q: queue.Queue[Any], item: Any) -> bool:
            while not stop.is_set():
                try:
                    q.put(item, timeout=POLL_SECONDS)
                    return True
                except queue.Full:
                    continue
            return False

        def feed() -> None:
            try:
                for batch in batches:
                    if not batch:
                        continue
                    if not put(inbound, batch):
                        return
            except Exception as exc:  # pylint: disable=broad-except
                put(outbound, _Failure(exc))
            finally:
                for _ in range(self.concurrency):
                    put(inbound, _DONE)

        def work() -> None:
            try:
                while not stop.is_set():
                    try:
                        batch = inbound.get(timeout=POLL_SECONDS)
                    except queue.Empty:
                        continue
                    if batch is _DONE:
                        return
                    try:
                        result = self.func(batch)
                    except Exception as exc:  # pylint: disable=broad-except
                        LOGGER.debug("worker_failed pool=%s err=%s", self.name, exc)
                        put(outbound, _Failure(exc))
                        return
                    if not put(outbound, result):
                        return
            finally:
                put(outbound, _DONE)

        threads = [threading.Thread(target=feed, name=f"{self.name}-feed", daemon=True)]
        threads.extend(
            threading.Thread(target=work, name=f"{self.name}-{i}", daemon=True)
            for i in range(self.concurrency)
        )
        for t in threads:
            t.start()

        finished = 0
        try:
            while finished < self.concurrency:
                item = outbound.get()
                if item is _DONE:
                    finished += 1
                    continue
                if isinstance(item, _Failure):
                    raise item.exc
                yield item
            for t in threads:
                t.join()
        finally:
            stop.set()


class Deferred(Generic[R]):
    """One-shot background computation; ``wait()`` blocks for its result."""

    def __init__(self, func: Callable[..., R], *args: Any, name: str = "deferred"):
        self._done = threading.Event()
        self._value: R | None = None
        self._error: BaseException | None = None
        self._thread = threading.Thread(target=self._run, args=(func, *args), name=name, daemon=True)
        self._thread.start()

    def _run(self, func: Callable[..., R], *args: Any) -> None:
        try:
            self._value = func(*args)
        except Exception as exc:  # pylint: disable=broad-except
            self._error = exc
        finally:
            self._done.set()

    def done(self) -> bool:
        return self._done.is_set()

    def wait(self) -> R:
        self._done.wait()
        if self._error is not None:
            raise self._error
        return self._value  # type: ignore[return-value]
