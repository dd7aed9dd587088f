"""Parallel task group with first-error cancellation and an optional shared deadline."""

import logging
import threading
import time
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from typing import Any, Callable, List, Optional

from eepromsync.errors import DeadlineExceeded, TaskCancelled

log = logging.getLogger(__name__)


class CancelToken:
    """
    Cancellation signal shared by every task of a group. Fires when cancel() is called
    or when the optional wall-clock deadline elapses. Tasks call check() at each
    suspension point and use remaining() to bound blocking calls.
    """

    def __init__(
        self,
        deadline_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self._deadline = clock() + deadline_seconds if deadline_seconds is not None else None
        self._event = threading.Event()

    @property
    def has_deadline(self) -> bool:
        return self._deadline is not None

    def cancel(self) -> None:
        self._event.set()

    def cancelled(self) -> bool:
        return self._event.is_set()

    def expired(self) -> bool:
        return self._deadline is not None and self._clock() >= self._deadline

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline (never negative), or None without a deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def check(self) -> None:
        """Raise DeadlineExceeded once the deadline elapsed, TaskCancelled once cancelled."""
        if self.expired():
            raise DeadlineExceeded("deadline exceeded")
        if self.cancelled():
            raise TaskCancelled("cancelled")


class TaskGroup:
    """
    Fan-out/fan-in over a thread pool. go() schedules a task, wait() blocks until every
    task finished, one failed, or the token's deadline elapsed. On failure the token is
    cancelled, queued tasks never start, running tasks are awaited (they observe the
    token) and the first real error is raised.
    """

    def __init__(
        self,
        max_workers: int = 8,
        token: Optional[CancelToken] = None,
        name: str = "tasks",
    ) -> None:
        self._token = token or CancelToken()
        self._name = name
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix=f"eepromsync-{name}"
        )
        self._futures: List[Future] = []
        self._closed = False

    @property
    def token(self) -> CancelToken:
        return self._token

    def __enter__(self) -> "TaskGroup":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self._token.cancel()
            self._executor.shutdown(wait=True, cancel_futures=True)
            return
        if not self._closed:
            self.wait()

    def go(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        """Schedule fn(*args, **kwargs). Not allowed after wait()."""
        if self._closed:
            raise RuntimeError(f"task group {self._name!r} is already closed")
        fut = self._executor.submit(self._run, fn, args, kwargs)
        self._futures.append(fut)
        return fut

    def _run(self, fn: Callable[..., Any], args: tuple, kwargs: dict) -> Any:
        # A task dequeued after cancellation exits without doing any work
        self._token.check()
        return fn(*args, **kwargs)

    def wait(self) -> List[Any]:
        """Wait for all tasks; return their results in submission order or raise the first error."""
        self._closed = True
        pending = set(self._futures)
        error: Optional[BaseException] = None
        log.debug("Waiting for %d %s task(s)", len(pending), self._name)
        try:
            while pending:
                done, pending = wait(
                    pending, timeout=self._token.remaining(), return_when=FIRST_EXCEPTION
                )
                error = _first_error(self._futures, done)
                if error is not None:
                    break
                if pending and self._token.expired():
                    error = DeadlineExceeded(
                        f"{self._name}: deadline exceeded with {len(pending)} task(s) unfinished"
                    )
                    break
        finally:
            if error is not None or pending:
                self._token.cancel()
            self._executor.shutdown(wait=True, cancel_futures=True)
        if error is not None:
            log.debug("%s task group failed: %s", self._name, error)
            raise error
        return [f.result() for f in self._futures]


def _first_error(futures: List[Future], done) -> Optional[BaseException]:
    """Earliest-submitted failure among the finished futures.

    A real error is preferred over TaskCancelled, which only reports that a
    sibling already failed.
    """
    cancelled: Optional[BaseException] = None
    for fut in futures:
        if fut not in done or fut.cancelled():
            continue
        exc = fut.exception()
        if exc is None:
            continue
        if isinstance(exc, TaskCancelled):
            cancelled = cancelled or exc
            continue
        return exc
    return cancelled
