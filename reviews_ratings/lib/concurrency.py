"""
Thread pool and lock helpers for blocking review store I/O.

Store implementations are synchronous (SQLAlchemy sessions), so the async
service hands their work to a bounded pool and waits with a deadline.
"""
import asyncio
import contextvars
import threading
import weakref
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from functools import partial
from typing import Any, Callable, Iterator, Optional, TypeVar

from reviews_ratings.lib.settings import settings


T = TypeVar("T")

_executor: Optional[ThreadPoolExecutor] = None
_executor_lock = threading.Lock()


def get_executor() -> ThreadPoolExecutor:
    """Get the shared store worker pool, creating it on first use."""
    global _executor
    if _executor is None:
        with _executor_lock:
            if _executor is None:
                _executor = ThreadPoolExecutor(
                    max_workers=settings.store_max_workers,
                    thread_name_prefix="review-store",
                )
    return _executor


def shutdown_executor() -> None:
    """Stop the worker pool (called on application shutdown)."""
    global _executor
    with _executor_lock:
        if _executor is not None:
            _executor.shutdown(wait=True)
            _executor = None


async def run_blocking(
    func: Callable[..., T],
    *args: Any,
    timeout: Optional[float] = None,
    **kwargs: Any,
) -> T:
    """
    Run a blocking callable on the worker pool.

    Args:
        func: Callable to run
        timeout: Deadline in seconds; None waits indefinitely

    Raises:
        asyncio.TimeoutError: If the deadline expires. The worker thread is
            not interrupted and may still finish its unit of work.
    """
    loop = asyncio.get_running_loop()
    # Worker threads log with the caller's correlation id
    context = contextvars.copy_context()
    future = loop.run_in_executor(get_executor(), partial(context.run, func, *args, **kwargs))
    return await asyncio.wait_for(future, timeout)


class KeyedLocks:
    """
    Lazily created ``threading.Lock`` per key.

    Locks are acquired on worker threads around a store read-modify-write.
    Entries are weak: a key's lock is dropped once no caller holds or waits
    on it, so the map only grows with the number of keys in use.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()

    def get(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self.get(key):
            yield
