"""Background execution for Trakt calls and the handles returned to callers."""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Optional
import threading

from traktkit.backend.common.errors import TaskError
from traktkit.backend.common.logging import get_logger

log = get_logger(__name__)



class RequestHandle:
    """Caller-side handle for one in-flight call.

    The continuation attached to a handle runs at most once.  ``cancel()``
    suppresses delivery; the network exchange itself may still finish.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cancelled = False
        self._settled = threading.Event()
        self._future: Optional[Future] = None

    def attach(self, future: Future) -> None:
        self._future = future

    def cancel(self) -> bool:
        with self._lock:
            if self._settled.is_set():
                return False
            self._cancelled = True
        if self._future is not None:
            self._future.cancel()
        self._settled.set()
        return True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def done(self) -> bool:
        return self._settled.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the result was delivered or suppressed."""

        return self._settled.wait(timeout)

    def deliver(self, completion: Optional[Callable[[Any], None]], result: Any) -> bool:
        with self._lock:
            if self._cancelled or self._settled.is_set():
                return False
            # Settle before running the continuation so a late cancel() is a no-op.
            self._settled.set()
        if completion is not None:
            completion(result)
        return True


@dataclass
class TaskSpec:
    fn: Callable[..., Any]
    args: tuple[Any, ...] = ()
    kwargs: dict[str, Any] = field(default_factory=dict)
    name: str = "task"


class TaskRunner:
    """Tiny in-process task runner backing the asynchronous client API."""

    def __init__(self, max_workers: int = 4, *, context: Optional[str] = None):
        self._context = context or "trakt"
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, max_workers),
            thread_name_prefix=f"{self._context}-task",
        )
        self._closed = False
        self._lock = threading.Lock()

    def submit(self, spec: TaskSpec) -> Future:
        if self._closed:
            raise TaskError("TaskRunner is closed")

        def _wrapped():
            log.debug("task_start", extra={"task": spec.name})
            try:
                result = spec.fn(*spec.args, **spec.kwargs)
            except Exception:
                log.exception("task_fail", extra={"task": spec.name})
                raise
            log.debug("task_done", extra={"task": spec.name})
            return result

        return self._executor.submit(_wrapped)

    def close(self, wait: bool = True) -> None:
        with self._lock:
            if not self._closed:
                self._executor.shutdown(wait=wait, cancel_futures=not wait)
                self._closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close(wait=True)
