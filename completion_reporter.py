"""
Completion Reporter

Thread-safe registry of reindex handles keyed by request id. The
coordinator owns and mutates the handles through this registry; callers only
ever receive deep copies.
"""

import copy
import logging
import threading
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from reindex_models import ReindexHandle, ReindexState

logger = logging.getLogger(__name__)


class UnknownRequestError(KeyError):
    """No reindex request is registered under this id."""


class CompletionReporter:
    """
    Records intermediate and final status of reindex requests.

    Running handles are always kept. Finished handles stay available for
    status lookups until more than retain_finished requests have finished,
    then the oldest ones are evicted.
    """

    def __init__(self, retain_finished: Optional[int] = None):
        self.retain_finished = retain_finished
        self._handles: Dict[str, ReindexHandle] = {}
        self._done: Dict[str, threading.Event] = {}
        self._finished = OrderedDict()
        self._lock = threading.Lock()

    def register(self, handle: ReindexHandle) -> ReindexHandle:
        with self._lock:
            if handle.request_id in self._handles:
                raise ValueError(f"Request {handle.request_id} is already registered")
            self._handles[handle.request_id] = handle
            self._done[handle.request_id] = threading.Event()
        logger.info(f"Registered reindex request {handle.request_id}")
        return copy.deepcopy(handle)

    def _get(self, request_id: str) -> ReindexHandle:
        try:
            return self._handles[request_id]
        except KeyError:
            raise UnknownRequestError(request_id)

    def update(self, request_id: str, mutate: Callable[[ReindexHandle], None]) -> ReindexHandle:
        """
        Apply a mutation to a running handle under the lock.

        Raises:
            RuntimeError: If the handle already reached a terminal state
        """
        with self._lock:
            handle = self._get(request_id)
            if handle.state.terminal:
                raise RuntimeError(f"Request {request_id} is already {handle.state.value}")
            mutate(handle)
            return copy.deepcopy(handle)

    def finish(self, request_id: str, state: ReindexState, cancelled: bool = False) -> ReindexHandle:
        """Move a handle to a terminal state and wake up waiters."""
        if not state.terminal:
            raise ValueError(f"{state.value} is not a terminal state")

        def mutate(handle):
            handle.state = state
            handle.cancelled = cancelled
            handle.finished_at = datetime.now(timezone.utc).isoformat()

        snapshot = self.update(request_id, mutate)
        with self._lock:
            self._done[request_id].set()
            self._finished[request_id] = None
            self._evict()
        logger.info(f"Reindex request {request_id} finished as {state.value}: "
                    f"read={snapshot.read}, written={snapshot.written}, failed={snapshot.failed}")
        return snapshot

    def _evict(self) -> None:
        if self.retain_finished is None:
            return
        while len(self._finished) > self.retain_finished:
            request_id, _ = self._finished.popitem(last=False)
            self._handles.pop(request_id, None)
            self._done.pop(request_id, None)
            logger.debug(f"Evicted finished reindex request {request_id}")

    def status(self, request_id: str) -> ReindexHandle:
        """Return a read-only snapshot of a request's handle."""
        with self._lock:
            return copy.deepcopy(self._get(request_id))

    def acknowledge(self, request_id: str) -> bool:
        """True once the request reached Completed or Failed."""
        return self.status(request_id).state.terminal

    def wait(self, request_id: str, timeout: Optional[float] = None) -> ReindexHandle:
        """Block until the request is terminal or the timeout elapses, then return a snapshot."""
        with self._lock:
            self._get(request_id)
            done = self._done[request_id]
        done.wait(timeout)
        return self.status(request_id)

    def list_running(self) -> List[str]:
        with self._lock:
            return [request_id for request_id, handle in self._handles.items() if not handle.state.terminal]

    def forget(self, request_id: str) -> None:
        """Drop a terminal handle from the registry."""
        with self._lock:
            handle = self._get(request_id)
            if not handle.state.terminal:
                raise RuntimeError(f"Request {request_id} is still running")
            del self._handles[request_id]
            del self._done[request_id]
            self._finished.pop(request_id, None)
