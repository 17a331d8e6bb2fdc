"""
StateStore: holds the current FormSnapshot and publishes every commit.

commit() is the single writer. Listeners are called synchronously in
registration order; a commit issued from inside a listener updates the
current snapshot immediately but is delivered only after the in-progress
delivery finishes, so every listener observes every snapshot in commit order.
"""
import asyncio
import logging
from collections import deque
from typing import Callable, Deque, List, Set

from formstate.errors import EngineDisposedError
from formstate.snapshot_model import FormSnapshot

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[FormSnapshot], None]


class StateStore:

    def __init__(self, initial: FormSnapshot):
        self._snapshot = initial
        self._listeners: List[SnapshotListener] = []
        self._queue: Deque[FormSnapshot] = deque()
        self._waiters: Set[asyncio.Future] = set()
        self._delivering = False
        self._disposed = False

    @property
    def snapshot(self) -> FormSnapshot:
        return self._snapshot

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def commit(self, snapshot: FormSnapshot) -> None:
        """Replace the current snapshot and notify listeners."""
        if self._disposed:
            logger.debug("STORE: commit ignored, store disposed")
            return
        self._snapshot = snapshot
        self._queue.append(snapshot)
        if self._delivering:
            return

        self._delivering = True
        try:
            while self._queue:
                published = self._queue.popleft()
                for listener in list(self._listeners):
                    try:
                        listener(published)
                    except Exception as e:
                        logger.warning(f"Error in snapshot listener: {e}")
        finally:
            self._delivering = False

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    async def wait_until(self, predicate: Callable[[FormSnapshot], bool]) -> FormSnapshot:
        """Resolve with the first snapshot (current included) satisfying predicate.

        Raises EngineDisposedError if the store is, or becomes, disposed
        before that happens.
        """
        if predicate(self._snapshot):
            return self._snapshot
        if self._disposed:
            raise EngineDisposedError("StateStore has been disposed")

        future: asyncio.Future = asyncio.get_running_loop().create_future()

        def listener(snapshot: FormSnapshot) -> None:
            if not future.done() and predicate(snapshot):
                future.set_result(snapshot)

        unsubscribe = self.subscribe(listener)
        self._waiters.add(future)
        try:
            return await future
        finally:
            self._waiters.discard(future)
            unsubscribe()

    def dispose(self) -> None:
        self._disposed = True
        self._listeners.clear()
        self._queue.clear()
        for future in list(self._waiters):
            if not future.done():
                future.set_exception(EngineDisposedError("StateStore disposed while waiting"))
        self._waiters.clear()
