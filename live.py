"""
Live subscriptions.

A Subscription delivers the full current result set of a query on start and
again after every change to its collection, until it is cancelled.

Change notifications come from MongoDB change streams when the server
supports them (replica sets), so writes from any process reach every
subscriber. Collections without a running change stream fall back to the
notifications published by the write helpers in ``database``, which only
cover writes made by this process.
"""
import logging
import threading
from typing import Callable, Dict, Iterable, List, Optional, Set

from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)


class ChangeFeed:
    """Change notifications keyed by collection name."""

    def __init__(self):
        self._lock = threading.Lock()
        self._listeners: Dict[str, List["Subscription"]] = {}
        self._streamed: Set[str] = set()

    def register(self, sub: "Subscription"):
        with self._lock:
            self._listeners.setdefault(sub.collection, []).append(sub)

    def unregister(self, sub: "Subscription"):
        with self._lock:
            listeners = self._listeners.get(sub.collection, [])
            if sub in listeners:
                listeners.remove(sub)

    def listener_count(self, collection_name: str) -> int:
        with self._lock:
            return len(self._listeners.get(collection_name, []))

    def mark_streamed(self, collection_name: str):
        with self._lock:
            self._streamed.add(collection_name)

    def unmark_streamed(self, collection_name: str):
        with self._lock:
            self._streamed.discard(collection_name)

    def is_streamed(self, collection_name: str) -> bool:
        with self._lock:
            return collection_name in self._streamed

    def publish_local(self, collection_name: str):
        """Called by the write helpers; the change stream covers streamed collections."""
        if not self.is_streamed(collection_name):
            self.publish(collection_name)

    def publish(self, collection_name: str):
        with self._lock:
            listeners = list(self._listeners.get(collection_name, []))
        for sub in listeners:
            sub.refresh()


feed = ChangeFeed()


class Subscription:
    def __init__(
        self,
        collection: str,
        query: Callable[[], list],
        on_snapshot: Callable[[list], None],
        on_error: Optional[Callable[[Exception], None]] = None,
        change_feed: Optional[ChangeFeed] = None,
    ):
        self.collection = collection
        self.query = query
        self.on_snapshot = on_snapshot
        self.on_error = on_error
        self.feed = change_feed or feed
        self.cancelled = False
        # query + delivery run one at a time so the last snapshot delivered
        # is never older than the last write that triggered a refresh
        self._refresh_lock = threading.RLock()

    def start(self) -> "Subscription":
        self.feed.register(self)
        self.refresh()
        return self

    def refresh(self):
        with self._refresh_lock:
            if self.cancelled:
                return
            try:
                snapshot = self.query()
            except Exception as e:
                if self.on_error is not None:
                    self.on_error(e)
                else:
                    logger.error("Live query on %s failed: %s", self.collection, e)
                return
            if self.cancelled:
                return
            try:
                self.on_snapshot(snapshot)
            except Exception:
                logger.exception("Live subscriber on %s failed to take a snapshot", self.collection)

    def cancel(self):
        if self.cancelled:
            return
        self.cancelled = True
        self.feed.unregister(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.cancel()
        return False


class ChangeStreamWatcher:
    """Turns ``collection.watch()`` events into feed notifications, one thread per collection."""

    def __init__(self, get_collection: Callable, names: Iterable[str], change_feed: Optional[ChangeFeed] = None, max_await_time_ms: int = 1000):
        self.get_collection = get_collection
        self.names = list(names)
        self.feed = change_feed or feed
        self.max_await_time_ms = max_await_time_ms
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []

    def start(self) -> "ChangeStreamWatcher":
        for name in self.names:
            thread = threading.Thread(target=self.run, args=(name,), name=f"change-stream-{name}", daemon=True)
            thread.start()
            self._threads.append(thread)
        return self

    def run(self, name: str):
        try:
            with self.get_collection(name).watch(max_await_time_ms=self.max_await_time_ms) as stream:
                self.feed.mark_streamed(name)
                logger.info("Change stream open on %s", name)
                while not self._stop.is_set() and stream.alive:
                    if stream.try_next() is not None:
                        self.feed.publish(name)
        except PyMongoError as e:
            logger.warning("Change stream on %s unavailable, using in-process notifications: %s", name, e)
        finally:
            self.feed.unmark_streamed(name)

    def stop(self, timeout: float = 5.0):
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []
