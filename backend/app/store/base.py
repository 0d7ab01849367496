"""Abstract Record Store and the process-wide change feed.

The lifecycle is written against this interface only: keyed documents per
collection, compare-and-set updates, atomic counters and change
subscriptions. Status transitions must go through conditional_update with
the expected prior fields; counters must go through atomic_increment.
"""
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Mapping, Optional, Union

logger = logging.getLogger(__name__)

Document = dict[str, Any]
ChangeFilter = Union[Mapping[str, Any], Callable[[Document], bool], None]
ChangeCallback = Callable[[str, Document], None]

CREATED = "created"
UPDATED = "updated"
DELETED = "deleted"


def _matches(change_filter: ChangeFilter, doc: Document) -> bool:
    if change_filter is None:
        return True
    if callable(change_filter):
        return bool(change_filter(doc))
    return all(doc.get(field) == value for field, value in change_filter.items())


class _Subscription:
    def __init__(self, collection: str, change_filter: ChangeFilter, on_change: ChangeCallback):
        self.id = uuid.uuid4().hex
        self.collection = collection
        self.change_filter = change_filter
        self.on_change = on_change


class ChangeFeed:
    """Fan-out of committed changes to in-process subscribers."""

    def __init__(self):
        self._subscriptions: dict[str, _Subscription] = {}
        self._lock = threading.RLock()

    def subscribe(self, collection: str, change_filter: ChangeFilter, on_change: ChangeCallback) -> Callable[[], None]:
        sub = _Subscription(collection, change_filter, on_change)
        with self._lock:
            self._subscriptions[sub.id] = sub

        def unsubscribe() -> None:
            with self._lock:
                self._subscriptions.pop(sub.id, None)

        return unsubscribe

    def publish(self, collection: str, change: str, doc: Document) -> None:
        with self._lock:
            targets = [s for s in self._subscriptions.values() if s.collection == collection]
        for sub in targets:
            if not _matches(sub.change_filter, doc):
                continue
            try:
                sub.on_change(change, doc)
            except Exception:
                # Listener errors never reach the writer
                logger.exception("Change listener %s failed on %s %s", sub.id, collection, change)

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscriptions)


default_feed = ChangeFeed()


class RecordStore(ABC):
    """Keyed document store consumed by the lifecycle services."""

    @abstractmethod
    def get(self, collection: str, record_id: str) -> Optional[Any]:
        ...

    @abstractmethod
    def find(self, collection: str, **equals: Any) -> list[Any]:
        ...

    @abstractmethod
    def create(self, collection: str, doc: Mapping[str, Any]) -> Any:
        ...

    @abstractmethod
    def conditional_update(
        self,
        collection: str,
        record_id: str,
        patch: Mapping[str, Any],
        expected: Mapping[str, Any],
    ) -> bool:
        """Apply patch only if every expected field still matches. Returns False on mismatch."""

    @abstractmethod
    def atomic_increment(self, collection: str, record_id: str, field: str, delta: float) -> bool:
        ...

    @abstractmethod
    def delete(self, collection: str, record_id: str) -> bool:
        ...

    @abstractmethod
    def subscribe(self, collection: str, change_filter: ChangeFilter, on_change: ChangeCallback) -> Callable[[], None]:
        ...

    @abstractmethod
    @contextmanager
    def atomic(self) -> Iterator["RecordStore"]:
        """Group writes into one transaction; roll back on exception."""
        yield self

    @abstractmethod
    def to_document(self, record: Any) -> Document:
        ...
