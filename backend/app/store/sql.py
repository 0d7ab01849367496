"""SQLAlchemy implementation of the Record Store.

conditional_update is a single ``UPDATE ... WHERE <expected>`` statement,
so two writers racing on the same prior status cannot both win: the loser
sees rowcount 0. Every conditional write bumps ``version``.
"""
import logging
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Mapping, Optional

from sqlalchemy import inspect, update
from sqlalchemy.orm import Session

from app.models.group_request import GroupRequest
from app.models.meeting import Meeting
from app.models.request import Request
from app.models.request_mutation import RequestMutation
from app.models.response import HiddenRequest, Response
from app.store.base import (
    CREATED,
    DELETED,
    UPDATED,
    ChangeCallback,
    ChangeFeed,
    ChangeFilter,
    Document,
    RecordStore,
    default_feed,
)

logger = logging.getLogger(__name__)

# collection name -> (model, primary key attribute)
COLLECTIONS: dict[str, tuple[Any, str]] = {
    "requests": (Request, "request_id"),
    "group_requests": (GroupRequest, "request_id"),
    "responses": (Response, "response_id"),
    "meetings": (Meeting, "meeting_id"),
    "hidden_requests": (HiddenRequest, "request_id"),
    "request_mutations": (RequestMutation, "mutation_id"),
}


class UnknownCollectionError(KeyError):
    pass


class SqlRecordStore(RecordStore):
    """Record Store bound to one SQLAlchemy session."""

    def __init__(self, session: Session, feed: Optional[ChangeFeed] = None):
        self.session = session
        self.feed = feed or default_feed
        self._depth = 0
        self._pending: list[tuple[str, str, Any]] = []

    # ── helpers ─────────────────────────────────────────────────────
    def _model(self, collection: str):
        try:
            return COLLECTIONS[collection]
        except KeyError:
            raise UnknownCollectionError(collection) from None

    def to_document(self, record: Any) -> Document:
        if record is None:
            return {}
        mapper = inspect(record).mapper
        return {attr.key: getattr(record, attr.key) for attr in mapper.column_attrs}

    def _queue(self, collection: str, change: str, payload: Any) -> None:
        self._pending.append((collection, change, payload))
        if self._depth == 0:
            self._commit()

    def _commit(self) -> None:
        self.session.commit()
        pending, self._pending = self._pending, []
        for collection, change, payload in pending:
            if isinstance(payload, dict):
                doc = payload
            else:
                record = self.get(collection, payload)
                if record is None:
                    continue
                doc = self.to_document(record)
            self.feed.publish(collection, change, doc)

    # ── RecordStore ─────────────────────────────────────────────────
    @contextmanager
    def atomic(self) -> Iterator["SqlRecordStore"]:
        self._depth += 1
        try:
            yield self
        except BaseException:
            self._depth -= 1
            if self._depth == 0:
                self.session.rollback()
                self._pending.clear()
            raise
        self._depth -= 1
        if self._depth == 0:
            self._commit()

    def get(self, collection: str, record_id: str) -> Optional[Any]:
        model, _ = self._model(collection)
        if collection == "hidden_requests":
            raise UnknownCollectionError("hidden_requests has a composite key; use find()")
        return self.session.get(model, record_id, populate_existing=True)

    def find(self, collection: str, **equals: Any) -> list[Any]:
        model, _ = self._model(collection)
        query = self.session.query(model).populate_existing()
        if equals:
            query = query.filter_by(**equals)
        if "created_at" in model.__table__.c:
            query = query.order_by(model.created_at)
        return query.all()

    def create(self, collection: str, doc: Mapping[str, Any]) -> Any:
        model, pk = self._model(collection)
        record = model(**dict(doc))
        self.session.add(record)
        self.session.flush()
        if len(inspect(model).primary_key) > 1:
            self._queue(collection, CREATED, self.to_document(record))
        else:
            self._queue(collection, CREATED, getattr(record, pk))
        return record

    def conditional_update(
        self,
        collection: str,
        record_id: str,
        patch: Mapping[str, Any],
        expected: Mapping[str, Any],
    ) -> bool:
        model, pk = self._model(collection)
        stmt = update(model).where(getattr(model, pk) == record_id)
        for field, value in expected.items():
            column = getattr(model, field)
            stmt = stmt.where(column.is_(None) if value is None else column == value)
        values = dict(patch)
        if "version" in model.__table__.c:
            values["version"] = model.version + 1
        stmt = stmt.values(**values).execution_options(synchronize_session=False)
        result = self.session.execute(stmt)
        if result.rowcount != 1:
            logger.debug("Conditional update on %s/%s lost (expected %s)", collection, record_id, dict(expected))
            return False
        self._queue(collection, UPDATED, record_id)
        return True

    def atomic_increment(self, collection: str, record_id: str, field: str, delta: float) -> bool:
        model, pk = self._model(collection)
        column = getattr(model, field)
        stmt = (
            update(model)
            .where(getattr(model, pk) == record_id)
            .values({field: column + delta})
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        if result.rowcount != 1:
            return False
        self._queue(collection, UPDATED, record_id)
        return True

    def delete(self, collection: str, record_id: str) -> bool:
        record = self.get(collection, record_id)
        if record is None:
            return False
        doc = self.to_document(record)
        self.session.delete(record)
        self.session.flush()
        self._queue(collection, DELETED, doc)
        return True

    def subscribe(self, collection: str, change_filter: ChangeFilter, on_change: ChangeCallback) -> Callable[[], None]:
        self._model(collection)
        return self.feed.subscribe(collection, change_filter, on_change)
