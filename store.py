"""Table-level access to the fleet database.

Every call runs in its own session and commits on its own: there is no
transaction spanning two calls. Successful writes are announced on a change
feed that carries the table name only.
"""
import inspect
import logging
import threading
import weakref
from dataclasses import dataclass
from datetime import date
from enum import Enum

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import SQLAlchemyError

import models  # noqa: F401  registers the tables on Base.metadata
from database import Base, get_session
from errors import StoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    operation: str


def _plain(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, date):
        return value.isoformat()
    return value


def _plain_row(row):
    return {key: _plain(value) for key, value in row.items()}


class RemoteStore:

    def __init__(self, engine):
        self.engine = engine
        self._listeners = []
        self._listeners_lock = threading.Lock()

    def table(self, name):
        try:
            return Base.metadata.tables[name]
        except KeyError:
            raise StoreError(name, "lookup", "unknown table") from None

    def _where(self, table, stmt, filters):
        for column, value in filters.items():
            if column not in table.c:
                raise StoreError(table.name, "filter", f"unknown column '{column}'")
            col = table.c[column]
            if isinstance(value, (list, tuple, set)):
                stmt = stmt.where(col.in_([_plain(v) for v in value]))
            elif value is None:
                stmt = stmt.where(col.is_(None))
            else:
                stmt = stmt.where(col == _plain(value))
        return stmt

    # --- READ OPERATIONS ---

    def select(self, table_name, order_by=None, descending=False, limit=None, **filters):
        table = self.table(table_name)
        stmt = self._where(table, select(table), filters)
        if order_by:
            col = table.c[order_by]
            stmt = stmt.order_by(col.desc() if descending else col.asc())
        if limit:
            stmt = stmt.limit(limit)
        session = get_session(self.engine)
        try:
            return [dict(row._mapping) for row in session.execute(stmt)]
        except SQLAlchemyError as e:
            raise StoreError(table_name, "select", str(e)) from e
        finally:
            session.close()

    def select_one(self, table_name, **filters):
        """First matching row (lowest id), or None."""
        rows = self.select(table_name, order_by="id", limit=1, **filters)
        return rows[0] if rows else None

    # --- WRITE OPERATIONS ---

    def insert(self, table_name, rows):
        table = self.table(table_name)
        session = get_session(self.engine)
        try:
            ids = []
            for row in rows:
                result = session.execute(insert(table).values(**_plain_row(row)))
                ids.append(result.inserted_primary_key[0])
            created = {
                r["id"]: r for r in
                (dict(row._mapping) for row in session.execute(select(table).where(table.c.id.in_(ids))))
            }
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise StoreError(table_name, "insert", str(e)) from e
        finally:
            session.close()
        if ids:
            self._notify(table_name, "insert")
        return [created[i] for i in ids]

    def update(self, table_name, patch, **filters):
        if not filters:
            raise StoreError(table_name, "update", "refusing to update without a filter")
        table = self.table(table_name)
        stmt = self._where(table, update(table), filters).values(**_plain_row(patch))
        session = get_session(self.engine)
        try:
            count = session.execute(stmt).rowcount
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise StoreError(table_name, "update", str(e)) from e
        finally:
            session.close()
        if count:
            self._notify(table_name, "update")
        return count

    def delete(self, table_name, **filters):
        if not filters:
            raise StoreError(table_name, "delete", "refusing to delete without a filter")
        table = self.table(table_name)
        stmt = self._where(table, delete(table), filters)
        session = get_session(self.engine)
        try:
            count = session.execute(stmt).rowcount
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise StoreError(table_name, "delete", str(e)) from e
        finally:
            session.close()
        if count:
            self._notify(table_name, "delete")
        return count

    # --- CHANGE FEED ---

    def subscribe(self, callback):
        """Register ``callback(ChangeEvent)``; returns a function that unsubscribes it.

        Bound methods are held weakly, so an owner that is garbage collected
        drops off the feed without unsubscribing.
        """
        if inspect.ismethod(callback):
            ref = weakref.WeakMethod(callback)
        else:
            def ref():
                return callback
        with self._listeners_lock:
            self._listeners.append(ref)

        def unsubscribe():
            with self._listeners_lock:
                self._listeners = [r for r in self._listeners if r is not ref]

        return unsubscribe

    def listener_count(self):
        with self._listeners_lock:
            return sum(1 for ref in self._listeners if ref() is not None)

    def _notify(self, table_name, operation):
        event = ChangeEvent(table_name, operation)
        with self._listeners_lock:
            self._listeners = [ref for ref in self._listeners if ref() is not None]
            listeners = [ref() for ref in self._listeners]
        for listener in listeners:
            if listener is None:
                continue
            # A failing subscriber must not turn a committed write into an error
            try:
                listener(event)
            except Exception:
                logger.exception("Change listener failed for %s", event)
