"""
Record Store - thin repository over a SQLAlchemy session

Capabilities used by the ledger core:
    get / query / put / delete   - per-record CRUD and filtered queries
    atomic()                     - all-or-nothing batch (one DB transaction)
    increment()                  - SQL-side `field = field + :delta`, no read-modify-write
    increment_where()            - the same for several columns of the rows matching a filter
    insert_if_absent()           - INSERT ... ON CONFLICT DO NOTHING
    compare_and_set()            - conditional update guarded by expected column values
"""
import logging
from contextlib import contextmanager
from typing import Any, Iterator, Optional, Sequence

from sqlalchemy import update, delete as sa_delete
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from fintrack.domain.errors import ConflictError, StorageError

logger = logging.getLogger(__name__)


class RecordStore:
    """
    Repository for ledger records

    Writes made inside `atomic()` are flushed but not committed until the
    block exits cleanly; any exception rolls the whole batch back.
    """

    def __init__(self, db: Session):
        self.db = db

    def get(self, model, record_id: Any):
        """Fetch one record by primary key, None if missing."""
        try:
            return self.db.get(model, record_id)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load {model.__name__} #{record_id}") from e

    def query(
        self,
        model,
        *filters,
        order_by: Optional[Sequence] = None,
        limit: Optional[int] = None,
    ) -> list:
        """
        Equality / range query

        Example:
            >>> store.query(
            ...     Transaction,
            ...     Transaction.owner_id == 1,
            ...     Transaction.date >= start,
            ...     order_by=[Transaction.date.desc()],
            ...     limit=5,
            ... )
        """
        q = self.db.query(model).filter(*filters)
        if order_by:
            q = q.order_by(*order_by)
        if limit is not None:
            q = q.limit(limit)
        try:
            return q.all()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to query {model.__name__}") from e

    def put(self, record):
        """Insert or update a record; flushed so generated ids are available."""
        self.db.add(record)
        self.db.flush()
        return record

    def delete(self, record) -> None:
        self.db.delete(record)
        self.db.flush()

    def delete_where(self, model, *filters) -> int:
        """Bulk delete; returns number of removed rows."""
        result = self.db.execute(
            sa_delete(model).where(*filters).execution_options(synchronize_session="fetch")
        )
        return result.rowcount

    def increment(self, model, record_id: Any, field: str, delta, **values) -> int:
        """
        Atomic `field = field + delta` on one row.

        Extra keyword arguments are written as plain values in the same
        statement (e.g. updated_at).

        Returns:
            Number of updated rows (0 if the record does not exist)
        """
        column = getattr(model, field)
        pk = model.__mapper__.primary_key[0]
        stmt = (
            update(model)
            .where(pk == record_id)
            .values({column: column + delta, **values})
            .execution_options(synchronize_session="fetch")
        )
        result = self.db.execute(stmt)
        return result.rowcount

    def increment_where(self, model, filters: Sequence, **deltas) -> int:
        """
        Atomic `col = col + delta` for every keyword, on the rows matching
        `filters`, in one UPDATE.

        Returns:
            Number of updated rows
        """
        values = {getattr(model, name): getattr(model, name) + delta for name, delta in deltas.items()}
        stmt = (
            update(model)
            .where(*filters)
            .values(values)
            .execution_options(synchronize_session="fetch")
        )
        result = self.db.execute(stmt)
        return result.rowcount

    def insert_if_absent(self, model, conflict_columns: Sequence[str], **values) -> int:
        """
        Insert one row unless a row with the same `conflict_columns` exists.

        Runs as a single statement, so two writers racing on the same key
        never fail and never produce two rows.

        Returns:
            1 if the row was inserted, 0 if it already existed
        """
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            stmt = postgresql.insert(model.__table__)
        elif dialect == "sqlite":
            stmt = sqlite.insert(model.__table__)
        else:
            raise StorageError(f"insert_if_absent is not supported on {dialect}")
        stmt = stmt.values(**values).on_conflict_do_nothing(index_elements=list(conflict_columns))
        result = self.db.execute(stmt)
        return result.rowcount

    def compare_and_set(self, model, record_id: Any, expected: dict, **values) -> int:
        """
        Write `values` only if every column in `expected` still holds the
        expected value.

        Returns:
            1 if the row was updated, 0 if it changed underneath us (or is gone)
        """
        pk = model.__mapper__.primary_key[0]
        conditions = [getattr(model, name) == value for name, value in expected.items()]
        stmt = (
            update(model)
            .where(pk == record_id, *conditions)
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        result = self.db.execute(stmt)
        return result.rowcount

    @contextmanager
    def atomic(self) -> Iterator["RecordStore"]:
        """
        All-or-nothing batch

        Usage:
            with store.atomic():
                store.put(tx)
                store.increment(Account, tx.account_id, "balance", tx.amount)

        Raises:
            ConflictError: a unique / integrity constraint rejected the batch
            StorageError: any other database failure
        """
        try:
            yield self
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.warning(f"Batch rejected by constraint: {e.orig}")
            raise ConflictError("Conflicting write, nothing was committed") from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database error, batch rolled back: {e}", exc_info=True)
            raise StorageError("Storage write failed, nothing was committed") from e
        except Exception:
            self.db.rollback()
            raise
