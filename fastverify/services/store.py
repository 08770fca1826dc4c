"""
FastVerify Booth - Local Store

Durable keyed collections over an embedded SQLite file.

Features:
- Five named collections (voters, audit logs, OTP verifications, config, sync status)
- Idempotent upserts keyed by each collection's declared unique key
- Bounded, order-stable queries (no unbounded scans)
- Multi-collection units of work that commit together or not at all
- Append-only enforcement for audit logs
"""

import enum
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Iterable, List, Mapping, Optional, Type, Union

from sqlalchemy import ColumnElement, delete, func, inspect, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from fastverify.config import Settings
from fastverify.database import Base, create_session_factory, create_store_engine
from fastverify.models import (
    AuditLogEntry,
    ConfigEntry,
    ConfigKey,
    OTPVerification,
    SyncStatusEntry,
    VoterRecord,
)
from fastverify.utils.clock import SystemClock
from fastverify.utils.errors import ErrorCode, StorageError, ValidationError

logger = logging.getLogger(__name__)


class Collection(str, enum.Enum):
    """Named collections held by the local store."""
    VOTERS = "voters"
    AUDIT_LOGS = "audit_logs"
    OTP_VERIFICATIONS = "otp_verifications"
    CONFIG = "config"
    SYNC_STATUS = "sync_status"


COLLECTION_MODELS: Dict[Collection, Type[Base]] = {
    Collection.VOTERS: VoterRecord,
    Collection.AUDIT_LOGS: AuditLogEntry,
    Collection.OTP_VERIFICATIONS: OTPVerification,
    Collection.CONFIG: ConfigEntry,
    Collection.SYNC_STATUS: SyncStatusEntry,
}

APPEND_ONLY_COLLECTIONS = frozenset({Collection.AUDIT_LOGS})

DEFAULT_QUERY_LIMIT = 100


def model_for(collection: Collection) -> Type[Base]:
    return COLLECTION_MODELS[Collection(collection)]


def key_column(collection: Collection):
    model = model_for(collection)
    return getattr(model, model.__key__)


def _column_names(model: Type[Base]) -> frozenset:
    return frozenset(attr.key for attr in inspect(model).column_attrs)


class StoreTransaction:
    """
    Unit of work over the local store.

    Obtained from LocalStore.transaction(); every operation performed on it
    is committed together when the context exits cleanly.
    """

    def __init__(self, session: AsyncSession, max_query_limit: int):
        self.session = session
        self.max_query_limit = max_query_limit

    async def get(self, collection: Collection, key: Any) -> Optional[Base]:
        """Look up one record by its unique key."""
        return await self.session.get(model_for(collection), key)

    async def get_value(self, collection: Collection, key: str, default: Any = None) -> Any:
        """Return the `value` field of a key/value row, or default."""
        record = await self.get(collection, key)
        return record.value if record is not None else default

    async def put(self, collection: Collection, record: Mapping[str, Any]) -> Base:
        """
        Upsert one record keyed by the collection's unique key.

        Append-only collections accept new rows only.
        """
        collection = Collection(collection)
        model = model_for(collection)
        unknown = set(record) - _column_names(model)
        if unknown:
            raise ValidationError(
                f"Unknown fields for {collection.value}: {', '.join(sorted(unknown))}",
                details={"collection": collection.value},
            )

        key = record.get(model.__key__)
        if key is not None:
            existing = await self.session.get(model, key)
            if existing is not None:
                if collection in APPEND_ONLY_COLLECTIONS:
                    raise ValidationError(
                        f"{collection.value} is append-only; record {key} already exists",
                        code=ErrorCode.APPEND_ONLY_VIOLATION,
                    )
                for field, value in record.items():
                    setattr(existing, field, value)
                await self.session.flush()
                return existing

        instance = model(**record)
        self.session.add(instance)
        await self.session.flush()
        return instance

    async def bulk_put(self, collection: Collection, records: Iterable[Mapping[str, Any]]) -> int:
        """Upsert many records; returns the number written."""
        count = 0
        for record in records:
            await self.put(collection, record)
            count += 1
        return count

    async def query(
        self,
        collection: Collection,
        *where: ColumnElement[bool],
        limit: int = DEFAULT_QUERY_LIMIT,
        order_by: Optional[Union[str, Any]] = None,
        descending: bool = False,
    ) -> List[Base]:
        """
        Bounded query. Results are ordered by `order_by` (if given) and then
        by the key column so repeated calls return rows in the same order.
        """
        model = model_for(collection)
        if limit <= 0:
            raise ValidationError("Query limit must be positive", field="limit")
        limit = min(limit, self.max_query_limit)

        columns = []
        if order_by is not None:
            columns.append(getattr(model, order_by) if isinstance(order_by, str) else order_by)
        columns.append(key_column(collection))
        ordering = [col.desc() if descending else col.asc() for col in columns]

        stmt = select(model).where(*where).order_by(*ordering).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count(self, collection: Collection, *where: ColumnElement[bool]) -> int:
        model = model_for(collection)
        stmt = select(func.count()).select_from(model).where(*where)
        result = await self.session.execute(stmt)
        return int(result.scalar_one())

    async def update_where(
        self,
        collection: Collection,
        values: Mapping[str, Any],
        *where: ColumnElement[bool],
    ) -> int:
        """Set `values` on every matching row; returns the number of rows changed."""
        collection = Collection(collection)
        if not where:
            raise ValidationError("update_where requires at least one predicate")
        if collection in APPEND_ONLY_COLLECTIONS:
            forbidden = set(values) - AuditLogEntry.MUTABLE_FIELDS
            if forbidden:
                raise ValidationError(
                    f"{collection.value} is append-only; cannot change {', '.join(sorted(forbidden))}",
                    code=ErrorCode.APPEND_ONLY_VIOLATION,
                )
        model = model_for(collection)
        stmt = update(model).where(*where).values(**values).execution_options(synchronize_session=False)
        result = await self.session.execute(stmt)
        return result.rowcount or 0

    async def delete_where(self, collection: Collection, *where: ColumnElement[bool]) -> int:
        """Bulk delete for retention cleanup and expiry; returns rows removed."""
        if not where:
            raise ValidationError("delete_where requires at least one predicate")
        model = model_for(collection)
        stmt = delete(model).where(*where).execution_options(synchronize_session=False)
        result = await self.session.execute(stmt)
        return result.rowcount or 0


class LocalStore:
    """
    Embedded durable store.

    Construct once at startup and pass to the services that need it.
    """

    def __init__(self, settings: Settings, clock: Optional[SystemClock] = None):
        self.settings = settings
        self.clock = clock or SystemClock()
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def is_open(self) -> bool:
        return self._session_factory is not None

    async def initialize(self) -> Dict[str, Any]:
        """
        Open the store, create missing collections and write the initialized
        marker on first run. Safe to call repeatedly and to retry after failure.

        Raises:
            StorageError: if the medium cannot be opened or written
        """
        try:
            if self._engine is None:
                self._engine = create_store_engine(self.settings.database_url, echo=self.settings.debug)
                self._session_factory = create_session_factory(self._engine)
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

            async with self.transaction() as tx:
                marker = await tx.get_value(Collection.CONFIG, ConfigKey.INITIALIZED)
                if marker is None:
                    marker = {
                        "version": self.settings.schema_version,
                        "created_at": self.clock.now().isoformat(),
                    }
                    await tx.put(Collection.CONFIG, {"key": ConfigKey.INITIALIZED, "value": marker})
                    logger.info(f"Initialized local store (schema {marker['version']})")
            return marker
        except (SQLAlchemyError, OSError, StorageError) as e:
            await self._reset()
            if isinstance(e, StorageError):
                raise
            raise StorageError(
                f"Local store unavailable: {e.__class__.__name__}",
                code=ErrorCode.STORAGE_UNAVAILABLE,
                original_error=e,
            ) from e

    async def close(self) -> None:
        """Close store connections."""
        await self._reset()

    async def _reset(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._session_factory = None

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StoreTransaction]:
        """
        Unit of work spanning any number of collections.

        Commits on clean exit; on any error nothing is written.
        """
        if self._session_factory is None:
            raise StorageError("Local store is not initialized", code=ErrorCode.STORAGE_UNAVAILABLE)

        async with self._session_factory() as session:
            try:
                yield StoreTransaction(session, self.settings.max_query_limit)
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Local store transaction failed: {e}")
                raise StorageError(
                    f"Local store operation failed: {e.__class__.__name__}",
                    original_error=e,
                ) from e

    # =========================================================================
    # SINGLE-OPERATION SHORTCUTS
    # =========================================================================

    async def get(self, collection: Collection, key: Any) -> Optional[Base]:
        async with self.transaction() as tx:
            return await tx.get(collection, key)

    async def get_value(self, collection: Collection, key: str, default: Any = None) -> Any:
        async with self.transaction() as tx:
            return await tx.get_value(collection, key, default)

    async def put(self, collection: Collection, record: Mapping[str, Any]) -> Base:
        async with self.transaction() as tx:
            return await tx.put(collection, record)

    async def bulk_put(self, collection: Collection, records: Iterable[Mapping[str, Any]]) -> int:
        async with self.transaction() as tx:
            return await tx.bulk_put(collection, records)

    async def query(
        self,
        collection: Collection,
        *where: ColumnElement[bool],
        limit: int = DEFAULT_QUERY_LIMIT,
        order_by: Optional[Union[str, Any]] = None,
        descending: bool = False,
    ) -> List[Base]:
        async with self.transaction() as tx:
            return await tx.query(collection, *where, limit=limit, order_by=order_by, descending=descending)

    async def count(self, collection: Collection, *where: ColumnElement[bool]) -> int:
        async with self.transaction() as tx:
            return await tx.count(collection, *where)

    async def update_where(
        self,
        collection: Collection,
        values: Mapping[str, Any],
        *where: ColumnElement[bool],
    ) -> int:
        async with self.transaction() as tx:
            return await tx.update_where(collection, values, *where)

    async def delete_where(self, collection: Collection, *where: ColumnElement[bool]) -> int:
        async with self.transaction() as tx:
            return await tx.delete_where(collection, *where)
