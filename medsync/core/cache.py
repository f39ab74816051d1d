# medsync/core/cache.py
from __future__ import annotations

import asyncio
import logging
import os
from typing import (
    AsyncIterator,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
)

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    delete,
    event,
    insert,
    select,
    update,
)
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from medsync.core.errors import UnknownMedicationError
from medsync.core.logging_utils import kv
from medsync.core.models import MedicationRecord, sort_records

# Bumping this rebuilds the medications table on next open (local taken-state is lost).
SCHEMA_VERSION = 2

metadata = MetaData()

medications = Table(
    "medications",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=False),
    Column("name", String(200), nullable=False),
    Column("time_to_take", String(5), nullable=False),  # HH:MM
    Column("notes", Text, nullable=True),
    Column("weekdays", JSON(none_as_null=True), nullable=True),  # [1..7] | NULL
    Column("is_taken", Boolean, nullable=False, default=False),
    Column("last_taken_timestamp", BigInteger, nullable=False, default=0),  # epoch ms
    Column("is_dirty", Boolean, nullable=False, default=False),
)

schema_meta = Table(
    "schema_meta",
    metadata,
    Column("key", String(40), primary_key=True),
    Column("value", Integer, nullable=False),
)

Listener = Callable[[List[MedicationRecord]], None]


def _row_to_record(row) -> MedicationRecord:
    return MedicationRecord(
        id=row.id,
        name=row.name,
        time_to_take=row.time_to_take,
        notes=row.notes,
        weekdays=frozenset(row.weekdays) if row.weekdays else None,
        is_taken=bool(row.is_taken),
        last_taken_timestamp=int(row.last_taken_timestamp or 0),
        is_dirty=bool(row.is_dirty),
    )


def _record_to_row(r: MedicationRecord) -> dict:
    return {
        "id": r.id,
        "name": r.name,
        "time_to_take": r.time_to_take,
        "notes": r.notes,
        "weekdays": sorted(r.weekdays) if r.weekdays else None,
        "is_taken": r.is_taken,
        "last_taken_timestamp": r.last_taken_timestamp,
        "is_dirty": r.is_dirty,
    }


class MedicationCache:
    """
    Local durable store of medication records keyed by id (SQLite).

    Every mutation runs in its own transaction under a single asyncio lock, so
    writers are serialized; reads never take the lock and see the last
    committed state. After each committed mutation all subscribers receive the
    full ordered snapshot.
    """

    def __init__(self, db_path: str, *, echo: bool = False) -> None:
        self.db_path = db_path
        self.log = logging.getLogger("medsync.cache")
        self._engine: AsyncEngine = create_async_engine(
            f"sqlite+aiosqlite:///{db_path}", echo=echo
        )
        event.listen(self._engine.sync_engine, "connect", self._on_connect)
        self._write_lock = asyncio.Lock()
        self._listeners: List[Listener] = []

    @staticmethod
    def _on_connect(dbapi_conn, _record) -> None:
        cur = dbapi_conn.cursor()
        cur.execute("PRAGMA journal_mode=WAL;")
        cur.execute("PRAGMA synchronous=NORMAL;")
        cur.close()

    # -- lifecycle ------------------------------------------------------
    async def open(self) -> None:
        """Create the schema; rebuild the medications table on a version change."""
        directory = os.path.dirname(self.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        async with self._engine.begin() as conn:
            await conn.run_sync(schema_meta.create, checkfirst=True)
            row = (
                await conn.execute(
                    select(schema_meta.c.value).where(
                        schema_meta.c.key == "schema_version"
                    )
                )
            ).first()
            current = row[0] if row else None
            if current != SCHEMA_VERSION:
                await conn.run_sync(medications.drop, checkfirst=True)
                await conn.run_sync(medications.create)
                await conn.execute(
                    delete(schema_meta).where(schema_meta.c.key == "schema_version")
                )
                await conn.execute(
                    insert(schema_meta).values(
                        key="schema_version", value=SCHEMA_VERSION
                    )
                )
                self.log.info(
                    "cache.schema.rebuilt " + kv(old=current, new=SCHEMA_VERSION)
                )
            else:
                await conn.run_sync(medications.create, checkfirst=True)

    async def close(self) -> None:
        await self._engine.dispose()

    # -- reads ----------------------------------------------------------
    async def get_all(self) -> List[MedicationRecord]:
        stmt = select(medications).order_by(
            medications.c.time_to_take, medications.c.id
        )
        async with self._engine.connect() as conn:
            rows = (await conn.execute(stmt)).all()
        return [_row_to_record(r) for r in rows]

    async def get(self, medication_id: int) -> Optional[MedicationRecord]:
        stmt = select(medications).where(medications.c.id == medication_id)
        async with self._engine.connect() as conn:
            row = (await conn.execute(stmt)).first()
        return _row_to_record(row) if row else None

    async def get_dirty(self) -> List[MedicationRecord]:
        stmt = (
            select(medications)
            .where(medications.c.is_dirty.is_(True))
            .order_by(medications.c.time_to_take, medications.c.id)
        )
        async with self._engine.connect() as conn:
            rows = (await conn.execute(stmt)).all()
        return [_row_to_record(r) for r in rows]

    async def has_dirty(self) -> bool:
        stmt = select(medications.c.id).where(medications.c.is_dirty.is_(True)).limit(1)
        async with self._engine.connect() as conn:
            return (await conn.execute(stmt)).first() is not None

    # -- observation ----------------------------------------------------
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a snapshot listener; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def observe_all(self) -> AsyncIterator[List[MedicationRecord]]:
        """Yield the current snapshot, then a new one after every committed change."""
        queue: asyncio.Queue[List[MedicationRecord]] = asyncio.Queue()
        unsubscribe = self.subscribe(queue.put_nowait)
        try:
            yield await self.get_all()
            while True:
                yield await queue.get()
        finally:
            unsubscribe()

    async def _publish(self) -> None:
        if not self._listeners:
            return
        snapshot = await self.get_all()
        for listener in list(self._listeners):
            try:
                listener(list(snapshot))
            except Exception as e:
                self.log.error(
                    "cache.listener.error "
                    + kv(listener=getattr(listener, "__name__", repr(listener)), err=str(e))
                )

    # -- writes ---------------------------------------------------------
    async def _replace(self, conn: AsyncConnection, records: Sequence[MedicationRecord]) -> None:
        await conn.execute(delete(medications))
        if records:
            await conn.execute(insert(medications), [_record_to_row(r) for r in records])

    async def replace_all(self, records: Iterable[MedicationRecord]) -> None:
        """Atomically discard every record and insert `records`."""
        records = list(records)
        async with self._write_lock:
            async with self._engine.begin() as conn:
                await self._replace(conn, records)
            self.log.debug("cache.replace_all " + kv(count=len(records)))
            await self._publish()

    async def apply(
        self,
        transform: Callable[[List[MedicationRecord]], Iterable[MedicationRecord]],
    ) -> List[MedicationRecord]:
        """
        Read-modify-replace in one transaction: the full record set becomes
        transform(current). No other write can land in between.
        """
        async with self._write_lock:
            async with self._engine.begin() as conn:
                rows = (await conn.execute(select(medications))).all()
                current = sort_records(_row_to_record(r) for r in rows)
                result = sort_records(transform(current))
                await self._replace(conn, result)
            self.log.debug(
                "cache.apply " + kv(before=len(current), after=len(result))
            )
            await self._publish()
        return result

    async def mark_taken(self, medication_id: int, timestamp_ms: int) -> None:
        stmt = (
            update(medications)
            .where(medications.c.id == medication_id)
            .values(is_taken=True, last_taken_timestamp=timestamp_ms, is_dirty=True)
        )
        await self._update_one(stmt, medication_id, "cache.mark_taken", ts=timestamp_ms)

    async def reset_taken(self, medication_id: int, *, mark_dirty: bool = True) -> None:
        values: Dict[str, object] = {"is_taken": False, "last_taken_timestamp": 0}
        if mark_dirty:
            values["is_dirty"] = True
        stmt = (
            update(medications)
            .where(medications.c.id == medication_id)
            .values(**values)
        )
        await self._update_one(stmt, medication_id, "cache.reset_taken", dirty=mark_dirty)

    async def _update_one(self, stmt, medication_id: int, event_name: str, **extra) -> None:
        async with self._write_lock:
            async with self._engine.begin() as conn:
                updated = (await conn.execute(stmt)).rowcount
            if updated == 0:
                raise UnknownMedicationError(medication_id)
            self.log.debug(event_name + " " + kv(id=medication_id, **extra))
            await self._publish()

    async def clear_taken_if_unchanged(self, expected: Mapping[int, int]) -> List[int]:
        """
        Reset taken-state for ids whose last_taken_timestamp still equals the
        expected value (a newer mark_taken wins). Does not touch is_dirty.
        Returns the ids actually reset.
        """
        if not expected:
            return []
        cleared: List[int] = []
        async with self._write_lock:
            async with self._engine.begin() as conn:
                for mid, ts in expected.items():
                    res = await conn.execute(
                        update(medications)
                        .where(
                            medications.c.id == mid,
                            medications.c.is_taken.is_(True),
                            medications.c.last_taken_timestamp == ts,
                        )
                        .values(is_taken=False, last_taken_timestamp=0)
                    )
                    if res.rowcount:
                        cleared.append(mid)
            if cleared:
                await self._publish()
        return cleared

    async def clear_all_dirty(self) -> None:
        async with self._write_lock:
            async with self._engine.begin() as conn:
                cleared = (
                    await conn.execute(
                        update(medications)
                        .where(medications.c.is_dirty.is_(True))
                        .values(is_dirty=False)
                    )
                ).rowcount
            self.log.debug("cache.clear_all_dirty " + kv(count=cleared))
            if cleared:
                await self._publish()
