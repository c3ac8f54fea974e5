"""
Async Storage Backend Module

Provides the async storage handle shared by every store and the ledger
engine. Sync backend calls run in worker threads so a slow disk never blocks
the event loop.

atomic() opens a unit of work bound to the current task: writes are staged,
reads inside the unit see the staged values, and the whole batch is handed
to the backend's save_many() in one call on exit. Other tasks never see
staged writes, so there is no observable half-applied state.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Tuple
from contextlib import asynccontextmanager
from contextvars import ContextVar
import asyncio

from .storage import StorageInterface, PendingWrite, create_storage
from .logging_config import get_logger


class UnitOfWork:
    """Writes staged by one task, committed together"""

    def __init__(self):
        self._writes: Dict[Tuple[str, str], PendingWrite] = {}

    def stage(self, write: PendingWrite) -> None:
        """
        Stage a write, replacing earlier data for the same record

        The condition of the first write to a record is kept: it describes the
        committed state the whole unit was computed from.
        """
        key = (write.table, write.record_id)
        earlier = self._writes.get(key)
        if earlier is not None:
            write = PendingWrite(write.table, write.record_id, write.data, earlier.expected_version)
        self._writes[key] = write

    def staged(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        write = self._writes.get((table, record_id))
        return dict(write.data) if write else None

    def staged_in(self, table: str) -> List[Dict[str, Any]]:
        return [dict(w.data) for (t, _), w in self._writes.items() if t == table]

    @property
    def writes(self) -> List[PendingWrite]:
        return list(self._writes.values())

    def __len__(self) -> int:
        return len(self._writes)


class AsyncStorageInterface(ABC):
    """Abstract interface for async storage backends"""

    @abstractmethod
    async def save(self, table: str, record_id: str, data: Dict[str, Any],
                   expected_version: Optional[int] = None) -> None:
        """Save a record (staged when a unit of work is active)"""
        pass

    @abstractmethod
    async def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    @abstractmethod
    async def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        pass

    @abstractmethod
    async def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        pass

    @abstractmethod
    async def count(self, table: str) -> int:
        """Count records in table"""
        pass

    @abstractmethod
    async def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        pass

    @abstractmethod
    def atomic(self):
        """Async context manager grouping writes into one atomic batch"""
        pass

    async def close(self) -> None:
        """Close storage connection (default no-op)"""
        pass


class AsyncStorage(AsyncStorageInterface):
    """Async handle over any sync StorageInterface backend"""

    def __init__(self, backend: StorageInterface):
        self.backend = backend
        self._unit: ContextVar[Optional[UnitOfWork]] = ContextVar(
            f"minibank_unit_of_work_{id(self)}", default=None
        )
        self.logger = get_logger("minibank.storage")

    @property
    def in_unit_of_work(self) -> bool:
        return self._unit.get() is not None

    async def save(self, table: str, record_id: str, data: Dict[str, Any],
                   expected_version: Optional[int] = None) -> None:
        """Save a record, or stage it when called inside atomic()"""
        write = PendingWrite(table, record_id, dict(data), expected_version)
        unit = self._unit.get()
        if unit is not None:
            unit.stage(write)
            return

        await asyncio.to_thread(self.backend.save_many, [write])

    async def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record, preferring this task's staged version"""
        unit = self._unit.get()
        if unit is not None:
            staged = unit.staged(table, record_id)
            if staged is not None:
                return staged

        return await asyncio.to_thread(self.backend.load, table, record_id)

    async def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table, including staged ones"""
        records = await asyncio.to_thread(self.backend.load_all, table)
        return self._merge_staged(table, records, {})

    async def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters, including staged ones"""
        records = await asyncio.to_thread(self.backend.find, table, filters)
        return self._merge_staged(table, records, filters)

    async def count(self, table: str) -> int:
        """Count committed records in table"""
        return await asyncio.to_thread(self.backend.count, table)

    async def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        await asyncio.to_thread(self.backend.clear_table, table)

    async def close(self) -> None:
        """Close the backend"""
        await asyncio.to_thread(self.backend.close)

    @asynccontextmanager
    async def atomic(self):
        """
        Group every write made by this task into one atomic batch

        Nested calls join the outer unit. On exception nothing is written.
        """
        unit = self._unit.get()
        if unit is not None:
            yield unit
            return

        unit = UnitOfWork()
        token = self._unit.set(unit)
        try:
            yield unit
        finally:
            self._unit.reset(token)

        # Only reached when the block exited without an exception
        if len(unit):
            await asyncio.to_thread(self.backend.save_many, unit.writes)
            self.logger.debug(f"Committed {len(unit)} staged writes")

    def _merge_staged(self, table: str, records: List[Dict[str, Any]],
                      filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        unit = self._unit.get()
        if unit is None:
            return records

        staged = {
            data.get('id'): data for data in unit.staged_in(table)
        }
        merged = []
        for record in records:
            record_id = record.get('id')
            if record_id in staged:
                continue
            merged.append(record)
        for data in staged.values():
            if all(data.get(key) == value for key, value in filters.items()):
                merged.append(data)
        return merged


def create_async_storage(database_url: str) -> AsyncStorage:
    """Factory function to create the async storage handle from a database URL"""
    return AsyncStorage(create_storage(database_url))
