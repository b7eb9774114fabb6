"""
Shared repository plumbing: row <-> model conversion and the per-table
statements every monitoring table supports.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Generic, Iterable, Optional, Type, TypeVar

from pydantic import BaseModel

from signal_sentinel.storage.database import Database, affected_rows

T = TypeVar("T", bound=BaseModel)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BaseRepository(Generic[T]):
    """
    Raw-SQL repository over one table.

    Subclasses set ``table_name`` and ``model_class``. Tables swept by the
    retention job also set ``age_column``.
    """

    table_name: str
    model_class: Type[T]
    id_column: str = "id"
    age_column: Optional[str] = None

    def __init__(self, db: Database) -> None:
        self.db = db

    def _to_model(self, record) -> Optional[T]:
        return None if record is None else self.model_class(**dict(record))

    def _to_models(self, records: Iterable) -> list[T]:
        return [self.model_class(**dict(r)) for r in records]

    async def get_by_id(self, id_value) -> Optional[T]:
        record = await self.db.fetchrow(
            f"SELECT * FROM {self.table_name} WHERE {self.id_column} = $1", id_value
        )
        return self._to_model(record)

    async def exists(self, id_value) -> bool:
        found = await self.db.fetchval(
            f"SELECT 1 FROM {self.table_name} WHERE {self.id_column} = $1", id_value
        )
        return found is not None

    async def delete(self, id_value) -> bool:
        """True if a row was removed."""
        status = await self.db.execute(
            f"DELETE FROM {self.table_name} WHERE {self.id_column} = $1", id_value
        )
        return affected_rows(status) > 0

    async def count(self) -> int:
        return await self.db.fetchval(f"SELECT COUNT(*) FROM {self.table_name}")

    async def delete_older_than(self, cutoff: datetime) -> int:
        """Retention sweep for this table. Returns the number of rows removed."""
        if self.age_column is None:
            raise NotImplementedError(f"{self.table_name} has no retention column")
        status = await self.db.execute(
            f"DELETE FROM {self.table_name} WHERE {self.age_column} < $1", cutoff
        )
        return affected_rows(status)
