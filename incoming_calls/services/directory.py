from collections.abc import Iterable
from typing import Protocol

from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from incoming_calls.models.person import Person
from incoming_calls.schemas.calls import DirectoryEntry


class DirectoryLookup(Protocol):
    async def lookup_names(self, phones: Iterable[str]) -> dict[str, DirectoryEntry]: ...

    async def ping(self) -> bool | None: ...


class NullDirectoryLookup:
    """Used when no directory database is configured."""

    async def lookup_names(self, phones: Iterable[str]) -> dict[str, DirectoryEntry]:
        return {}

    async def ping(self) -> bool | None:
        return None


class SqlDirectoryLookup:
    """Resolves digits-only phone numbers against the ``people`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def lookup_names(self, phones: Iterable[str]) -> dict[str, DirectoryEntry]:
        wanted = sorted({phone for phone in phones if phone})
        if not wanted:
            return {}

        stmt = select(Person.id, Person.name, Person.phone).where(Person.phone.in_(wanted))
        async with self.session_factory() as db:
            rows = (await db.execute(stmt)).all()

        entries: dict[str, DirectoryEntry] = {}
        for person_id, name, phone in rows:
            key = str(phone).strip() if phone else ""
            if not key or key in entries:
                continue
            entries[key] = DirectoryEntry(id=str(person_id), name=name)
        return entries

    async def ping(self) -> bool | None:
        try:
            async with self.session_factory() as db:
                await db.execute(text("SELECT 1"))
            return True
        except Exception:
            return False
