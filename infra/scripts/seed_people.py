import asyncio

from sqlalchemy import select

from incoming_calls.config import settings
from incoming_calls.db import build_engine, build_session_factory
from incoming_calls.models import Base, Person
from incoming_calls.services.normalizer import sanitize_phone

PEOPLE = [
    {"name": "Ana Popescu", "phone": "+40 722 123 456"},
    {"name": "Ion Ionescu", "phone": "0744 555 010"},
    {"name": "Maria Dumitru", "phone": "+1 (555) 012-3456"},
    {"name": "Reception Desk", "phone": "0213 100 200"},
]


async def seed_people() -> None:
    if not settings.database_url:
        raise SystemExit("DATABASE_URL is not set")

    engine = build_engine(settings.database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with build_session_factory(engine)() as db:
        existing_phones = set((await db.execute(select(Person.phone))).scalars().all())

        seeded_count = 0
        for person in PEOPLE:
            # Stored digits-only, the same key incoming calls are joined on.
            _, digits = sanitize_phone(person["phone"])
            if not digits or digits in existing_phones:
                continue
            db.add(Person(name=person["name"], phone=digits))
            existing_phones.add(digits)
            seeded_count += 1

        await db.commit()
        print(f"Seeded {seeded_count} people successfully")
    await engine.dispose()


def main() -> None:
    asyncio.run(seed_people())


if __name__ == "__main__":
    main()
