import sys, pathlib, asyncio
sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

from sqlalchemy import text
from restodir.core.config import settings
from restodir.core.db import SessionLocal, engine
from restodir.models import Base


async def main():
    print("DB_ISOLATION_LEVEL:", settings.DB_ISOLATION_LEVEL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print("tables:", ", ".join(sorted(Base.metadata.tables)))

    async with SessionLocal() as s:
        # Simple ping
        one = await s.execute(text("SELECT 1"))
        print("db-ping:", one.scalar())

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
