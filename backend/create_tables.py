import asyncio

from sqlalchemy import text

from reco.db.session import engine
from reco.db.base import Base
# Import all models to ensure they are registered with Base metadata
from reco.models import AppMetadata, Conversation, Message, ResearchSession, Review  # noqa: F401


async def create_tables():
    print("Creating tables...")
    async with engine.begin() as conn:
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.create_all)
    print("Tables created successfully.")


if __name__ == "__main__":
    asyncio.run(create_tables())
