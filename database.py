import os

from sqlmodel import SQLModel
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from dotenv import load_dotenv

import models  # noqa: F401  registers the bookings table on SQLModel.metadata

# 1. Load environment variables from .env file
load_dotenv()

# 2. Get the URL. If it's not found, raise an error to fail fast.
DATABASE_URL = os.environ.get("DATABASE_URL")

if not DATABASE_URL:
    raise ValueError("DATABASE_URL is not set. Please check your .env file.")

SQL_ECHO = os.environ.get("SQL_ECHO", "").lower() in ("1", "true", "yes", "on")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# 3. Create the Async Engine
engine = create_async_engine(DATABASE_URL, echo=SQL_ECHO, future=True)


def make_session_factory(bind: AsyncEngine = engine) -> sessionmaker:
    return sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


async_session = make_session_factory()


async def init_db(bind: AsyncEngine = engine):
    async with bind.begin() as conn:
        # This creates the tables if they don't exist
        await conn.run_sync(SQLModel.metadata.create_all)
