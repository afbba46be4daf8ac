from contextlib import contextmanager
from typing import Iterator, Optional
from sqlmodel import Session, SQLModel, create_engine
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession
from .base import BaseDatabaseDriver

class SQLDriver(BaseDatabaseDriver):
    """Async and blocking engines over one database, with matching session factories."""

    def __init__(self, url: str, sync_url: Optional[str] = None, echo: bool = False, **engine_kwargs):
        self.engine = create_async_engine(url, echo=echo, future=True, **engine_kwargs)
        self.session_factory = sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )
        self.sync_engine = None
        self.sync_session_factory = None
        if sync_url is not None:
            self.sync_engine = create_engine(sync_url, echo=echo, **engine_kwargs)
            self.sync_session_factory = sessionmaker(
                self.sync_engine, class_=Session, expire_on_commit=False
            )

    async def connect(self):
        """Check connectivity (SQLModel engine manages connections)."""
        async with self.engine.begin() as conn:
            await conn.execute(text("SELECT 1"))

    async def disconnect(self):
        """Dispose both engines."""
        await self.engine.dispose()
        if self.sync_engine is not None:
            self.sync_engine.dispose()

    async def create_all(self):
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    async def get_session(self):
        async with self.session_factory() as session:
            yield session

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Blocking session scope; requires sync_url."""
        if self.sync_session_factory is None:
            raise RuntimeError("SQLDriver was created without a sync_url")
        with self.sync_session_factory() as session:
            yield session
