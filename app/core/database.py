from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from app.config import Settings

# Base class for models
Base = declarative_base()


class Database:
    """
    Storage handle owning the async engine and its session factory.

    Built once by the host (application lifespan, scheduled flow, tests) and
    handed to whoever needs sessions. Nothing in the engine reaches for a
    module-level connection pool.
    """

    def __init__(
        self,
        url: str,
        echo: bool = False,
        pool_size: Optional[int] = None,
        max_overflow: Optional[int] = None,
    ):
        engine_kwargs = {"echo": echo}
        if url.startswith("sqlite"):
            # Writers queue on the file lock instead of failing fast
            engine_kwargs["connect_args"] = {"timeout": 30}
        else:
            if pool_size is not None:
                engine_kwargs["pool_size"] = pool_size
            if max_overflow is not None:
                engine_kwargs["max_overflow"] = max_overflow

        self.url = url
        self.engine: AsyncEngine = create_async_engine(url, **engine_kwargs)
        self.session_maker = sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls(
            settings.DATABASE_URL,
            echo=settings.DEBUG,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
        )

    def session(self) -> AsyncSession:
        return self.session_maker()

    async def create_all(self) -> None:
        """Create tables"""
        # Models must be registered on Base.metadata before create_all
        import app.models.experiment  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        """Close database engine"""
        await self.engine.dispose()


async def get_db(request: Request):
    """Dependency for getting async database session"""
    database: Database = request.app.state.database
    async with database.session() as session:
        try:
            yield session
        finally:
            await session.close()
