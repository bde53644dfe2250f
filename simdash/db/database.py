from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from simdash.core.config import settings

DATABASE_URL = settings.sqlalchemy_database_uri


def _engine_options(url: str) -> dict:
    if url.startswith("postgresql"):
        return {
            "pool_pre_ping": True,
            "pool_size": 5,
            "max_overflow": 10,
            "connect_args": {
                "timeout": settings.db_timeout,
                "command_timeout": settings.db_command_timeout,
            },
        }
    return {}


engine = create_async_engine(
    DATABASE_URL,
    echo=settings.log_level.upper() == "DEBUG",
    **_engine_options(DATABASE_URL),
)

async_session = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False
)


async def get_db():
    async with async_session() as session:
        yield session


# Alias used by routers for dependency injection
get_session = get_db
