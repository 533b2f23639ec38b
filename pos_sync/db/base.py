from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.ext.asyncio.session import AsyncSession
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()


def create_session_factory(db_url: str):
    engine = create_async_engine(db_url, future=True, echo=False)
    session_factory = sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return engine, session_factory


async def init_models(engine: AsyncEngine) -> None:
    # model modules register their tables on Base.metadata when imported
    from pos_sync.db.models import local_cache, outbox, sync_cursors  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
