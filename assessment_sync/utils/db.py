# Admin server database plumbing; the candidate store builds its own engine (candidate/store.py)
# assessment_sync/utils/db.py
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, AsyncEngine
from sqlalchemy.orm import sessionmaker

from assessment_sync.models.admin import Base
from assessment_sync.utils.config import settings

engine = create_async_engine(settings.database_url, echo=False)

AsyncSessionLocal = sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def create_tables(bind: AsyncEngine | None = None):
    """Creates any admin tables that do not exist yet."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db() -> AsyncSession:
    """One session per request, closed when the request is done."""
    async with AsyncSessionLocal() as session:
        yield session
