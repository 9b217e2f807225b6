from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from taskstreak.config import get_settings

settings = get_settings()

engine = create_async_engine(settings.DATABASE_URL, echo=settings.APP_DEBUG)

AsyncSessionLocal = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
