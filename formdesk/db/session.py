from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from formdesk.core.config import settings


def _engine_kwargs(dsn: str) -> dict:
    if dsn.startswith("sqlite"):
        # Local/test database: one shared connection so ":memory:" survives across sessions.
        return {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
    return {
        "pool_pre_ping": True,
        "pool_recycle": 3600,
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_timeout": 30,
    }


engine = create_engine(settings.MYSQL_DSN, **_engine_kwargs(settings.MYSQL_DSN))

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
