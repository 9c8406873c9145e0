from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from syncbox.core.config import settings

_db_url = settings.DATABASE_URL

if _db_url.startswith("sqlite"):
    # The API, the Celery tasks and the test fixtures all open sessions on the same
    # in-memory outbox; one StaticPool connection keeps them looking at one database.
    engine = create_engine(
        _db_url,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        pool_pre_ping=True,
    )
else:
    engine = create_engine(_db_url, pool_pre_ping=True)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
