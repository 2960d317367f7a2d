from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from KoriBackend.config import get_settings


DATABASE_URL = get_settings().database_url

if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL must be set.")


def _make_engine(url: str):
    if url.startswith("sqlite"):
        # In-memory sqlite must share one connection across threads (tests, local dev)
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    return create_engine(url, pool_pre_ping=True, connect_args={"connect_timeout": 5})


engine = _make_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
