from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from deskbot.config import settings


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


engine = create_engine(settings.database_url, **_engine_kwargs(settings.database_url))

SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None) -> None:
    """Create all tables. Used on startup when AUTO_CREATE_TABLES is set, and by tests."""
    import deskbot.models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
