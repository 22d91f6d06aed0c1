from typing import Iterator, Optional
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from storefront.domain.models import Base

SessionLocal = sessionmaker(autoflush=False, autocommit=False, expire_on_commit=False)
_engine: Optional[Engine] = None

def configure_engine(database_url: str) -> Optional[Engine]:
    """Bind SessionLocal to ``database_url``; an empty URL disables persistence."""
    global _engine
    if _engine is not None:
        _engine.dispose()
        _engine = None
    if not database_url:
        SessionLocal.configure(bind=None)
        return None

    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # one shared connection, otherwise every session sees an empty database
            kwargs["poolclass"] = StaticPool
        _engine = create_engine(database_url, echo=False, future=True, **kwargs)
    else:
        _engine = create_engine(database_url, echo=False, future=True, pool_pre_ping=True)
    SessionLocal.configure(bind=_engine)
    return _engine

def get_engine() -> Optional[Engine]:
    return _engine

def is_configured() -> bool:
    return _engine is not None

def get_db() -> Iterator[Optional[Session]]:
    """Request-scoped session, or None when no datastore is configured."""
    if _engine is None:
        yield None
        return
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def init_models():
    if _engine is not None:
        Base.metadata.create_all(_engine)
