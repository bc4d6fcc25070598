"""Database engine and session factory management."""

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

Base = declarative_base()


def create_db_engine(database_url: str, *, echo: bool = False, **kwargs) -> Engine:
    """Create an engine, allowing SQLite connections across worker threads."""

    engine_args = dict(kwargs)
    if database_url.startswith("sqlite"):
        engine_args.setdefault("connect_args", {"check_same_thread": False})
    return create_engine(database_url, echo=echo, future=True, **engine_args)


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Return the session factory used by the repository."""

    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Initialize service-owned tables."""

    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
