from typing import Iterator

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base, Session

from .config import settings


def build_engine(url: str) -> Engine:
    """Create an engine; SQLite connections get foreign keys switched on."""
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args = {
            "check_same_thread": False,
            "timeout": 30
        }

    new_engine = create_engine(
        url,
        connect_args=connect_args,
        pool_pre_ping=True,
        echo=False
    )

    if url.startswith("sqlite"):
        @event.listens_for(new_engine, "connect")
        def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return new_engine


def build_session_factory(bind: Engine) -> sessionmaker[Session]:
    # Records handed back by the services outlive their session.
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=bind,
        class_=Session,
        expire_on_commit=False
    )


engine = build_engine(settings.DATABASE_URL)

SessionLocal = build_session_factory(engine)

Base = declarative_base()


def get_db() -> Iterator[Session]:
    """Dependency for injecting database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
