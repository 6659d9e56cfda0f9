# app/db/session.py
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from app.core.config import settings


def make_engine(db_uri: str, echo: bool = False) -> Engine:
    """
    Build an engine for the given URI.
    SQLite (local runs / tests) gets no pool tuning; MySQL keeps the
    pre-ping + recycle settings so idle connections survive wait_timeout.
    """
    if db_uri.startswith("sqlite"):
        return create_engine(
            db_uri,
            connect_args={"check_same_thread": False},
            echo=echo,
            future=True,
        )
    return create_engine(
        db_uri,
        pool_pre_ping=True,
        pool_recycle=280,
        pool_size=10,
        max_overflow=20,
        echo=echo,
        future=True,
    )


engine: Engine = make_engine(settings.SQLALCHEMY_DATABASE_URI,
                             echo=settings.DB_ECHO)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    future=True,
)
