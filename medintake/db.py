# medintake/db.py
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from medintake.config import get_settings


def make_engine(database_url: str, **kwargs) -> Engine:
    if database_url.startswith("sqlite"):
        # Requests are served from more than one thread
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    return create_engine(
        database_url,
        echo=False,  # set True if you want to see SQL queries
        future=True,
        **kwargs,
    )


def make_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(
        bind=bind,
        autoflush=False,
        autocommit=False,
        future=True,
    )


settings = get_settings()

# Synchronous engine is enough for now
engine = make_engine(settings.database_url)

SessionLocal = make_session_factory(engine)


class Base(DeclarativeBase):
    """
    Base class for ORM models.
    """
    pass
