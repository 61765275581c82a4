import logging
from typing import Callable

from sqlalchemy import create_engine
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

Base = declarative_base()


def create_session_factory(database_url: str) -> Callable:
    """Build an engine for ``database_url``, create every table and return a session factory"""
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool
        )
    else:
        engine = create_engine(database_url, pool_pre_ping=True)

    Base.metadata.create_all(bind=engine)
    logger.info(f"Storage initialized on {engine.url.get_backend_name()}")
    return sessionmaker(bind=engine)


def upsert(db, model):
    """Dialect specific INSERT that supports ON CONFLICT clauses"""
    if db.get_bind().dialect.name == "postgresql":
        return postgresql.insert(model)
    return sqlite.insert(model)
