# src/motor_tariff/db.py
from __future__ import annotations

import logging
from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .settings import settings

logger = logging.getLogger(__name__)

# psycopg3 uses 'postgresql+psycopg' instead of 'postgresql+psycopg2'
def get_sqlalchemy_url() -> str:
    url = settings.sqlalchemy_url
    if 'postgresql+psycopg2' in url:
        url = url.replace('postgresql+psycopg2', 'postgresql+psycopg')
    elif url.startswith('postgresql://'):
        url = url.replace('postgresql://', 'postgresql+psycopg://')
    return url


# The engine is only built when the database tariff source is actually used.
@lru_cache(maxsize=1)
def get_engine() -> Engine:
    url = get_sqlalchemy_url()
    kwargs = {"pool_pre_ping": True}
    if url.startswith("postgresql"):
        kwargs.update(
            pool_recycle=300,
            connect_args={
                "options": "-c statement_timeout=30000",  # 30 second timeout
                # Avoid duplicate prepared statement errors across pooled connections
                "prepare_threshold": 0,
            },
        )
    return create_engine(url, **kwargs)


@lru_cache(maxsize=1)
def get_sessionmaker() -> sessionmaker:
    return sessionmaker(bind=get_engine(), autoflush=False, autocommit=False)


def SessionLocal() -> Session:
    return get_sessionmaker()()


def init_db() -> None:
    # Safe if tables already exist
    from .models import Base

    Base.metadata.create_all(bind=get_engine())
    logger.info("Tariff tables ensured")
