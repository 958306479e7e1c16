"""Engine and session factory for the delivery store."""

from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from nova_webhooks.core.settings import settings


class Base(DeclarativeBase):
    """Declarative base for subscriptions, delivery logs, rate windows and cursors."""


# Registers every table on Base.metadata for Alembic and create_all.
import nova_webhooks.models  # noqa: E402,F401


def build_engine(url: str, *, echo: bool = False) -> Engine:
    # SQLite connections are shared by the worker task and request threads.
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, pool_pre_ping=True, echo=echo, connect_args=connect_args)


engine = build_engine(settings.effective_database_url, echo=settings.sql_debug)

# Services hand out detached rows, so commits must not expire them.
SessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
)
