"""Declarative base, column mixins and the shared async engine.

Row ids are UUID columns surfaced as ``str`` so ORM rows convert to the
pydantic domain models without casting. Timestamps are set by the database.
"""
import uuid
from datetime import datetime
from typing import Any, Dict

from sqlalchemy import DateTime, func
from sqlalchemy.dialects import postgresql
from sqlalchemy.ext.asyncio import AsyncAttrs, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from partmatch.config import Settings, settings


class Base(AsyncAttrs, DeclarativeBase):
    pass


def new_row_id() -> str:
    return str(uuid.uuid4())


class UUIDMixin:
    """Primary key generated client-side so a row's id is known before flush."""

    id: Mapped[str] = mapped_column(
        postgresql.UUID(as_uuid=False),
        primary_key=True,
        default=new_row_id,
        server_default=func.gen_random_uuid(),
    )


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


def engine_options(config: Settings) -> Dict[str, Any]:
    """Keyword arguments for create_async_engine taken from the DB_* settings."""
    return {
        "echo": config.db_echo,
        "pool_size": config.db_pool_size,
        "max_overflow": config.db_max_overflow,
        "pool_recycle": config.db_pool_recycle_seconds,
        "pool_pre_ping": True,
    }


engine = create_async_engine(settings.database_url, **engine_options(settings))

# Repositories open one short session per operation; rows are detached
# after commit and read as plain values.
async_session_maker = async_sessionmaker(engine, expire_on_commit=False)
