from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum

from sqlalchemy import (
    JSON,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.pool import StaticPool


def utc_now() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class BuildStatus(StrEnum):
    building = "building"
    active = "active"
    archived = "archived"


class Build(Base):
    """One generation: an isolated snapshot of pages and connections."""

    __tablename__ = "builds"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)

    # Logical clock for the generation. Strictly increasing across builds.
    build_timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), unique=True, index=True)

    status: Mapped[BuildStatus] = mapped_column(
        SAEnum(BuildStatus, native_enum=False, name="build_status"),
        default=BuildStatus.building,
        index=True,
    )
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)

    pages_processed: Mapped[int] = mapped_column(Integer, default=0)
    connections_created: Mapped[int] = mapped_column(Integer, default=0)

    # Set on failure; a failed build keeps status `building` and never becomes active.
    error_message: Mapped[str | None] = mapped_column(Text, default=None)

    pages: Mapped[list[Page]] = relationship(back_populates="build")


class Page(Base):
    __tablename__ = "pages"
    __table_args__ = (UniqueConstraint("build_id", "wiki_id", name="uq_pages_build_wiki_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)

    # MediaWiki `pageid`: stable across generations, unique within one.
    wiki_id: Mapped[int] = mapped_column(Integer, index=True)

    title: Mapped[str] = mapped_column(String, index=True)
    url: Mapped[str] = mapped_column(String, index=True)
    html: Mapped[str] = mapped_column(Text)

    # Valid internal hrefs extracted from `html` at fetch time, in document order.
    links: Mapped[list[str]] = mapped_column(JSON, default=list)

    build_id: Mapped[str] = mapped_column(ForeignKey("builds.id"), index=True)

    build: Mapped[Build] = relationship(back_populates="pages")


class Connection(Base):
    __tablename__ = "connections"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    origin: Mapped[str] = mapped_column(ForeignKey("pages.id"), index=True)
    target: Mapped[str] = mapped_column(ForeignKey("pages.id"), index=True)
    build_id: Mapped[str] = mapped_column(ForeignKey("builds.id"), index=True)


def make_engine(db_path: str | None = None, *, database_url: str | None = None) -> Engine:
    """Create an engine for a SQLite file, or for any SQLAlchemy URL when given."""

    if database_url is not None and not database_url.startswith("sqlite"):
        return create_engine(database_url, echo=False, pool_pre_ping=True)

    url = database_url or f"sqlite:///{db_path}"
    connect_args = {"timeout": 30, "check_same_thread": False}
    if make_url(url).database in (None, "", ":memory:"):
        # An in-memory database lives and dies with its connection; share one.
        engine = create_engine(url, echo=False, connect_args=connect_args, poolclass=StaticPool)
    else:
        engine = create_engine(
            url,
            echo=False,
            connect_args=connect_args,
            # Storage calls run on the event loop thread one session at a time, so a
            # single pooled connection is enough.
            pool_size=1,
            max_overflow=0,
        )

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, connection_record) -> None:  # type: ignore[no-redef]
        # Pragmas are per-connection.
        cursor = dbapi_connection.cursor()
        try:
            # Referential integrity between builds, pages and connections.
            cursor.execute("PRAGMA foreign_keys=ON;")

            cursor.execute("PRAGMA journal_mode=WAL;")
            cursor.execute("PRAGMA synchronous=NORMAL;")
            cursor.execute("PRAGMA temp_store=MEMORY;")

            # Let the HTTP readers wait on a writing build instead of erroring.
            cursor.execute("PRAGMA busy_timeout=5000;")
        finally:
            cursor.close()

    return engine


def init_db(engine: Engine) -> None:
    Base.metadata.create_all(engine)
