"""Persistence for build generations.

A generation moves `building -> active` on success; the previously active one is
demoted to `archived` in the same transaction, so readers never see two active builds.
Failed builds keep `building` with `error_message` and `completed_at` set.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol, runtime_checkable

from sqlalchemy import delete, func, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from errors import NotFoundError, PersistenceError
from models import Build, BuildStatus, Connection, Page, as_utc, utc_now

logger = logging.getLogger(__name__)

DEFAULT_KEEP_LAST = 3

# Only the most recent archived builds are considered for pruning on each pass.
CLEANUP_SCAN_LIMIT = 100


@dataclass(frozen=True)
class BuildHandle:
    id: str
    timestamp: datetime


@dataclass(frozen=True)
class BuildStats:
    pages_count: int
    connections_count: int


@dataclass(frozen=True)
class BuildRecord:
    id: str
    build_timestamp: datetime
    status: BuildStatus
    started_at: datetime
    completed_at: datetime | None
    pages_processed: int
    connections_created: int
    error_message: str | None

    @property
    def failed(self) -> bool:
        return self.status == BuildStatus.building and self.error_message is not None


@runtime_checkable
class BuildStore(Protocol):
    def start_new_build(self) -> BuildHandle: ...

    def complete_build(self, build_id: str, stats: BuildStats) -> None: ...

    def fail_build(self, build_id: str, message: str) -> None: ...

    def get_active_build_timestamp(self) -> datetime: ...

    def find_active_build(self) -> BuildRecord | None: ...

    def get_build(self, build_id: str) -> BuildRecord: ...

    def list_builds(self, limit: int = 20) -> list[BuildRecord]: ...

    def cleanup_old_builds(self, keep_last: int = DEFAULT_KEEP_LAST) -> list[str]: ...


def _record(build: Build) -> BuildRecord:
    return BuildRecord(
        id=build.id,
        build_timestamp=as_utc(build.build_timestamp),
        status=build.status,
        started_at=as_utc(build.started_at),
        completed_at=as_utc(build.completed_at) if build.completed_at else None,
        pages_processed=build.pages_processed or 0,
        connections_created=build.connections_created or 0,
        error_message=build.error_message,
    )


class SqlBuildStore:
    """`BuildStore` over a SQLAlchemy engine."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def start_new_build(self) -> BuildHandle:
        try:
            with Session(self.engine) as session:
                timestamp = utc_now()
                latest = session.scalar(select(func.max(Build.build_timestamp)))
                if latest is not None and as_utc(latest) >= timestamp:
                    # Clock went backwards or two builds in the same tick.
                    timestamp = as_utc(latest) + timedelta(microseconds=1)

                build = Build(build_timestamp=timestamp, status=BuildStatus.building, started_at=utc_now())
                session.add(build)
                session.commit()
                return BuildHandle(id=build.id, timestamp=timestamp)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to create build: {exc}") from exc

    def complete_build(self, build_id: str, stats: BuildStats) -> None:
        """Activate `build_id` and archive every other active build, atomically."""

        try:
            with Session(self.engine) as session, session.begin():
                build = session.get(Build, build_id)
                if build is None:
                    raise NotFoundError(f"Build {build_id} not found")

                build.status = BuildStatus.active
                build.completed_at = utc_now()
                build.pages_processed = stats.pages_count
                build.connections_created = stats.connections_count

                session.execute(
                    update(Build)
                    .where(Build.status == BuildStatus.active, Build.id != build_id)
                    .values(status=BuildStatus.archived)
                )
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to complete build {build_id}: {exc}") from exc

    def fail_build(self, build_id: str, message: str) -> None:
        try:
            with Session(self.engine) as session:
                session.execute(
                    update(Build)
                    .where(Build.id == build_id)
                    .values(error_message=message, completed_at=utc_now())
                )
                session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to mark build {build_id} as failed: {exc}") from exc

    def find_active_build(self) -> BuildRecord | None:
        with Session(self.engine) as session:
            build = session.scalar(
                select(Build)
                .where(Build.status == BuildStatus.active)
                .order_by(Build.build_timestamp.desc())
                .limit(1)
            )
            return _record(build) if build is not None else None

    def get_active_build_timestamp(self) -> datetime:
        build = self.find_active_build()
        if build is None:
            raise NotFoundError("No active build found")
        return build.build_timestamp

    def get_build(self, build_id: str) -> BuildRecord:
        with Session(self.engine) as session:
            build = session.get(Build, build_id)
            if build is None:
                raise NotFoundError(f"Build {build_id} not found")
            return _record(build)

    def list_builds(self, limit: int = 20) -> list[BuildRecord]:
        with Session(self.engine) as session:
            builds = session.scalars(select(Build).order_by(Build.build_timestamp.desc()).limit(limit))
            return [_record(build) for build in builds]

    def cleanup_old_builds(self, keep_last: int = DEFAULT_KEEP_LAST) -> list[str]:
        """Delete archived builds beyond the `keep_last` most recent ones.

        Failed builds older than the active one are deleted too; they never count
        towards `keep_last`. Owned rows go first (connections, then pages) so foreign
        keys hold. Returns the ids of the deleted builds.
        """

        if keep_last < 0:
            raise ValueError("keep_last must be >= 0")

        with Session(self.engine) as session:
            archived_ids = session.scalars(
                select(Build.id)
                .where(Build.status == BuildStatus.archived)
                .order_by(Build.build_timestamp.desc())
                .limit(CLEANUP_SCAN_LIMIT)
            ).all()

            active_timestamp = session.scalar(
                select(func.max(Build.build_timestamp)).where(Build.status == BuildStatus.active)
            )
            failed_ids: list[str] = []
            if active_timestamp is not None:
                failed_ids = list(
                    session.scalars(
                        select(Build.id)
                        .where(
                            Build.status == BuildStatus.building,
                            Build.error_message.is_not(None),
                            Build.build_timestamp < active_timestamp,
                        )
                        .order_by(Build.build_timestamp.desc())
                        .limit(CLEANUP_SCAN_LIMIT)
                    )
                )

        deleted: list[str] = []
        for build_id in [*archived_ids[keep_last:], *failed_ids]:
            self._delete_generation(build_id)
            deleted.append(build_id)

        if deleted:
            logger.info(f"Deleted {len(deleted)} old build(s), kept {keep_last} archived")
        return deleted

    def _delete_generation(self, build_id: str) -> None:
        try:
            with Session(self.engine) as session, session.begin():
                session.execute(delete(Connection).where(Connection.build_id == build_id))
                session.execute(delete(Page).where(Page.build_id == build_id))
                session.execute(delete(Build).where(Build.id == build_id))
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to delete build {build_id}: {exc}") from exc
