"""Persistence for page snapshots and their link edges, scoped by build.

All reads/writes of the `pages` and `connections` tables flow through this module.
Each operation opens and closes its own session (one short transaction per call).
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from sqlalchemy import delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from errors import NotFoundError, PersistenceError
from models import Connection, Page


@dataclass(frozen=True)
class PageSnapshot:
    """A stored page, detached from any session."""

    id: str
    wiki_id: int
    title: str
    url: str
    html: str
    links: list[str]
    build_id: str


@dataclass(frozen=True)
class NewPage:
    """Fields for `upsert_page`. (build_id, wiki_id) is the natural key."""

    wiki_id: int
    title: str
    url: str
    html: str
    build_id: str
    links: list[str] = field(default_factory=list)


@runtime_checkable
class PageStore(Protocol):
    def get_all_pages(self, build_id: str | None = None) -> list[PageSnapshot]: ...

    def upsert_page(self, data: NewPage) -> PageSnapshot: ...

    def find_page(self, page_id: str) -> PageSnapshot | None: ...

    def get_page(self, page_id: str) -> PageSnapshot: ...

    def find_page_by_link(self, link: str, build_id: str) -> PageSnapshot | None: ...

    def get_page_by_link(self, link: str, build_id: str) -> PageSnapshot: ...

    def create_connection(self, origin_id: str, target_id: str, build_id: str) -> None: ...

    def get_connections(self, page_id: str) -> list[PageSnapshot]: ...

    def remove_connections(self, page_id: str, build_id: str) -> None: ...

    def list_connections(self, build_id: str) -> list[tuple[str, str]]: ...


def _snapshot(page: Page) -> PageSnapshot:
    return PageSnapshot(
        id=page.id,
        wiki_id=page.wiki_id,
        title=page.title,
        url=page.url,
        html=page.html,
        links=list(page.links or []),
        build_id=page.build_id,
    )


class SqlPageStore:
    """`PageStore` over a SQLAlchemy engine (SQLite file or any server URL).

    `base_url` is the wiki site root; a relative href such as "/wiki/Foo" is matched
    against stored page URLs as `base_url + href`.
    """

    def __init__(self, engine: Engine, *, base_url: str) -> None:
        self.engine = engine
        self.base_url = base_url.rstrip("/")

    def get_all_pages(self, build_id: str | None = None) -> list[PageSnapshot]:
        stmt = select(Page)
        if build_id is not None:
            stmt = stmt.where(Page.build_id == build_id)

        with Session(self.engine) as session:
            return [_snapshot(page) for page in session.scalars(stmt)]

    def upsert_page(self, data: NewPage) -> PageSnapshot:
        """Insert the page, or overwrite the row with the same (build_id, wiki_id)."""

        try:
            with Session(self.engine) as session:
                page = session.scalar(
                    select(Page).where(Page.build_id == data.build_id, Page.wiki_id == data.wiki_id)
                )
                if page is None:
                    page = Page(wiki_id=data.wiki_id, build_id=data.build_id)
                    session.add(page)

                page.title = data.title
                page.url = data.url
                page.html = data.html
                page.links = list(data.links)

                session.commit()
                return _snapshot(page)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to upsert page wiki_id={data.wiki_id}: {exc}") from exc

    def find_page(self, page_id: str) -> PageSnapshot | None:
        with Session(self.engine) as session:
            page = session.get(Page, page_id)
            return _snapshot(page) if page is not None else None

    def get_page(self, page_id: str) -> PageSnapshot:
        page = self.find_page(page_id)
        if page is None:
            raise NotFoundError(f"Page with id {page_id} not found")
        return page

    def find_page_by_link(self, link: str, build_id: str) -> PageSnapshot | None:
        with Session(self.engine) as session:
            page = session.scalar(
                select(Page)
                .where(Page.url == f"{self.base_url}{link}", Page.build_id == build_id)
                .limit(1)
            )
            return _snapshot(page) if page is not None else None

    def get_page_by_link(self, link: str, build_id: str) -> PageSnapshot:
        page = self.find_page_by_link(link, build_id)
        if page is None:
            raise NotFoundError(f"Page with link {link} not found")
        return page

    def create_connection(self, origin_id: str, target_id: str, build_id: str) -> None:
        """Insert one edge. Both endpoints must be pages of `build_id`."""

        try:
            with Session(self.engine) as session:
                rows = session.execute(
                    select(Page.id, Page.build_id).where(Page.id.in_({origin_id, target_id}))
                ).all()
                builds_by_page = {page_id: owner for page_id, owner in rows}
                for endpoint in (origin_id, target_id):
                    if builds_by_page.get(endpoint) != build_id:
                        raise PersistenceError(
                            f"Cannot connect {origin_id} -> {target_id}: page {endpoint} "
                            f"is not part of build {build_id}"
                        )

                session.add(Connection(origin=origin_id, target=target_id, build_id=build_id))
                session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to create connection {origin_id} -> {target_id}: {exc}") from exc

    def get_connections(self, page_id: str) -> list[PageSnapshot]:
        """Target pages of every outgoing edge of `page_id`.

        Strict: raises NotFoundError if any edge points at a page that no longer exists.
        """

        with Session(self.engine) as session:
            targets: Sequence[str] = session.scalars(
                select(Connection.target).where(Connection.origin == page_id)
            ).all()

            pages: list[PageSnapshot] = []
            for target_id in targets:
                page = session.get(Page, target_id)
                if page is None:
                    raise NotFoundError(f"Page with id {target_id} not found")
                pages.append(_snapshot(page))
            return pages

    def remove_connections(self, page_id: str, build_id: str) -> None:
        try:
            with Session(self.engine) as session:
                session.execute(
                    delete(Connection).where(Connection.origin == page_id, Connection.build_id == build_id)
                )
                session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to remove connections of {page_id}: {exc}") from exc

    def list_connections(self, build_id: str) -> list[tuple[str, str]]:
        """(origin, target) page id pairs of a build. Order is unspecified."""

        with Session(self.engine) as session:
            rows = session.execute(
                select(Connection.origin, Connection.target).where(Connection.build_id == build_id)
            ).all()
            return [(origin, target) for origin, target in rows]
