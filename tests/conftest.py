"""Shared pytest fixtures: a throwaway SQLite database and an in-memory wiki."""

from __future__ import annotations

import pytest

from build_store import SqlBuildStore
from mediawiki_api import WikiPageData
from models import init_db, make_engine
from page_store import SqlPageStore

BASE_URL = "https://wiki.example.org"


def make_wiki_page(wiki_id: int, title: str, html: str = "") -> WikiPageData:
    slug = title.replace(" ", "_")
    return WikiPageData(wiki_id=wiki_id, title=title, url=f"{BASE_URL}/wiki/{slug}", html=html)


def link_to(title: str) -> str:
    slug = title.replace(" ", "_")
    return f'<a href="/wiki/{slug}" title="{title}">{title}</a>'


class FakeWikiSource:
    """Deterministic `WikiSource`: canned pages, None for anything else."""

    def __init__(self, pages: list[WikiPageData] | None = None, *, titles: list[str] | None = None) -> None:
        self.pages = {page.title: page for page in pages or []}
        self.titles = list(titles) if titles is not None else list(self.pages)
        self.fetch_calls: list[str] = []

    async def list_page_names(self) -> list[str]:
        return list(self.titles)

    async def fetch_page(self, title: str) -> WikiPageData | None:
        self.fetch_calls.append(title)
        return self.pages.get(title)


@pytest.fixture
def engine(tmp_path):
    engine = make_engine(str(tmp_path / "test.sqlite3"))
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def page_store(engine) -> SqlPageStore:
    return SqlPageStore(engine, base_url=BASE_URL)


@pytest.fixture
def build_store(engine) -> SqlBuildStore:
    return SqlBuildStore(engine)
