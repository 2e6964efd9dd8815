"""Live data-set queries against the wiki itself (not the stored snapshot).

Every call goes to the wiki API; nothing is cached. `get_page_connections` costs one
fetch per distinct linked title, so this path is meant for debugging and ad-hoc
inspection rather than as the main read path.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from errors import NotFoundError
from mediawiki_api import WikiPageData, WikiSource
from wiki_links import distinct_titles, extract_wiki_links, resolve_link_ids

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DataSetPage:
    id: int
    name: str
    link: str


class DataSetService:
    def __init__(self, wiki_source: WikiSource, *, concurrency: int = 8) -> None:
        self.wiki_source = wiki_source
        self.concurrency = concurrency

    async def get_all_pages(self) -> list[DataSetPage]:
        """One entry per listed title, in listing order; unresolvable titles are skipped."""

        titles = await self.wiki_source.list_page_names()
        fetched = await self._fetch_many(titles)

        pages: list[DataSetPage] = []
        for title, page in zip(titles, fetched, strict=True):
            if page is None:
                logger.warning(f"Page not found: {title}")
                continue
            pages.append(DataSetPage(id=page.wiki_id, name=page.title, link=page.url))
        return pages

    async def get_page_connections(self, page_name: str) -> list[int]:
        """Wiki page ids linked from `page_name`, in link order.

        Raises NotFoundError if the page itself cannot be fetched; linked pages that
        cannot be fetched are dropped.
        """

        page = await self.wiki_source.fetch_page(page_name)
        if page is None:
            raise NotFoundError(f"Page not found: {page_name}")

        links = extract_wiki_links(page.html)
        titles = distinct_titles(links)
        fetched = await self._fetch_many(titles)

        title_to_id = {
            title: linked.wiki_id for title, linked in zip(titles, fetched, strict=True) if linked is not None
        }
        return resolve_link_ids(links, title_to_id)

    async def _fetch_many(self, titles: list[str]) -> list[WikiPageData | None]:
        semaphore = asyncio.Semaphore(self.concurrency)

        async def fetch(title: str) -> WikiPageData | None:
            async with semaphore:
                return await self.wiki_source.fetch_page(title)

        return list(await asyncio.gather(*(fetch(title) for title in titles)))
