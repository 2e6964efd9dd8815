"""Build pipeline: crawl the whole wiki into a new generation and activate it.

One run:
1) Open a generation (status `building`).
2) Fetch phase: list every title, fetch + store each page concurrently. Pages that
   fail or time out are skipped; a storage error aborts the build.
3) Link phase: read the generation's pages back and turn each stored href into an
   edge when it resolves to a page of the same generation.
4) Activate the generation (archiving the previous one) and notify listeners, or
   record the failure and notify listeners. Readers keep seeing the last active
   generation until step 4 succeeds.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from build_store import DEFAULT_KEEP_LAST, BuildStats, BuildStore
from mediawiki_api import WikiSource
from page_store import NewPage, PageStore
from wiki_links import extract_wiki_links

logger = logging.getLogger(__name__)

DEFAULT_FETCH_CONCURRENCY = 8
DEFAULT_FETCH_TIMEOUT = 120.0
CANCELLED_MESSAGE = "CancelledError: build cancelled"


@dataclass(frozen=True)
class BuildCompleted:
    build_id: str
    pages_count: int
    connections_count: int


@dataclass(frozen=True)
class BuildFailed:
    build_id: str
    error: BaseException


@dataclass(frozen=True)
class BuildReport:
    build_id: str
    succeeded: bool
    pages_count: int = 0
    connections_count: int = 0
    error_message: str | None = None


CompletedListener = Callable[[BuildCompleted], Awaitable[None] | None]
FailedListener = Callable[[BuildFailed], Awaitable[None] | None]


def describe_error(exc: BaseException) -> str:
    # TaskGroup wraps the first failure of the fan-out.
    while isinstance(exc, BaseExceptionGroup) and exc.exceptions:
        exc = exc.exceptions[0]
    return f"{type(exc).__name__}: {exc}"


class BuildService:
    """Drives one crawl-and-persist cycle at a time.

    Listeners are registered on the instance (`on_completed` / `on_failed`); they may be
    plain functions or coroutines and are awaited in registration order.
    """

    def __init__(
        self,
        wiki_source: WikiSource,
        page_store: PageStore,
        build_store: BuildStore,
        *,
        fetch_concurrency: int = DEFAULT_FETCH_CONCURRENCY,
        fetch_timeout: float | None = DEFAULT_FETCH_TIMEOUT,
    ) -> None:
        if fetch_concurrency < 1:
            raise ValueError("fetch_concurrency must be >= 1")

        self.wiki_source = wiki_source
        self.page_store = page_store
        self.build_store = build_store
        self.fetch_concurrency = fetch_concurrency
        self.fetch_timeout = fetch_timeout

        self._completed_listeners: list[CompletedListener] = []
        self._failed_listeners: list[FailedListener] = []
        self._lock = asyncio.Lock()

    def on_completed(self, listener: CompletedListener) -> None:
        self._completed_listeners.append(listener)

    def on_failed(self, listener: FailedListener) -> None:
        self._failed_listeners.append(listener)

    async def build(self) -> BuildReport:
        """Run a full build. Overlapping calls wait for the running one to finish."""

        async with self._lock:
            return await self._build()

    async def clear_old_builds(self, keep_last: int = DEFAULT_KEEP_LAST) -> list[str]:
        return self.build_store.cleanup_old_builds(keep_last)

    async def _build(self) -> BuildReport:
        handle = self.build_store.start_new_build()
        build_id = handle.id
        logger.info(f"Starting build {build_id}")

        try:
            await self.store_all_pages(build_id)

            pages_count = len(self.page_store.get_all_pages(build_id))
            connections_count = await self.link_pages(build_id)

            self.build_store.complete_build(
                build_id,
                BuildStats(pages_count=pages_count, connections_count=connections_count),
            )
        except asyncio.CancelledError as exc:
            # Shutdown mid-build: close the generation out as failed, then keep cancelling.
            logger.warning(f"Build {build_id} cancelled")
            self.build_store.fail_build(build_id, CANCELLED_MESSAGE)
            await self._notify(self._failed_listeners, BuildFailed(build_id=build_id, error=exc))
            raise
        except Exception as exc:
            message = describe_error(exc)
            logger.exception(f"Build {build_id} failed: {message}")
            self.build_store.fail_build(build_id, message)
            await self._notify(self._failed_listeners, BuildFailed(build_id=build_id, error=exc))
            return BuildReport(build_id=build_id, succeeded=False, error_message=message)

        logger.info(f"Build {build_id} completed: {pages_count} pages, {connections_count} connections")
        await self._notify(
            self._completed_listeners,
            BuildCompleted(build_id=build_id, pages_count=pages_count, connections_count=connections_count),
        )
        return BuildReport(
            build_id=build_id,
            succeeded=True,
            pages_count=pages_count,
            connections_count=connections_count,
        )

    async def store_all_pages(self, build_id: str) -> int:
        """Fetch every page and store it under `build_id`. Returns pages stored."""

        titles = await self.wiki_source.list_page_names()
        logger.info(f"Build {build_id}: fetching {len(titles)} page(s)")

        semaphore = asyncio.Semaphore(self.fetch_concurrency)
        stored = 0

        async def fetch_and_store(title: str) -> None:
            nonlocal stored
            async with semaphore:
                try:
                    page = await asyncio.wait_for(self.wiki_source.fetch_page(title), timeout=self.fetch_timeout)
                except TimeoutError:
                    logger.warning(f"Skipping page {title!r}: fetch timed out after {self.fetch_timeout}s")
                    return

            if page is None:
                logger.warning(f"Skipping page {title!r}: not available from the wiki")
                return

            self.page_store.upsert_page(
                NewPage(
                    wiki_id=page.wiki_id,
                    title=page.title,
                    url=page.url,
                    html=page.html,
                    links=list(extract_wiki_links(page.html)),
                    build_id=build_id,
                )
            )
            stored += 1

        async with asyncio.TaskGroup() as group:
            for title in titles:
                group.create_task(fetch_and_store(title))

        return stored

    async def link_pages(self, build_id: str) -> int:
        """Create the edges of `build_id` from the hrefs stored on its pages."""

        connections_count = 0
        for page in self.page_store.get_all_pages(build_id):
            self.page_store.remove_connections(page.id, build_id)
            for link in page.links:
                target = self.page_store.find_page_by_link(link, build_id)
                if target is None:
                    continue
                self.page_store.create_connection(page.id, target.id, build_id)
                connections_count += 1

            # Storage calls block; give HTTP handlers a turn between pages.
            await asyncio.sleep(0)

        return connections_count

    async def _notify(self, listeners, event) -> None:
        for listener in listeners:
            result = listener(event)
            if inspect.isawaitable(result):
                await result
