"""MediaWiki Action API client.

See https://www.mediawiki.org/wiki/API:Main_page

This module isolates the network-facing wiki operations from the build pipeline in
`build_service.py` and the live queries in `dataset_service.py`.

It provides:
- Page enumeration via `list=allpages` with pagination.
- Per-page metadata (`prop=info`, canonical URL) + rendered HTML (`action=parse`).

Notes:
- Identity is MediaWiki `pageid`.
- Failures never cross the async boundary: `list_page_names` degrades to an empty
  list and `fetch_page` to None. Callers always get a well-typed result.
- Requests are blocking (`requests`); the async methods run them in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import requests

from config import WikiSourceConfig
from errors import SourceUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WikiPageData:
    """A single page as served by the wiki right now."""

    wiki_id: int
    title: str
    url: str
    html: str


@runtime_checkable
class WikiSource(Protocol):
    """What the build pipeline and the data-set queries need from a wiki."""

    async def list_page_names(self) -> list[str]:
        """Return every content page title, or [] when the wiki is unavailable."""
        ...

    async def fetch_page(self, title: str) -> WikiPageData | None:
        """Return the page, or None when it is missing or the wiki is unavailable."""
        ...


class MediaWikiClient:
    """`WikiSource` backed by a MediaWiki `api.php` endpoint."""

    def __init__(
        self,
        api_url: str,
        *,
        user_agent: str,
        timeout: float = 30.0,
        max_retries: int = 2,
        retry_backoff_seconds: float = 0.5,
    ) -> None:
        self.api_url = api_url
        self.user_agent = user_agent
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_backoff_seconds = retry_backoff_seconds

    @classmethod
    def from_config(cls, config: WikiSourceConfig) -> MediaWikiClient:
        return cls(
            config.api_url,
            user_agent=config.user_agent,
            timeout=config.request_timeout,
            max_retries=config.max_retries,
            retry_backoff_seconds=config.retry_backoff_seconds,
        )

    async def list_page_names(self) -> list[str]:
        try:
            return await asyncio.to_thread(self.fetch_all_page_names)
        except Exception as exc:
            logger.warning(f"Could not list wiki pages: {type(exc).__name__}: {exc}")
            return []

    async def fetch_page(self, title: str) -> WikiPageData | None:
        try:
            return await asyncio.to_thread(self.fetch_page_data, title)
        except Exception as exc:
            logger.warning(f"Could not fetch wiki page {title!r}: {type(exc).__name__}: {exc}")
            return None

    def fetch_all_page_names(self) -> list[str]:
        """Enumerate namespace 0 titles, following `continue` pagination.

        Raises on any failure; use `list_page_names` for the non-raising variant.
        """

        titles: list[str] = []
        continuation_params: dict[str, str] = {}

        while True:
            params: dict[str, str] = {
                "action": "query",
                "format": "json",
                "formatversion": "2",
                "list": "allpages",
                "apnamespace": "0",
                "aplimit": "max",
            }
            params.update(continuation_params)

            data = self._get(params)
            for entry in (data.get("query") or {}).get("allpages") or []:
                title = entry.get("title")
                if isinstance(title, str) and title:
                    titles.append(title)

            continuation_data = data.get("continue")
            if not continuation_data:
                break

            # MediaWiki returns e.g. {"apcontinue": "...", "continue": "-||"}
            continuation_params = {k: str(v) for k, v in continuation_data.items() if k != "continue"}

        return titles

    def fetch_page_data(self, title: str) -> WikiPageData:
        """Resolve `title` (following redirects) and download its rendered HTML.

        Raises on any failure, including a missing page.
        """

        info = self._get(
            {
                "action": "query",
                "format": "json",
                "formatversion": "2",
                "redirects": "1",
                "prop": "info",
                "inprop": "url",
                "titles": title,
            }
        )
        pages = (info.get("query") or {}).get("pages") or []
        if not pages or pages[0].get("missing") or pages[0].get("invalid"):
            raise SourceUnavailableError(f"Page not found: {title!r}")

        page = pages[0]
        page_id = page.get("pageid")
        canonical_title = page.get("title")
        full_url = page.get("fullurl")
        if not isinstance(page_id, int) or not isinstance(full_url, str):
            raise SourceUnavailableError(f"Incomplete page info for {title!r}")

        parsed = self._get(
            {
                "action": "parse",
                "format": "json",
                "formatversion": "2",
                "prop": "text",
                "pageid": str(page_id),
            }
        )
        html = (parsed.get("parse") or {}).get("text")
        if not isinstance(html, str):
            raise SourceUnavailableError(f"No HTML returned for {title!r}")

        return WikiPageData(
            wiki_id=page_id,
            title=canonical_title if isinstance(canonical_title, str) else title,
            url=full_url,
            html=html,
        )

    def _get(self, params: dict[str, str]) -> dict[str, Any]:
        """GET the API with bounded retries and exponential backoff."""

        headers = {"User-Agent": self.user_agent}
        attempt = 0
        while True:
            try:
                response = requests.get(self.api_url, params=params, headers=headers, timeout=self.timeout)
                response.raise_for_status()
                data = response.json()
                break
            except requests.RequestException as exc:
                if attempt >= self.max_retries:
                    raise SourceUnavailableError(f"{type(exc).__name__}: {exc}") from exc
                delay = self.retry_backoff_seconds * (2**attempt)
                logger.debug(f"Retrying wiki request in {delay:.2f}s after {type(exc).__name__}")
                if delay > 0:
                    time.sleep(delay)
                attempt += 1

        if not isinstance(data, dict):
            raise SourceUnavailableError("Unexpected API response shape")

        # API-level errors come back with HTTP 200.
        error = data.get("error")
        if error:
            code = error.get("code") if isinstance(error, dict) else error
            raise SourceUnavailableError(f"MediaWiki API error: {code}")

        return data
