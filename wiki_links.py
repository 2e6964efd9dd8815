"""Internal wiki link extraction and resolution.

Pure functions only: no network and no database access. The build pipeline and the
live data-set queries both go through here so that "what counts as a page link" is
decided in exactly one place.
"""

from __future__ import annotations

from collections.abc import Mapping

from bs4 import BeautifulSoup

# Non-content namespaces (files, special pages, categories), in both Portuguese and
# English since fandom wikis mix them. Matching is case-sensitive.
RESERVED_NAMESPACE_PREFIXES: tuple[str, ...] = (
    "/wiki/Arquivo:",
    "/wiki/Especial:",
    "/wiki/Special:",
    "/wiki/Categoria:",
    "/wiki/Category:",
)

_EXTERNAL_PREFIXES: tuple[str, ...] = ("//", "http://", "https://")


def is_valid_wiki_link(href: str | None) -> bool:
    """Return True if `href` points at a content page on the same wiki."""

    if not href:
        return False

    # External and protocol-relative URLs.
    if href.startswith(_EXTERNAL_PREFIXES):
        return False

    if not href.startswith("/"):
        return False

    if href.startswith(RESERVED_NAMESPACE_PREFIXES):
        return False

    return True


def extract_wiki_links(html: str | None) -> dict[str, str]:
    """Map each valid internal href in `html` to its anchor title.

    Anchors are visited in document order. When the same href appears more than once,
    the later anchor's title wins but the entry keeps its first position. A missing or
    empty title becomes "". Malformed or empty HTML yields an empty mapping.
    """

    if not html:
        return {}

    soup = BeautifulSoup(html, "html.parser")
    links: dict[str, str] = {}
    for anchor in soup.find_all("a"):
        href = anchor.get("href")
        if not isinstance(href, str) or not is_valid_wiki_link(href):
            continue

        title = anchor.get("title")
        links[href] = title if isinstance(title, str) else ""

    return links


def resolve_link_ids(links: Mapping[str, str], title_to_id: Mapping[str, int]) -> list[int]:
    """Turn an href -> title mapping into page ids, in the mapping's order.

    Titles missing from `title_to_id` are dropped. Ids are not deduplicated: two hrefs
    carrying the same title contribute the same id twice.
    """

    ids: list[int] = []
    for title in links.values():
        page_id = title_to_id.get(title)
        if page_id is not None:
            ids.append(page_id)
    return ids


def distinct_titles(links: Mapping[str, str]) -> list[str]:
    """Non-empty link titles, first occurrence order, without repeats."""

    return list(dict.fromkeys(title for title in links.values() if title))
