"""Error types shared by the stores, the build pipeline and the HTTP layer."""

from __future__ import annotations


class WikiGraphError(Exception):
    """Base class for errors raised by this project."""


class NotFoundError(WikiGraphError):
    """A required lookup (page, page by link, build, active build) found nothing."""


class PersistenceError(WikiGraphError):
    """The storage engine rejected a write or could not be reached."""


class SourceUnavailableError(WikiGraphError):
    """The wiki API call failed.

    Raised inside the MediaWiki client only; its public methods turn it into an
    empty or absent result.
    """
