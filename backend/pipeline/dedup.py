"""Article deduplication by url and provider external id."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional, Set, Tuple

from backend.storage.models import CandidateArticle, Source, canonical_url

logger = logging.getLogger(__name__)

ExistsLookup = Callable[[str, Optional[str]], Awaitable[bool]]

SCOPES = ("global", "source")


class Deduplicator:
    """Decide whether a candidate is new.

    A candidate is new only if no stored article shares its canonical url
    or its non-null external id. Keys of candidates accepted earlier in the
    same run are remembered, so a story listed under two categories is
    rejected without another store lookup. Rejected candidates are not
    remembered.

    With ``scope="source"`` the external-id half of the check is limited to
    the candidate's own source; the lookup passed to accept() must be
    scoped the same way.
    """

    def __init__(self, scope: str = "global") -> None:
        if scope not in SCOPES:
            raise ValueError(f"scope must be one of {SCOPES}, got {scope!r}")
        self.scope = scope
        self._seen_urls: Set[str] = set()
        self._seen_ids: Set[Tuple[Optional[int], str]] = set()

    def reset(self) -> None:
        """Forget keys remembered during the current run."""
        self._seen_urls.clear()
        self._seen_ids.clear()

    def _id_key(
        self, candidate: CandidateArticle, source: Optional[Source]
    ) -> Optional[Tuple[Optional[int], str]]:
        if not candidate.external_id:
            return None
        owner = source.id if (self.scope == "source" and source is not None) else None
        return (owner, candidate.external_id)

    async def accept(
        self,
        candidate: CandidateArticle,
        existing_lookup: ExistsLookup,
        source: Optional[Source] = None,
    ) -> bool:
        """True if the candidate should be persisted."""
        url_key = canonical_url(candidate.url)
        id_key = self._id_key(candidate, source)

        if url_key in self._seen_urls or (id_key is not None and id_key in self._seen_ids):
            return False

        if await existing_lookup(candidate.url, candidate.external_id):
            logger.debug("Duplicate article skipped: %s", candidate.url)
            return False

        self._seen_urls.add(url_key)
        if id_key is not None:
            self._seen_ids.add(id_key)
        return True
