"""Full-text search over the catalog plus the user's recent-search log."""

from __future__ import annotations

import datetime
import logging
from typing import Iterable, Union

from sqlalchemy import delete, select

from .catalog import SEARCH_FIELDS, ReferenceCatalog
from .db import HistoryGroup, Idiom, SearchHistory, as_utc, fold_text
from .store import Handle

logger = logging.getLogger(__name__)

SEARCH_RESULT_LIMIT = 50
HISTORY_GROUP_LIMIT = 10
HISTORY_RETENTION_DAYS = 7


class SearchIndex:
    def __init__(self, handle: Handle, catalog: ReferenceCatalog | None = None) -> None:
        self.handle = handle
        self.catalog = catalog or ReferenceCatalog(handle)

    def search(self, query: str) -> list[Idiom]:
        """Idioms containing ``query`` in any searchable field, ignoring case and tone marks.

        Results come in catalog order. Blank queries return nothing without
        touching storage.
        """
        text = query.strip()
        if not fold_text(text):
            return []
        return self.catalog.search_fields(text, SEARCH_FIELDS, limit=SEARCH_RESULT_LIMIT)

    def record_search(self, query: str, results: Iterable[Union[Idiom, str]], now: datetime.datetime) -> int:
        """Replace whatever was logged for ``query`` with one entry per result.

        The query is logged stripped, the same text that was matched.
        """
        query = query.strip()
        if not query:
            return 0
        now = as_utc(now)
        words = list(dict.fromkeys(r.word if isinstance(r, Idiom) else r for r in results))
        with self.handle.writer() as session:
            session.execute(delete(SearchHistory).where(SearchHistory.query == query))
            session.add_all(SearchHistory(query=query, matched_word=w, searched_at=now) for w in words)
        logger.debug("Logged search %r with %d results", query, len(words))
        return len(words)

    def list_history(self, now: datetime.datetime) -> list[HistoryGroup]:
        """Recent searches, one group per query, newest first."""
        cutoff = as_utc(now) - datetime.timedelta(days=HISTORY_RETENTION_DAYS)
        with self.handle.session() as session:
            rows = session.execute(
                select(SearchHistory.query, SearchHistory.matched_word, SearchHistory.searched_at)
                .where(SearchHistory.searched_at >= cutoff)
                .order_by(SearchHistory.searched_at.desc(), SearchHistory.id)
            ).all()

        groups: dict[str, tuple[datetime.datetime, list[str]]] = {}
        for query, word, searched_at in rows:
            if query not in groups:
                if len(groups) == HISTORY_GROUP_LIMIT:
                    continue
                groups[query] = (searched_at, [])
            groups[query][1].append(word)
        return [HistoryGroup(query=q, searched_at=at, words=tuple(words)) for q, (at, words) in groups.items()]

    def delete_query(self, query: str) -> int:
        query = query.strip()
        with self.handle.writer() as session:
            result = session.execute(delete(SearchHistory).where(SearchHistory.query == query))
            return result.rowcount  # type: ignore[attr-defined]

    def purge_older_than(self, days: int, now: datetime.datetime) -> int:
        cutoff = as_utc(now) - datetime.timedelta(days=days)
        with self.handle.writer() as session:
            result = session.execute(delete(SearchHistory).where(SearchHistory.searched_at < cutoff))
            removed = result.rowcount  # type: ignore[attr-defined]
        if removed:
            logger.info("Purged %d search history entries older than %d days", removed, days)
        return removed
