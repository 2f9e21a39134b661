"""The read/write surface the screens use.

Everything the learning, review, search and game screens need goes through
:class:`IdiomQuest`. Progress changes are pushed to subscribers after they
commit, so views refresh without polling the store.
"""

from __future__ import annotations

import concurrent.futures
import dataclasses
import datetime
import logging
import threading
from typing import Any, Callable, Iterable, Optional

from sqlalchemy import select

from . import config
from .catalog import ReferenceCatalog
from .daily import select_daily_word
from .db import HistoryGroup, Idiom, ProgressRecord, UserProgress, utcnow
from .progress import ProgressStore
from .search import HISTORY_RETENTION_DAYS, SearchIndex
from .store import Handle, PathLike, open_store, reconcile_in_background

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime.datetime]


def _log_failure(task: str) -> Callable[["concurrent.futures.Future[Any]"], None]:
    """Done-callback that reports a failed background job; the next launch retries it."""
    def callback(future: "concurrent.futures.Future[Any]") -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error("%s failed in the background: %s", task, error, exc_info=error)
    return callback


@dataclasses.dataclass(frozen=True)
class ProgressEvent:
    """Sent to subscribers after a progress change is committed."""
    action: str  # "learned", "unlearned" or "reviewed"
    record: ProgressRecord


@dataclasses.dataclass(frozen=True)
class StudyItem:
    idiom: Idiom
    progress: ProgressRecord

    def to_dict(self) -> dict[str, Any]:
        data = self.idiom.to_dict()
        data["progress"] = self.progress.to_dict()
        return data


@dataclasses.dataclass(frozen=True)
class RecentSearch:
    query: str
    searched_at: datetime.datetime
    results: list[Idiom]

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "searched_at": self.searched_at.isoformat(),
            "results": [idiom.to_dict() for idiom in self.results],
        }


class IdiomQuest:
    def __init__(self, handle: Handle, clock: Optional[Clock] = None) -> None:
        self.handle = handle
        self.clock: Clock = clock or utcnow
        self.catalog = ReferenceCatalog(handle)
        self.progress = ProgressStore(handle, self.catalog)
        self.search_index = SearchIndex(handle, self.catalog)
        self._subscribers: list[Callable[[ProgressEvent], None]] = []
        self._subscribers_lock = threading.Lock()

    @classmethod
    def open(cls, reference_path: Optional[PathLike] = None, progress_path: Optional[PathLike] = None,
             clock: Optional[Clock] = None, background: bool = False) -> "IdiomQuest":
        """Open the store from explicit paths or the environment configuration.

        With ``background=True`` seeding and history cleanup run on the store's
        worker thread instead of delaying the caller.
        """
        handle = open_store(
            reference_path or config.reference_path(),
            progress_path or config.progress_path(),
            reconcile=not background,
        )
        quest = cls(handle, clock=clock)
        if background:
            reconcile_in_background(handle).add_done_callback(_log_failure("Seeding progress rows"))
            handle.worker().submit(quest.purge_history).add_done_callback(_log_failure("Purging search history"))
        else:
            quest.purge_history()
        return quest

    def close(self) -> None:
        self.handle.close()

    def __enter__(self) -> "IdiomQuest":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # -- observers ---------------------------------------------------------

    def subscribe(self, callback: Callable[[ProgressEvent], None]) -> Callable[[], None]:
        """Register ``callback``; the returned function unregisters it."""
        with self._subscribers_lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._subscribers_lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)
        return unsubscribe

    def _publish(self, action: str, record: ProgressRecord) -> None:
        with self._subscribers_lock:
            subscribers = list(self._subscribers)
        event = ProgressEvent(action=action, record=record)
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                # the write has already committed
                logger.exception("Progress subscriber %r failed", callback)

    # -- learning ----------------------------------------------------------

    def get_daily_idiom(self, today: Optional[datetime.date] = None) -> Idiom:
        """Word of the day for ``today`` (local calendar date by default)."""
        index = select_daily_word(self.handle.catalog_size(), today or datetime.date.today())
        return self.catalog.at(index)

    def get_idiom(self, word: str) -> Idiom:
        return self.catalog.get(word)

    def get_progress(self, word: str) -> ProgressRecord:
        return self.progress.get(word) or ProgressRecord(word=word)

    def is_learned(self, word: str) -> bool:
        return self.get_progress(word).is_learned

    def toggle_learned(self, word: str) -> ProgressRecord:
        record = self.progress.toggle_learned(word, self.clock())
        self._publish("learned" if record.is_learned else "unlearned", record)
        return record

    def mark_reviewed(self, word: str) -> ProgressRecord:
        record = self.progress.record_review(word, self.clock())
        self._publish("reviewed", record)
        return record

    def _study_items(self, records: Iterable[ProgressRecord]) -> list[StudyItem]:
        by_word = {record.word: record for record in records}
        if not by_word:
            return []
        idioms = {idiom.word: idiom for idiom in self.catalog.get_many(by_word)}
        return [StudyItem(idioms[word], record) for word, record in by_word.items() if word in idioms]

    def list_learned_idioms(self) -> list[StudyItem]:
        """Learned idioms with their progress, most recently reviewed first."""
        with self.handle.session() as session:
            rows = session.execute(
                select(Idiom, UserProgress)
                .join(UserProgress, UserProgress.word == Idiom.word)
                .where(UserProgress.is_learned.is_(True))
                .order_by(UserProgress.last_reviewed_at.desc(), Idiom.id)
            ).all()
            return [StudyItem(idiom, progress.to_record()) for idiom, progress in rows]

    def list_due_for_review(self) -> list[StudyItem]:
        return self._study_items(self.progress.list_due(self.clock()))

    def list_recently_learned(self, days: int = 7) -> list[StudyItem]:
        return self._study_items(self.progress.list_recent(self.clock(), days=days))

    def random_idioms(self, count: int, exclude: Iterable[str] = ()) -> list[Idiom]:
        """Distinct random idioms, e.g. a question and its distractors."""
        return self.catalog.sample(count, exclude=exclude)

    def summary(self) -> dict[str, int]:
        return self.progress.summary(self.clock())

    # -- search ------------------------------------------------------------

    def search(self, query: str) -> list[Idiom]:
        """Search the catalog and remember the query in the recent-search log."""
        results = self.search_index.search(query)
        if query.strip():
            self.search_index.record_search(query, results, self.clock())
        return results

    def recent_searches(self) -> list[RecentSearch]:
        groups: list[HistoryGroup] = self.search_index.list_history(self.clock())
        recent = []
        for group in groups:
            idioms = {idiom.word: idiom for idiom in self.catalog.get_many(group.words)}
            recent.append(RecentSearch(
                query=group.query,
                searched_at=group.searched_at,
                results=[idioms[w] for w in group.words if w in idioms],
            ))
        return recent

    def clear_search(self, query: str) -> int:
        return self.search_index.delete_query(query)

    def purge_history(self, days: Optional[int] = None) -> int:
        if days is None:
            days = HISTORY_RETENTION_DAYS
        return self.search_index.purge_older_than(days, self.clock())
