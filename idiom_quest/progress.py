from __future__ import annotations

import dataclasses
import datetime
from typing import Any, Callable, Iterator, Mapping, Optional, Union

from sqlalchemy import func, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from . import scheduler
from .catalog import ReferenceCatalog
from .db import ProgressRecord, UserProgress, as_utc
from .store import Handle

Mutation = Union[Callable[[ProgressRecord], ProgressRecord], Mapping[str, Any]]


class ProgressStore:
    """The user's learning ledger: one row per word, never deleted.

    Every write runs as a single transaction on the handle's writer lane.
    """

    def __init__(self, handle: Handle, catalog: Optional[ReferenceCatalog] = None) -> None:
        self.handle = handle
        self.catalog = catalog or ReferenceCatalog(handle)

    def get(self, word: str) -> Optional[ProgressRecord]:
        self.catalog.require(word)
        with self.handle.session() as session:
            row = session.scalars(select(UserProgress).where(UserProgress.word == word)).first()
            return row.to_record() if row is not None else None

    def upsert(self, word: str, mutation: Mutation) -> ProgressRecord:
        """Create the row if needed and apply ``mutation``, atomically.

        ``mutation`` is either a function from the current record to the new
        one, or a mapping of field names to new values.
        """
        self.catalog.require(word)
        placeholder = sqlite_insert(UserProgress.__table__).values(
            word=word, is_learned=False, review_count=0
        ).on_conflict_do_nothing(index_elements=["word"])

        with self.handle.writer() as session:
            session.execute(placeholder)
            row = session.scalars(select(UserProgress).where(UserProgress.word == word)).one()
            current = row.to_record()
            if callable(mutation):
                updated = mutation(current)
            else:
                updated = dataclasses.replace(current, **mutation)
            if updated != current:
                row.apply(updated)
        return updated

    def mark_learned(self, word: str, now: datetime.datetime) -> ProgressRecord:
        return self.upsert(word, lambda record: scheduler.start_learning(record, now))

    def mark_unlearned(self, word: str) -> ProgressRecord:
        return self.upsert(word, scheduler.reset)

    def toggle_learned(self, word: str, now: datetime.datetime) -> ProgressRecord:
        def toggle(record: ProgressRecord) -> ProgressRecord:
            if record.is_learned:
                return scheduler.reset(record)
            return scheduler.start_learning(record, now)
        return self.upsert(word, toggle)

    def record_review(self, word: str, now: datetime.datetime) -> ProgressRecord:
        return self.upsert(word, lambda record: scheduler.record_review(record, now))

    def _list(self, *criteria: Any, order_by: Any = UserProgress.id) -> Iterator[ProgressRecord]:
        with self.handle.session() as session:
            rows = session.scalars(select(UserProgress).where(*criteria).order_by(order_by)).all()
            records = [row.to_record() for row in rows]
        return iter(records)

    def list_learned(self) -> Iterator[ProgressRecord]:
        return self._list(UserProgress.is_learned.is_(True))

    def list_due(self, now: datetime.datetime) -> Iterator[ProgressRecord]:
        """Learned words whose next review is at or before ``now``, soonest first."""
        return self._list(
            UserProgress.is_learned.is_(True),
            UserProgress.next_review_due_at.is_not(None),
            UserProgress.next_review_due_at <= as_utc(now),
            order_by=UserProgress.next_review_due_at,
        )

    def list_recent(self, now: datetime.datetime, days: int = 7) -> Iterator[ProgressRecord]:
        """Learned words reviewed within the last ``days`` days, latest first."""
        cutoff = as_utc(now) - datetime.timedelta(days=days)
        return self._list(
            UserProgress.is_learned.is_(True),
            UserProgress.last_reviewed_at > cutoff,
            order_by=UserProgress.last_reviewed_at.desc(),
        )

    def summary(self, now: datetime.datetime) -> dict[str, int]:
        now = as_utc(now)
        with self.handle.session() as session:
            tracked = session.scalar(select(func.count()).select_from(UserProgress)) or 0
            learned = session.scalar(
                select(func.count()).select_from(UserProgress).where(UserProgress.is_learned.is_(True))
            ) or 0
            due = session.scalar(
                select(func.count()).select_from(UserProgress).where(
                    UserProgress.is_learned.is_(True),
                    UserProgress.next_review_due_at <= now,
                )
            ) or 0
        return {
            "total": self.handle.catalog_size(),
            "tracked": tracked,
            "learned": learned,
            "unlearned": tracked - learned,
            "due": due,
        }
