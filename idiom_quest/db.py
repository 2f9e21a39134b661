from __future__ import annotations

import dataclasses
import datetime
import unicodedata
from typing import Any, Optional

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text, text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

# Name under which the read-only corpus is attached to every progress connection.
REFERENCE_SCHEMA = "reference"

# SQL function registered on every progress connection for accent- and
# case-insensitive search.
FOLD_FUNCTION = "iq_fold"


def fold_text(value: Optional[str]) -> Optional[str]:
    """Casefold and strip combining marks, so "SHÉ" and "she" compare equal to "shé"."""
    if value is None:
        return None
    nfd = unicodedata.normalize("NFD", value.casefold())
    return "".join(ch for ch in nfd if unicodedata.category(ch) != "Mn")


class UTCDateTime(TypeDecorator[datetime.datetime]):
    """Stores naive UTC in SQLite and hands back aware UTC datetimes.

    Naive values passed in are taken to be UTC already.
    """
    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime.datetime], dialect: Any) -> Optional[datetime.datetime]:
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(datetime.UTC).replace(tzinfo=None)
        return value

    def process_result_value(self, value: Optional[datetime.datetime], dialect: Any) -> Optional[datetime.datetime]:
        if value is None:
            return None
        return value.replace(tzinfo=datetime.UTC)


def as_utc(value: datetime.datetime) -> datetime.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.UTC)
    return value.astimezone(datetime.UTC)


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


class ReferenceBase(DeclarativeBase):
    pass


class Base(DeclarativeBase):
    pass


class Idiom(ReferenceBase):
    """One entry of the immutable corpus. Never written at runtime."""
    __tablename__ = "idioms"
    __table_args__ = {"schema": REFERENCE_SCHEMA}
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    word: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    pronunciation: Mapped[str] = mapped_column(String, nullable=False)
    definition: Mapped[str] = mapped_column(Text, nullable=False)
    example: Mapped[Optional[str]] = mapped_column(Text)
    origin: Mapped[Optional[str]] = mapped_column(Text)
    abbreviation: Mapped[Optional[str]] = mapped_column(String)

    def to_dict(self) -> dict[str, Any]:
        return {
            "word": self.word,
            "pronunciation": self.pronunciation,
            "definition": self.definition,
            "example": self.example,
            "origin": self.origin,
            "abbreviation": self.abbreviation,
        }

    def __repr__(self) -> str:
        return f"Idiom(id={self.id!r}, word={self.word!r})"


@dataclasses.dataclass(frozen=True)
class ProgressRecord:
    """Learning state of one word, detached from any session."""
    word: str
    is_learned: bool = False
    last_reviewed_at: Optional[datetime.datetime] = None
    next_review_due_at: Optional[datetime.datetime] = None
    review_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "word": self.word,
            "is_learned": self.is_learned,
            "last_reviewed_at": self.last_reviewed_at.isoformat() if self.last_reviewed_at else None,
            "next_review_due_at": self.next_review_due_at.isoformat() if self.next_review_due_at else None,
            "review_count": self.review_count,
        }


class UserProgress(Base):
    __tablename__ = "user_progress"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # UNIQUE backs the ON CONFLICT(word) DO NOTHING used by seeding and upserts
    word: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    is_learned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("0"))
    last_reviewed_at: Mapped[Optional[datetime.datetime]] = mapped_column(UTCDateTime)
    next_review_due_at: Mapped[Optional[datetime.datetime]] = mapped_column(UTCDateTime, index=True)
    review_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))

    def to_record(self) -> ProgressRecord:
        return ProgressRecord(
            word=self.word,
            is_learned=bool(self.is_learned),
            last_reviewed_at=self.last_reviewed_at,
            next_review_due_at=self.next_review_due_at,
            review_count=self.review_count or 0,
        )

    def apply(self, record: ProgressRecord) -> None:
        if record.word != self.word:
            raise ValueError(f"record for '{record.word}' applied to row for '{self.word}'")
        if record.review_count < 0:
            raise ValueError("review_count cannot be negative")
        self.is_learned = record.is_learned
        self.last_reviewed_at = record.last_reviewed_at
        self.next_review_due_at = record.next_review_due_at
        self.review_count = record.review_count


class SearchHistory(Base):
    __tablename__ = "search_history"
    __table_args__ = (Index("ix_search_history_query_searched_at", "query", "searched_at"),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    query: Mapped[str] = mapped_column(String, nullable=False)
    matched_word: Mapped[str] = mapped_column(String, nullable=False)
    searched_at: Mapped[datetime.datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow, index=True)


@dataclasses.dataclass(frozen=True)
class HistoryGroup:
    """All entries recorded for one query, stamped with its latest search."""
    query: str
    searched_at: datetime.datetime
    words: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "searched_at": self.searched_at.isoformat(),
            "words": list(self.words),
        }


# Columns a reference file must carry for the catalog to work.
REQUIRED_REFERENCE_COLUMNS = frozenset({"id", "word", "pronunciation", "definition"})


__all__ = [
    "REFERENCE_SCHEMA", "REQUIRED_REFERENCE_COLUMNS",
    "ReferenceBase", "Base",
    "Idiom", "UserProgress", "SearchHistory",
    "ProgressRecord", "HistoryGroup",
    "UTCDateTime", "as_utc", "utcnow",
    "FOLD_FUNCTION", "fold_text",
]
