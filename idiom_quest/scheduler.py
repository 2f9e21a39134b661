import dataclasses
import datetime

from .db import ProgressRecord, as_utc
from .errors import NotLearned

# Days until the next review, by review number.
REVIEW_INTERVAL_DAYS: tuple[int, ...] = (1, 3, 7, 14, 30, 90)


def interval(review_count: int) -> datetime.timedelta:
    """
    Fixed-table spaced repetition interval.

    ``review_count`` is the number of reviews completed so far, counting the
    moment a word is first learned as review 1. The returned interval is how
    long to wait before the next one:

      count 0 or 1 → 1 day
      count 2      → 3 days
      count 3      → 7 days
      count 4      → 14 days
      count 5      → 30 days
      count >= 6   → 90 days (last entry repeats)

    There is no grading and no ease factor: every review simply moves the word
    one step along the table.
    """
    if review_count < 0:
        raise ValueError("review_count cannot be negative")
    index = min(max(review_count - 1, 0), len(REVIEW_INTERVAL_DAYS) - 1)
    return datetime.timedelta(days=REVIEW_INTERVAL_DAYS[index])


def start_learning(record: ProgressRecord, now: datetime.datetime) -> ProgressRecord:
    """First learn of a word. Already-learned records come back unchanged."""
    if record.is_learned:
        return record
    now = as_utc(now)
    return dataclasses.replace(
        record,
        is_learned=True,
        last_reviewed_at=now,
        next_review_due_at=now + interval(0),
        review_count=1,
    )


def record_review(record: ProgressRecord, now: datetime.datetime) -> ProgressRecord:
    if not record.is_learned:
        raise NotLearned(record.word)
    now = as_utc(now)
    new_count = record.review_count + 1
    return dataclasses.replace(
        record,
        last_reviewed_at=now,
        next_review_due_at=now + interval(new_count),
        review_count=new_count,
    )


def reset(record: ProgressRecord) -> ProgressRecord:
    """Unlearn: the row stays, its schedule does not."""
    return dataclasses.replace(
        record,
        is_learned=False,
        last_reviewed_at=None,
        next_review_due_at=None,
        review_count=0,
    )


def is_due(record: ProgressRecord, now: datetime.datetime) -> bool:
    if not record.is_learned or record.next_review_due_at is None:
        return False
    return as_utc(record.next_review_due_at) <= as_utc(now)
