import datetime
from pathlib import Path
from typing import Iterator

import pytest

from idiom_quest import scheduler, store
from idiom_quest.catalog import build_reference_catalog
from idiom_quest.db import ProgressRecord
from idiom_quest.errors import NotLearned, UnknownWord
from idiom_quest.progress import ProgressStore

A, B, C = "一帆风顺", "画蛇添足", "守株待兔"

ENTRIES = [
    {"word": A, "pronunciation": "yī fān fēng shùn", "definition": "Smooth sailing."},
    {"word": B, "pronunciation": "huà shé tiān zú", "definition": "Drawing legs on a snake."},
    {"word": C, "pronunciation": "shǒu zhū dài tù", "definition": "Waiting by a stump for hares."},
]

T0 = datetime.datetime(2025, 11, 10, 9, 0, tzinfo=datetime.UTC)
ONE_SECOND = datetime.timedelta(seconds=1)


@pytest.fixture
def handle(tmp_path: Path) -> Iterator[store.Handle]:
    reference = tmp_path / "idioms.sqlite"
    build_reference_catalog(reference, ENTRIES)
    with store.open_store(reference, tmp_path / "user_data.sqlite") as h:
        yield h


@pytest.fixture
def progress(handle: store.Handle) -> ProgressStore:
    return ProgressStore(handle)


def words(records: Iterator[ProgressRecord]) -> list[str]:
    return [record.word for record in records]


def test_fresh_store_has_nothing_learned(progress: ProgressStore) -> None:
    assert words(progress.list_learned()) == []
    assert words(progress.list_due(T0 + datetime.timedelta(days=365))) == []
    assert progress.get(A) == ProgressRecord(word=A)


def test_mark_learned_schedules_first_review(progress: ProgressStore) -> None:
    record = progress.mark_learned(A, T0)

    assert record.is_learned and record.review_count == 1
    assert words(progress.list_learned()) == [A]
    assert words(progress.list_due(T0 + scheduler.interval(1) - ONE_SECOND)) == []
    assert words(progress.list_due(T0 + scheduler.interval(1) + ONE_SECOND)) == [A]


def test_learned_state_is_durable(handle: store.Handle) -> None:
    ProgressStore(handle).mark_learned(B, T0)
    handle.close()

    with store.open_store(handle.reference_path, handle.progress_path) as reopened:
        record = ProgressStore(reopened).get(B)
    assert record is not None
    assert record.is_learned
    assert record.last_reviewed_at == T0
    assert record.next_review_due_at == T0 + scheduler.interval(0)


def test_mark_learned_twice_changes_nothing(progress: ProgressStore) -> None:
    first = progress.mark_learned(A, T0)
    second = progress.mark_learned(A, T0 + datetime.timedelta(hours=5))
    assert second == first
    assert progress.get(A) == first


def test_unlearn_then_relearn_starts_over(progress: ProgressStore) -> None:
    progress.mark_learned(A, T0)
    progress.record_review(A, T0 + datetime.timedelta(days=1))
    assert progress.get(A).review_count == 2

    unlearned = progress.mark_unlearned(A)
    assert unlearned == ProgressRecord(word=A)
    assert words(progress.list_learned()) == []

    t1 = T0 + datetime.timedelta(days=10)
    record = progress.mark_learned(A, t1)
    assert record.review_count == 1
    assert record.last_reviewed_at == t1
    assert record.next_review_due_at == t1 + scheduler.interval(0)


def test_review_advances_schedule(progress: ProgressStore) -> None:
    progress.mark_learned(C, T0)
    t1 = T0 + datetime.timedelta(days=1)
    record = progress.record_review(C, t1)
    assert record.review_count == 2
    assert record.last_reviewed_at == t1
    assert record.next_review_due_at == t1 + scheduler.interval(2)
    assert words(progress.list_due(t1 + datetime.timedelta(days=2))) == []
    assert words(progress.list_due(t1 + datetime.timedelta(days=3))) == [C]


def test_review_of_unlearned_word_is_refused(tmp_path: Path) -> None:
    reference = tmp_path / "idioms.sqlite"
    build_reference_catalog(reference, ENTRIES)
    with store.open_store(reference, tmp_path / "user_data.sqlite", reconcile=False) as h:
        progress = ProgressStore(h)
        with pytest.raises(NotLearned):
            progress.record_review(B, T0)
        # the placeholder insert was rolled back with the failed mutation
        assert progress.get(B) is None


def test_toggle_learned(progress: ProgressStore) -> None:
    record = progress.toggle_learned(B, T0)
    assert record.is_learned and record.review_count == 1
    record = progress.toggle_learned(B, T0 + ONE_SECOND)
    assert not record.is_learned and record.review_count == 0
    assert progress.get(B) == ProgressRecord(word=B)


def test_unknown_words_are_rejected(progress: ProgressStore) -> None:
    with pytest.raises(UnknownWord) as excinfo:
        progress.get("不存在的词")
    assert excinfo.value.word == "不存在的词"
    with pytest.raises(UnknownWord):
        progress.mark_learned("不存在的词", T0)
    with pytest.raises(UnknownWord):
        progress.upsert("不存在的词", {"review_count": 3})


def test_upsert_creates_missing_row(tmp_path: Path) -> None:
    reference = tmp_path / "idioms.sqlite"
    build_reference_catalog(reference, ENTRIES)
    with store.open_store(reference, tmp_path / "user_data.sqlite", reconcile=False) as h:
        progress = ProgressStore(h)
        assert progress.get(C) is None
        record = progress.upsert(C, {"is_learned": True, "review_count": 4, "next_review_due_at": T0})
        assert record == ProgressRecord(word=C, is_learned=True, next_review_due_at=T0, review_count=4)
        assert progress.get(C) == record


def test_upsert_rejects_negative_review_count(progress: ProgressStore) -> None:
    with pytest.raises(ValueError):
        progress.upsert(A, {"review_count": -1})
    assert progress.get(A).review_count == 0


def test_list_due_orders_soonest_first(progress: ProgressStore) -> None:
    progress.mark_learned(C, T0)
    progress.mark_learned(A, T0 - datetime.timedelta(hours=3))
    progress.mark_learned(B, T0 - datetime.timedelta(hours=1))
    assert words(progress.list_due(T0 + datetime.timedelta(days=2))) == [A, B, C]


def test_list_recent_and_summary(progress: ProgressStore) -> None:
    now = T0 + datetime.timedelta(days=10)
    progress.mark_learned(A, T0)
    progress.mark_learned(B, now - datetime.timedelta(days=2))
    progress.mark_learned(C, now - datetime.timedelta(hours=1))

    assert words(progress.list_recent(now)) == [C, B]
    assert words(progress.list_recent(now, days=30)) == [C, B, A]
    assert progress.summary(now) == {"total": 3, "tracked": 3, "learned": 3, "unlearned": 0, "due": 2}

    progress.mark_unlearned(A)
    assert progress.summary(now) == {"total": 3, "tracked": 3, "learned": 2, "unlearned": 1, "due": 1}
