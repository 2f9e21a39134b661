import datetime
from pathlib import Path
from typing import Any, Iterator

import pytest

import app as flask_app
from idiom_quest.catalog import build_reference_catalog
from idiom_quest.service import IdiomQuest

ENTRIES = [
    {"word": "一帆风顺", "pronunciation": "yī fān fēng shùn", "definition": "Smooth sailing; everything goes well."},
    {"word": "画蛇添足", "pronunciation": "huà shé tiān zú", "definition": "Drawing legs on a snake."},
    {"word": "守株待兔", "pronunciation": "shǒu zhū dài tù", "definition": "Guarding a stump to wait for hares."},
]

T0 = datetime.datetime(2025, 11, 10, 9, 0, tzinfo=datetime.UTC)


@pytest.fixture
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Any]:
    reference = tmp_path / "idioms.sqlite"
    build_reference_catalog(reference, ENTRIES)
    now = {"value": T0}
    quest = IdiomQuest.open(reference, tmp_path / "user_data.sqlite", clock=lambda: now["value"])
    monkeypatch.setattr(flask_app, "quest", quest)
    flask_app.app.config["TESTING"] = True
    with flask_app.app.test_client() as c:
        c.now = now
        yield c
    quest.close()


def test_daily(client: Any) -> None:
    resp = client.get("/api/daily")
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["status"] == "success"
    assert data["idiom"]["word"] in {e["word"] for e in ENTRIES}
    assert data["progress"]["is_learned"] is False


def test_idiom_detail_and_unknown_word(client: Any) -> None:
    resp = client.get("/api/idioms/画蛇添足")
    assert resp.status_code == 200
    assert resp.get_json()["idiom"]["pronunciation"] == "huà shé tiān zú"

    resp = client.get("/api/idioms/不存在的词")
    assert resp.status_code == 404
    assert resp.get_json()["error"] == "unknown_word"


def test_toggle_review_and_due(client: Any) -> None:
    resp = client.post("/api/idioms/守株待兔/review")
    assert resp.status_code == 409

    resp = client.post("/api/idioms/守株待兔/toggle")
    assert resp.status_code == 200
    progress = resp.get_json()["progress"]
    assert progress["is_learned"] is True
    assert progress["review_count"] == 1

    assert client.get("/api/due").get_json()["idioms"] == []
    client.now["value"] = T0 + datetime.timedelta(days=1)
    due = client.get("/api/due").get_json()["idioms"]
    assert [item["word"] for item in due] == ["守株待兔"]

    resp = client.post("/api/idioms/守株待兔/review")
    assert resp.get_json()["progress"]["review_count"] == 2

    learned = client.get("/api/learned").get_json()["idioms"]
    assert [item["word"] for item in learned] == ["守株待兔"]
    assert client.get("/api/learned?recent=1").get_json()["idioms"][0]["progress"]["review_count"] == 2

    stats = client.get("/api/progress").get_json()
    assert stats["learned"] == 1
    assert stats["total"] == 3


def test_search_and_history(client: Any) -> None:
    resp = client.get("/api/search?q=snake")
    assert [idiom["word"] for idiom in resp.get_json()["results"]] == ["画蛇添足"]
    assert client.get("/api/search?q=").get_json()["results"] == []

    history = client.get("/api/history").get_json()["history"]
    assert [entry["query"] for entry in history] == ["snake"]
    assert history[0]["results"][0]["word"] == "画蛇添足"

    resp = client.delete("/api/history/snake")
    assert resp.get_json()["removed"] == 1
    assert client.get("/api/history").get_json()["history"] == []


def test_random(client: Any) -> None:
    resp = client.get("/api/random?count=2&exclude=一帆风顺")
    words = [idiom["word"] for idiom in resp.get_json()["idioms"]]
    assert len(words) == 2
    assert "一帆风顺" not in words


def test_empty_catalog_daily(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    reference = tmp_path / "empty.sqlite"
    build_reference_catalog(reference, [])
    quest = IdiomQuest.open(reference, tmp_path / "user_data.sqlite")
    monkeypatch.setattr(flask_app, "quest", quest)
    try:
        with flask_app.app.test_client() as c:
            resp = c.get("/api/daily")
        assert resp.status_code == 404
        assert resp.get_json()["status"] == "no_content"
    finally:
        quest.close()
