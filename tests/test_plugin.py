import json
from pathlib import Path
from typing import Any

import click
import pytest
from click.testing import CliRunner

from idiom_quest import plugin
from idiom_quest.catalog import build_reference_catalog

ENTRIES = [
    {"word": "一帆风顺", "pronunciation": "yī fān fēng shùn", "definition": "Smooth sailing; everything goes well."},
    {"word": "画蛇添足", "pronunciation": "huà shé tiān zú", "definition": "Drawing legs on a snake.",
     "origin": "《战国策·齐策二》"},
]


@pytest.fixture
def cli() -> click.Group:
    @click.group()
    def group() -> None:
        pass

    plugin.register_commands(group)
    return group


@pytest.fixture
def paths(tmp_path: Path) -> list[str]:
    reference = tmp_path / "idioms.sqlite"
    build_reference_catalog(reference, ENTRIES)
    return ["--reference", str(reference), "--progress", str(tmp_path / "user_data.sqlite")]


def invoke(cli: click.Group, *args: Any) -> Any:
    return CliRunner().invoke(cli, [str(a) for a in args])


def test_commands_are_registered(cli: click.Group) -> None:
    assert {"iq-init", "iq-daily", "iq-show", "iq-learn", "iq-review", "iq-due", "iq-learned",
            "iq-search", "iq-history", "iq-purge-history", "iq-build-reference"} <= set(cli.commands)


def test_init(cli: click.Group, paths: list[str]) -> None:
    result = invoke(cli, "iq-init", *paths)
    assert result.exit_code == 0, result.output
    assert "2 idioms, 0 learned" in result.output


def test_learn_show_and_unlearn(cli: click.Group, paths: list[str]) -> None:
    result = invoke(cli, "iq-learn", "画蛇添足", *paths)
    assert result.exit_code == 0, result.output
    assert "learned" in result.output

    result = invoke(cli, "iq-show", "画蛇添足", *paths)
    assert "Reviewed 1 times" in result.output
    assert "战国策" in result.output

    result = invoke(cli, "iq-learned", *paths)
    assert "1 learned idioms" in result.output

    result = invoke(cli, "iq-learn", "画蛇添足", *paths)
    assert "moved back to unlearned" in result.output


def test_review_errors_become_click_errors(cli: click.Group, paths: list[str]) -> None:
    result = invoke(cli, "iq-review", "一帆风顺", *paths)
    assert result.exit_code == 1
    assert "has not been learned" in result.output

    result = invoke(cli, "iq-show", "不存在的词", *paths)
    assert result.exit_code == 1
    assert "not in the reference catalog" in result.output


def test_missing_reference(cli: click.Group, tmp_path: Path) -> None:
    result = invoke(cli, "iq-daily", "--reference", tmp_path / "nope.sqlite", "--progress", tmp_path / "p.sqlite")
    assert result.exit_code == 1
    assert "reference dataset not found" in result.output


def test_search_and_history(cli: click.Group, paths: list[str]) -> None:
    result = invoke(cli, "iq-search", "snake", *paths)
    assert "1 results for 'snake'" in result.output
    assert "画蛇添足" in result.output

    result = invoke(cli, "iq-history", *paths)
    assert "'snake'" in result.output

    result = invoke(cli, "iq-purge-history", "--days", "0", *paths)
    assert result.exit_code == 0, result.output
    result = invoke(cli, "iq-history", *paths)
    assert "No recent searches." in result.output


def test_due_when_nothing_learned(cli: click.Group, paths: list[str]) -> None:
    result = invoke(cli, "iq-due", *paths)
    assert "All caught up" in result.output


def test_build_reference(cli: click.Group, tmp_path: Path) -> None:
    source = tmp_path / "idiom.json"
    source.write_text(json.dumps([
        {"word": "对牛弹琴", "pinyin": "duì niú tán qín", "explanation": "Playing the lute to a cow."},
    ], ensure_ascii=False), encoding="utf-8")
    output = tmp_path / "built.sqlite"

    result = invoke(cli, "iq-build-reference", source, output)
    assert result.exit_code == 0, result.output
    assert "with 1 idioms" in result.output

    result = invoke(cli, "iq-build-reference", source, output)
    assert result.exit_code == 1
    assert "already exists" in result.output
