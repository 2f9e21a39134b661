from __future__ import annotations

import functools
from typing import Any, Callable, Optional

import click
import llm  # type: ignore

from . import config
from .errors import EmptyCatalog, IdiomStoreError, NotLearned, UnknownWord
from .service import IdiomQuest


def _store_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Add --reference/--progress and hand the command an open IdiomQuest."""
    @click.option("--reference", "reference_path", type=click.Path(dir_okay=False), default=None,
                  help="Reference idiom database (default: $IDIOM_QUEST_REFERENCE_DB)")
    @click.option("--progress", "progress_path", type=click.Path(dir_okay=False), default=None,
                  help="Progress database (default: $IDIOM_QUEST_PROGRESS_DB or the data directory)")
    @functools.wraps(func)
    def wrapper(reference_path: Optional[str], progress_path: Optional[str], **kwargs: Any) -> Any:
        try:
            quest = IdiomQuest.open(reference_path, progress_path)
        except IdiomStoreError as e:
            raise click.ClickException(str(e))
        try:
            return func(quest, **kwargs)
        except (UnknownWord, NotLearned, EmptyCatalog) as e:
            raise click.ClickException(str(e))
        finally:
            quest.close()
    return wrapper


def _echo_idiom(idiom: Any, verbose: bool = True) -> None:
    click.echo(f"{idiom.word}  [{idiom.pronunciation}]")
    if verbose:
        click.echo(f"  {idiom.definition}")
        if idiom.example:
            click.echo(f"  Example: {idiom.example}")
        if idiom.origin:
            click.echo(f"  Origin: {idiom.origin}")


@llm.hookimpl  # type: ignore[misc]
def register_commands(cli: Any) -> None:

    @cli.command("iq-init")  # type: ignore[misc]
    @_store_options
    def init(quest: IdiomQuest) -> None:
        """Open the idiom store and seed progress rows for every idiom."""
        stats = quest.summary()
        if quest.handle.recovered:
            click.echo("Progress store was unreadable and has been recreated.")
        click.echo(f"Store ready: {stats['total']} idioms, {stats['learned']} learned, {stats['due']} due.")

    @cli.command("iq-daily")  # type: ignore[misc]
    @_store_options
    def daily(quest: IdiomQuest) -> None:
        """Show today's idiom."""
        idiom = quest.get_daily_idiom()
        _echo_idiom(idiom)
        if quest.is_learned(idiom.word):
            click.echo("  (learned)")

    @cli.command("iq-show")  # type: ignore[misc]
    @click.argument("word")
    @_store_options
    def show(quest: IdiomQuest, word: str) -> None:
        """Show an idiom and its review state."""
        _echo_idiom(quest.get_idiom(word))
        record = quest.get_progress(word)
        if record.is_learned:
            click.echo(f"  Reviewed {record.review_count} times, next review {record.next_review_due_at:%Y-%m-%d %H:%M}")
        else:
            click.echo("  Not learned yet")

    @cli.command("iq-learn")  # type: ignore[misc]
    @click.argument("word")
    @_store_options
    def learn(quest: IdiomQuest, word: str) -> None:
        """Toggle the learned flag of WORD."""
        record = quest.toggle_learned(word)
        if record.is_learned:
            click.echo(f"'{word}' learned. First review on {record.next_review_due_at:%Y-%m-%d}.")
        else:
            click.echo(f"'{word}' moved back to unlearned; its review history was reset.")

    @cli.command("iq-review")  # type: ignore[misc]
    @click.argument("word")
    @_store_options
    def review(quest: IdiomQuest, word: str) -> None:
        """Record a review of WORD and schedule the next one."""
        record = quest.mark_reviewed(word)
        click.echo(f"Review #{record.review_count} of '{word}' saved. Next review on {record.next_review_due_at:%Y-%m-%d}.")

    @cli.command("iq-due")  # type: ignore[misc]
    @_store_options
    def due(quest: IdiomQuest) -> None:
        """List learned idioms that are due for review."""
        items = quest.list_due_for_review()
        if not items:
            click.echo("Nothing due for review. All caught up!")
            return
        for item in items:
            click.echo(f"{item.idiom.word}  (review {item.progress.review_count}, due {item.progress.next_review_due_at:%Y-%m-%d})")

    @cli.command("iq-learned")  # type: ignore[misc]
    @click.option("--recent", is_flag=True, help="Only idioms reviewed in the last 7 days")
    @_store_options
    def learned(quest: IdiomQuest, recent: bool) -> None:
        """List learned idioms."""
        items = quest.list_recently_learned() if recent else quest.list_learned_idioms()
        click.echo(f"{len(items)} learned idioms")
        for item in items:
            click.echo(f"  {item.idiom.word}  [{item.idiom.pronunciation}]  x{item.progress.review_count}")

    @cli.command("iq-search")  # type: ignore[misc]
    @click.argument("query")
    @_store_options
    def search(quest: IdiomQuest, query: str) -> None:
        """Search word, pronunciation, definition, origin and example."""
        results = quest.search(query)
        click.echo(f"{len(results)} results for '{query}'")
        for idiom in results:
            _echo_idiom(idiom, verbose=False)

    @cli.command("iq-history")  # type: ignore[misc]
    @_store_options
    def history(quest: IdiomQuest) -> None:
        """Show searches from the last 7 days."""
        recent = quest.recent_searches()
        if not recent:
            click.echo("No recent searches.")
            return
        for entry in recent:
            words = ", ".join(idiom.word for idiom in entry.results[:3])
            more = f" (+{len(entry.results) - 3} more)" if len(entry.results) > 3 else ""
            click.echo(f"'{entry.query}'  {entry.searched_at:%Y-%m-%d %H:%M}  {len(entry.results)} results: {words}{more}")

    @cli.command("iq-purge-history")  # type: ignore[misc]
    @click.option("--days", type=int, default=7, show_default=True, help="Keep searches newer than this")
    @_store_options
    def purge_history(quest: IdiomQuest, days: int) -> None:
        """Delete old search history."""
        removed = quest.purge_history(days)
        click.echo(f"Removed {removed} search history entries.")

    @cli.command("iq-build-reference")  # type: ignore[misc]
    @click.argument("json_path", type=click.Path(exists=True, dir_okay=False))
    @click.argument("output_path", type=click.Path(dir_okay=False), required=False)
    def build_reference(json_path: str, output_path: Optional[str]) -> None:
        """Convert the idiom JSON corpus into the reference database."""
        from .catalog import build_reference_catalog, load_entries_from_json

        target = output_path or str(config.reference_path())
        try:
            count = build_reference_catalog(target, load_entries_from_json(json_path))
        except (FileExistsError, ValueError) as e:
            raise click.ClickException(str(e))
        click.echo(f"Built {target} with {count} idioms.")
