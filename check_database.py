#!/usr/bin/env python3
"""
Script to examine the idiom store: catalog size, progress ledger and
recent searches, to see what is actually stored.
"""

import sys
import os
import argparse
import datetime

# Add the current directory to the path so we can import our modules
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from idiom_quest import config
from idiom_quest.errors import EmptyCatalog, StoreOpenError
from idiom_quest.service import IdiomQuest


def check_database_contents(quest: IdiomQuest) -> None:
    """Print a summary of both datasets."""
    print("🔍 Examining Idiom Quest Store")
    print("=" * 60)
    print(f"Reference: {quest.handle.reference_path}")
    print(f"Progress:  {quest.handle.progress_path}")
    if quest.handle.recovered:
        print("⚠️  Progress store was corrupted and has been recreated")

    stats = quest.summary()
    print(f"\n📚 CATALOG: {stats['total']} idioms")
    print(f"📝 PROGRESS: {stats['tracked']} rows, {stats['learned']} learned, {stats['due']} due")

    today = datetime.date.today()
    try:
        daily = quest.get_daily_idiom(today)
        print(f"\n🌅 Word of the day ({today.isoformat()}): {daily.word} [{daily.pronunciation}]")
    except EmptyCatalog as e:
        print(f"\n🌅 Word of the day unavailable: {e}")

    learned = quest.list_learned_idioms()
    print(f"\n🎓 LEARNED ({len(learned)} items):")
    for i, item in enumerate(learned[:10], 1):  # Show latest 10
        due = item.progress.next_review_due_at
        print(f"  {i:2d}. {item.idiom.word} | Reviews: {item.progress.review_count} | Next: {due:%Y-%m-%d}" if due else f"  {i:2d}. {item.idiom.word}")
    if len(learned) > 10:
        print(f"     ... and {len(learned) - 10} more items")

    recent = quest.recent_searches()
    print(f"\n🔎 RECENT SEARCHES ({len(recent)}):")
    for entry in recent:
        print(f"  「{entry.query}」 {entry.searched_at:%Y-%m-%d %H:%M} → {len(entry.results)} results")


def main() -> None:
    parser = argparse.ArgumentParser(description="Inspect the idiom store")
    parser.add_argument("--reference", help="Reference idiom database")
    parser.add_argument("--progress", help="Progress database")
    args = parser.parse_args()
    config.configure_logging()

    try:
        quest = IdiomQuest.open(args.reference, args.progress)
    except StoreOpenError as e:
        print(f"❌ {e}")
        sys.exit(1)
    with quest:
        check_database_contents(quest)


if __name__ == "__main__":
    main()
