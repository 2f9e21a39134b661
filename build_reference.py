#!/usr/bin/env python3
"""Build the read-only reference idiom database from the JSON corpus.

Usage: python build_reference.py idiom.json [--out data/idioms.sqlite]
"""
import sys, os, argparse, logging
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
from idiom_quest import config
from idiom_quest.catalog import build_reference_catalog, load_entries_from_json

logger = logging.getLogger("build_reference")

def main() -> None:
    parser = argparse.ArgumentParser(description="Build the reference idiom database")
    parser.add_argument("json_path", help="JSON list of idioms (word, pinyin, explanation, example, derivation, abbreviation)")
    parser.add_argument("--out", default=str(config.reference_path()), help="Output SQLite file")
    args = parser.parse_args()
    config.configure_logging()

    if not os.path.exists(args.json_path):
        logger.error("JSON not found: %s", args.json_path); sys.exit(1)

    entries = load_entries_from_json(args.json_path)
    logger.info("Parsed %d idioms from %s", len(entries), args.json_path)
    try:
        count = build_reference_catalog(args.out, entries)
    except (FileExistsError, ValueError) as e:
        logger.error("%s", e); sys.exit(1)
    logger.info("Reference catalog: %d idioms written to %s", count, args.out)

if __name__ == "__main__":
    main()
