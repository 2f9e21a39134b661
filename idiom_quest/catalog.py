"""Read-only access to the idiom corpus, and the build step that produces it."""

from __future__ import annotations

import json
import logging
import random
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping, Optional, Sequence, Union

from sqlalchemy import String, func, or_, select
from sqlalchemy.orm import Session
from sqlalchemy.pool import NullPool

from .db import FOLD_FUNCTION, REFERENCE_SCHEMA, Idiom, ReferenceBase, fold_text
from .errors import UnknownWord
from .store import Handle, sqlite_engine

logger = logging.getLogger(__name__)

# Fields searched by the full-text search, in the order the app lists them.
SEARCH_FIELDS: tuple[str, ...] = ("word", "pronunciation", "definition", "origin", "example")


def contains_ci(column: Any, text: str) -> Any:
    """Substring test ignoring case and tone marks; LIKE wildcards in ``text`` match literally.

    Needs the fold function that the store registers on every connection.
    """
    folded = getattr(func, FOLD_FUNCTION)(column, type_=String)
    return folded.contains(fold_text(text), autoescape=True)


class ReferenceCatalog:
    """Lookups over the immutable corpus. Safe to share between threads."""

    def __init__(self, handle: Handle) -> None:
        self.handle = handle

    def _session(self) -> Session:
        return self.handle.session()

    def count(self) -> int:
        with self._session() as session:
            return session.scalar(select(func.count()).select_from(Idiom)) or 0

    def find(self, word: str) -> Optional[Idiom]:
        with self._session() as session:
            return session.scalars(select(Idiom).where(Idiom.word == word)).first()

    def get(self, word: str) -> Idiom:
        idiom = self.find(word)
        if idiom is None:
            raise UnknownWord(word)
        return idiom

    def exists(self, word: str) -> bool:
        with self._session() as session:
            return session.scalar(select(Idiom.id).where(Idiom.word == word).limit(1)) is not None

    def require(self, word: str) -> None:
        if not self.exists(word):
            raise UnknownWord(word)

    def at(self, index: int) -> Idiom:
        """The idiom at ``index`` in natural storage order."""
        if index < 0:
            raise IndexError(f"catalog index {index} out of range")
        with self._session() as session:
            idiom = session.scalars(select(Idiom).order_by(Idiom.id).offset(index).limit(1)).first()
        if idiom is None:
            raise IndexError(f"catalog index {index} out of range")
        return idiom

    def get_many(self, words: Iterable[str]) -> list[Idiom]:
        """Idioms for the given words in catalog order; unknown words are left out."""
        wanted = list(dict.fromkeys(words))
        if not wanted:
            return []
        with self._session() as session:
            return list(session.scalars(select(Idiom).where(Idiom.word.in_(wanted)).order_by(Idiom.id)))

    def iter_words(self, batch_size: int = 500) -> Iterator[list[str]]:
        """Yield all words in id-ordered batches, one short read per batch."""
        last_id = 0
        while True:
            with self._session() as session:
                rows = session.execute(
                    select(Idiom.id, Idiom.word).where(Idiom.id > last_id).order_by(Idiom.id).limit(batch_size)
                ).all()
            if not rows:
                return
            last_id = rows[-1].id
            yield [row.word for row in rows]

    def search_field(self, field: str, text: str, limit: Optional[int] = None) -> list[Idiom]:
        """Substring match on a single field, ignoring case and tone marks."""
        if field not in SEARCH_FIELDS:
            raise ValueError(f"'{field}' is not a searchable field")
        stmt = select(Idiom).where(contains_ci(getattr(Idiom, field), text)).order_by(Idiom.id)
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._session() as session:
            return list(session.scalars(stmt))

    def search_fields(self, text: str, fields: Sequence[str] = SEARCH_FIELDS, limit: Optional[int] = None) -> list[Idiom]:
        """Substring match OR-ed across ``fields``, in catalog order."""
        unknown = set(fields) - set(SEARCH_FIELDS)
        if unknown:
            raise ValueError(f"not searchable: {', '.join(sorted(unknown))}")
        stmt = select(Idiom).where(or_(*(contains_ci(getattr(Idiom, f), text) for f in fields))).order_by(Idiom.id)
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._session() as session:
            return list(session.scalars(stmt))

    def sample(self, count: int, exclude: Iterable[str] = (), rng: Optional[random.Random] = None) -> list[Idiom]:
        """Up to ``count`` distinct random idioms, skipping ``exclude``.

        Picks random offsets rather than ORDER BY RANDOM() so the cost does not
        grow with the size of the corpus.
        """
        rng = rng or random.Random()
        excluded = set(exclude)
        total = self.count()
        available = total - len(excluded)
        if count <= 0 or available <= 0:
            return []
        wanted = min(count, available)

        picked: dict[str, Idiom] = {}
        attempts = 0
        with self._session() as session:
            while len(picked) < wanted and attempts < wanted * 10:
                attempts += 1
                offset = rng.randrange(total)
                idiom = session.scalars(select(Idiom).order_by(Idiom.id).offset(offset).limit(1)).first()
                if idiom is not None and idiom.word not in excluded and idiom.word not in picked:
                    picked[idiom.word] = idiom
            if len(picked) < wanted:
                # Small or heavily excluded catalogs: fill from a plain scan.
                stmt = select(Idiom).order_by(Idiom.id)
                for idiom in session.scalars(stmt):
                    if len(picked) >= wanted:
                        break
                    if idiom.word not in excluded and idiom.word not in picked:
                        picked[idiom.word] = idiom
        return list(picked.values())


# ----------------------------------------------------------------------
# Build-time dataset creation
# ----------------------------------------------------------------------

# Keys of the original JSON corpus mapped onto Idiom columns.
JSON_FIELD_MAP = {
    "word": "word",
    "pinyin": "pronunciation",
    "explanation": "definition",
    "example": "example",
    "derivation": "origin",
    "abbreviation": "abbreviation",
}


def load_entries_from_json(json_path: Union[str, Path]) -> list[dict[str, Any]]:
    """Read the JSON corpus (a list of objects) into Idiom column dicts."""
    with open(json_path, "r", encoding="utf-8") as f:
        raw = json.load(f)
    if not isinstance(raw, list):
        raise ValueError(f"{json_path}: expected a JSON list of idioms")

    entries = []
    for item in raw:
        entry = {column: item.get(key) for key, column in JSON_FIELD_MAP.items()}
        # Files already in column naming are accepted as well
        for column in JSON_FIELD_MAP.values():
            if entry[column] is None and item.get(column) is not None:
                entry[column] = item[column]
        entries.append(entry)
    return entries


def build_reference_catalog(output_path: Union[str, Path], entries: Iterable[Mapping[str, Any]]) -> int:
    """Write ``entries`` to a new reference SQLite file and return the row count.

    Entries without a word, pronunciation or definition are rejected; repeated
    words keep their first occurrence.
    """
    output = Path(output_path)
    if output.exists():
        raise FileExistsError(f"{output} already exists; the reference catalog is built once")
    output.parent.mkdir(parents=True, exist_ok=True)

    engine = sqlite_engine(output, "rwc", poolclass=NullPool)
    # The model lives in the attached "reference" schema; here it is the main database.
    engine = engine.execution_options(schema_translate_map={REFERENCE_SCHEMA: None})
    ReferenceBase.metadata.create_all(engine)

    seen: set[str] = set()
    inserted = 0
    try:
        with Session(engine) as session:
            for index, entry in enumerate(entries):
                word = (entry.get("word") or "").strip()
                if not word or not entry.get("pronunciation") or not entry.get("definition"):
                    raise ValueError(f"entry {index} is missing word, pronunciation or definition")
                if word in seen:
                    logger.warning("Skipping duplicate idiom %r at entry %d", word, index)
                    continue
                seen.add(word)
                session.add(Idiom(
                    word=word,
                    pronunciation=entry["pronunciation"],
                    definition=entry["definition"],
                    example=entry.get("example") or None,
                    origin=entry.get("origin") or None,
                    abbreviation=entry.get("abbreviation") or None,
                ))
                inserted += 1
                if inserted % 1000 == 0:
                    session.flush()
                    logger.info("Inserted %d idioms...", inserted)
            session.commit()
    except BaseException:
        engine.dispose()
        output.unlink(missing_ok=True)
        raise
    engine.dispose()
    logger.info("Built reference catalog with %d idioms at %s", inserted, output)
    return inserted
