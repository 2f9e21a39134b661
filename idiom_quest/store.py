"""Opens the reference corpus and the user's progress file as one store.

The progress file is the main SQLite database of every connection; the corpus
is attached to it read-only under the ``reference`` schema, so ORM queries can
join idioms with progress rows. All writes go through :meth:`Handle.writer`,
which serializes them on a per-handle lock.
"""

from __future__ import annotations

import concurrent.futures
import contextlib
import itertools
import logging
import sqlite3
import threading
import urllib.parse
import zlib
from pathlib import Path
from typing import Any, Iterator, Optional, Union

from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import Column, create_engine, event, func, inspect, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DatabaseError, NoSuchTableError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import NullPool, QueuePool

from . import config
from .counters import CounterStore
from .db import (
    FOLD_FUNCTION, REFERENCE_SCHEMA, REQUIRED_REFERENCE_COLUMNS, Base, Idiom, UserProgress, fold_text,
)
from .errors import ReadOnlyViolation, StoreCorruption, StoreOpenError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

CATALOG_SIZE_KEY = "catalog_size"
# The cached size is only trusted for the reference file it was counted from.
CATALOG_STAMP_KEYS = ("catalog_path_crc", "catalog_mtime_ns", "catalog_bytes")
RECONCILE_BATCH_SIZE = 250


def _sqlite_uri(path: Path, mode: str) -> str:
    return f"file:{urllib.parse.quote(str(path))}?mode={mode}"


def sqlite_engine(path: Path, mode: str, **kwargs: Any) -> Engine:
    """An engine on the SQLite file at ``path`` opened with ``mode`` (ro, rw or rwc).

    The percent-encoded URI goes straight to sqlite3, so paths containing
    ``#``, ``?`` or ``%`` never pass through SQLAlchemy's URL parser.
    """
    uri = _sqlite_uri(path, mode)

    def connect() -> sqlite3.Connection:
        return sqlite3.connect(uri, uri=True, check_same_thread=False)
    return create_engine("sqlite://", creator=connect, **kwargs)


class Handle:
    """Explicit store context passed to every catalog, progress and search call."""

    def __init__(self, reference_path: Path, progress_path: Path, engine: Engine,
                 counters: CounterStore, recovered: bool = False) -> None:
        self.reference_path = reference_path
        self.progress_path = progress_path
        self.engine = engine
        self.counters = counters
        self.recovered = recovered
        self.reconciled = False
        # Prevent attribute expiration on commit so returned objects remain accessible
        self.session_factory = sessionmaker(bind=engine, expire_on_commit=False)
        event.listen(self.session_factory, "before_flush", _refuse_reference_writes)
        self._write_lock = threading.RLock()
        self._reconcile_lock = threading.Lock()
        self._worker: Optional[concurrent.futures.ThreadPoolExecutor] = None

    def session(self) -> Session:
        """A session for reads. Use :meth:`writer` for anything that writes."""
        return self.session_factory()

    @contextlib.contextmanager
    def writer(self) -> Iterator[Session]:
        """The single writer lane: one transaction, committed on success."""
        with self._write_lock:
            session = self.session_factory()
            try:
                yield session
                session.commit()
            except BaseException:
                session.rollback()
                raise
            finally:
                session.close()

    def worker(self) -> concurrent.futures.ThreadPoolExecutor:
        """Dedicated background thread for bulk work such as seeding."""
        if self._worker is None:
            self._worker = concurrent.futures.ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="idiom-quest-store"
            )
        return self._worker

    def _reference_stamp(self) -> dict[str, int]:
        stat = self.reference_path.stat()
        path_crc = zlib.crc32(str(self.reference_path).encode("utf-8"))
        return dict(zip(CATALOG_STAMP_KEYS, (path_crc, stat.st_mtime_ns, stat.st_size)))

    def catalog_size(self) -> int:
        """Number of idioms, from the counter file when it describes this reference file."""
        counters = self.counters.snapshot()
        cached = counters.get(CATALOG_SIZE_KEY)
        stamp = self._reference_stamp()
        if cached is not None and all(counters.get(key) == value for key, value in stamp.items()):
            return cached
        with self.session() as session:
            size = session.scalar(select(func.count()).select_from(Idiom)) or 0
        self.remember_catalog_size(size)
        return size

    def remember_catalog_size(self, size: int) -> None:
        self.counters.update({CATALOG_SIZE_KEY: size, **self._reference_stamp()})

    def close(self) -> None:
        if self._worker is not None:
            self._worker.shutdown(wait=True)
            self._worker = None
        self.engine.dispose()

    def __enter__(self) -> "Handle":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()


def _refuse_reference_writes(session: Session, flush_context: Any, instances: Any) -> None:
    for obj in itertools.chain(session.new, session.dirty, session.deleted):
        if isinstance(obj, Idiom):
            raise ReadOnlyViolation(f"the reference catalog is read-only (tried to write {obj.word!r})")


def _verify_reference(reference_path: Path) -> None:
    if not reference_path.is_file():
        raise StoreOpenError(f"reference dataset not found: {reference_path}")

    engine = sqlite_engine(reference_path, "ro", poolclass=NullPool)
    try:
        with engine.connect() as conn:
            columns = {c["name"] for c in inspect(conn).get_columns(Idiom.__tablename__)}
    except NoSuchTableError:
        columns = set()
    except SQLAlchemyError as e:
        raise StoreOpenError(f"cannot read reference dataset {reference_path}: {e}") from e
    finally:
        engine.dispose()

    missing = REQUIRED_REFERENCE_COLUMNS - columns
    if missing:
        raise StoreOpenError(
            f"reference dataset {reference_path} has no usable '{Idiom.__tablename__}' table "
            f"(missing columns: {', '.join(sorted(missing))})"
        )


def _create_progress_engine(progress_path: Path, reference_path: Path) -> Engine:
    engine = sqlite_engine(progress_path, "rwc", poolclass=QueuePool)
    reference_uri = _sqlite_uri(reference_path, "ro")

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        # WAL lets readers proceed while the writer lane holds a transaction
        dbapi_connection.execute("PRAGMA main.journal_mode=WAL")
        dbapi_connection.execute(f"ATTACH DATABASE ? AS {REFERENCE_SCHEMA}", (reference_uri,))
        dbapi_connection.create_function(FOLD_FUNCTION, 1, fold_text, deterministic=True)

    @event.listens_for(engine, "handle_error")
    def _on_error(context: Any) -> None:
        message = str(context.original_exception)
        statement = context.statement or ""
        if "readonly database" in message and f"{REFERENCE_SCHEMA}." in statement:
            raise ReadOnlyViolation(f"the reference catalog is read-only: {message}") from context.original_exception

    return engine


def _migrate_progress_schema(conn: Connection) -> None:
    """Bring an older progress file up to the current models in place.

    Only additive changes are possible: nullable columns, columns with a server
    default, and the unique index on ``user_progress.word``.
    """
    inspector = inspect(conn)
    existing = set(inspector.get_table_names())
    ops = Operations(MigrationContext.configure(conn))

    for table in Base.metadata.sorted_tables:
        if table.name not in existing:
            continue
        present = {c["name"] for c in inspector.get_columns(table.name)}
        for column in table.columns:
            if column.name in present:
                continue
            server_default = column.server_default.arg if column.server_default is not None else None  # type: ignore[attr-defined]
            if column.primary_key or (not column.nullable and server_default is None):
                raise StoreCorruption(f"{table.name}.{column.name} cannot be added to an existing progress file")
            logger.info("Migrating progress store: adding column %s.%s", table.name, column.name)
            ops.add_column(
                table.name,
                Column(column.name, column.type, nullable=column.nullable, server_default=server_default),
            )

    if UserProgress.__tablename__ in existing:
        unique_sets = [u["column_names"] for u in inspector.get_unique_constraints(UserProgress.__tablename__)]
        unique_sets += [i["column_names"] for i in inspector.get_indexes(UserProgress.__tablename__) if i.get("unique")]
        if ["word"] not in unique_sets:
            logger.info("Migrating progress store: adding unique index on user_progress.word")
            ops.create_index("uq_user_progress_word", UserProgress.__tablename__, ["word"], unique=True)


def _prepare_progress_schema(engine: Engine) -> None:
    try:
        with engine.begin() as conn:
            status = conn.exec_driver_sql("PRAGMA main.quick_check").scalar()
            if status != "ok":
                raise StoreCorruption(f"integrity check failed: {status}")
            _migrate_progress_schema(conn)
            Base.metadata.create_all(conn)
    except DatabaseError as e:
        raise StoreCorruption(str(e.orig) if e.orig is not None else str(e)) from e


def _open_progress(progress_path: Path, reference_path: Path) -> Engine:
    engine = _create_progress_engine(progress_path, reference_path)
    try:
        _prepare_progress_schema(engine)
    except BaseException:
        engine.dispose()
        raise
    return engine


def _discard_progress_files(progress_path: Path) -> None:
    for suffix in ("", "-wal", "-shm", "-journal"):
        progress_path.with_name(progress_path.name + suffix).unlink(missing_ok=True)


def open_store(reference_path: PathLike, progress_path: PathLike,
               counters_path: Optional[PathLike] = None, *, reconcile: bool = True) -> Handle:
    """Open both datasets and return the handle every other component uses.

    Raises StoreOpenError when the reference dataset is unusable. A corrupted
    progress file is deleted and recreated empty, then seeded again.
    """
    reference = Path(reference_path).resolve()
    progress = Path(progress_path).resolve()
    _verify_reference(reference)

    try:
        progress.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise StoreOpenError(f"cannot create data directory {progress.parent}: {e}") from e

    recovered = False
    try:
        engine = _open_progress(progress, reference)
    except StoreCorruption as e:
        logger.warning("Progress store %s is unreadable (%s); recreating it", progress, e)
        _discard_progress_files(progress)
        recovered = True
        try:
            engine = _open_progress(progress, reference)
        except StoreCorruption as retry_error:
            raise StoreOpenError(f"could not recreate progress store {progress}: {retry_error}") from retry_error

    counters = CounterStore(Path(counters_path) if counters_path else config.counters_path(progress))
    handle = Handle(reference, progress, engine, counters, recovered=recovered)
    logger.debug("Opened reference %s with progress %s", reference, progress)

    if reconcile:
        try:
            ensure_reconciled(handle)
        except SQLAlchemyError:
            logger.exception("Seeding progress rows failed; it will be retried on the next launch")
    return handle


def reconcile_progress(handle: Handle, batch_size: int = RECONCILE_BATCH_SIZE) -> int:
    """Insert an unlearned placeholder for every idiom that has no progress row.

    Idempotent and safe to run concurrently: rows are inserted with
    ON CONFLICT(word) DO NOTHING, one id-ordered batch per writer-lane
    transaction. Returns the number of rows inserted and caches the catalog
    size for the daily selector.
    """
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")

    table = UserProgress.__table__
    inserted = 0
    catalog_size = 0
    last_id = 0
    while True:
        with handle.session() as session:
            rows = session.execute(
                select(Idiom.id, Idiom.word).where(Idiom.id > last_id).order_by(Idiom.id).limit(batch_size)
            ).all()
        if not rows:
            break
        last_id = rows[-1].id
        catalog_size += len(rows)

        stmt = sqlite_insert(table).values(
            [{"word": row.word, "is_learned": False, "review_count": 0} for row in rows]
        ).on_conflict_do_nothing(index_elements=["word"])
        with handle.writer() as session:
            result = session.execute(stmt)
            inserted += max(result.rowcount, 0)  # type: ignore[attr-defined]

    handle.remember_catalog_size(catalog_size)
    handle.reconciled = True
    logger.info("Reconciled progress against %d idioms (%d new rows)", catalog_size, inserted)
    return inserted


def ensure_reconciled(handle: Handle) -> None:
    """Seed once per handle; later calls are no-ops."""
    with handle._reconcile_lock:
        if not handle.reconciled:
            reconcile_progress(handle)


def reconcile_in_background(handle: Handle) -> "concurrent.futures.Future[int]":
    return handle.worker().submit(reconcile_progress, handle)


__all__ = [
    "Handle", "open_store", "sqlite_engine", "reconcile_progress", "ensure_reconciled",
    "reconcile_in_background", "CATALOG_SIZE_KEY", "CATALOG_STAMP_KEYS", "RECONCILE_BATCH_SIZE",
]
