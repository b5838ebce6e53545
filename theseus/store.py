"""
Embedded entity store.

A single SQLite file holding one table per collection, each a plain
`key -> value` mapping of byte strings. SQLite gives us what the rest of
the system relies on:

- every write is one atomic transaction (no torn writes after a crash),
- one writer at a time across the whole file,
- readers see a consistent snapshot and never block writers (WAL mode).

A sidecar `<path>.lock` file is locked for the lifetime of the handle so a
second Theseus instance cannot write to the store concurrently.
"""
import fcntl
import logging
import os
import time
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import Column, LargeBinary, MetaData, Table, create_engine, event, select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .errors import StoreUnavailable, TransactionFailed

logger = logging.getLogger(__name__)

CONTAINERS = "DockerContainers"
HOST_MACHINES = "HostMachines"
USERS = "Users"
TEAMS = "Teams"
ORGANIZATIONS = "Organizations"

COLLECTIONS = (CONTAINERS, HOST_MACHINES, USERS, TEAMS, ORGANIZATIONS)

LOCK_POLL_INTERVAL = 0.05


def lock_path(path: str) -> str:
    return path + ".lock"


def _acquire_file_lock(path: str, timeout: float) -> int:
    """
    Take an exclusive lock on the sidecar lock file of the store at `path`,
    waiting at most `timeout` seconds.

    The database file itself is never opened here: closing any descriptor
    on it would drop the POSIX locks SQLite holds on it in this process.
    """
    target = lock_path(path)
    try:
        fd = os.open(target, os.O_RDWR | os.O_CREAT, 0o600)
    except OSError as e:
        raise StoreUnavailable(f"could not open the lock file {target}: {e}") from e

    deadline = time.monotonic() + timeout
    while True:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            return fd
        except BlockingIOError:
            if time.monotonic() >= deadline:
                os.close(fd)
                raise StoreUnavailable(
                    f"timed out after {timeout}s waiting for the lock on {path}"
                )
            time.sleep(LOCK_POLL_INTERVAL)
        except OSError as e:
            os.close(fd)
            raise StoreUnavailable(f"could not lock the database at {path}: {e}") from e


def _create_private(path: str):
    """Create the database file owner-only. Only call while holding the store lock."""
    if os.path.exists(path):
        return
    try:
        os.close(os.open(path, os.O_RDWR | os.O_CREAT, 0o600))
    except OSError as e:
        raise StoreUnavailable(f"could not create the database at {path}: {e}") from e


def _release_file_lock(fd: int):
    try:
        fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)


def _configure_sqlite(engine: Engine):
    @event.listens_for(engine, "connect")
    def set_pragmas(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=FULL")
        cursor.close()


class EntityStore:
    """
    Handle on an open store file.

    Create it with `EntityStore.open()` once per process and pass it to
    whatever needs it; release it with `close()` or by using the store as a
    context manager.
    """

    def __init__(self, path: str, engine: Engine, tables: dict, lock_fd: int):
        self.path = path
        self._engine = engine
        self._tables = tables
        self._lock_fd = lock_fd

    @classmethod
    def open(
        cls,
        path: str,
        collections: Iterable[str] = COLLECTIONS,
        lock_timeout: float = 1.0,
        busy_timeout: float = 5.0
    ) -> "EntityStore":
        """Open or create the store at `path` and make sure every collection exists."""
        lock_fd = _acquire_file_lock(path, lock_timeout)
        try:
            _create_private(path)
        except StoreUnavailable:
            _release_file_lock(lock_fd)
            raise

        engine = create_engine(
            f"sqlite:///{path}",
            connect_args={'timeout': busy_timeout, 'check_same_thread': False},
        )
        _configure_sqlite(engine)

        metadata = MetaData()
        tables = {
            name: Table(
                name,
                metadata,
                Column('key', LargeBinary, primary_key=True),
                Column('value', LargeBinary, nullable=False),
            )
            for name in collections
        }

        try:
            metadata.create_all(engine, checkfirst=True)
        except SQLAlchemyError as e:
            engine.dispose()
            _release_file_lock(lock_fd)
            raise StoreUnavailable(f"error creating collections in {path}: {e}") from e

        logger.info(f"Opened entity store at {path} with collections {sorted(tables)}")
        return cls(path, engine, tables, lock_fd)

    def close(self):
        """Release the store. Calling it again is a no-op."""
        if self._engine is None:
            return
        self._engine.dispose()
        self._engine = None
        _release_file_lock(self._lock_fd)
        self._lock_fd = None
        logger.info(f"Closed entity store at {self.path}")

    @property
    def closed(self) -> bool:
        return self._engine is None

    def __enter__(self) -> "EntityStore":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _table(self, collection: str) -> Table:
        if self._engine is None:
            raise StoreUnavailable(f"the store at {self.path} is closed")
        table = self._tables.get(collection)
        if table is None:
            raise TransactionFailed(f"collection '{collection}' does not exist")
        return table

    def update(self, collection: str, key: bytes, value: bytes):
        """Store `value` under `key`, replacing any previous value, in one transaction."""
        table = self._table(collection)
        if not key:
            raise TransactionFailed(f"a key is required to write to '{collection}'")

        stmt = insert(table).values(key=key, value=value)
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.key],
            set_={'value': stmt.excluded.value},
        )
        try:
            with self._engine.begin() as conn:
                conn.execute(stmt)
        except SQLAlchemyError as e:
            raise TransactionFailed(f"write to '{collection}' failed: {e}") from e

    def read(self, collection: str, key: bytes) -> Optional[bytes]:
        """Return the value stored under `key`, or None if there is none."""
        table = self._table(collection)
        try:
            with self._engine.connect() as conn:
                value = conn.execute(
                    select(table.c.value).where(table.c.key == key)
                ).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise TransactionFailed(f"read from '{collection}' failed: {e}") from e
        return bytes(value) if value is not None else None

    def scan(self, collection: str) -> List[Tuple[bytes, bytes]]:
        """Every `(key, value)` pair in the collection, in key order, from one snapshot."""
        table = self._table(collection)
        try:
            with self._engine.connect() as conn:
                rows = conn.execute(
                    select(table.c.key, table.c.value).order_by(table.c.key)
                ).all()
        except SQLAlchemyError as e:
            raise TransactionFailed(f"scan of '{collection}' failed: {e}") from e
        return [(bytes(k), bytes(v)) for k, v in rows]
