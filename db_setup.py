import logging
import sqlite3
from contextlib import contextmanager

from errors import (
    IntegrityViolation,
    MergeConflict,
    ReconciliationError,
    StorageUnavailable,
    StoreMisconfigured,
)
from settings import settings

logger = logging.getLogger(__name__)

SCHEMA_ERRORS = ("no such table", "no such column")


def init_db(db_path: str = None):
    conn = get_db_connection(db_path)
    cursor = conn.cursor()

    try:
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS Contact (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                phoneNumber TEXT,
                email TEXT,
                linkedId INTEGER,
                linkPrecedence TEXT NOT NULL CHECK(linkPrecedence IN ('secondary', 'primary')),
                createdAt DATETIME NOT NULL,
                updatedAt DATETIME NOT NULL,
                deletedAt DATETIME,
                FOREIGN KEY (linkedId) REFERENCES Contact (id)
            )
        ''')
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_contact_email ON Contact (email)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_contact_phone ON Contact (phoneNumber)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_contact_linked ON Contact (linkedId)")
        # Readers keep working while a reconciliation holds the write lock
        cursor.execute("PRAGMA journal_mode=WAL")
    except sqlite3.Error as e:
        raise StorageUnavailable(f"Could not initialise contact table: {e}") from e
    finally:
        conn.close()

    logger.info(f"Contact table ready at {db_path or settings.db_path}")


def get_db_connection(db_path: str = None):
    """Open a connection in autocommit mode; transactions are begun explicitly."""
    try:
        conn = sqlite3.connect(
            db_path or settings.db_path,
            timeout=settings.store_timeout_seconds,
            isolation_level=None,
        )
    except sqlite3.Error as e:
        raise StorageUnavailable(f"Could not open contact database: {e}") from e
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def _rollback(conn):
    # SQLite may already have rolled back on its own (e.g. after SQLITE_FULL)
    if conn.in_transaction:
        conn.execute("ROLLBACK")


def _translate(e: sqlite3.Error) -> ReconciliationError:
    if isinstance(e, sqlite3.IntegrityError):
        return IntegrityViolation(f"Contact store rejected write: {e}")
    if isinstance(e, (sqlite3.ProgrammingError, sqlite3.InterfaceError)):
        return StoreMisconfigured(f"Contact store misused: {e}")
    if isinstance(e, sqlite3.OperationalError) and str(e).startswith(SCHEMA_ERRORS):
        return StoreMisconfigured(f"Contact schema missing or outdated: {e}")
    return StorageUnavailable(f"Contact store error: {e}")


@contextmanager
def transaction(db_path: str = None):
    """
    One serializable unit of work.

    BEGIN IMMEDIATE takes the write lock before the first read, so two requests
    can never both observe the same state and act on it. Everything done on the
    yielded connection is committed together or rolled back together.
    """
    conn = get_db_connection(db_path)
    try:
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.OperationalError as e:
            raise StorageUnavailable(f"Contact store busy: {e}") from e

        try:
            yield conn
        except ReconciliationError:
            _rollback(conn)
            raise
        except sqlite3.Error as e:
            _rollback(conn)
            raise _translate(e) from e
        except BaseException:
            _rollback(conn)
            raise

        try:
            conn.execute("COMMIT")
        except sqlite3.OperationalError as e:
            _rollback(conn)
            raise MergeConflict(f"Unit of work could not be committed: {e}") from e
    finally:
        conn.close()
