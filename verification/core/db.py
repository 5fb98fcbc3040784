"""
SQLite storage for verification requests, panels, votes and audit events.

Every mutation runs inside ``transaction()``, which opens the write
transaction with BEGIN IMMEDIATE. SQLite admits one such writer at a time, so
read-tally, evaluate and conditional-write sequences never interleave.
"""

import functools
import random
import sqlite3
import time
from contextlib import contextmanager
from typing import Generator

from . import config
from .config import get_db_path, ensure_db_directory
from .errors import TransientStorageError
from ..util.logging import logger

TRANSIENT_MESSAGES = ("database is locked", "database is busy", "database table is locked")


@contextmanager
def get_db() -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection in autocommit mode."""
    ensure_db_directory()
    conn = sqlite3.connect(get_db_path(), timeout=config.STORAGE_BUSY_TIMEOUT_SEC,
                           isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def transaction() -> Generator[sqlite3.Connection, None, None]:
    """Exclusive write transaction; commits on success, rolls back on any error."""
    with get_db() as conn:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            # SQLite may already have rolled back on its own (SQLITE_FULL, SQLITE_IOERR)
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        else:
            conn.execute("COMMIT")


def is_transient(error: Exception) -> bool:
    return isinstance(error, sqlite3.OperationalError) and \
        any(msg in str(error).lower() for msg in TRANSIENT_MESSAGES)


def backoff_delay(attempt: int) -> float:
    """Exponential backoff with up to 10% jitter."""
    delay = config.STORAGE_RETRY_BASE_SEC * (2 ** (attempt - 1))
    return delay + random.uniform(0, delay * 0.1)


def retry_on_transient(func):
    """Retry an operation whose transaction failed on a busy/locked database.

    Each attempt is a whole transaction, so a retried operation never sees
    half of an earlier attempt.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        attempts = max(1, config.STORAGE_RETRY_ATTEMPTS)
        for attempt in range(1, attempts + 1):
            try:
                return func(*args, **kwargs)
            except sqlite3.OperationalError as e:
                if not is_transient(e):
                    raise
                if attempt == attempts:
                    logger.error(f"{func.__name__} gave up after {attempts} attempts: {e}")
                    raise TransientStorageError(f"Storage busy: {e}") from e
                delay = backoff_delay(attempt)
                logger.warning(f"{func.__name__} hit transient storage error ({e}); "
                               f"retry {attempt}/{attempts - 1} in {delay:.3f}s")
                time.sleep(delay)
    return wrapper


def init_db():
    """Initialize the database with required tables."""
    with get_db() as conn:
        cursor = conn.cursor()

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS verification_requests (
                id TEXT PRIMARY KEY,
                project_id TEXT NOT NULL,
                submitter_id TEXT NOT NULL,
                required_approvals INTEGER NOT NULL,
                panel_size INTEGER NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                progress INTEGER NOT NULL DEFAULT 0,
                approval_count INTEGER NOT NULL DEFAULT 0,
                rejection_count INTEGER NOT NULL DEFAULT 0,
                abstain_count INTEGER NOT NULL DEFAULT 0,
                vote_count INTEGER NOT NULL DEFAULT 0,
                submitted_at TEXT NOT NULL,
                assigned_at TEXT,
                assigned_by TEXT,
                consensus_reached_at TEXT,
                completed_at TEXT,
                resolved_by TEXT,
                voting_deadline TEXT,
                original_deadline TEXT,
                deadline_extended INTEGER NOT NULL DEFAULT 0,
                CHECK (required_approvals >= 1 AND required_approvals <= panel_size)
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS validator_assignments (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                request_id TEXT NOT NULL REFERENCES verification_requests(id) ON DELETE CASCADE,
                validator_id TEXT NOT NULL,
                assigned_by TEXT NOT NULL,
                assigned_at TEXT NOT NULL,
                UNIQUE (request_id, validator_id)
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS validator_votes (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                request_id TEXT NOT NULL REFERENCES verification_requests(id) ON DELETE CASCADE,
                validator_id TEXT NOT NULL,
                decision TEXT NOT NULL CHECK (decision IN ('approve', 'reject', 'abstain')),
                notes TEXT,
                wallet_signature TEXT,
                wallet_address TEXT,
                signed_at TEXT,
                auto_abstained INTEGER NOT NULL DEFAULT 0,
                voted_at TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE (request_id, validator_id)
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS validator_auto_abstains (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                request_id TEXT NOT NULL REFERENCES verification_requests(id) ON DELETE CASCADE,
                validator_id TEXT NOT NULL,
                auto_abstained_at TEXT NOT NULL,
                original_deadline TEXT NOT NULL,
                reason TEXT NOT NULL DEFAULT 'Voting deadline expired',
                UNIQUE (request_id, validator_id)
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS verification_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                request_id TEXT NOT NULL,
                event_type TEXT NOT NULL,
                message TEXT,
                actor TEXT,
                metadata TEXT,
                created_at TEXT NOT NULL
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS validators (
                user_id TEXT PRIMARY KEY,
                role TEXT NOT NULL,
                wallet_address TEXT,
                email_verified INTEGER NOT NULL DEFAULT 1,
                active INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL
            )
        ''')

        # Create indexes for performance
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_requests_deadline_status '
                       'ON verification_requests(voting_deadline, status)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_votes_validator ON validator_votes(validator_id)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_votes_wallet_address ON validator_votes(wallet_address)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_events_request ON verification_events(request_id, id)')


REQUIRED_TABLES = ['verification_requests', 'validator_assignments', 'validator_votes',
                   'validator_auto_abstains', 'verification_events', 'validators']


def health_check():
    """Check database health."""
    try:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
            table_names = [row[0] for row in cursor.fetchall()]
            return all(table in table_names for table in REQUIRED_TABLES)
    except sqlite3.Error as e:
        logger.error(f"Database health check failed: {e}")
        return False
