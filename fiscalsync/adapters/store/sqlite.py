"""SQLite offline store adapter.

Implements OfflineStorePort using SQLite with aiosqlite for async access.
Every mutation is committed before the call returns, so the database
file is the only source of truth for pending work across restarts.
"""

import asyncio
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite

from fiscalsync.core.errors import DuplicateSubmissionError, DurabilityError
from fiscalsync.core.models import (
    DocumentKind,
    OutcomeStatus,
    PendingSubmission,
    QueueStats,
)
from fiscalsync.core.ports import OfflineStorePort

logger = logging.getLogger(__name__)

_PENDING_COLUMNS = (
    "okp, cash_register_code, document_kind, payload, payload_digest, "
    "sequence, enqueued_at, issued_at, attempt_count, last_error"
)


class SQLiteOfflineStore(OfflineStorePort):
    """SQLite-backed offline store with connection pooling and async access.

    Operations touching one register's queue are serialized by a
    per-register asyncio lock; registers never wait on each other.
    """

    def __init__(self, db_path: str, pool_size: int = 5, busy_timeout: float = 30.0):
        """Initialize SQLite store with connection pooling.

        Args:
            db_path: Path to SQLite database file.
            pool_size: Number of connections to maintain in the pool.
            busy_timeout: Seconds to wait for a competing writer.
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._pool: list[aiosqlite.Connection] = []
        self._pool_lock = asyncio.Lock()
        self._pool_size = pool_size
        self._busy_timeout = busy_timeout
        self._schema_lock = asyncio.Lock()
        self._schema_initialized = False
        self._register_locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, cash_register_code: str) -> asyncio.Lock:
        """Lock guarding one register's queue."""
        lock = self._register_locks.get(cash_register_code)
        if lock is None:
            lock = asyncio.Lock()
            self._register_locks[cash_register_code] = lock
        return lock

    async def _get_connection(self) -> aiosqlite.Connection:
        """Get a connection from the pool or create a new one."""
        async with self._pool_lock:
            if self._pool:
                return self._pool.pop()
        try:
            conn = await aiosqlite.connect(str(self.db_path), timeout=self._busy_timeout)
            await conn.execute("PRAGMA journal_mode = WAL")
            await conn.execute("PRAGMA synchronous = FULL")
        except sqlite3.Error as e:
            raise DurabilityError(f"Cannot open offline store {self.db_path}: {e}") from e
        return conn

    async def _return_connection(self, conn: aiosqlite.Connection) -> None:
        """Return a connection to the pool."""
        async with self._pool_lock:
            if len(self._pool) < self._pool_size:
                self._pool.append(conn)
                return
        await conn.close()

    async def close(self) -> None:
        """Close all pooled connections."""
        async with self._pool_lock:
            for conn in self._pool:
                await conn.close()
            self._pool.clear()

    async def _init_schema(self) -> None:
        """Initialize database schema on first use.

        Only runs once per instance. Subsequent calls are no-ops.
        """
        if self._schema_initialized:
            return
        async with self._schema_lock:
            # Check again after acquiring lock to prevent race
            if self._schema_initialized:
                return

            conn = await self._get_connection()
            try:
                await conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS pending_submissions (
                        okp TEXT PRIMARY KEY,
                        cash_register_code TEXT NOT NULL,
                        document_kind TEXT NOT NULL,
                        payload TEXT NOT NULL,
                        payload_digest TEXT UNIQUE NOT NULL,
                        sequence INTEGER NOT NULL,
                        enqueued_at TIMESTAMP NOT NULL,
                        issued_at TIMESTAMP NOT NULL,
                        attempt_count INTEGER NOT NULL DEFAULT 0,
                        last_error TEXT,
                        UNIQUE (cash_register_code, sequence)
                    )
                    """
                )
                await conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS reconciled_submissions (
                        okp TEXT PRIMARY KEY,
                        cash_register_code TEXT NOT NULL,
                        payload_digest TEXT UNIQUE NOT NULL,
                        sequence INTEGER NOT NULL,
                        status TEXT NOT NULL,
                        authority_id TEXT,
                        resolved_at TIMESTAMP NOT NULL
                    )
                    """
                )
                await conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS register_sequences (
                        cash_register_code TEXT PRIMARY KEY,
                        last_sequence INTEGER NOT NULL
                    )
                    """
                )
                # FIFO reads per register
                await conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_pending_register "
                    "ON pending_submissions(cash_register_code, sequence)"
                )
                await conn.commit()
                self._schema_initialized = True
            except sqlite3.Error as e:
                raise DurabilityError(f"Cannot initialize offline store: {e}") from e
            finally:
                await self._return_connection(conn)

    async def next_sequence(self, cash_register_code: str) -> int:
        """Durably allocate the next offline sequence number for a register."""
        await self._init_schema()

        async with self._lock_for(cash_register_code):
            conn = await self._get_connection()
            try:
                await conn.execute(
                    """
                    INSERT INTO register_sequences (cash_register_code, last_sequence)
                    VALUES (?, 1)
                    ON CONFLICT(cash_register_code)
                    DO UPDATE SET last_sequence = last_sequence + 1
                    """,
                    (cash_register_code,),
                )
                cursor = await conn.execute(
                    "SELECT last_sequence FROM register_sequences "
                    "WHERE cash_register_code = ?",
                    (cash_register_code,),
                )
                row = await cursor.fetchone()
                await conn.commit()
                assert row is not None
                return int(row[0])
            except sqlite3.Error as e:
                await conn.rollback()
                raise DurabilityError(
                    f"Cannot allocate offline sequence for {cash_register_code}: {e}"
                ) from e
            finally:
                await self._return_connection(conn)

    async def enqueue(self, submission: PendingSubmission) -> None:
        """Durably append a submission, refusing duplicates."""
        await self._init_schema()

        async with self._lock_for(submission.cash_register_code):
            conn = await self._get_connection()
            try:
                cursor = await conn.execute(
                    """
                    SELECT okp FROM pending_submissions
                    WHERE okp = ? OR payload_digest = ?
                    UNION ALL
                    SELECT okp FROM reconciled_submissions
                    WHERE okp = ? OR payload_digest = ?
                    """,
                    (
                        submission.okp,
                        submission.payload_digest,
                        submission.okp,
                        submission.payload_digest,
                    ),
                )
                if await cursor.fetchone() is not None:
                    raise DuplicateSubmissionError(submission.okp)

                await conn.execute(
                    f"INSERT INTO pending_submissions ({_PENDING_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        submission.okp,
                        submission.cash_register_code,
                        submission.document_kind.value,
                        submission.payload,
                        submission.payload_digest,
                        submission.sequence,
                        submission.enqueued_at.isoformat(),
                        submission.issued_at.isoformat(),
                        submission.attempt_count,
                        submission.last_error,
                    ),
                )
                await conn.commit()
            except sqlite3.IntegrityError as e:
                await conn.rollback()
                raise DuplicateSubmissionError(
                    submission.okp,
                    f"Submission {submission.okp} conflicts with a stored entry: {e}",
                ) from e
            except sqlite3.Error as e:
                await conn.rollback()
                raise DurabilityError(
                    f"Cannot persist offline submission {submission.okp}: {e}"
                ) from e
            finally:
                await self._return_connection(conn)

    async def peek_oldest(self, cash_register_code: str) -> PendingSubmission | None:
        """Return the oldest pending submission of a register."""
        await self._init_schema()

        async with self._lock_for(cash_register_code):
            conn = await self._get_connection()
            try:
                cursor = await conn.execute(
                    f"SELECT {_PENDING_COLUMNS} FROM pending_submissions "
                    "WHERE cash_register_code = ? ORDER BY sequence ASC LIMIT 1",
                    (cash_register_code,),
                )
                row = await cursor.fetchone()
                if row is None:
                    return None
                return self._row_to_submission(row)
            except sqlite3.Error as e:
                raise DurabilityError(
                    f"Cannot read offline queue of {cash_register_code}: {e}"
                ) from e
            finally:
                await self._return_connection(conn)

    async def dequeue(
        self,
        submission: PendingSubmission,
        status: OutcomeStatus,
        authority_id: str | None = None,
    ) -> None:
        """Atomically remove a reconciled submission and record its resolution."""
        if status is OutcomeStatus.DEFERRED:
            raise ValueError("Only accepted or rejected submissions can be dequeued")
        await self._init_schema()

        async with self._lock_for(submission.cash_register_code):
            conn = await self._get_connection()
            try:
                cursor = await conn.execute(
                    "SELECT okp FROM pending_submissions "
                    "WHERE cash_register_code = ? ORDER BY sequence ASC LIMIT 1",
                    (submission.cash_register_code,),
                )
                row = await cursor.fetchone()
                if row is None or row[0] != submission.okp:
                    raise ValueError(
                        f"{submission.okp} is not the oldest pending submission "
                        f"of {submission.cash_register_code}"
                    )

                await conn.execute(
                    "DELETE FROM pending_submissions WHERE okp = ?", (submission.okp,)
                )
                await conn.execute(
                    """
                    INSERT INTO reconciled_submissions
                    (okp, cash_register_code, payload_digest, sequence, status,
                     authority_id, resolved_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        submission.okp,
                        submission.cash_register_code,
                        submission.payload_digest,
                        submission.sequence,
                        status.value,
                        authority_id,
                        datetime.now(timezone.utc).isoformat(),
                    ),
                )
                await conn.commit()
            except sqlite3.Error as e:
                await conn.rollback()
                raise DurabilityError(
                    f"Cannot remove reconciled submission {submission.okp}: {e}"
                ) from e
            finally:
                await self._return_connection(conn)

    async def record_attempt(self, okp: str, error: str | None = None) -> int:
        """Durably increment the attempt count of a pending submission."""
        await self._init_schema()

        conn = await self._get_connection()
        try:
            await conn.execute(
                """
                UPDATE pending_submissions
                SET attempt_count = attempt_count + 1, last_error = ?
                WHERE okp = ?
                """,
                (error, okp),
            )
            cursor = await conn.execute(
                "SELECT attempt_count FROM pending_submissions WHERE okp = ?", (okp,)
            )
            row = await cursor.fetchone()
            await conn.commit()
            if row is None:
                raise ValueError(f"No pending submission with OKP {okp}")
            return int(row[0])
        except sqlite3.Error as e:
            await conn.rollback()
            raise DurabilityError(f"Cannot record attempt for {okp}: {e}") from e
        finally:
            await self._return_connection(conn)

    async def pending_registers(self) -> list[str]:
        """Cash register codes with pending submissions, oldest backlog first."""
        await self._init_schema()

        conn = await self._get_connection()
        try:
            cursor = await conn.execute(
                """
                SELECT cash_register_code FROM pending_submissions
                GROUP BY cash_register_code
                ORDER BY MIN(enqueued_at) ASC
                """
            )
            return [row[0] for row in await cursor.fetchall()]
        except sqlite3.Error as e:
            raise DurabilityError(f"Cannot list registers with backlog: {e}") from e
        finally:
            await self._return_connection(conn)

    async def list_pending(
        self, cash_register_code: str | None = None
    ) -> list[PendingSubmission]:
        """Pending submissions in FIFO order."""
        await self._init_schema()

        conn = await self._get_connection()
        try:
            if cash_register_code is None:
                cursor = await conn.execute(
                    f"SELECT {_PENDING_COLUMNS} FROM pending_submissions "
                    "ORDER BY cash_register_code ASC, sequence ASC"
                )
            else:
                cursor = await conn.execute(
                    f"SELECT {_PENDING_COLUMNS} FROM pending_submissions "
                    "WHERE cash_register_code = ? ORDER BY sequence ASC",
                    (cash_register_code,),
                )
            return [self._row_to_submission(row) for row in await cursor.fetchall()]
        except sqlite3.Error as e:
            raise DurabilityError(f"Cannot list pending submissions: {e}") from e
        finally:
            await self._return_connection(conn)

    async def is_reconciled(self, okp: str) -> bool:
        """Whether an OKP is recorded in the reconciliation ledger."""
        await self._init_schema()

        conn = await self._get_connection()
        try:
            cursor = await conn.execute(
                "SELECT 1 FROM reconciled_submissions WHERE okp = ?", (okp,)
            )
            return await cursor.fetchone() is not None
        except sqlite3.Error as e:
            raise DurabilityError(f"Cannot look up reconciliation of {okp}: {e}") from e
        finally:
            await self._return_connection(conn)

    async def get_stats(self) -> QueueStats:
        """Summary statistics for reporting."""
        await self._init_schema()

        conn = await self._get_connection()
        try:
            cursor = await conn.execute(
                """
                SELECT cash_register_code, COUNT(*) FROM pending_submissions
                GROUP BY cash_register_code
                """
            )
            by_register = {row[0]: row[1] for row in await cursor.fetchall()}

            cursor = await conn.execute(
                "SELECT status, COUNT(*) FROM reconciled_submissions GROUP BY status"
            )
            by_status = {row[0]: row[1] for row in await cursor.fetchall()}

            cursor = await conn.execute(
                "SELECT MIN(enqueued_at) FROM pending_submissions"
            )
            oldest = (await cursor.fetchone())[0]
            oldest_age = None
            if oldest:
                age = datetime.now(timezone.utc) - datetime.fromisoformat(oldest)
                oldest_age = age.total_seconds()

            return QueueStats(
                total_pending=sum(by_register.values()),
                pending_by_register=by_register,
                reconciled_by_status=by_status,
                oldest_pending_age_seconds=oldest_age,
            )
        except sqlite3.Error as e:
            raise DurabilityError(f"Cannot compute offline queue statistics: {e}") from e
        finally:
            await self._return_connection(conn)

    def _row_to_submission(self, row: tuple[Any, ...]) -> PendingSubmission:
        """Convert a database row to a PendingSubmission.

        Raises:
            ValueError: If row is malformed or contains invalid data.
        """
        try:
            if not row or len(row) != 10:
                raise ValueError(
                    f"Invalid row length: expected 10, got {len(row) if row else 0}"
                )

            (
                okp,
                cash_register_code,
                document_kind,
                payload,
                payload_digest,
                sequence,
                enqueued_at,
                issued_at,
                attempt_count,
                last_error,
            ) = row

            try:
                enqueued_at_dt = datetime.fromisoformat(enqueued_at)
                issued_at_dt = datetime.fromisoformat(issued_at)
            except (ValueError, TypeError) as e:
                raise ValueError(f"Invalid date format: {e}") from e

            return PendingSubmission(
                okp=okp,
                cash_register_code=cash_register_code,
                document_kind=DocumentKind(document_kind),
                payload=payload,
                payload_digest=payload_digest,
                sequence=int(sequence),
                enqueued_at=enqueued_at_dt,
                issued_at=issued_at_dt,
                attempt_count=int(attempt_count),
                last_error=last_error,
            )

        except Exception as e:
            logger.error(f"Failed to parse offline store row: {e}")
            raise ValueError(f"Row parsing failed: {e}") from e
