"""Integration tests for the SQLite offline store."""

import asyncio
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from fiscalsync.adapters.store.sqlite import SQLiteOfflineStore
from fiscalsync.core.errors import DuplicateSubmissionError, DurabilityError
from fiscalsync.core.models import DocumentKind, OutcomeStatus, PendingSubmission

CODE_A = "88812345678900001"
CODE_B = "88812345678900002"
BASE_TIME = datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)


def make_submission(
    okp: str, sequence: int, code: str = CODE_A, minutes: int = 0
) -> PendingSubmission:
    return PendingSubmission(
        okp=okp,
        cash_register_code=code,
        document_kind=DocumentKind.RECEIPT,
        payload=f'{{"okp":"{okp}"}}',
        payload_digest=f"digest-{okp}",
        sequence=sequence,
        enqueued_at=BASE_TIME + timedelta(minutes=minutes),
        issued_at=BASE_TIME + timedelta(minutes=minutes),
    )


@pytest.fixture
async def db_path():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "offline.db"


@pytest.fixture
async def store(db_path: Path):
    store = SQLiteOfflineStore(str(db_path))
    yield store
    await store.close()


# ============================================================================
# Ordering
# ============================================================================


@pytest.mark.asyncio
async def test_fifo_per_register(store: SQLiteOfflineStore) -> None:
    await store.enqueue(make_submission("a", 1))
    await store.enqueue(make_submission("b", 2))
    await store.enqueue(make_submission("x", 1, code=CODE_B))
    await store.enqueue(make_submission("c", 3))

    pending = await store.list_pending(CODE_A)

    assert [s.okp for s in pending] == ["a", "b", "c"]
    assert (await store.peek_oldest(CODE_A)).okp == "a"
    assert (await store.peek_oldest(CODE_B)).okp == "x"


@pytest.mark.asyncio
async def test_dequeue_in_order(store: SQLiteOfflineStore) -> None:
    first = make_submission("a", 1)
    await store.enqueue(first)
    await store.enqueue(make_submission("b", 2))

    await store.dequeue(first, OutcomeStatus.ACCEPTED, "auth-1")

    assert (await store.peek_oldest(CODE_A)).okp == "b"
    assert await store.is_reconciled("a")
    assert not await store.is_reconciled("b")


@pytest.mark.asyncio
async def test_dequeue_non_oldest_rejected(store: SQLiteOfflineStore) -> None:
    await store.enqueue(make_submission("a", 1))
    second = make_submission("b", 2)
    await store.enqueue(second)

    with pytest.raises(ValueError, match="not the oldest"):
        await store.dequeue(second, OutcomeStatus.ACCEPTED, "auth-2")

    assert len(await store.list_pending(CODE_A)) == 2


@pytest.mark.asyncio
async def test_dequeue_requires_final_status(store: SQLiteOfflineStore) -> None:
    first = make_submission("a", 1)
    await store.enqueue(first)

    with pytest.raises(ValueError):
        await store.dequeue(first, OutcomeStatus.DEFERRED)


@pytest.mark.asyncio
async def test_pending_registers_oldest_backlog_first(store: SQLiteOfflineStore) -> None:
    await store.enqueue(make_submission("b1", 1, code=CODE_B, minutes=1))
    await store.enqueue(make_submission("a1", 1, code=CODE_A, minutes=5))

    assert await store.pending_registers() == [CODE_B, CODE_A]


# ============================================================================
# Sequences, attempts and duplicates
# ============================================================================


@pytest.mark.asyncio
async def test_next_sequence_is_monotonic_per_register(store: SQLiteOfflineStore) -> None:
    assert [await store.next_sequence(CODE_A) for _ in range(3)] == [1, 2, 3]
    assert await store.next_sequence(CODE_B) == 1


@pytest.mark.asyncio
async def test_concurrent_sequences_are_distinct(store: SQLiteOfflineStore) -> None:
    sequences = await asyncio.gather(*(store.next_sequence(CODE_A) for _ in range(10)))

    assert sorted(sequences) == list(range(1, 11))


@pytest.mark.asyncio
async def test_record_attempt(store: SQLiteOfflineStore) -> None:
    await store.enqueue(make_submission("a", 1))

    assert await store.record_attempt("a", "timeout") == 1
    assert await store.record_attempt("a", "HTTP 503") == 2

    pending = await store.peek_oldest(CODE_A)
    assert pending.attempt_count == 2
    assert pending.last_error == "HTTP 503"


@pytest.mark.asyncio
async def test_record_attempt_unknown_okp(store: SQLiteOfflineStore) -> None:
    with pytest.raises(ValueError):
        await store.record_attempt("missing")


@pytest.mark.asyncio
async def test_duplicate_okp_refused(store: SQLiteOfflineStore) -> None:
    await store.enqueue(make_submission("a", 1))

    with pytest.raises(DuplicateSubmissionError):
        await store.enqueue(make_submission("a", 2))


@pytest.mark.asyncio
async def test_duplicate_after_reconciliation_refused(store: SQLiteOfflineStore) -> None:
    """A replay of an already reconciled payload is caught by its digest."""
    first = make_submission("a", 1)
    await store.enqueue(first)
    await store.dequeue(first, OutcomeStatus.REJECTED)

    replay = PendingSubmission(
        okp="other-okp",
        cash_register_code=CODE_A,
        document_kind=DocumentKind.RECEIPT,
        payload=first.payload,
        payload_digest=first.payload_digest,
        sequence=5,
        enqueued_at=BASE_TIME,
        issued_at=BASE_TIME,
    )
    with pytest.raises(DuplicateSubmissionError):
        await store.enqueue(replay)


# ============================================================================
# Durability
# ============================================================================


@pytest.mark.asyncio
async def test_restart_recovers_pending_in_order(db_path: Path) -> None:
    """A new store on the same file sees every entry, attempt counts included."""
    store = SQLiteOfflineStore(str(db_path))
    for index, okp in enumerate(["a", "b", "c"], start=1):
        await store.next_sequence(CODE_A)
        await store.enqueue(make_submission(okp, index))
    await store.record_attempt("a", "offline")
    await store.dequeue(make_submission("a", 1), OutcomeStatus.ACCEPTED, "auth-a")
    await store.record_attempt("b", "offline")
    await store.close()

    reopened = SQLiteOfflineStore(str(db_path))
    try:
        pending = await reopened.list_pending()
        assert [s.okp for s in pending] == ["b", "c"]
        assert pending[0].attempt_count == 1
        assert await reopened.is_reconciled("a")
        assert await reopened.next_sequence(CODE_A) == 4
        with pytest.raises(DuplicateSubmissionError):
            await reopened.enqueue(make_submission("a", 9))
    finally:
        await reopened.close()


@pytest.mark.asyncio
async def test_stats(store: SQLiteOfflineStore) -> None:
    first = make_submission("a", 1)
    await store.enqueue(first)
    await store.enqueue(make_submission("b", 2))
    await store.enqueue(make_submission("x", 1, code=CODE_B))
    await store.dequeue(first, OutcomeStatus.ACCEPTED, "auth-1")

    stats = await store.get_stats()

    assert stats.total_pending == 2
    assert dict(stats.pending_by_register) == {CODE_A: 1, CODE_B: 1}
    assert dict(stats.reconciled_by_status) == {"accepted": 1}
    assert stats.oldest_pending_age_seconds > 0


@pytest.mark.asyncio
async def test_empty_store(store: SQLiteOfflineStore) -> None:
    stats = await store.get_stats()

    assert await store.peek_oldest(CODE_A) is None
    assert await store.pending_registers() == []
    assert stats.total_pending == 0
    assert stats.oldest_pending_age_seconds is None


@pytest.mark.asyncio
async def test_row_parsing_with_invalid_timestamp(store: SQLiteOfflineStore) -> None:
    await store.enqueue(make_submission("a", 1))
    conn = await store._get_connection()
    try:
        await conn.execute(
            "UPDATE pending_submissions SET enqueued_at = 'not-a-date' WHERE okp = 'a'"
        )
        await conn.commit()
    finally:
        await store._return_connection(conn)

    with pytest.raises(ValueError, match="Row parsing failed"):
        await store.peek_oldest(CODE_A)


@pytest.mark.asyncio
async def test_read_failures_are_durability_errors(store: SQLiteOfflineStore) -> None:
    """Reads against a damaged database fail with DurabilityError."""
    await store.enqueue(make_submission("a", 1))
    conn = await store._get_connection()
    try:
        await conn.execute("DROP TABLE pending_submissions")
        await conn.execute("DROP TABLE reconciled_submissions")
        await conn.commit()
    finally:
        await store._return_connection(conn)

    with pytest.raises(DurabilityError):
        await store.peek_oldest(CODE_A)
    with pytest.raises(DurabilityError):
        await store.pending_registers()
    with pytest.raises(DurabilityError):
        await store.list_pending()
    with pytest.raises(DurabilityError):
        await store.list_pending(CODE_A)
    with pytest.raises(DurabilityError):
        await store.is_reconciled("a")
    with pytest.raises(DurabilityError):
        await store.get_stats()
