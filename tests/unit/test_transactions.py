"""
Unit tests for the transaction runner: transient-failure retries and the
mapping of unique-constraint violations to ConflictError.
"""

import pytest
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from docflow.config import settings
from docflow.database import is_transient_error, run_in_transaction
from docflow.errors import ConflictError
from docflow.models.enums import PartyType
from docflow.models.party import Party


class FakeDriverError(Exception):
    def __init__(self, pgcode=None):
        super().__init__(f"driver error {pgcode}")
        self.pgcode = pgcode


def _deadlock():
    return DBAPIError("UPDATE parties SET current_outstanding = 1", {}, FakeDriverError("40P01"))


class FlakyWork:
    """Fails with ``error()`` the first ``failures`` calls, then returns "done"."""

    def __init__(self, failures, error=_deadlock):
        self.failures = failures
        self.error = error
        self.attempts = 0

    async def __call__(self, session):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise self.error()
        return "done"


# ---------------------------------------------------------------------------
# Transient errors
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("pgcode", ["40001", "40P01"])
def test_serialization_and_deadlock_are_transient(pgcode):
    assert is_transient_error(DBAPIError("SELECT 1", {}, FakeDriverError(pgcode)))


def test_sqlstate_is_read_from_the_wrapped_cause():
    # asyncpg errors reach SQLAlchemy wrapped by the adapter.
    cause = FakeDriverError()
    cause.sqlstate = "40001"
    adapted = Exception("adapted")
    adapted.__cause__ = cause
    assert is_transient_error(OperationalError("SELECT 1", {}, adapted))


def test_other_errors_are_not_transient():
    assert not is_transient_error(DBAPIError("SELECT 1", {}, FakeDriverError("23505")))
    assert not is_transient_error(DBAPIError("SELECT 1", {}, FakeDriverError()))
    assert not is_transient_error(ValueError("40P01"))


@pytest.mark.asyncio
async def test_deadlock_is_retried_until_success(session_factory):
    work = FlakyWork(failures=2)

    result = await run_in_transaction(work, session_factory=session_factory, retries=3)

    assert result == "done"
    assert work.attempts == 3


@pytest.mark.asyncio
async def test_exhausted_retries_reraise_the_driver_error(session_factory):
    work = FlakyWork(failures=5)

    with pytest.raises(DBAPIError) as excinfo:
        await run_in_transaction(work, session_factory=session_factory, retries=2)

    assert excinfo.value.orig.pgcode == "40P01"
    assert work.attempts == 2


@pytest.mark.asyncio
async def test_default_attempts_come_from_settings(session_factory, monkeypatch):
    monkeypatch.setattr(settings, "DB_TRANSIENT_RETRIES", 4)
    work = FlakyWork(failures=10)

    with pytest.raises(DBAPIError):
        await run_in_transaction(work, session_factory=session_factory)

    assert work.attempts == 4


@pytest.mark.asyncio
async def test_zero_retries_runs_once(session_factory, monkeypatch):
    monkeypatch.setattr(settings, "DB_TRANSIENT_RETRIES", 5)
    work = FlakyWork(failures=1)

    with pytest.raises(DBAPIError):
        await run_in_transaction(work, session_factory=session_factory, retries=0)

    assert work.attempts == 1


@pytest.mark.asyncio
async def test_non_transient_errors_are_not_retried(session_factory):
    work = FlakyWork(failures=1, error=lambda: DBAPIError("SELECT 1", {}, FakeDriverError("42P01")))

    with pytest.raises(DBAPIError):
        await run_in_transaction(work, session_factory=session_factory, retries=3)

    assert work.attempts == 1


# ---------------------------------------------------------------------------
# Integrity violations
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_integrity_error_becomes_conflict(session_factory):
    work = FlakyWork(
        failures=3,
        error=lambda: IntegrityError("INSERT INTO parties", {}, FakeDriverError("23505")),
    )

    with pytest.raises(ConflictError) as excinfo:
        await run_in_transaction(work, session_factory=session_factory, retries=3)

    assert isinstance(excinfo.value.__cause__, IntegrityError)
    assert excinfo.value.code == "CONFLICT"
    assert work.attempts == 1


@pytest.mark.asyncio
async def test_duplicate_party_code_is_a_conflict(ctx, call):
    async def add_twice(gw):
        for _ in range(2):
            gw.add(Party(party_type=PartyType.CUSTOMER.value, code="DUP-1", name="Twice Ltd"))
        await gw.flush()

    with pytest.raises(ConflictError):
        await call(ctx, add_twice)
