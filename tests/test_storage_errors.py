"""Storage error translation and conflict retries."""

import asyncio

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from progress_engine.services.base import BaseService
from progress_engine.utils.exceptions import ConflictRetry, ErrorKind, StorageUnavailable


def make_service(**kwargs):
    return BaseService(session_factory=None, **kwargs)


async def test_conflicts_are_retried_until_success():
    service = make_service(max_retries=3)
    attempts = []

    async def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))
        return "ok"

    assert await service.run_atomic("insert_row", flaky) == "ok"
    assert len(attempts) == 3


async def test_conflict_retry_gives_up():
    service = make_service(max_retries=2)

    async def locked():
        raise OperationalError("UPDATE", {}, Exception("database is locked"))

    with pytest.raises(ConflictRetry) as exc_info:
        await service.run_atomic("update_row", locked)
    assert exc_info.value.kind == ErrorKind.CONFLICT_RETRY
    assert exc_info.value.operation == "update_row"


async def test_operational_errors_are_storage_unavailable():
    service = make_service()
    attempts = []

    async def broken():
        attempts.append(1)
        raise OperationalError("SELECT", {}, Exception("unable to open database file"))

    with pytest.raises(StorageUnavailable):
        await service.run_atomic("read_row", broken)
    assert len(attempts) == 1


async def test_storage_timeout():
    service = make_service(storage_timeout=0.01)

    async def slow():
        await asyncio.sleep(1)

    with pytest.raises(StorageUnavailable) as exc_info:
        await service.run_atomic("slow_read", slow)
    assert "timed out" in exc_info.value.message
