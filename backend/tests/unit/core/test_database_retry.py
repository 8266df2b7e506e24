from __future__ import annotations

from unittest.mock import Mock

import pytest
from sqlalchemy.exc import OperationalError

import booking_engine.database as database
from booking_engine.core.exceptions import RepositoryException
from booking_engine.database import with_db_retry


def _operational(message: str) -> OperationalError:
    return OperationalError("SELECT 1", {}, Exception(message))


@pytest.fixture(autouse=True)
def _no_sleep(monkeypatch) -> None:
    monkeypatch.setattr(database.time, "sleep", lambda _: None)


def test_retries_dropped_connections() -> None:
    func = Mock(side_effect=[_operational("server closed the connection unexpectedly"), "ok"])

    assert with_db_retry("fetch_due_jobs", func) == "ok"
    assert func.call_count == 2


def test_gives_up_after_max_attempts() -> None:
    func = Mock(side_effect=_operational("SSL connection has been closed unexpectedly"))

    with pytest.raises(OperationalError):
        with_db_retry("fetch_due_jobs", func, max_attempts=3)

    assert func.call_count == 3


def test_other_operational_errors_are_not_retried() -> None:
    func = Mock(side_effect=_operational("database is locked"))

    with pytest.raises(OperationalError):
        with_db_retry("fetch_due_jobs", func)

    assert func.call_count == 1


def test_retries_drops_wrapped_by_a_repository() -> None:
    def _wrapped(message: str) -> RepositoryException:
        try:
            raise _operational(message)
        except OperationalError as exc:
            try:
                raise RepositoryException("Failed to fetch background jobs") from exc
            except RepositoryException as wrapped:
                return wrapped

    func = Mock(side_effect=[_wrapped("server closed the connection unexpectedly"), []])

    assert with_db_retry("fetch_due_jobs", func) == []
    assert func.call_count == 2


def test_repository_errors_without_driver_cause_are_not_retried() -> None:
    func = Mock(side_effect=RepositoryException("Unknown background job type: x"))

    with pytest.raises(RepositoryException):
        with_db_retry("fetch_due_jobs", func)

    assert func.call_count == 1
