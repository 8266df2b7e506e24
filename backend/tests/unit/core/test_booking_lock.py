from __future__ import annotations

from typing import Dict

import pytest

from booking_engine.core import booking_lock
from booking_engine.core.booking_lock import (
    acquire_booking_lock_sync,
    booking_lock_sync,
    release_booking_lock_sync,
)


class DummyRedis:
    def __init__(self) -> None:
        self.store: Dict[str, str] = {}

    def set(self, key: str, value: str, nx: bool = False, ex: int | None = None):
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    def delete(self, key: str) -> int:
        return 1 if self.store.pop(key, None) is not None else 0


class BrokenRedis:
    def set(self, *args, **kwargs):
        raise ConnectionError("redis down")

    def delete(self, *args, **kwargs):
        raise ConnectionError("redis down")


@pytest.fixture
def redis_client(monkeypatch) -> DummyRedis:
    client = DummyRedis()
    monkeypatch.setattr(booking_lock, "_get_sync_redis", lambda: client)
    return client


def test_second_acquire_is_blocked(redis_client) -> None:
    assert acquire_booking_lock_sync("b1") is True
    assert acquire_booking_lock_sync("b1") is False
    assert acquire_booking_lock_sync("b2") is True

    release_booking_lock_sync("b1")

    assert acquire_booking_lock_sync("b1") is True


def test_context_manager_releases(redis_client) -> None:
    with booking_lock_sync("b1") as acquired:
        assert acquired
        assert "booking_engine:lock:booking:b1:mutex" in redis_client.store

    assert redis_client.store == {}


def test_blocked_context_does_not_release_holder(redis_client) -> None:
    with booking_lock_sync("b1"):
        with booking_lock_sync("b1") as acquired:
            assert acquired is False
        assert "booking_engine:lock:booking:b1:mutex" in redis_client.store


def test_fails_open_without_redis(monkeypatch) -> None:
    monkeypatch.setattr(booking_lock, "_get_sync_redis", lambda: None)

    assert acquire_booking_lock_sync("b1") is True
    assert acquire_booking_lock_sync("b1") is True


def test_fails_open_on_redis_errors(monkeypatch) -> None:
    monkeypatch.setattr(booking_lock, "_get_sync_redis", lambda: BrokenRedis())

    with booking_lock_sync("b1") as acquired:
        assert acquired is True
