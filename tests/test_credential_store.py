"""Tests for the credential store and its storage backends."""

from __future__ import annotations

import datetime
import json
import pathlib

from conftest import FakeClock

from mamuk_session.tokens.storage import JsonFileStorage, MemoryStorage
from mamuk_session.tokens.store import CredentialStore


def _make_store(clock: FakeClock, storage: MemoryStorage | None = None) -> CredentialStore:
    return CredentialStore(storage if storage is not None else MemoryStorage(), clock=clock)


# ---------------------------------------------------------------------------
# Token triple
# ---------------------------------------------------------------------------

class TestCredentialStore:
    def test_empty_store_reads_none(self, clock: FakeClock) -> None:
        store = _make_store(clock)
        assert store.get_token() is None
        assert store.get_refresh_token() is None
        assert store.get_expiry() is None
        assert not store.is_expiring_soon()

    def test_mutators_write_through_to_storage(self, clock: FakeClock) -> None:
        storage = MemoryStorage()
        store = _make_store(clock, storage)
        store.set_token("access-1", "15m")
        store.set_refresh_token("refresh-1")

        assert storage.get("mamuk_token") == "access-1"
        assert storage.get("mamuk_refresh_token") == "refresh-1"
        expiry = datetime.datetime.fromisoformat(storage.get("mamuk_token_expiry") or "")
        assert expiry == clock.now + datetime.timedelta(minutes=15)

    def test_namespace_prefixes_every_key(self, clock: FakeClock) -> None:
        storage = MemoryStorage()
        store = CredentialStore(storage, namespace="test_", clock=clock)
        store.set_token("a", "1h")
        store.set_refresh_token("r")
        assert sorted(storage.keys()) == ["test_refresh_token", "test_token", "test_token_expiry"]

    def test_remove_tokens_clears_everything_and_bumps_epoch(self, clock: FakeClock) -> None:
        storage = MemoryStorage()
        store = _make_store(clock, storage)
        store.set_token("access-1", "15m")
        store.set_refresh_token("refresh-1")
        epoch = store.epoch

        store.remove_tokens()

        assert storage.keys() == []
        assert store.epoch == epoch + 1

    def test_unparseable_expiry_keeps_token_and_drops_stale_expiry(self, clock: FakeClock) -> None:
        store = _make_store(clock)
        store.set_token("access-1", "1m")
        assert store.get_expiry() is not None

        store.set_token("access-2", "garbage")

        assert store.get_token() == "access-2"
        assert store.get_expiry() is None
        assert not store.is_expiring_soon()

    def test_token_without_expires_in_has_unknown_expiry(self, clock: FakeClock) -> None:
        store = _make_store(clock)
        store.set_token("access-1")
        assert store.get_expiry() is None
        assert not store.is_expiring_soon()

    def test_malformed_persisted_expiry_is_absorbed(self, clock: FakeClock) -> None:
        storage = MemoryStorage({"mamuk_token": "t", "mamuk_token_expiry": "not-a-date"})
        store = _make_store(clock, storage)
        assert store.get_expiry() is None
        assert not store.is_expiring_soon()


# ---------------------------------------------------------------------------
# Threshold boundary
# ---------------------------------------------------------------------------

class TestExpiringSoon:
    def test_one_millisecond_outside_threshold_is_not_expiring(self, clock: FakeClock) -> None:
        store = _make_store(clock)
        store.set_token("access-1", "10m")
        clock.advance(minutes=5, milliseconds=-1)
        # expires_at - now == 5 min + 1 ms
        assert not store.is_expiring_soon()

    def test_one_millisecond_inside_threshold_is_expiring(self, clock: FakeClock) -> None:
        store = _make_store(clock)
        store.set_token("access-1", "10m")
        clock.advance(minutes=5, milliseconds=1)
        # expires_at - now == 5 min - 1 ms
        assert store.is_expiring_soon()

    def test_already_expired_token_is_expiring(self, clock: FakeClock) -> None:
        store = _make_store(clock)
        store.set_token("access-1", "1m")
        clock.advance(hours=1)
        assert store.is_expiring_soon()

    def test_custom_threshold(self, clock: FakeClock) -> None:
        store = CredentialStore(MemoryStorage(), refresh_threshold=datetime.timedelta(seconds=30), clock=clock)
        store.set_token("access-1", "1m")
        assert not store.is_expiring_soon()
        clock.advance(seconds=31)
        assert store.is_expiring_soon()


# ---------------------------------------------------------------------------
# JsonFileStorage
# ---------------------------------------------------------------------------

class TestJsonFileStorage:
    def test_values_survive_a_restart(self, tmp_path: pathlib.Path, clock: FakeClock) -> None:
        path = tmp_path / "nested" / "session.json"
        store = CredentialStore(JsonFileStorage(path), clock=clock)
        store.set_token("access-1", "7d")
        store.set_refresh_token("refresh-1")

        reopened = CredentialStore(JsonFileStorage(path), clock=clock)
        assert reopened.get_token() == "access-1"
        assert reopened.get_refresh_token() == "refresh-1"
        assert reopened.get_expiry() == clock.now + datetime.timedelta(days=7)

    def test_remove_rewrites_file(self, tmp_path: pathlib.Path) -> None:
        path = tmp_path / "session.json"
        storage = JsonFileStorage(path)
        storage.set("a", "1")
        storage.set("b", "2")
        storage.remove("a")
        assert json.loads(path.read_text()) == {"b": "2"}

    def test_corrupt_file_is_treated_as_empty(self, tmp_path: pathlib.Path) -> None:
        path = tmp_path / "session.json"
        path.write_text("{not json")
        storage = JsonFileStorage(path)
        assert storage.get("mamuk_token") is None

    def test_non_object_file_is_treated_as_empty(self, tmp_path: pathlib.Path) -> None:
        path = tmp_path / "session.json"
        path.write_text("[1, 2, 3]")
        assert JsonFileStorage(path).get("0") is None
