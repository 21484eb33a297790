import threading
import time
from datetime import datetime, timezone

import fakeredis
import pytest

from cardkey_portal.schemas.card_key_schema import CardKey
from cardkey_portal.storage.base import DuplicateUsername, StorageUnavailable
from cardkey_portal.storage.json_store import JsonFileStore
from cardkey_portal.storage.redis_store import RedisStore
from cardkey_portal.storage.sql_store import SqlStore

from conftest import make_record


def test_batch_add_returns_one_resolvable_token_per_record(store):
    records = [make_record(n) for n in range(5)]
    tokens = store.batch_add_card_keys(records)

    assert len(tokens) == 5
    assert len(set(tokens)) == 5
    for record, token in zip(records, tokens):
        assert len(token) == 64
        card = store.get_card_key_by_token(token)
        assert card is not None
        assert card.access_token == record.access_token
        assert card.is_used is False
        assert card.used_at is None


def test_empty_batch_adds_nothing(store):
    assert store.batch_add_card_keys([]) == []
    assert store.get_stats().total == 0


def test_add_card_key_keeps_optional_balance_url(store):
    token = store.add_card_key(make_record(1, balance_url=None))
    card = store.get_card_key_by_token(token)
    assert card.balance_url is None
    assert store.get_card_key_by_id(card.id).secure_token == token


def test_unknown_lookups_return_none(store):
    assert store.get_card_key_by_token("0" * 64) is None
    assert store.get_card_key_by_id("missing") is None


def test_mark_used_is_guarded(store):
    token = store.add_card_key(make_record())

    assert store.mark_card_key_as_used(token) is True
    first = store.get_card_key_by_token(token)
    assert first.is_used is True
    assert first.used_at is not None

    assert store.mark_card_key_as_used(token) is False
    second = store.get_card_key_by_token(token)
    assert second.used_at == first.used_at


def test_mark_used_unknown_token(store):
    assert store.mark_card_key_as_used("f" * 64) is False


def test_restore_round_trip(store):
    token = store.add_card_key(make_record())

    assert store.restore_card_key(token) is False

    assert store.mark_card_key_as_used(token)
    first_used_at = store.get_card_key_by_token(token).used_at

    assert store.restore_card_key(token) is True
    restored = store.get_card_key_by_token(token)
    assert restored.is_used is False
    assert restored.used_at is None

    time.sleep(0.01)
    assert store.mark_card_key_as_used(token)
    again = store.get_card_key_by_token(token)
    assert again.is_used is True
    assert again.used_at > first_used_at


def test_used_at_is_utc(store):
    token = store.add_card_key(make_record())
    store.mark_card_key_as_used(token)
    card = store.get_card_key_by_token(token)
    assert card.used_at.utcoffset() == timezone.utc.utcoffset(None)
    assert card.created_at <= datetime.now(timezone.utc)


def test_stats_stay_consistent(store):
    tokens = store.batch_add_card_keys([make_record(n) for n in range(4)])
    store.mark_card_key_as_used(tokens[0])
    store.mark_card_key_as_used(tokens[1])
    store.restore_card_key(tokens[1])

    stats = store.get_stats()
    assert stats.total == 4
    assert stats.used == 1
    assert stats.unused == stats.total - stats.used


def test_get_all_is_newest_first(store):
    first = store.add_card_key(make_record(1))
    time.sleep(0.01)
    second = store.add_card_key(make_record(2))

    cards = store.get_all_card_keys()
    assert [c.secure_token for c in cards] == [second, first]


def test_delete_makes_token_unresolvable(store):
    token = store.add_card_key(make_record())
    card = store.get_card_key_by_token(token)

    assert store.delete_card_key(card.id) is True
    assert store.get_card_key_by_token(token) is None
    assert store.delete_card_key(card.id) is False
    assert store.get_stats().total == 0


def test_import_skips_existing_records(store):
    token = store.add_card_key(make_record(1))
    existing = store.get_card_key_by_token(token)

    other = store.get_card_key_by_token(store.add_card_key(make_record(2)))
    store.delete_card_key(other.id)

    imported = store.import_card_keys([existing, other])
    assert imported == 1
    assert store.get_stats().total == 2
    restored = store.get_card_key_by_token(other.secure_token)
    assert restored.id == other.id
    assert restored.email == other.email


def test_admin_accounts(store):
    assert store.count_admins() == 0
    admin_id = store.add_admin("root", "hash-1")

    admin = store.get_admin_by_username("root")
    assert admin.id == admin_id
    assert admin.password_hash == "hash-1"
    assert store.count_admins() == 1

    with pytest.raises(DuplicateUsername):
        store.add_admin("root", "hash-2")

    assert store.update_admin_password("root", "hash-3") is True
    assert store.get_admin_by_username("root").password_hash == "hash-3"
    assert store.update_admin_password("nobody", "x") is False
    assert store.get_admin_by_username("nobody") is None


@pytest.fixture(params=["json", "sql"])
def threaded_store(request, tmp_path):
    if request.param == "json":
        s = JsonFileStore(str(tmp_path / "cardkeys.json"))
    else:
        s = SqlStore.from_url(f"sqlite:///{tmp_path / 'cardkeys.db'}")
    yield s
    s.close()


def test_concurrent_redeemers_consume_once(threaded_store):
    token = threaded_store.add_card_key(make_record())
    results = []
    barrier = threading.Barrier(8)

    def redeem():
        barrier.wait()
        results.append(threaded_store.mark_card_key_as_used(token))

    threads = [threading.Thread(target=redeem) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(True) == 1
    assert threaded_store.get_stats().used == 1


def test_json_store_persists_across_instances(tmp_path):
    path = str(tmp_path / "data" / "cardkeys.json")
    token = JsonFileStore(path).add_card_key(make_record())

    reopened = JsonFileStore(path)
    assert reopened.get_card_key_by_token(token) is not None


@pytest.fixture(params=["json", "redis"])
def store_per_worker(request, tmp_path):
    """Returns a callable giving each worker its own handle on one collection."""
    if request.param == "json":
        shared = JsonFileStore(str(tmp_path / "cardkeys.json"))
        yield lambda: shared
    else:
        server = fakeredis.FakeServer()
        yield lambda: RedisStore(fakeredis.FakeRedis(server=server, decode_responses=True))


def test_concurrent_writes_to_other_keys_are_not_lost(store_per_worker):
    setup = store_per_worker()
    tokens = setup.batch_add_card_keys([make_record(n) for n in range(20)])
    doomed = setup.get_card_key_by_token(tokens[0])
    handles = [store_per_worker() for _ in range(20)]
    barrier = threading.Barrier(20)
    results = []

    def mark(handle, token):
        barrier.wait()
        results.append(handle.mark_card_key_as_used(token))

    def delete(handle):
        barrier.wait()
        results.append(handle.delete_card_key(doomed.id))

    threads = [threading.Thread(target=delete, args=(handles[0],))]
    threads += [
        threading.Thread(target=mark, args=(handle, token))
        for handle, token in zip(handles[1:], tokens[1:])
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results == [True] * 20
    assert setup.get_card_key_by_token(tokens[0]) is None
    stats = setup.get_stats()
    assert stats.total == 19
    assert stats.used == 19


def _naive_card(n: int, **overrides) -> dict:
    fields = dict(
        id=f"restored-{n}",
        tenant_url="https://old.example.com",
        access_token=f"old_{n}",
        email="old@example.com",
        expiry_date="2024-12-31",
        query_params="q=old",
        secure_token=f"{n:064x}",
        is_used=False,
        created_at="2024-01-01T00:00:00",
        used_at=None,
    )
    fields.update(overrides)
    return fields


def test_imported_naive_timestamps_are_utc(store):
    store.add_card_key(make_record(1))
    card = CardKey.model_validate(
        _naive_card(1, is_used=True, used_at="2024-01-02T08:00:00")
    )
    assert store.import_card_keys([card]) == 1

    cards = store.get_all_card_keys()
    assert [c.id for c in cards][-1] == "restored-1"
    assert cards[-1].created_at == datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert cards[-1].used_at == datetime(2024, 1, 2, 8, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "state",
    [
        {"is_used": True, "used_at": None},
        {"is_used": False, "used_at": "2024-01-02T08:00:00+00:00"},
    ],
)
def test_card_key_rejects_inconsistent_usage(state):
    with pytest.raises(ValueError):
        CardKey.model_validate(_naive_card(1, **state))


def test_json_store_rejects_non_object_document(tmp_path):
    path = tmp_path / "cardkeys.json"
    s = JsonFileStore(str(path))
    path.write_text("[]", encoding="utf-8")

    with pytest.raises(StorageUnavailable):
        s.get_stats()


def test_json_store_failed_write_leaves_no_temp_file(tmp_path, monkeypatch):
    s = JsonFileStore(str(tmp_path / "cardkeys.json"))

    def fail(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr("cardkey_portal.storage.json_store.os.replace", fail)
    with pytest.raises(StorageUnavailable):
        s.add_card_key(make_record())

    assert [p.name for p in tmp_path.iterdir()] == ["cardkeys.json"]
