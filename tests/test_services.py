from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from calcstore import services, users
from calcstore.errors import CorruptDataError, NotFoundError, StorageError, ValidationError
from calcstore.models.named_session import NamedSession


@pytest.fixture
def owners(session_local):
    """Two users to own sessions; the hash is irrelevant here."""
    alice = users.create_user("alice", "alice@x.com", "not-a-real-hash")
    bob = users.create_user("bob", "bob@x.com", "not-a-real-hash")
    return alice.id, bob.id


@pytest.fixture
def ticking_clock(monkeypatch):
    times = iter(datetime(2024, 1, 1) + timedelta(minutes=i) for i in range(100))
    monkeypatch.setattr(services, "_utcnow", lambda: next(times))


def _records(session_local, owner_id, name):
    session = session_local()
    try:
        return (
            session.query(NamedSession)
            .filter(NamedSession.user_id == owner_id, NamedSession.session_name == name)
            .all()
        )
    finally:
        session.close()


def test_upsert_replaces_payload_and_keeps_identity(session_local, owners, ticking_clock):
    owner, _ = owners
    first = services.upsert_session(owner, "plan", {"stops": 1})
    assert first.created is True
    (before,) = _records(session_local, owner, "plan")

    second = services.upsert_session(owner, "plan", {"stops": 2})
    assert second.created is False
    assert second.id == first.id

    (after,) = _records(session_local, owner, "plan")
    assert after.created_at == before.created_at
    assert after.updated_at > before.updated_at
    assert services.get_session_data(owner, first.id) == {"stops": 2}


def test_round_trip_preserves_structure(session_local, owners):
    owner, _ = owners
    payload = {"a": [1, 2.5, "three", None, True], "b": {"c": {"d": []}}}
    result = services.upsert_session(owner, "deep", payload)
    assert services.get_session_data(owner, result.id) == payload


def test_scalar_payloads_are_accepted(session_local, owners):
    owner, _ = owners
    result = services.upsert_session(owner, "zero", 0)
    assert services.get_session_data(owner, result.id) == 0


@pytest.mark.parametrize(
    "name, payload",
    [(None, {"a": 1}), ("", {"a": 1}), ("   ", {"a": 1}), ("n", None), ("n", "")],
)
def test_upsert_validates_input(session_local, owners, name, payload):
    owner, _ = owners
    with pytest.raises(ValidationError):
        services.upsert_session(owner, name, payload)


def test_upsert_rejects_non_json_payload(session_local, owners):
    owner, _ = owners
    with pytest.raises(ValidationError):
        services.upsert_session(owner, "nan", {"x": float("nan")})
    with pytest.raises(ValidationError):
        services.upsert_session(owner, "set", {1, 2})


def test_upsert_for_missing_owner_is_a_storage_error(session_local):
    with pytest.raises(StorageError):
        services.upsert_session(12345, "orphan", {"a": 1})


def test_list_orders_by_most_recent_update(session_local, owners, ticking_clock):
    owner, _ = owners
    services.upsert_session(owner, "first", {"n": 1})
    services.upsert_session(owner, "second", {"n": 2})
    services.upsert_session(owner, "first", {"n": 3})

    listed = services.list_sessions(owner)
    assert [s["session_name"] for s in listed] == ["first", "second"]
    assert "session_data" not in listed[0]


def test_isolation_between_owners(session_local, owners):
    alice, bob = owners
    secret = services.upsert_session(bob, "secret", {"pin": 1})

    assert services.list_sessions(alice) == []
    with pytest.raises(NotFoundError):
        services.get_session_data(alice, secret.id)
    with pytest.raises(NotFoundError):
        services.delete_session(alice, secret.id)
    assert services.get_session_data(bob, secret.id) == {"pin": 1}


def test_delete_removes_record(session_local, owners):
    owner, _ = owners
    result = services.upsert_session(owner, "tmp", {"a": 1})
    services.delete_session(owner, result.id)
    with pytest.raises(NotFoundError):
        services.get_session_data(owner, result.id)
    with pytest.raises(NotFoundError):
        services.delete_session(owner, result.id)


def test_get_with_string_ids(session_local, owners):
    owner, _ = owners
    result = services.upsert_session(owner, "s", {"a": 1})
    assert services.get_session_data(owner, str(result.id)) == {"a": 1}
    with pytest.raises(NotFoundError):
        services.get_session_data(owner, "not-a-number")


def test_corrupt_payload(session_local, owners):
    owner, _ = owners
    session = session_local()
    try:
        record = NamedSession(user_id=owner, session_name="bad", session_data="[1, 2")
        session.add(record)
        session.commit()
        record_id = record.id
    finally:
        session.close()

    with pytest.raises(CorruptDataError):
        services.get_session_data(owner, record_id)


def test_out_of_range_ids_are_not_found(session_local, owners):
    owner, _ = owners
    for bad_id in (10**23, -1, 0, "99999999999999999999999"):
        with pytest.raises(NotFoundError):
            services.get_session_data(owner, bad_id)
        with pytest.raises(NotFoundError):
            services.delete_session(owner, bad_id)


def test_storage_rejects_duplicate_names_per_owner(session_local, owners):
    owner, other = owners
    session = session_local()
    try:
        session.add(NamedSession(user_id=owner, session_name="plan", session_data="1"))
        session.commit()
        session.add(NamedSession(user_id=other, session_name="plan", session_data="2"))
        session.commit()
        session.add(NamedSession(user_id=owner, session_name="plan", session_data="3"))
        with pytest.raises(IntegrityError):
            session.commit()
        session.rollback()
    finally:
        session.close()


def test_read_then_write_upsert_for_other_dialects(session_local, owners, ticking_clock, monkeypatch):
    monkeypatch.setattr(services, "_UPSERT_INSERTS", {})
    owner, _ = owners

    first = services.upsert_session(owner, "plan", {"v": 1})
    assert first.created is True
    (before,) = _records(session_local, owner, "plan")

    second = services.upsert_session(owner, "plan", {"v": 2})
    assert second == services.UpsertResult(id=first.id, created=False)
    (after,) = _records(session_local, owner, "plan")
    assert after.created_at == before.created_at
    assert after.updated_at > before.updated_at
    assert services.get_session_data(owner, first.id) == {"v": 2}
