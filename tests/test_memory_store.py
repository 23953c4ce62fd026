from datetime import timedelta

import pytest

from curvaqz.storage.errors import ConstraintViolation
from curvaqz.storage.memory import MemoryCache, MemoryStore
from curvaqz.storage.models import StoredQuiz, new_session_id, utcnow


def test_new_session_id_is_unpadded_base64url_of_16_bytes():
    ids = {new_session_id() for _ in range(50)}
    assert len(ids) == 50
    for sid in ids:
        assert len(sid) == 22
        assert "=" not in sid
        assert set(sid) <= set("ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_")


def test_create_session_starts_active_and_rejects_duplicates():
    store = MemoryStore()
    sess = store.create_session("s1")

    assert sess.revoked is False
    assert sess.user_id is None
    assert sess.created_at == sess.last_seen_at
    with pytest.raises(ConstraintViolation):
        store.create_session("s1")


def test_get_session_returns_copy():
    store = MemoryStore()
    store.create_session("s1")
    fetched = store.get_session("s1")
    fetched.revoked = True

    assert store.get_session("s1").revoked is False
    assert store.get_session("missing") is None


def test_touch_session_advances_but_never_rewinds_last_seen():
    store = MemoryStore()
    store.create_session("s1")
    past = utcnow() - timedelta(hours=1)
    store.sessions["s1"].last_seen_at = past

    store.touch_session("s1")
    touched = store.get_session("s1").last_seen_at
    assert touched > past

    future = utcnow() + timedelta(hours=1)
    store.sessions["s1"].last_seen_at = future
    store.touch_session("s1")
    assert store.get_session("s1").last_seen_at == future


def test_touch_and_link_ignore_unknown_sessions():
    store = MemoryStore()
    store.touch_session("ghost")
    store.link_session_to_user("ghost", "u1")
    assert store.get_session("ghost") is None


def test_link_session_to_user_sets_user():
    store = MemoryStore()
    store.create_session("s1")
    store.link_session_to_user("s1", "u1")
    assert store.get_session("s1").user_id == "u1"


def test_revoke_session_is_logical():
    store = MemoryStore()
    store.create_session("s1")
    store.revoke_session("s1")

    sess = store.get_session("s1")
    assert sess is not None
    assert sess.revoked is True
    assert not sess.is_active


def test_upsert_user_coalesces_fields():
    store = MemoryStore()
    first = store.upsert_user("u1", display_name="Alice")
    second = store.upsert_user("u1", provider="google")

    assert second.display_name == "Alice"
    assert second.provider == "google"
    assert second.created_at == first.created_at
    assert second.updated_at >= first.updated_at

    third = store.upsert_user("u1", display_name="Alicia", provider_sub="sub-1")
    assert third.display_name == "Alicia"
    assert third.provider == "google"
    assert third.provider_sub == "sub-1"


def test_quiz_round_trip_and_duplicate_guard():
    store = MemoryStore()
    quiz = StoredQuiz(id="q1", source="fixture", payload='{"quizId": "q1"}', session_id="s1")
    store.save_quiz(quiz)

    fetched = store.get_quiz("q1")
    assert fetched.payload == '{"quizId": "q1"}'
    assert fetched.session_id == "s1"
    assert store.get_quiz("q2") is None
    with pytest.raises(ConstraintViolation):
        store.save_quiz(quiz)


@pytest.mark.asyncio
async def test_memory_cache_expires_entries():
    clock = {"now": 100.0}
    cache = MemoryCache(clock=lambda: clock["now"])

    await cache.set("k", "v", 10)
    assert await cache.get("k") == "v"

    clock["now"] = 110.0
    assert await cache.get("k") is None
    assert await cache.get("never-set") is None
