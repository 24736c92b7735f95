"""Unit tests for auth/identity.py -- IdentityReconciler.

Covers:
- returning user found by (provider, provider_id); avatar refreshed, name kept
- first social login links onto a local account with the same email
- a row already linked to another identity is never overwritten
- missing email gets a deterministic, collision-free placeholder that is
  never linked onto an existing row
- first-use race: a lost insert re-reads instead of failing, one row results
"""

from __future__ import annotations

import threading

import pytest
from sqlalchemy import func, select

from auth.errors import IdentityConflictError
from auth.identity import IdentityReconciler, placeholder_email
from auth.schema import create_store_engine
from auth.schema import users as users_table
from auth.store import UserStore
from auth.tokens import hash_password


@pytest.fixture
def reconciler(user_store: UserStore) -> IdentityReconciler:
    return IdentityReconciler(user_store)


def _user_count(engine) -> int:
    with engine.connect() as conn:
        return conn.execute(select(func.count()).select_from(users_table)).scalar()


# ---------------------------------------------------------------------------
# Resolution order
# ---------------------------------------------------------------------------


def test_first_login_creates_passwordless_user(reconciler: IdentityReconciler, engine) -> None:
    user = reconciler.find_or_create_social_user(
        "google", "g-1", "Gina@Example.com", "Gina", "https://img/1.png", email_verified=True
    )
    assert user.id is not None
    assert user.provider == "google"
    assert user.provider_id == "g-1"
    assert user.email == "gina@example.com"
    assert user.has_password is False
    assert user.email_verified is True
    assert _user_count(engine) == 1


def test_returning_user_is_found_by_identity(reconciler: IdentityReconciler, engine) -> None:
    first = reconciler.find_or_create_social_user("kakao", "k-1", "kim@example.com", "Kim", None)
    again = reconciler.find_or_create_social_user("kakao", "k-1", "changed@example.com", "Renamed", None)
    assert again.id == first.id
    assert again.email == "kim@example.com"
    assert again.name == "Kim"
    assert _user_count(engine) == 1


def test_returning_user_gets_new_avatar(reconciler: IdentityReconciler, user_store: UserStore) -> None:
    first = reconciler.find_or_create_social_user("google", "g-1", "gina@example.com", "Gina", "https://img/1.png")
    again = reconciler.find_or_create_social_user("google", "g-1", "gina@example.com", "Gina", "https://img/2.png")
    assert again.avatar_url == "https://img/2.png"
    assert user_store.find_by_id(first.id).avatar_url == "https://img/2.png"


def test_links_onto_local_account_with_same_email(reconciler: IdentityReconciler, user_store: UserStore) -> None:
    uid = user_store.create_local("Ann Lee", "ann@example.com", hash_password("correct-horse"))
    user = reconciler.find_or_create_social_user(
        "google", "g-9", "ANN@example.com", "Ann G", None, email_verified=True
    )
    assert user.id == uid
    assert user.provider == "google"
    assert user.provider_id == "g-9"
    assert user.has_password is True
    assert user.email_verified is True
    assert user.password_hash is None
    assert user_store.find_by_provider("google", "g-9").id == uid


def test_does_not_overwrite_another_identity(reconciler: IdentityReconciler, user_store: UserStore) -> None:
    uid = user_store.create_social("google", "g-1", "shared@example.com", "Gina")
    with pytest.raises(IdentityConflictError):
        reconciler.find_or_create_social_user("kakao", "k-1", "shared@example.com", "Kim", None)
    assert user_store.find_by_provider("google", "g-1").id == uid
    assert user_store.find_by_provider("kakao", "k-1") is None


def test_unverified_email_does_not_mark_linked_account_verified(
    reconciler: IdentityReconciler, user_store: UserStore
) -> None:
    uid = user_store.create_local("Ann Lee", "ann@example.com", hash_password("correct-horse"))
    reconciler.find_or_create_social_user("naver", "n-1", "ann@example.com", "Ann", None, email_verified=False)
    assert user_store.find_by_id(uid).email_verified is False


# ---------------------------------------------------------------------------
# Missing email
# ---------------------------------------------------------------------------


class TestPlaceholderEmail:
    def test_plain_id_used_as_is(self) -> None:
        assert placeholder_email("kakao", "1234567") == "1234567@kakao.invalid"

    def test_unsafe_id_is_hex_encoded(self) -> None:
        assert placeholder_email("naver", "AbC+/=") == "hex+" + "AbC+/=".encode().hex() + "@naver.invalid"

    def test_case_variants_do_not_collide(self) -> None:
        assert placeholder_email("naver", "AbCd") != placeholder_email("naver", "abcd")

    def test_users_without_email_get_distinct_rows(self, reconciler: IdentityReconciler, engine) -> None:
        first = reconciler.find_or_create_social_user("kakao", "111", None, "One", None)
        second = reconciler.find_or_create_social_user("kakao", "222", "", None, None)
        assert first.id != second.id
        assert first.email == "111@kakao.invalid"
        assert second.email == "222@kakao.invalid"
        assert first.email_verified is False
        assert second.name == "Kakao user 222"
        assert _user_count(engine) == 2

    def test_placeholder_never_matches_a_real_account(
        self, reconciler: IdentityReconciler, user_store: UserStore
    ) -> None:
        uid = user_store.create_local("Ann Lee", "ann@example.com", hash_password("correct-horse"))
        user = reconciler.find_or_create_social_user("kakao", "333", None, "Kim", None)
        assert user.id != uid

    def test_preregistered_placeholder_is_not_linked(
        self, reconciler: IdentityReconciler, user_store: UserStore, engine
    ) -> None:
        squatter = user_store.create_local("Mallory", "333@kakao.invalid", hash_password("correct-horse"))
        with pytest.raises(IdentityConflictError):
            reconciler.find_or_create_social_user("kakao", "333", None, "Victim", None)
        row = user_store.find_by_id(squatter)
        assert row.provider == "email"
        assert row.provider_id is None
        assert user_store.find_by_provider("kakao", "333") is None
        assert _user_count(engine) == 1

    def test_lost_placeholder_race_rereads_by_identity(
        self, reconciler: IdentityReconciler, user_store: UserStore, engine, monkeypatch
    ) -> None:
        winner_id = user_store.create_social("kakao", "444", "444@kakao.invalid", "Winner", email_verified=False)
        real_find_by_provider = user_store.find_by_provider
        calls = {"provider": 0}

        def stale_find_by_provider(provider, provider_id):
            calls["provider"] += 1
            return None if calls["provider"] == 1 else real_find_by_provider(provider, provider_id)

        monkeypatch.setattr(user_store, "find_by_provider", stale_find_by_provider)
        user = reconciler.find_or_create_social_user("kakao", "444", None, "Loser", None)
        assert user.id == winner_id
        assert _user_count(engine) == 1


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


def test_lost_insert_race_rereads_winner(reconciler: IdentityReconciler, user_store: UserStore, engine, monkeypatch):
    """Simulate the other caller inserting between our lookups and our insert."""
    winner_id = user_store.create_social("google", "g-race", "race@example.com", "Winner")

    real_find_by_provider = user_store.find_by_provider
    real_find_by_email = user_store.find_by_email
    calls = {"provider": 0, "email": 0}

    def stale_find_by_provider(provider, provider_id):
        calls["provider"] += 1
        return None if calls["provider"] == 1 else real_find_by_provider(provider, provider_id)

    def stale_find_by_email(email):
        calls["email"] += 1
        return None if calls["email"] == 1 else real_find_by_email(email)

    monkeypatch.setattr(user_store, "find_by_provider", stale_find_by_provider)
    monkeypatch.setattr(user_store, "find_by_email", stale_find_by_email)

    user = reconciler.find_or_create_social_user("google", "g-race", "race@example.com", "Loser", None)
    assert user.id == winner_id
    assert _user_count(engine) == 1


def test_concurrent_first_logins_converge_on_one_row(tmp_path) -> None:
    engine = create_store_engine(f"sqlite:///{tmp_path / 'race.db'}")
    reconciler = IdentityReconciler(UserStore(engine))
    barrier = threading.Barrier(4)
    results: list[int] = []
    errors: list[BaseException] = []

    def worker() -> None:
        barrier.wait()
        try:
            user = reconciler.find_or_create_social_user(
                "google", "g-same", "same@example.com", "Same", None, email_verified=True
            )
            results.append(user.id)
        except BaseException as exc:  # noqa: BLE001
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(results) == 4
    assert len(set(results)) == 1
    assert _user_count(engine) == 1
    engine.dispose()
