"""
Tests for password hashing, the session registry and the authenticator.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import jwt
import pytest

from errors import AppError, ErrorKind
from security import SessionAuthenticator, SessionRegistry


class TestPasswordHasher:

    def test_hash_is_not_the_password(self, hasher):
        hashed = hasher.hash("pw1")
        assert hashed != "pw1"

    def test_hash_is_salted(self, hasher):
        assert hasher.hash("pw1") != hasher.hash("pw1")

    def test_verify(self, hasher):
        hashed = hasher.hash("pw1")
        assert hasher.verify("pw1", hashed)
        assert not hasher.verify("pw2", hashed)


class TestSessionRegistry:

    def test_open_and_lookup(self):
        registry = SessionRegistry()
        record, replaced = registry.open(1, "alice", timedelta(minutes=5))
        assert replaced is None
        assert registry.lookup(record.session_id) == record

    def test_new_session_replaces_previous_for_same_user(self):
        registry = SessionRegistry()
        first, _ = registry.open(1, "alice", timedelta(minutes=5))
        second, replaced = registry.open(1, "alice", timedelta(minutes=5))

        assert replaced == first.session_id
        assert registry.lookup(first.session_id) is None
        assert registry.lookup(second.session_id) == second
        assert registry.active_session_for(1) == second.session_id
        assert len(registry) == 1

    def test_sessions_of_different_users_are_independent(self):
        registry = SessionRegistry()
        a, _ = registry.open(1, "alice", timedelta(minutes=5))
        b, _ = registry.open(2, "bob", timedelta(minutes=5))
        assert registry.lookup(a.session_id) == a
        assert registry.lookup(b.session_id) == b

    def test_expired_session_is_dropped(self):
        registry = SessionRegistry()
        record, _ = registry.open(1, "alice", timedelta(seconds=-1))
        assert registry.lookup(record.session_id) is None
        assert registry.active_session_for(1) is None
        assert len(registry) == 0

    def test_close(self):
        registry = SessionRegistry()
        record, _ = registry.open(1, "alice", timedelta(minutes=5))
        assert registry.close(record.session_id) is True
        assert registry.close(record.session_id) is False
        assert registry.lookup(record.session_id) is None

    def test_closing_stale_session_keeps_current_one(self):
        registry = SessionRegistry()
        first, _ = registry.open(1, "alice", timedelta(minutes=5))
        second, _ = registry.open(1, "alice", timedelta(minutes=5))
        registry.close(first.session_id)
        assert registry.active_session_for(1) == second.session_id

    def test_concurrent_logins_leave_one_session(self):
        registry = SessionRegistry()

        def open_session(_):
            return registry.open(1, "alice", timedelta(minutes=5))[0]

        with ThreadPoolExecutor(max_workers=8) as pool:
            records = list(pool.map(open_session, range(50)))

        assert len(registry) == 1
        live = [r for r in records if registry.lookup(r.session_id) is not None]
        assert len(live) == 1
        assert registry.active_session_for(1) == live[0].session_id


class TestSessionAuthenticator:

    def test_login_and_resolve(self, authenticator, alice):
        session = authenticator.login("alice", "pw1")
        assert session.username == "alice"
        assert authenticator.resolve(session.token) == "alice"

    def test_wrong_password(self, authenticator, alice):
        with pytest.raises(AppError) as exc_info:
            authenticator.login("alice", "wrong")
        assert exc_info.value.kind is ErrorKind.INVALID_CREDENTIALS

    def test_unknown_user_gets_same_error_as_wrong_password(self, authenticator, alice):
        with pytest.raises(AppError) as unknown:
            authenticator.login("nobody", "pw1")
        with pytest.raises(AppError) as wrong:
            authenticator.login("alice", "nope")
        assert unknown.value.kind is wrong.value.kind is ErrorKind.INVALID_CREDENTIALS
        assert unknown.value.message == wrong.value.message

    def test_failed_login_does_not_open_session(self, authenticator, registry, alice):
        with pytest.raises(AppError):
            authenticator.login("alice", "wrong")
        assert len(registry) == 0

    def test_new_login_invalidates_previous_session(self, authenticator, alice):
        first = authenticator.login("alice", "pw1")
        second = authenticator.login("alice", "pw1")

        with pytest.raises(AppError) as exc_info:
            authenticator.resolve(first.token)
        assert exc_info.value.kind is ErrorKind.UNAUTHENTICATED
        assert authenticator.resolve(second.token) == "alice"

    def test_logout_invalidates_session(self, authenticator, alice):
        session = authenticator.login("alice", "pw1")
        authenticator.logout(session.token)
        with pytest.raises(AppError) as exc_info:
            authenticator.resolve(session.token)
        assert exc_info.value.kind is ErrorKind.UNAUTHENTICATED

    def test_logout_is_idempotent(self, authenticator, alice):
        session = authenticator.login("alice", "pw1")
        authenticator.logout(session.token)
        authenticator.logout(session.token)
        authenticator.logout("not-a-token")
        authenticator.logout(None)

    def test_logout_of_superseded_token_keeps_new_session(self, authenticator, alice):
        first = authenticator.login("alice", "pw1")
        second = authenticator.login("alice", "pw1")
        authenticator.logout(first.token)
        assert authenticator.resolve(second.token) == "alice"

    @pytest.mark.parametrize("token", [None, "", "garbage"])
    def test_resolve_rejects_missing_or_malformed_token(self, authenticator, token):
        with pytest.raises(AppError) as exc_info:
            authenticator.resolve(token)
        assert exc_info.value.kind is ErrorKind.UNAUTHENTICATED

    def test_resolve_rejects_token_signed_with_other_key(
        self, authenticator, credentials, hasher, registry, alice
    ):
        other = SessionAuthenticator(credentials, hasher, registry, secret_key="other")
        session = other.login("alice", "pw1")
        with pytest.raises(AppError) as exc_info:
            authenticator.resolve(session.token)
        assert exc_info.value.kind is ErrorKind.UNAUTHENTICATED

    def test_resolve_rejects_forged_session_id(self, authenticator, alice):
        authenticator.login("alice", "pw1")
        forged = jwt.encode(
            {"sub": "alice", "sid": "made-up"}, "test-secret", algorithm="HS256"
        )
        with pytest.raises(AppError) as exc_info:
            authenticator.resolve(forged)
        assert exc_info.value.kind is ErrorKind.UNAUTHENTICATED

    def test_resolve_rejects_username_swap(self, authenticator, alice, bob):
        session = authenticator.login("alice", "pw1")
        sid = jwt.decode(session.token, "test-secret", algorithms=["HS256"])["sid"]
        swapped = jwt.encode({"sub": "bob", "sid": sid}, "test-secret", algorithm="HS256")
        with pytest.raises(AppError) as exc_info:
            authenticator.resolve(swapped)
        assert exc_info.value.kind is ErrorKind.UNAUTHENTICATED

    def test_expired_session(self, credentials, hasher, registry, alice):
        authenticator = SessionAuthenticator(
            credentials, hasher, registry, secret_key="test-secret",
            ttl=timedelta(seconds=-1),
        )
        session = authenticator.login("alice", "pw1")
        with pytest.raises(AppError) as exc_info:
            authenticator.resolve(session.token)
        assert exc_info.value.kind is ErrorKind.UNAUTHENTICATED
        assert exc_info.value.message == "Session has expired"
