"""
Password hashing and server-side sessions.

A session token is a signed JWT carrying the username (``sub``), a session id
(``sid``) and an expiry. The signature alone is not enough: the ``sid`` must
still be live in the ``SessionRegistry``. Logging out or logging in again
from elsewhere removes it, which invalidates the token immediately.
"""

import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
import structlog
from werkzeug.security import check_password_hash, generate_password_hash

from errors import invalid_credentials, unauthenticated
from stores import CredentialStore

logger = structlog.get_logger(__name__)


class PasswordHasher:
    """Salted one-way hash. Hashes are never decoded, only compared."""

    _decoy_hash: Optional[str] = None

    def hash(self, password: str) -> str:
        return generate_password_hash(password)

    def verify(self, password: str, password_hash: str) -> bool:
        return check_password_hash(password_hash, password)

    def verify_decoy(self, password: str) -> None:
        """Do the work of a verify against a hash no account owns."""
        if PasswordHasher._decoy_hash is None:
            PasswordHasher._decoy_hash = self.hash(secrets.token_urlsafe(16))
        self.verify(password, PasswordHasher._decoy_hash)


@dataclass(frozen=True)
class SessionRecord:
    session_id: str
    user_id: int
    username: str
    expires_at: datetime


@dataclass(frozen=True)
class Session:
    token: str
    username: str
    expires_at: datetime


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SessionRegistry:
    """
    Live sessions, indexed by session id and by user id.

    At most one session per user: opening a new one drops the previous one
    under the same lock, so two concurrent logins for one user always leave
    exactly one live session behind.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._sessions: dict[str, SessionRecord] = {}
        self._by_user: dict[int, str] = {}

    def open(self, user_id: int, username: str, ttl: timedelta):
        """Start a session for ``user_id``. Returns (record, replaced session id or None)."""
        record = SessionRecord(
            session_id=secrets.token_urlsafe(32),
            user_id=user_id,
            username=username,
            expires_at=_now() + ttl,
        )
        with self._lock:
            replaced = self._by_user.get(user_id)
            if replaced is not None:
                self._sessions.pop(replaced, None)
            self._sessions[record.session_id] = record
            self._by_user[user_id] = record.session_id
        return record, replaced

    def lookup(self, session_id: str) -> Optional[SessionRecord]:
        with self._lock:
            record = self._sessions.get(session_id)
            if record is None:
                return None
            if record.expires_at <= _now():
                self._drop(record)
                return None
            return record

    def close(self, session_id: str) -> bool:
        with self._lock:
            record = self._sessions.get(session_id)
            if record is None:
                return False
            self._drop(record)
            return True

    def active_session_for(self, user_id: int) -> Optional[str]:
        with self._lock:
            return self._by_user.get(user_id)

    def __len__(self):
        with self._lock:
            return len(self._sessions)

    def _drop(self, record: SessionRecord) -> None:
        # caller holds the lock
        self._sessions.pop(record.session_id, None)
        if self._by_user.get(record.user_id) == record.session_id:
            del self._by_user[record.user_id]


class SessionAuthenticator:
    def __init__(
        self,
        credentials: CredentialStore,
        hasher: PasswordHasher,
        registry: SessionRegistry,
        secret_key: str,
        algorithm: str = "HS256",
        ttl: timedelta = timedelta(minutes=30),
    ):
        self.credentials = credentials
        self.hasher = hasher
        self.registry = registry
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.ttl = ttl

    def login(self, username: str, password: str) -> Session:
        user = self.credentials.find_by_username(username)
        if user is None:
            # keep timing close to the wrong-password path
            self.hasher.verify_decoy(password)
            logger.info("login_failed", username=username)
            raise invalid_credentials()
        if not self.hasher.verify(password, user.password_hash):
            logger.info("login_failed", username=username)
            raise invalid_credentials()

        record, replaced = self.registry.open(user.id, user.username, self.ttl)
        if replaced is not None:
            logger.info("session_superseded", username=user.username)
        logger.info("login_succeeded", username=user.username)

        token = jwt.encode(
            {
                "sub": record.username,
                "sid": record.session_id,
                "exp": record.expires_at,
            },
            self.secret_key,
            algorithm=self.algorithm,
        )
        return Session(token=token, username=record.username, expires_at=record.expires_at)

    def logout(self, token: Optional[str]) -> None:
        """Invalidate the session behind ``token``. Unknown or stale tokens are ignored."""
        if not token:
            return
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                options={"verify_exp": False},
            )
        except jwt.PyJWTError:
            return
        session_id = payload.get("sid")
        if session_id and self.registry.close(session_id):
            logger.info("logout", username=payload.get("sub"))

    def resolve(self, token: Optional[str]) -> str:
        """Return the username bound to a live session, or raise UNAUTHENTICATED."""
        if not token:
            raise unauthenticated()
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            raise unauthenticated("Session has expired")
        except jwt.PyJWTError:
            raise unauthenticated("Could not validate credentials")

        session_id = payload.get("sid")
        record = self.registry.lookup(session_id) if session_id else None
        if record is None or record.username != payload.get("sub"):
            raise unauthenticated("Session is no longer valid")
        return record.username
