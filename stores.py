"""
Credential and expense stores.

The services only talk to the abstract interfaces below. The SQLAlchemy
implementations share one ``Session`` per request and wrap every driver
failure into ``STORE_UNAVAILABLE`` so it can never be mistaken for a
not-found or ownership failure.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from functools import wraps
from typing import Iterator, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from database import Expense, User
from errors import AppError, ErrorKind, store_unavailable

logger = structlog.get_logger(__name__)


class CredentialStore(ABC):
    """Persists user records. Usernames and emails are unique."""

    @abstractmethod
    def find_by_username(self, username: str) -> Optional[User]:
        pass

    @abstractmethod
    def exists_by_username(self, username: str) -> bool:
        pass

    @abstractmethod
    def exists_by_email(self, email: str) -> bool:
        pass

    @abstractmethod
    def add(self, username: str, email: str, password_hash: str) -> User:
        """
        Persist a new user and return it with its id assigned.

        Raises:
            AppError(CONFLICT): if the username or email was taken concurrently
        """
        pass


class ExpenseStore(ABC):
    """Persists expenses, each linked to exactly one owning user id."""

    @abstractmethod
    def add(self, expense: Expense) -> Expense:
        pass

    @abstractmethod
    def get(self, expense_id: int, for_update: bool = False) -> Optional[Expense]:
        """
        Load an expense by id, or None.

        With ``for_update`` the row is locked until the enclosing
        ``atomic()`` block ends, where the backend supports row locks.
        """
        pass

    @abstractmethod
    def list_by_owner(self, user_id: int) -> list[Expense]:
        """All expenses owned by ``user_id``, oldest first."""
        pass

    @abstractmethod
    def delete(self, expense: Expense) -> None:
        pass

    @abstractmethod
    def refresh(self, expense: Expense) -> Expense:
        """Reload a committed expense from the backend."""
        pass

    @abstractmethod
    def atomic(self):
        """Context manager: commit on success, roll back on any error."""
        pass


def _guarded(method):
    """Translate driver errors raised by a store method into STORE_UNAVAILABLE."""

    @wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except AppError:
            raise
        except SQLAlchemyError:
            logger.exception("store_failure", operation=method.__name__)
            self.db.rollback()
            raise store_unavailable()

    return wrapper


class SqlCredentialStore(CredentialStore):
    def __init__(self, db: Session):
        self.db = db

    @_guarded
    def find_by_username(self, username):
        return self.db.execute(
            select(User).where(User.username == username)
        ).scalar_one_or_none()

    @_guarded
    def exists_by_username(self, username):
        return (
            self.db.execute(
                select(User.id).where(User.username == username)
            ).first()
            is not None
        )

    @_guarded
    def exists_by_email(self, email):
        return (
            self.db.execute(select(User.id).where(User.email == email)).first()
            is not None
        )

    @_guarded
    def add(self, username, email, password_hash):
        user = User(username=username, email=email, password_hash=password_hash)
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError:
            # lost a race with a concurrent registration; find out which field
            self.db.rollback()
            if self.exists_by_username(username):
                raise AppError(
                    ErrorKind.CONFLICT,
                    f"Username already exists: {username}",
                    {"username": "Username already exists"},
                )
            raise AppError(
                ErrorKind.CONFLICT,
                f"Email already exists: {email}",
                {"email": "Email already exists"},
            )
        self.db.refresh(user)
        return user


class SqlExpenseStore(ExpenseStore):
    def __init__(self, db: Session):
        self.db = db

    @_guarded
    def add(self, expense):
        self.db.add(expense)
        self.db.commit()
        self.db.refresh(expense)
        return expense

    @_guarded
    def get(self, expense_id, for_update=False):
        query = select(Expense).where(Expense.id == expense_id)
        if for_update:
            query = query.with_for_update()
        return self.db.execute(query).scalar_one_or_none()

    @_guarded
    def list_by_owner(self, user_id):
        return list(
            self.db.execute(
                select(Expense)
                .where(Expense.user_id == user_id)
                .order_by(Expense.id)
            ).scalars()
        )

    @_guarded
    def delete(self, expense):
        self.db.delete(expense)

    @_guarded
    def refresh(self, expense):
        self.db.refresh(expense)
        return expense

    @contextmanager
    def atomic(self) -> Iterator[None]:
        try:
            yield
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("store_failure", operation="atomic")
            raise store_unavailable()
        except BaseException:
            self.db.rollback()
            raise
