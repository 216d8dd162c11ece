"""
User and expense services.

Callers pass the authenticated username explicitly. Every protected
operation re-resolves it against the credential store, so a user removed
mid-session is locked out on the next call. Expense reads and writes are
allowed only when ``expense.user_id`` equals the resolved user's id.
"""

from typing import Union

import structlog
from pydantic import ValidationError

from database import Expense, User
from errors import (
    AppError,
    ErrorKind,
    expense_not_found,
    forbidden,
    user_not_found,
    validation_error,
)
from schemas import ExpenseIn, ExpenseView, UserView, field_errors_from
from security import PasswordHasher
from stores import CredentialStore, ExpenseStore

logger = structlog.get_logger(__name__)


class IdentityResolver:
    def __init__(self, credentials: CredentialStore):
        self.credentials = credentials

    def resolve_identity(self, username: str) -> User:
        user = self.credentials.find_by_username(username)
        if user is None:
            raise user_not_found(username)
        return user


class UserService:
    def __init__(self, credentials: CredentialStore, hasher: PasswordHasher):
        self.credentials = credentials
        self.hasher = hasher

    def register(self, username: str, password: str, email: str) -> UserView:
        """
        Create a user. The username is checked before the email and the first
        clash is reported; nothing is written on conflict.
        """
        if self.credentials.exists_by_username(username):
            logger.info("registration_conflict", field="username", username=username)
            raise AppError(
                ErrorKind.CONFLICT,
                f"Username already exists: {username}",
                {"username": "Username already exists"},
            )
        if self.credentials.exists_by_email(email):
            logger.info("registration_conflict", field="email", username=username)
            raise AppError(
                ErrorKind.CONFLICT,
                f"Email already exists: {email}",
                {"email": "Email already exists"},
            )

        user = self.credentials.add(username, email, self.hasher.hash(password))
        logger.info("user_registered", user_id=user.id, username=user.username)
        return UserView.model_validate(user)

    def profile(self, username: str) -> UserView:
        user = IdentityResolver(self.credentials).resolve_identity(username)
        return UserView.model_validate(user)


class ExpenseAccessService:
    def __init__(self, expenses: ExpenseStore, identities: IdentityResolver):
        self.expenses = expenses
        self.identities = identities

    def create(
        self, owner_username: str, fields: Union[ExpenseIn, dict]
    ) -> ExpenseView:
        owner = self.identities.resolve_identity(owner_username)
        data = self._validate(fields)
        expense = Expense(
            description=data.description,
            amount=data.amount,
            date=data.date,
            category=data.category,
            user_id=owner.id,
        )
        expense = self.expenses.add(expense)
        return ExpenseView.model_validate(expense)

    def list_mine(self, owner_username: str) -> list[ExpenseView]:
        owner = self.identities.resolve_identity(owner_username)
        return [
            ExpenseView.model_validate(expense)
            for expense in self.expenses.list_by_owner(owner.id)
        ]

    def get_one(self, expense_id: int, owner_username: str) -> ExpenseView:
        owner = self.identities.resolve_identity(owner_username)
        expense = self._load_owned(expense_id, owner, "view")
        return ExpenseView.model_validate(expense)

    def update(
        self, expense_id: int, owner_username: str, fields: Union[ExpenseIn, dict]
    ) -> ExpenseView:
        owner = self.identities.resolve_identity(owner_username)
        data = self._validate(fields)
        with self.expenses.atomic():
            expense = self._load_owned(expense_id, owner, "update", for_update=True)
            expense.description = data.description
            expense.amount = data.amount
            expense.date = data.date
            expense.category = data.category
        # report what was stored, not what was sent
        expense = self.expenses.refresh(expense)
        return ExpenseView.model_validate(expense)

    def delete(self, expense_id: int, owner_username: str) -> None:
        owner = self.identities.resolve_identity(owner_username)
        with self.expenses.atomic():
            expense = self._load_owned(expense_id, owner, "delete", for_update=True)
            self.expenses.delete(expense)
        logger.info("expense_deleted", expense_id=expense_id, user_id=owner.id)

    def _load_owned(
        self, expense_id: int, owner: User, action: str, for_update: bool = False
    ) -> Expense:
        # existence first, then ownership
        expense = self.expenses.get(expense_id, for_update=for_update)
        if expense is None:
            raise expense_not_found(expense_id)
        if expense.user_id != owner.id:
            logger.warning(
                "ownership_denied",
                expense_id=expense_id,
                user_id=owner.id,
                action=action,
            )
            raise forbidden(action)
        return expense

    @staticmethod
    def _validate(fields: Union[ExpenseIn, dict]) -> ExpenseIn:
        if isinstance(fields, ExpenseIn):
            return fields
        try:
            return ExpenseIn.model_validate(fields)
        except ValidationError as exc:
            raise validation_error(field_errors_from(exc.errors()))
