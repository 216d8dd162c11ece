from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from auth import get_credential_store, get_current_username, get_user_service
from database import get_db
from schemas import ExpenseIn, ExpenseView, UserView
from services import ExpenseAccessService, IdentityResolver, UserService
from stores import CredentialStore, SqlExpenseStore


router = APIRouter()
users_router = APIRouter()


def get_expense_service(
    db: Session = Depends(get_db),
    credentials: CredentialStore = Depends(get_credential_store),
) -> ExpenseAccessService:
    return ExpenseAccessService(SqlExpenseStore(db), IdentityResolver(credentials))


@router.post(
    "/expenses", response_model=ExpenseView, status_code=status.HTTP_201_CREATED
)
def create_expense(
    expense: ExpenseIn,
    username: str = Depends(get_current_username),
    expenses: ExpenseAccessService = Depends(get_expense_service),
):
    return expenses.create(username, expense)


@router.get("/expenses", response_model=list[ExpenseView])
def get_expenses(
    username: str = Depends(get_current_username),
    expenses: ExpenseAccessService = Depends(get_expense_service),
):
    return expenses.list_mine(username)


@router.get("/expenses/{expense_id}", response_model=ExpenseView)
def get_expense(
    expense_id: int,
    username: str = Depends(get_current_username),
    expenses: ExpenseAccessService = Depends(get_expense_service),
):
    return expenses.get_one(expense_id, username)


@router.put("/expenses/{expense_id}", response_model=ExpenseView)
def update_expense(
    expense_id: int,
    expense: ExpenseIn,
    username: str = Depends(get_current_username),
    expenses: ExpenseAccessService = Depends(get_expense_service),
):
    return expenses.update(expense_id, username, expense)


@router.delete("/expenses/{expense_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_expense(
    expense_id: int,
    username: str = Depends(get_current_username),
    expenses: ExpenseAccessService = Depends(get_expense_service),
):
    expenses.delete(expense_id, username)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@users_router.get("/profile", response_model=UserView)
def get_profile(
    username: str = Depends(get_current_username),
    users: UserService = Depends(get_user_service),
):
    return users.profile(username)
