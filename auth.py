from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from config import Settings, get_settings
from database import get_db
from schemas import UserCreate, UserLogin, UserView, Token
from security import PasswordHasher, SessionAuthenticator, SessionRegistry
from services import UserService
from stores import CredentialStore, SqlCredentialStore

auth_router = APIRouter()
# auto_error is off so a missing token goes through the same error path as a bad one
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/auth/login", auto_error=False)

session_registry = SessionRegistry()


def get_session_registry() -> SessionRegistry:
    return session_registry


def get_credential_store(db: Session = Depends(get_db)) -> CredentialStore:
    return SqlCredentialStore(db)


def get_authenticator(
    credentials: CredentialStore = Depends(get_credential_store),
    registry: SessionRegistry = Depends(get_session_registry),
    settings: Settings = Depends(get_settings),
) -> SessionAuthenticator:
    return SessionAuthenticator(
        credentials,
        PasswordHasher(),
        registry,
        secret_key=settings.secret_key,
        algorithm=settings.jwt_algorithm,
        ttl=timedelta(minutes=settings.session_ttl_minutes),
    )


def get_user_service(
    credentials: CredentialStore = Depends(get_credential_store),
) -> UserService:
    return UserService(credentials, PasswordHasher())


def get_current_username(
    token: Optional[str] = Depends(oauth2_scheme),
    authenticator: SessionAuthenticator = Depends(get_authenticator),
) -> str:
    return authenticator.resolve(token)


@auth_router.post(
    "/register", response_model=UserView, status_code=status.HTTP_201_CREATED
)
def register(user: UserCreate, users: UserService = Depends(get_user_service)):
    return users.register(user.username, user.password, user.email)


@auth_router.post("/login", response_model=Token)
def login(
    user: UserLogin,
    authenticator: SessionAuthenticator = Depends(get_authenticator),
):
    session = authenticator.login(user.username, user.password)
    return Token(access_token=session.token)


@auth_router.post("/logout")
def logout(
    token: Optional[str] = Depends(oauth2_scheme),
    authenticator: SessionAuthenticator = Depends(get_authenticator),
):
    authenticator.logout(token)
    return {"message": "Logout successful"}
