from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from auth import auth_router
from config import get_settings
from database import init_db
from errors import AppError, ErrorKind
from logging_setup import configure_logging
from router import router, users_router
from schemas import ErrorDetails, field_errors_from

settings = get_settings()
configure_logging(settings.log_level, settings.log_json)
logger = structlog.get_logger(__name__)

# The only place an error kind becomes a transport status.
STATUS_BY_KIND = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.UNAUTHENTICATED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.INVALID_CREDENTIALS: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.USER_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.STORE_UNAVAILABLE: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorKind.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info("startup", database_url=settings.database_url)
    yield


app = FastAPI(title="Expense Tracker API", lifespan=lifespan)


def error_response(
    request: Request,
    status_code: int,
    message: str,
    field_errors: Optional[dict] = None,
    details: Optional[str] = None,
    headers: Optional[dict] = None,
) -> JSONResponse:
    body = ErrorDetails(
        timestamp=datetime.now(),
        message=message,
        details=details or f"uri={request.url.path}",
        validation_errors=field_errors,
    )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json", exclude_none=True),
        headers=headers,
    )


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    details = None
    headers = None
    if exc.kind is ErrorKind.INVALID_CREDENTIALS:
        details = f"uri={request.url.path}?error=true"
    elif exc.kind is ErrorKind.UNAUTHENTICATED:
        headers = {"WWW-Authenticate": "Bearer"}
    return error_response(
        request,
        STATUS_BY_KIND[exc.kind],
        exc.message,
        field_errors=exc.field_errors,
        details=details,
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return error_response(
        request,
        STATUS_BY_KIND[ErrorKind.VALIDATION],
        "Validation Failed",
        field_errors=field_errors_from(exc.errors()),
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error", path=request.url.path)
    return error_response(
        request,
        STATUS_BY_KIND[ErrorKind.INTERNAL],
        "An unexpected internal server error occurred.",
    )


app.include_router(auth_router, prefix="/api/auth", tags=["authentication"])
app.include_router(users_router, prefix="/api/users", tags=["users"])
app.include_router(router, prefix="/api", tags=["expenses"])


@app.get("/api/health")
def health():
    return {"status": "ok"}


if __name__ == "__main__":
    uvicorn.run(app, host=settings.host, port=settings.port)
