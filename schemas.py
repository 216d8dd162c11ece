import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, constr, field_validator


class UserBase(BaseModel):
    username: constr(min_length=3, max_length=50)


class UserCreate(UserBase):
    password: constr(min_length=1, max_length=128)
    email: EmailStr


class UserLogin(UserBase):
    password: str


class UserView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: str


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class ExpenseIn(BaseModel):
    """Body of create and update. Update replaces all four fields."""

    model_config = ConfigDict(validate_default=True)

    description: Optional[str] = None
    amount: Optional[Decimal] = Field(default=None, max_digits=10, decimal_places=2)
    date: Optional[datetime.date] = None
    category: Optional[str] = None

    @field_validator("description")
    @classmethod
    def check_description(cls, v):
        if v is None or not v.strip():
            raise ValueError("Description cannot be blank")
        if len(v) > 255:
            raise ValueError("Description must be less than 255 characters")
        return v

    @field_validator("amount")
    @classmethod
    def check_amount(cls, v):
        if v is None:
            raise ValueError("Amount cannot be null")
        if v <= 0:
            raise ValueError("Amount must be positive")
        return v

    @field_validator("date")
    @classmethod
    def check_date(cls, v):
        if v is None:
            raise ValueError("Date cannot be null")
        return v

    @field_validator("category")
    @classmethod
    def check_category(cls, v):
        if v is None or not v.strip():
            raise ValueError("Category cannot be blank")
        if len(v) > 100:
            raise ValueError("Category must be less than 100 characters")
        return v


class ExpenseView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    description: str
    amount: Decimal
    date: datetime.date
    category: str
    user_id: int


class ErrorDetails(BaseModel):
    timestamp: datetime.datetime
    message: str
    details: str
    validation_errors: Optional[dict[str, str]] = None


def field_errors_from(errors) -> dict[str, str]:
    """Flatten pydantic error dicts into a field -> message mapping.

    The first error reported for a field wins. Messages raised by our own
    validators are passed through without pydantic's "Value error, " prefix.
    """
    result = {}
    for err in errors:
        loc = [str(part) for part in err.get("loc", ()) if part != "body"]
        field = ".".join(loc) or "body"
        if field in result:
            continue
        ctx = err.get("ctx") or {}
        if err.get("type") == "value_error" and "error" in ctx:
            result[field] = str(ctx["error"])
        else:
            result[field] = err.get("msg", "Invalid value")
    return result
