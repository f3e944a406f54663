"""Pydantic schemas for registration, login, and the user representation."""

import re
import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

# At least one upper-case letter, one lower-case letter, and a digit or special character
_PASSWORD_RULE = re.compile(r"(?:(?=.*\d)|(?=.*\W+))(?![.\n])(?=.*[A-Z])(?=.*[a-z]).*$")
_PASSWORD_RULE_MESSAGE = (
    "Password must contain an upper-case letter, a lower-case letter, and a number or special character"
)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _check_password_strength(value: str) -> str:
    if not _PASSWORD_RULE.match(value):
        raise ValueError(_PASSWORD_RULE_MESSAGE)
    return value


class CreateUserRequest(CamelModel):
    email: EmailStr
    password: str = Field(min_length=6, max_length=50)
    full_name: str = Field(min_length=1, max_length=100)

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        return _check_password_strength(value)


class LoginUserRequest(CamelModel):
    email: EmailStr
    password: str = Field(min_length=6, max_length=50)

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        return _check_password_strength(value)


class UserResponse(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: uuid.UUID
    email: str
    full_name: str
    is_active: bool
    roles: list[str]
    subscription_status: str
    stripe_customer_id: str | None = None
    stripe_subscription_id: str | None = None
    created_at: datetime
    updated_at: datetime


class AuthResponse(UserResponse):
    """User representation plus a freshly signed bearer token."""

    token: str
