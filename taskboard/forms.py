"""Sign-in and registration forms, plus per-field error reporting.

Validation happens here, before anything is sent to the identity provider.
"""

from __future__ import annotations

from collections import defaultdict

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


def _strip(value):
    return value.strip() if isinstance(value, str) else value


class LoginForm(BaseModel):
    email: str = Field(min_length=1, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=6)

    _strip_email = field_validator("email", mode="before")(_strip)


class RegisterForm(BaseModel):
    name: str = Field(min_length=2, max_length=50)
    email: str = Field(min_length=1, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=6, max_length=100)
    confirm_password: str = Field(min_length=1)

    _strip_text = field_validator("name", "email", mode="before")(_strip)

    @model_validator(mode="after")
    def _passwords_match(self) -> "RegisterForm":
        if self.password != self.confirm_password:
            raise ValueError("Passwords don't match")
        return self


def field_errors(error: ValidationError) -> dict[str, list[str]]:
    """Group validation messages by field for inline display.

    Model-level failures such as the password confirmation land on
    ``confirm_password``.
    """
    errors: dict[str, list[str]] = defaultdict(list)
    for item in error.errors():
        loc = item["loc"]
        field = ".".join(str(part) for part in loc) if loc else "confirm_password"
        message = item["msg"].removeprefix("Value error, ")
        errors[field].append(message)
    return dict(errors)
