"""Input validation for the auth flows.

Runs before any persistence access. Failures are collected per field into
``ValidationError.details``; the top-level message is the first failure.
"""

import re
from typing import Optional

from email_validator import EmailNotValidError, validate_email

from services.errors import ValidationError

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 30
USERNAME_PATTERN = re.compile(r"[A-Za-z0-9_]+")
PASSWORD_MIN_LENGTH = 8


def password_problem(password: str) -> Optional[str]:
    """Return the first strength rule the password breaks, or None."""
    if len(password) < PASSWORD_MIN_LENGTH:
        return f"Password must be at least {PASSWORD_MIN_LENGTH} characters long"
    if not re.search(r"[a-z]", password):
        return "Password must contain at least one lowercase letter"
    if not re.search(r"[A-Z]", password):
        return "Password must contain at least one uppercase letter"
    if not re.search(r"\d", password):
        return "Password must contain at least one number"
    return None


def username_problem(username: str) -> Optional[str]:
    if not USERNAME_MIN_LENGTH <= len(username) <= USERNAME_MAX_LENGTH:
        return (
            f"Username must be between {USERNAME_MIN_LENGTH} "
            f"and {USERNAME_MAX_LENGTH} characters"
        )
    if not USERNAME_PATTERN.fullmatch(username):
        return "Username can only contain letters, numbers, and underscores"
    return None


def email_problem(email: str) -> Optional[str]:
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError:
        return "Invalid email format"
    return None


def validate_registration(
    email: Optional[str], username: Optional[str], password: Optional[str]
) -> None:
    """Raise ValidationError unless all three registration fields are acceptable."""
    missing = {}
    if not email:
        missing["email"] = "Email is required"
    if not username:
        missing["username"] = "Username is required"
    if not password:
        missing["password"] = "Password is required"
    if missing:
        raise ValidationError(
            "Email, username, and password are required", details=missing
        )

    details = {}
    problem = email_problem(email)
    if problem:
        details["email"] = problem
    problem = username_problem(username)
    if problem:
        details["username"] = problem
    problem = password_problem(password)
    if problem:
        details["password"] = problem

    if details:
        raise ValidationError(next(iter(details.values())), details=details)


def validate_login(email: Optional[str], password: Optional[str]) -> None:
    missing = {}
    if not email:
        missing["email"] = "Email is required"
    if not password:
        missing["password"] = "Password is required"
    if missing:
        raise ValidationError("Email and password are required", details=missing)


def require_refresh_token(refresh_token: Optional[str]) -> str:
    if not refresh_token:
        raise ValidationError(
            "Refresh token is required",
            details={"refresh_token": "Refresh token is required"},
        )
    return refresh_token
