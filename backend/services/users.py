"""Credential store access for user records."""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from models.user import User, normalize_email
from services.errors import ConflictError, PersistenceError

logger = logging.getLogger(__name__)

EMAIL_TAKEN = "Email is already registered"
USERNAME_TAKEN = "Username is already taken"


class UserRepository:
    """Queries and writes against the ``users`` table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, user_id: int) -> Optional[User]:
        try:
            result = await self.db.execute(select(User).where(User.id == user_id))
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to load user") from e
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> Optional[User]:
        try:
            result = await self.db.execute(
                select(User).where(User.email == normalize_email(email))
            )
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to load user") from e
        return result.scalar_one_or_none()

    async def find_conflicts(self, email: str, username: str) -> dict:
        """
        Return ``{field: message}`` for each of email/username already in use.

        Both comparisons are case-insensitive. An empty dict means neither
        collides.
        """
        email_key = normalize_email(email)
        username_key = username.lower()
        try:
            result = await self.db.execute(
                select(User.email, User.username).where(
                    or_(
                        User.email == email_key,
                        func.lower(User.username) == username_key,
                    )
                )
            )
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to check existing users") from e

        details = {}
        for existing_email, existing_username in result.all():
            if existing_email == email_key:
                details["email"] = EMAIL_TAKEN
            if existing_username.lower() == username_key:
                details["username"] = USERNAME_TAKEN
        return details

    async def create(self, email: str, username: str, password_hash: str) -> User:
        """
        Insert a user and return it with server defaults loaded.

        Raises:
            ConflictError: a concurrent registration won the unique constraint
            PersistenceError: any other store failure
        """
        user = User(
            email=normalize_email(email),
            username=username,
            password_hash=password_hash,
        )
        try:
            self.db.add(user)
            await self.db.flush()
            await self.db.refresh(user)
        except IntegrityError as e:
            await self.db.rollback()
            # Lost a race with a concurrent registration; report which field
            details = await self.find_conflicts(email, username)
            raise ConflictError(details=details or None) from e
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to create user") from e
        return user

    async def record_login(self, user: User) -> None:
        user.last_login = datetime.now(timezone.utc)
        try:
            await self.db.flush()
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to update last login") from e
