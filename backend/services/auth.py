"""Authentication service: registration, login, refresh, logout and bearer auth.

Flows own their transaction: ledger and user-store writes are flushed by the
helpers and committed here once the whole flow has succeeded. The audit entry
follows in its own best-effort transaction after the commit.
"""

import logging
from typing import Optional

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config import Settings, get_settings
from middleware.rate_limit import get_client_ip
from models.security_audit import SecurityAuditEntry
from models.user import User
from services.audit import SecurityAuditLog
from services.errors import (
    AccountDeactivatedError,
    ConflictError,
    InternalError,
    InvalidCredentialsError,
    InvalidTokenError,
    InvalidUserError,
    PersistenceError,
    TokenExpiredError,
    UnauthorizedError,
)
from services.ledger import RefreshTokenLedger
from services.passwords import PasswordHasher
from services.tokens import TokenCodec, TokenKind, TokenPair, hash_token
from services.users import UserRepository
from services.validation import (
    require_refresh_token,
    validate_login,
    validate_registration,
)

logger = logging.getLogger(__name__)


def user_profile(user: User, include_created_at: bool = True) -> dict:
    """Public view of a user. Never includes the password hash."""
    profile = {
        "id": user.id,
        "email": user.email,
        "username": user.username,
        "currency_balance": user.currency_balance,
    }
    if include_created_at:
        profile["created_at"] = user.created_at
    return profile


def get_client_info(request: Request) -> tuple[str, str]:
    """Extract client IP and User-Agent from request."""
    ip_address = get_client_ip(request)
    user_agent = request.headers.get("User-Agent", "unknown")
    return ip_address, user_agent


class AuthService:
    """Composes the credential store, ledger, codec, hasher and audit log."""

    def __init__(
        self,
        db: AsyncSession,
        settings: Optional[Settings] = None,
        hasher: Optional[PasswordHasher] = None,
        codec: Optional[TokenCodec] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.hasher = hasher or PasswordHasher(rounds=self.settings.BCRYPT_ROUNDS)
        self.codec = codec or TokenCodec.from_settings(self.settings)
        self.users = UserRepository(db)
        self.ledger = RefreshTokenLedger(db)
        self.audit = SecurityAuditLog(db)

    @property
    def expires_in(self) -> int:
        return int(self.codec.access_ttl.total_seconds())

    def _token_body(self, pair: TokenPair) -> dict:
        return {
            "access_token": pair.access_token,
            "refresh_token": pair.refresh_token,
            "expires_in": self.expires_in,
        }

    async def _fail(self, message: str, exc: Exception) -> InternalError:
        """Log a persistence failure, roll back and build the safe client error."""
        logger.error("%s: %s", message, exc, exc_info=exc)
        try:
            await self.db.rollback()
        except SQLAlchemyError:
            logger.exception("Rollback failed after: %s", message)
        return InternalError(message)

    async def _issue_session(
        self,
        user_id: int,
        ip_address: Optional[str],
        user_agent: Optional[str],
    ) -> TokenPair:
        """Issue a token pair and record the refresh half in the ledger."""
        pair = self.codec.issue_pair(user_id)
        await self.ledger.store(
            user_id,
            hash_token(pair.refresh_token),
            pair.refresh_token_expires_at,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return pair

    async def register(
        self,
        email: Optional[str],
        username: Optional[str],
        password: Optional[str],
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> dict:
        """
        Create an account and open its first session.

        Returns:
            ``{"user": profile, "tokens": {access_token, refresh_token, expires_in}}``

        Raises:
            ValidationError, ConflictError, InternalError
        """
        validate_registration(email, username, password)

        try:
            conflicts = await self.users.find_conflicts(email, username)
            if conflicts:
                logger.info("Registration rejected: %s already in use", ", ".join(conflicts))
                raise ConflictError(details=conflicts)

            password_hash = await self.hasher.hash_async(password)
            user = await self.users.create(email, username, password_hash)
            pair = await self._issue_session(user.id, ip_address, user_agent)
            await self.db.commit()
        except (PersistenceError, SQLAlchemyError) as e:
            raise await self._fail("Registration failed", e) from e

        profile = user_profile(user)
        logger.info("User registered: id=%s", user.id)

        await self.audit.log(
            SecurityAuditEntry.EVENT_REGISTRATION,
            user_id=profile["id"],
            ip_address=ip_address,
            user_agent=user_agent,
            metadata={"email": profile["email"], "username": profile["username"]},
        )
        return {"user": profile, "tokens": self._token_body(pair)}

    async def login(
        self,
        email: Optional[str],
        password: Optional[str],
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> dict:
        """
        Authenticate with email and password.

        Unknown email and wrong password raise the same InvalidCredentialsError
        so responses do not reveal which accounts exist.
        """
        validate_login(email, password)

        try:
            user = await self.users.get_by_email(email)
            if user is None:
                logger.warning("Failed login attempt from %s", ip_address)
                raise InvalidCredentialsError()

            if not user.is_active:
                logger.warning("Login attempt on deactivated account id=%s", user.id)
                raise AccountDeactivatedError()

            if not await self.hasher.verify_async(password, user.password_hash):
                logger.warning("Failed login attempt from %s", ip_address)
                raise InvalidCredentialsError()

            pair = await self._issue_session(user.id, ip_address, user_agent)
            await self.users.record_login(user)
            await self.db.commit()
        except (PersistenceError, SQLAlchemyError) as e:
            raise await self._fail("Login failed", e) from e

        profile = user_profile(user, include_created_at=False)
        logger.info("User logged in: id=%s", user.id)

        await self.audit.log(
            SecurityAuditEntry.EVENT_LOGIN,
            user_id=profile["id"],
            ip_address=ip_address,
            user_agent=user_agent,
            metadata={"email": profile["email"]},
        )
        return {"user": profile, "tokens": self._token_body(pair)}

    async def refresh(self, refresh_token: Optional[str]) -> dict:
        """
        Mint a new access token from a live refresh token.

        The refresh token itself is not rotated; it stays valid until it
        expires or is revoked.
        """
        refresh_token = require_refresh_token(refresh_token)

        try:
            user_id = self.codec.verify_subject(refresh_token, TokenKind.REFRESH)
        except (InvalidTokenError, TokenExpiredError):
            raise InvalidTokenError("Invalid or expired refresh token")

        token_hash = hash_token(refresh_token)
        try:
            if await self.ledger.is_valid(token_hash) is None:
                logger.warning("Revoked or unknown refresh token presented for user %s", user_id)
                raise InvalidTokenError("Refresh token is invalid or expired")

            user = await self.users.get_by_id(user_id)
            if user is None or not user.is_active:
                logger.warning(
                    "Refresh for missing or inactive user %s; revoking token", user_id
                )
                await self.ledger.revoke(token_hash)
                await self.db.commit()
                raise InvalidUserError()
        except (PersistenceError, SQLAlchemyError) as e:
            raise await self._fail("Token refresh failed", e) from e

        access = self.codec.issue(user_id, TokenKind.ACCESS)
        return {"access_token": access.token, "expires_in": self.expires_in}

    async def logout(
        self,
        user_id: int,
        refresh_token: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> dict:
        """Revoke one refresh token if given. Idempotent."""
        if refresh_token:
            try:
                await self.ledger.revoke(hash_token(refresh_token))
                await self.db.commit()
            except (PersistenceError, SQLAlchemyError) as e:
                raise await self._fail("Logout failed", e) from e

        await self.audit.log(
            SecurityAuditEntry.EVENT_LOGOUT,
            user_id=user_id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return {"message": "Logged out successfully"}

    async def logout_all(
        self,
        user_id: int,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> dict:
        """Revoke every refresh token of the user."""
        try:
            revoked = await self.ledger.revoke_all(user_id)
            await self.db.commit()
        except (PersistenceError, SQLAlchemyError) as e:
            raise await self._fail("Logout failed", e) from e

        logger.info("Revoked %d sessions for user %s", revoked, user_id)
        await self.audit.log(
            SecurityAuditEntry.EVENT_LOGOUT_ALL,
            user_id=user_id,
            ip_address=ip_address,
            user_agent=user_agent,
            metadata={"sessions_revoked": revoked},
        )
        return {"message": "Logged out from all devices successfully"}

    async def authenticate(self, token: Optional[str]) -> User:
        """
        Resolve a bearer access token to an active user.

        Raises:
            UnauthorizedError: no token, or the user is missing or deactivated
            TokenExpiredError: the token was valid but has expired
            InvalidTokenError: any other verification failure
        """
        if not token:
            raise UnauthorizedError()

        user_id = self.codec.verify_subject(token, TokenKind.ACCESS)

        try:
            user = await self.users.get_by_id(user_id)
        except (PersistenceError, SQLAlchemyError) as e:
            raise await self._fail("Authentication failed", e) from e

        if user is None:
            raise UnauthorizedError("User not found")
        if not user.is_active:
            raise UnauthorizedError("Account is deactivated")
        return user
