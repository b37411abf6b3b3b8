"""JWT codec for access and refresh tokens.

Access and refresh tokens live in separate signing contexts: each kind has
its own secret and lifetime, and carries a ``type`` claim that verification
checks, so an access token can never be replayed as a refresh token.
"""

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from jose import ExpiredSignatureError, JWTError, jwt

from config import Settings
from services.errors import InvalidTokenError, TokenExpiredError

logger = logging.getLogger(__name__)


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


@dataclass
class IssuedToken:
    """A freshly signed token with its id and expiry."""
    token: str
    jti: str
    expires_at: datetime


@dataclass
class TokenPair:
    """Represents a pair of access and refresh tokens."""
    access_token: str
    refresh_token: str
    access_token_expires_at: datetime
    refresh_token_expires_at: datetime


def hash_token(token: str) -> str:
    """
    SHA-256 of a raw token, used as the ledger lookup key.

    A fast digest is enough here: tokens are high-entropy signed strings,
    not user-chosen passwords, so no salt or work factor is needed.
    """
    return hashlib.sha256(token.encode()).hexdigest()


class TokenCodec:
    """Signs and verifies bearer tokens."""

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        algorithm: str = "HS256",
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=7),
    ):
        if not access_secret or not refresh_secret:
            raise ValueError("Both access and refresh signing secrets are required")
        if not algorithm.startswith("HS"):
            raise ValueError(f"Unsupported signing algorithm: {algorithm}")
        self._secrets = {
            TokenKind.ACCESS: access_secret,
            TokenKind.REFRESH: refresh_secret,
        }
        self._ttls = {
            TokenKind.ACCESS: access_ttl,
            TokenKind.REFRESH: refresh_ttl,
        }
        self.algorithm = algorithm

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenCodec":
        return cls(
            access_secret=settings.JWT_ACCESS_SECRET,
            refresh_secret=settings.JWT_REFRESH_SECRET,
            algorithm=settings.JWT_ALGORITHM,
            access_ttl=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
            refresh_ttl=timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
        )

    @property
    def access_ttl(self) -> timedelta:
        return self._ttls[TokenKind.ACCESS]

    @property
    def refresh_ttl(self) -> timedelta:
        return self._ttls[TokenKind.REFRESH]

    def issue(
        self,
        user_id: int,
        kind: TokenKind,
        expires_delta: Optional[timedelta] = None,
    ) -> IssuedToken:
        now = datetime.now(timezone.utc)
        expire = now + (expires_delta if expires_delta is not None else self._ttls[kind])
        jti = str(uuid4())
        to_encode = {
            "sub": str(user_id),
            "type": kind.value,
            "jti": jti,
            "iat": now,
            "exp": expire,
        }
        encoded_jwt = jwt.encode(to_encode, self._secrets[kind], algorithm=self.algorithm)
        return IssuedToken(token=encoded_jwt, jti=jti, expires_at=expire)

    def issue_pair(self, user_id: int) -> TokenPair:
        access = self.issue(user_id, TokenKind.ACCESS)
        refresh = self.issue(user_id, TokenKind.REFRESH)
        return TokenPair(
            access_token=access.token,
            refresh_token=refresh.token,
            access_token_expires_at=access.expires_at,
            refresh_token_expires_at=refresh.expires_at,
        )

    def verify(self, token: str, kind: TokenKind) -> dict:
        """
        Verify signature, expiry and kind; return the claims.

        Raises:
            TokenExpiredError: signature valid but ``exp`` has passed
            InvalidTokenError: anything else (bad signature, malformed token,
                wrong ``type`` claim, missing or non-numeric subject)
        """
        if not token:
            raise InvalidTokenError("Invalid token")

        try:
            payload = jwt.decode(token, self._secrets[kind], algorithms=[self.algorithm])
        except ExpiredSignatureError:
            raise TokenExpiredError(f"{kind.value.capitalize()} token has expired")
        except JWTError:
            raise InvalidTokenError(f"Invalid {kind.value} token")

        if payload.get("type") != kind.value:
            logger.warning(
                "Token with type %r presented where %r was expected",
                payload.get("type"),
                kind.value,
            )
            raise InvalidTokenError(f"Invalid {kind.value} token")

        try:
            int(payload.get("sub"))
        except (TypeError, ValueError):
            raise InvalidTokenError(f"Invalid {kind.value} token")

        return payload

    def verify_subject(self, token: str, kind: TokenKind) -> int:
        """Verify a token and return its user id."""
        return int(self.verify(token, kind)["sub"])
