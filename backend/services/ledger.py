"""Server-side ledger of issued refresh tokens.

A refresh token is honoured only while its ledger row exists, is not revoked
and has not expired. This is what makes revocation work before a token's
signature expires. Rows are keyed by the SHA-256 hash of the token; the raw
value is never stored.

Methods flush but never commit: the calling flow owns the transaction.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from models.refresh_token import RefreshToken
from services.errors import PersistenceError

logger = logging.getLogger(__name__)


class RefreshTokenLedger:
    """Lifecycle of refresh-token records."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def store(
        self,
        user_id: int,
        token_hash: str,
        expires_at: datetime,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> int:
        """
        Insert a new active record and return its id.

        Raises:
            PersistenceError: the row could not be written. Callers must not
                hand out the token in that case, since it could never be revoked.
        """
        record = RefreshToken(
            user_id=user_id,
            token_hash=token_hash,
            expires_at=expires_at,
            ip_address=ip_address[:45] if ip_address else None,
            user_agent=user_agent[:500] if user_agent else None,
        )
        try:
            self.db.add(record)
            await self.db.flush()
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to store refresh token") from e
        return record.id

    async def is_valid(self, token_hash: str) -> Optional[int]:
        """Return the owning user id if a live record exists for the hash."""
        try:
            result = await self.db.execute(
                select(RefreshToken.user_id).where(
                    and_(
                        RefreshToken.token_hash == token_hash,
                        RefreshToken.is_revoked == False,  # noqa: E712
                        RefreshToken.expires_at > datetime.now(timezone.utc),
                    )
                )
            )
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to validate refresh token") from e
        return result.scalar_one_or_none()

    async def revoke(self, token_hash: str) -> int:
        """
        Mark the record for this hash revoked.

        Idempotent: an unknown or already revoked hash is not an error and a
        revoked row is never un-revoked. Returns the number of rows touched.
        """
        try:
            result = await self.db.execute(
                update(RefreshToken)
                .where(RefreshToken.token_hash == token_hash)
                .values(is_revoked=True)
            )
            await self.db.flush()
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to revoke refresh token") from e
        return result.rowcount

    async def revoke_all(self, user_id: int) -> int:
        """Revoke every live record of a user. Returns the number revoked."""
        try:
            result = await self.db.execute(
                update(RefreshToken)
                .where(
                    and_(
                        RefreshToken.user_id == user_id,
                        RefreshToken.is_revoked == False,  # noqa: E712
                    )
                )
                .values(is_revoked=True)
            )
            await self.db.flush()
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to revoke user tokens") from e
        return result.rowcount

    async def purge_inactive(self) -> int:
        """Delete records that are expired or revoked. Returns rows deleted."""
        try:
            result = await self.db.execute(
                delete(RefreshToken).where(
                    or_(
                        RefreshToken.expires_at < datetime.now(timezone.utc),
                        RefreshToken.is_revoked == True,  # noqa: E712
                    )
                )
            )
            await self.db.flush()
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to purge refresh tokens") from e
        return result.rowcount
