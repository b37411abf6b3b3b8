"""Security audit trail.

Writes are best-effort: a failed audit insert is logged and swallowed so it
never fails the user-facing request. Each entry is written in its own short
transaction after the flow has committed.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from models.security_audit import SecurityAuditEntry
from services.errors import PersistenceError

logger = logging.getLogger(__name__)


class SecurityAuditLog:
    """Service for logging security events."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        event_type: str,
        user_id: Optional[int] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> Optional[SecurityAuditEntry]:
        """Record an event. Returns None if the write failed."""
        entry = SecurityAuditEntry(
            user_id=user_id,
            event_type=event_type,
            ip_address=ip_address[:45] if ip_address else None,
            user_agent=user_agent[:500] if user_agent else None,
            metadata_json=json.dumps(metadata) if metadata else None,
        )
        try:
            self.db.add(entry)
            await self.db.commit()
        except SQLAlchemyError:
            logger.exception(
                "Failed to log security audit event %s for user %s", event_type, user_id
            )
            await self.db.rollback()
            return None
        return entry

    async def purge_older_than(self, days: int) -> int:
        """Delete entries older than ``days``. Returns rows deleted."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        try:
            result = await self.db.execute(
                delete(SecurityAuditEntry).where(SecurityAuditEntry.created_at < cutoff)
            )
            await self.db.flush()
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to purge audit log") from e
        return result.rowcount
