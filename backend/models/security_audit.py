"""Security audit model for successful security-relevant events."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from db.database import Base


class SecurityAuditEntry(Base):
    """
    Append-only record of a security event (registration, login, logout).

    user_id is nullable so entries survive deletion of the user. Rows older
    than AUDIT_RETENTION_DAYS are purged by the maintenance task.
    """

    __tablename__ = "security_audit"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    event_type = Column(String(50), nullable=False, index=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(500), nullable=True)
    # "metadata" is reserved on declarative classes, the column keeps its name
    metadata_json = Column("metadata", Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    user = relationship("User", back_populates="security_events")

    # Event type constants
    EVENT_REGISTRATION = "registration"
    EVENT_LOGIN = "login"
    EVENT_LOGOUT = "logout"
    EVENT_LOGOUT_ALL = "logout_all"

    def __repr__(self):
        return f"<SecurityAuditEntry(id={self.id}, user_id={self.user_id}, event_type='{self.event_type}')>"
