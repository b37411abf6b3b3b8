from db.database import Base
from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func


def normalize_email(email: str) -> str:
    """Case-fold an email address for storage and lookup."""
    return email.strip().lower()


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    # Stored lower-cased so uniqueness is case-insensitive at the store level
    email = Column(String(255), nullable=False, unique=True, index=True)
    # Stored as given; lookups compare lower(username)
    username = Column(String(30), nullable=False, unique=True, index=True)
    # SECURITY: bcrypt hash only, the plaintext password never reaches the database
    password_hash = Column(String(255), nullable=False)
    currency_balance = Column(Integer, nullable=False, default=0, server_default="0")
    is_active = Column(Boolean, nullable=False, default=True, server_default="1")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    last_login = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    refresh_tokens = relationship(
        "RefreshToken", back_populates="user", cascade="all, delete-orphan"
    )
    security_events = relationship(
        "SecurityAuditEntry", back_populates="user"
    )

    def __repr__(self):
        return f"<User(id={self.id}, username='{self.username}', active={self.is_active})>"
