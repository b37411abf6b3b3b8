from .refresh_token import RefreshToken
from .security_audit import SecurityAuditEntry
from .user import User

__all__ = [
    "RefreshToken",
    "SecurityAuditEntry",
    "User",
]
