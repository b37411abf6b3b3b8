from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from config import get_settings
from db.database import get_db
from models.user import User
from services.auth import AuthService, get_client_info

security = HTTPBearer(auto_error=False)


async def get_auth_service(db: AsyncSession = Depends(get_db)) -> AuthService:
    return AuthService(db, settings=get_settings())


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    auth_service: AuthService = Depends(get_auth_service),
) -> User:
    """Required auth: resolve the bearer access token or raise a 401 auth error.

    The loaded user is also attached to ``request.state.user``.
    """
    token = credentials.credentials.strip() if credentials else None
    user = await auth_service.authenticate(token)
    request.state.user = user
    return user


def client_info(request: Request) -> tuple[str, str]:
    """(ip_address, user_agent) of the caller."""
    return get_client_info(request)
