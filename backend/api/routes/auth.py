"""Authentication routes: register, login, refresh, logout and profile."""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, status

from api.dependencies import client_info, get_auth_service, get_current_user
from config import get_settings
from models.user import User
from schemas.user import (
    CurrentUserResponse,
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    MessageResponse,
    RefreshRequest,
    RefreshResponse,
    RegisterRequest,
    RegisterResponse,
)
from services.audit import SecurityAuditLog
from services.auth import AuthService
from services.ledger import RefreshTokenLedger

settings = get_settings()
router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)


# Background task for periodic ledger and audit cleanup
_cleanup_task: Optional[asyncio.Task] = None


async def run_token_cleanup() -> tuple[int, int]:
    """
    Purge inactive refresh tokens and old audit entries once.

    Returns:
        Tuple of (refresh_tokens_deleted, audit_entries_deleted)
    """
    # Import here so tests that patch the session factory are honoured
    from db.database import AsyncSessionLocal

    async with AsyncSessionLocal() as db:
        tokens = await RefreshTokenLedger(db).purge_inactive()
        entries = await SecurityAuditLog(db).purge_older_than(settings.AUDIT_RETENTION_DAYS)
        await db.commit()
    return tokens, entries


async def _periodic_token_cleanup(interval: int):
    """Background task to periodically clean up the ledger and audit log."""
    while True:
        try:
            await asyncio.sleep(interval)
            tokens, entries = await run_token_cleanup()
            if tokens > 0 or entries > 0:
                logger.info(
                    "Token cleanup completed: %d inactive refresh tokens, "
                    "%d old audit entries removed",
                    tokens,
                    entries,
                )
        except asyncio.CancelledError:
            logger.info("Token cleanup task cancelled")
            break
        except Exception as e:
            logger.error("Error in token cleanup task: %s", e)
            # Continue running despite errors


def start_cleanup_task():
    """Start the periodic cleanup background task."""
    global _cleanup_task
    interval = settings.TOKEN_CLEANUP_INTERVAL_SECONDS
    if interval <= 0:
        logger.info("Token cleanup disabled")
        return
    if _cleanup_task is None or _cleanup_task.done():
        _cleanup_task = asyncio.create_task(_periodic_token_cleanup(interval))
        logger.debug("Started periodic token cleanup task")


def stop_cleanup_task():
    """Stop the periodic cleanup background task."""
    global _cleanup_task
    if _cleanup_task and not _cleanup_task.done():
        _cleanup_task.cancel()
        logger.debug("Stopped periodic token cleanup task")


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
async def register(
    body: RegisterRequest,
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
):
    """Create an account and return its first token pair."""
    ip_address, user_agent = client_info(request)
    return await auth_service.register(
        body.email,
        body.username,
        body.password,
        ip_address=ip_address,
        user_agent=user_agent,
    )


@router.post("/login", response_model=LoginResponse)
async def login(
    body: LoginRequest,
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
):
    ip_address, user_agent = client_info(request)
    return await auth_service.login(
        body.email,
        body.password,
        ip_address=ip_address,
        user_agent=user_agent,
    )


@router.post("/refresh", response_model=RefreshResponse)
async def refresh(
    body: RefreshRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    """Exchange a refresh token for a new access token. The refresh token is not rotated."""
    return await auth_service.refresh(body.refresh_token)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    body: Optional[LogoutRequest] = None,
    current_user: User = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Revoke the given refresh token. Succeeds even if it was unknown or already revoked."""
    ip_address, user_agent = client_info(request)
    return await auth_service.logout(
        current_user.id,
        body.refresh_token if body else None,
        ip_address=ip_address,
        user_agent=user_agent,
    )


@router.post("/logout-all", response_model=MessageResponse)
async def logout_all(
    request: Request,
    current_user: User = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Sign out of every device."""
    ip_address, user_agent = client_info(request)
    return await auth_service.logout_all(
        current_user.id,
        ip_address=ip_address,
        user_agent=user_agent,
    )


@router.get("/me", response_model=CurrentUserResponse)
async def get_me(current_user: User = Depends(get_current_user)):
    """Get current user info."""
    return current_user
