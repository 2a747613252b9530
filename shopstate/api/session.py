"""
Session endpoints: sign in, register, sign out and current session.

Sign-in endpoints are rate limited to slow down credential stuffing.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from shopstate.api.deps import get_context
from shopstate.api.schemas import LoginRequest, RegisterRequest, SessionResponse
from shopstate.clients.auth_api import AuthAPIError
from shopstate.core.config import settings
from shopstate.core.limiter import limiter
from shopstate.state.context import StorefrontContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/session", tags=["Session"])


def _auth_error(e: AuthAPIError) -> HTTPException:
    """Map an auth service failure onto the response for the browser.

    Client errors pass through with the service's message; anything else
    means the service is unavailable to us.
    """
    if e.status_code is not None and 400 <= e.status_code < 500:
        return HTTPException(status_code=e.status_code, detail=e.message)
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Authentication service unavailable")


@router.post("/login", response_model=SessionResponse)
@limiter.limit(settings.rate_limit_auth_endpoints)
def login(request: Request, body: LoginRequest, ctx: StorefrontContext = Depends(get_context)):
    """
    Sign in through the auth service and start a persisted session.

    Rate limited per client address.
    """
    try:
        ctx.login({"email": body.email, "password": body.password}, remember=body.remember)
    except AuthAPIError as e:
        raise _auth_error(e) from e
    return SessionResponse.from_context(ctx)


@router.post("/register", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.rate_limit_auth_endpoints)
def register(request: Request, body: RegisterRequest, ctx: StorefrontContext = Depends(get_context)):
    try:
        ctx.register(body.model_dump())
    except AuthAPIError as e:
        raise _auth_error(e) from e
    return SessionResponse.from_context(ctx)


@router.post("/logout", response_model=SessionResponse)
@limiter.limit(settings.rate_limit_write_endpoints)
def logout(request: Request, ctx: StorefrontContext = Depends(get_context)):
    ctx.logout()
    return SessionResponse.from_context(ctx)


@router.get("", response_model=SessionResponse)
@limiter.limit(settings.rate_limit_read_endpoints)
def current_session(request: Request, ctx: StorefrontContext = Depends(get_context)):
    """Current session of this browser profile; also records activity."""
    if ctx.is_authenticated:
        ctx.browsing.update_activity()
    return SessionResponse.from_context(ctx)
