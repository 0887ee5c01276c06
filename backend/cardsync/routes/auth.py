"""
CardSync Pro Backend — Session Routes
======================================

What:  Exchanges a Firebase ID token for our session cookie, and clears it.
Who:   The login page right after client-side sign-in; the sign-out button.

Cookie: httpOnly, SameSite=Lax, five days, Secure when SESSION_COOKIE_SECURE
is on (production behind HTTPS).
"""

import logging

from fastapi import APIRouter, Depends, Response
from fastapi.concurrency import run_in_threadpool

from cardsync.container import ServiceContainer
from cardsync.dependencies import get_services
from cardsync.schemas.auth import SessionLoginRequest, SessionLoginResponse
from cardsync.schemas.common import ErrorResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Auth"])


@router.post(
    "/session",
    response_model=SessionLoginResponse,
    responses={401: {"description": "ID token rejected", "model": ErrorResponse}},
    summary="Start a session from a Firebase ID token",
)
async def create_session(
    body: SessionLoginRequest,
    response: Response,
    services: ServiceContainer = Depends(get_services),
) -> SessionLoginResponse:
    token, max_age = await run_in_threadpool(services.auth.create_session, body.id_token)
    settings = services.settings
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=max_age,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
        path="/",
    )
    return SessionLoginResponse(expires_in=max_age)


@router.post("/logout", response_model=SessionLoginResponse, summary="End the session")
async def logout(
    response: Response,
    services: ServiceContainer = Depends(get_services),
) -> SessionLoginResponse:
    response.delete_cookie(key=services.settings.session_cookie_name, path="/")
    return SessionLoginResponse(expires_in=0)
