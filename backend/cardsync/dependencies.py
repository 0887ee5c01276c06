"""
CardSync Pro Backend — Route Dependencies
==========================================

What:  FastAPI dependencies that hand routes the container, the verified
       identity, and the caller's profile.

Identity sources, in order:
    1. `session` cookie issued by POST /api/auth/session
    2. `Authorization: Bearer <Firebase ID token>` (API clients)
No credential, or one that fails verification, is a 401.
"""

from typing import Optional

from fastapi import Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from cardsync.container import ServiceContainer
from cardsync.exceptions import AuthenticationError
from cardsync.models.user_profile import UserProfile
from cardsync.services.auth_service import Identity

_bearer = HTTPBearer(auto_error=False)


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


async def get_identity(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
    services: ServiceContainer = Depends(get_services),
) -> Identity:
    session_token = request.cookies.get(services.settings.session_cookie_name)
    if session_token:
        return services.auth.verify_session(session_token)
    if credentials and credentials.credentials:
        # JWKS fetch is blocking network I/O on a cold cache
        return await run_in_threadpool(services.auth.verify_id_token, credentials.credentials)
    raise AuthenticationError(context={"reason": "no credential"})


async def get_profile(
    identity: Identity = Depends(get_identity),
    services: ServiceContainer = Depends(get_services),
) -> UserProfile:
    """The caller's profile, created on first access."""
    return await services.profiles.get_or_create_profile(identity)
