"""
CardSync Pro Backend — Profile Route
=====================================

GET /api/profile: the caller's plan and quota. The profile is created on
first access, so this is also the first call the dashboard makes.
"""

from fastapi import APIRouter, Depends, Response

from cardsync.dependencies import get_profile
from cardsync.models.user_profile import UserProfile
from cardsync.schemas.common import ErrorResponse
from cardsync.schemas.profile import ProfileResponse

router = APIRouter(prefix="/api", tags=["Profile"])


@router.get(
    "/profile",
    response_model=ProfileResponse,
    responses={401: {"description": "Not signed in", "model": ErrorResponse}},
    summary="Get (or create) the caller's profile",
)
async def read_profile(
    response: Response,
    profile: UserProfile = Depends(get_profile),
) -> ProfileResponse:
    # Quota changes with every save; never cache
    response.headers["Cache-Control"] = "no-store"
    return ProfileResponse.from_profile(profile)
