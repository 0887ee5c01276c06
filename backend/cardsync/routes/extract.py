"""
CardSync Pro Backend — Extraction Routes
=========================================

What:  Turns a card photo (Gemini) or card text (heuristic) into suggested
       contact fields.
Why:   Nothing is saved here. The user reviews the fields in the contact
       form and saves with POST /api/contacts, which is the quota-gated step.

Security Checks (this route):
    - Signed-in callers only (each call spends Gemini quota)
    - Image type/size: StorageService.validate_image
    - Rate limit: applied by middleware
"""

import logging

from fastapi import APIRouter, Depends, File, UploadFile

from cardsync.container import ServiceContainer
from cardsync.dependencies import get_identity, get_services
from cardsync.exceptions import ValidationError
from cardsync.routes import read_attachment
from cardsync.schemas.common import ErrorResponse
from cardsync.schemas.contact import ExtractionResponse, ExtractTextRequest
from cardsync.services.auth_service import Identity
from cardsync.services.extractor import extract_contact_fields

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/extract", tags=["Extract"])


@router.post(
    "",
    response_model=ExtractionResponse,
    responses={
        400: {"description": "Invalid image type or size", "model": ErrorResponse},
        503: {"description": "AI service unavailable", "model": ErrorResponse},
    },
    summary="Read contact fields from a business-card photo",
)
async def extract_from_image(
    image: UploadFile = File(..., description="Card photo (PNG, JPEG or WebP, max 10MB)"),
    identity: Identity = Depends(get_identity),
    services: ServiceContainer = Depends(get_services),
) -> ExtractionResponse:
    attachment = await read_attachment(image)
    if attachment is None:
        raise ValidationError(message="An image file is required.", field="image")

    validated = services.storage.validate_image(attachment)
    logger.info("Extraction requested by %s (%d bytes)", identity.subject_id, len(attachment.content))

    info = await services.extractor.extract_from_image(attachment.content, validated.mime_type)
    return ExtractionResponse(contact_info=info, source="gemini")


@router.post(
    "/text",
    response_model=ExtractionResponse,
    summary="Read contact fields from card text",
)
async def extract_from_text(
    body: ExtractTextRequest,
    identity: Identity = Depends(get_identity),
) -> ExtractionResponse:
    return ExtractionResponse(contact_info=extract_contact_fields(body.text), source="heuristic")
