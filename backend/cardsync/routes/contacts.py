"""
CardSync Pro Backend — Contact Route Handlers
==============================================

What:  Contact CRUD, export, and attachment download for the signed-in user.
How:   Create and update are multipart so attachments travel with the
       fields: the fields are a JSON-encoded form field (`contact` /
       `changes`), the files are `photo` and `voice_note`.

Caching Strategy:
    Contact data is private and changes with every edit: `private, no-cache`.
    Attachments are immutable per key: `private, max-age=86400`.
"""

import logging
from datetime import datetime, timezone
from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile
from fastapi.responses import FileResponse

from cardsync.container import ServiceContainer
from cardsync.dependencies import get_identity, get_profile, get_services
from cardsync.exceptions import NotFoundError
from cardsync.models.user_profile import UserProfile
from cardsync.routes import parse_json_field, read_attachment
from cardsync.schemas.common import ErrorResponse
from cardsync.schemas.contact import (
    ContactCreate,
    ContactListResponse,
    ContactResponse,
    ContactUpdate,
)
from cardsync.services.auth_service import Identity

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Contacts"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@router.get(
    "/contacts",
    response_model=ContactListResponse,
    summary="List the caller's contacts, newest first",
)
async def list_contacts(
    response: Response,
    q: Optional[str] = Query(default=None, max_length=200, description="Filter by name, company or title"),
    identity: Identity = Depends(get_identity),
    services: ServiceContainer = Depends(get_services),
) -> ContactListResponse:
    contacts = await services.contacts.list_contacts(identity, search=q)
    response.headers["X-Total-Count"] = str(len(contacts))
    response.headers["Cache-Control"] = "private, no-cache"
    return ContactListResponse(
        contacts=[ContactResponse.model_validate(c) for c in contacts],
        total_count=len(contacts),
    )


@router.post(
    "/contacts",
    status_code=201,
    response_model=ContactResponse,
    responses={
        400: {"description": "Invalid fields or attachment", "model": ErrorResponse},
        403: {"description": "Plan limit reached", "model": ErrorResponse},
    },
    summary="Save a contact (counts against the plan limit)",
    description=(
        "Multipart form: `contact` is a JSON object with the contact fields; "
        "`photo` and `voice_note` are optional files. Attachment storage can fail "
        "without failing the save; the attachment URL is then empty."
    ),
)
async def create_contact(
    contact: str = Form(..., description="JSON-encoded contact fields"),
    photo: Optional[UploadFile] = File(default=None),
    voice_note: Optional[UploadFile] = File(default=None),
    profile: UserProfile = Depends(get_profile),
    identity: Identity = Depends(get_identity),
    services: ServiceContainer = Depends(get_services),
) -> ContactResponse:
    info = parse_json_field(ContactCreate, contact, "contact")
    saved = await services.contacts.create_contact(
        identity,
        info,
        photo=await read_attachment(photo),
        voice_note=await read_attachment(voice_note),
    )
    return ContactResponse.model_validate(saved)


@router.get(
    "/contacts/export",
    summary="Download all contacts as CSV or XLSX",
    responses={200: {"description": "File download"}},
)
async def export_contacts(
    format: Literal["csv", "xlsx"] = Query(default="csv"),
    identity: Identity = Depends(get_identity),
    services: ServiceContainer = Depends(get_services),
) -> Response:
    contacts = await services.contacts.list_contacts(identity)
    stamp = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    if format == "xlsx":
        body = services.exports.to_xlsx(contacts)
        media_type = XLSX_MEDIA_TYPE
    else:
        body = services.exports.to_csv(contacts)
        media_type = "text/csv; charset=utf-8"
    logger.info("Exported %d contacts as %s for %s", len(contacts), format, identity.subject_id)
    return Response(
        content=body,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="contacts-{stamp}.{format}"'},
    )


@router.get(
    "/contacts/{contact_id}",
    response_model=ContactResponse,
    responses={404: {"description": "Contact not found", "model": ErrorResponse}},
    summary="Get one contact",
)
async def get_contact(
    contact_id: UUID,
    response: Response,
    identity: Identity = Depends(get_identity),
    services: ServiceContainer = Depends(get_services),
) -> ContactResponse:
    contact = await services.contacts.get_contact(identity, contact_id)
    response.headers["Cache-Control"] = "private, no-cache"
    return ContactResponse.model_validate(contact)


@router.patch(
    "/contacts/{contact_id}",
    response_model=ContactResponse,
    responses={404: {"description": "Contact not found", "model": ErrorResponse}},
    summary="Edit a contact",
    description=(
        "Multipart form: `changes` is a JSON object with only the fields to change "
        "(null clears a field); `voice_note` optionally replaces the voice note."
    ),
)
async def update_contact(
    contact_id: UUID,
    changes: str = Form(default="{}", description="JSON-encoded field changes"),
    voice_note: Optional[UploadFile] = File(default=None),
    identity: Identity = Depends(get_identity),
    services: ServiceContainer = Depends(get_services),
) -> ContactResponse:
    update = parse_json_field(ContactUpdate, changes, "changes")
    contact = await services.contacts.update_contact(
        identity,
        contact_id,
        update,
        voice_note=await read_attachment(voice_note),
    )
    return ContactResponse.model_validate(contact)


@router.delete(
    "/contacts/{contact_id}",
    status_code=204,
    responses={404: {"description": "Contact not found", "model": ErrorResponse}},
    summary="Delete a contact (frees one unit of quota)",
)
async def delete_contact(
    contact_id: UUID,
    identity: Identity = Depends(get_identity),
    services: ServiceContainer = Depends(get_services),
) -> Response:
    await services.contacts.delete_contact(identity, contact_id)
    return Response(status_code=204)


@router.get(
    "/files/{key:path}",
    summary="Download a stored attachment",
    responses={404: {"description": "File not found"}},
)
async def serve_file(
    key: str,
    identity: Identity = Depends(get_identity),
    services: ServiceContainer = Depends(get_services),
) -> FileResponse:
    """
    Attachments are private: the owner segment of the key must be the caller.
    Anything else is reported as not found.
    """
    storage = services.storage
    path = storage.resolve_path(key)
    if storage.owner_of(key) != identity.subject_id or not path.is_file():
        raise NotFoundError(resource="file", resource_id=key)
    return FileResponse(path=str(path), headers={"Cache-Control": "private, max-age=86400"})
