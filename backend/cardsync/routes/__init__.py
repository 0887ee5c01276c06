"""
CardSync Pro Backend — API Routes Package
==========================================

Route Inventory:
    - auth.py:      POST /api/auth/session, POST /api/auth/logout
    - profile.py:   GET  /api/profile
    - extract.py:   POST /api/extract, POST /api/extract/text
    - contacts.py:  /api/contacts (list, create, export, detail, update, delete)
                    GET /api/files/{key}
    - billing.py:   POST /api/billing/checkout, POST /api/billing/confirm,
                    POST /api/webhooks/stripe
    - health.py:    GET  /health

Routes are THIN: they pull data out of the request, call one service with
the verified identity, and shape the response. Errors are raised as
CardSyncError subclasses and rendered by the handlers in main.py.
"""

from typing import Optional, Type, TypeVar

import pydantic
from fastapi import UploadFile

from cardsync.exceptions import ValidationError
from cardsync.services.storage_service import Attachment

ModelT = TypeVar("ModelT", bound=pydantic.BaseModel)


def parse_json_field(model: Type[ModelT], raw: Optional[str], field: str) -> ModelT:
    """Validate a JSON-encoded multipart form field into a pydantic model."""
    try:
        return model.model_validate_json(raw or "{}")
    except pydantic.ValidationError as e:
        errors = [
            {"loc": ".".join(str(part) for part in err["loc"]), "msg": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationError(
            message=f"The '{field}' form field is not valid.",
            field=field,
            context={"errors": errors},
        ) from e


async def read_attachment(upload: Optional[UploadFile]) -> Optional[Attachment]:
    """Read an optional multipart file; an empty part counts as absent."""
    if upload is None or not upload.filename:
        return None
    try:
        content = await upload.read()
    finally:
        await upload.close()
    return Attachment(filename=upload.filename, content=content)
