"""
CardSync Pro Backend — Application Package Initializer
=======================================================

What: Marks the `cardsync` directory as a Python package.
Why:  Enables module imports like `from cardsync.config import settings`.
Who:  Used implicitly by Python's import system and explicitly by Alembic, pytest, and uvicorn.

Architecture Note:
    The backend keeps a layered architecture:

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns, identity extraction
    ├─────────────────────────────────────┤
    │         Services (Business Logic)   │  ← Extraction, quota gate, billing
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │   Database / Blob Store / Providers │  ← Explicitly constructed clients
    └─────────────────────────────────────┘

    Every external client (database engine, blob store, Gemini, Stripe, JWKS)
    is constructed once by `cardsync.container.build_services()` and handed to
    the services that need it. Nothing reaches for a module-level client.
"""

__version__ = "1.0.0"
