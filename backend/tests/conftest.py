"""
CardSync Pro Backend — Test Configuration (conftest.py)
========================================================

What:  Shared pytest fixtures for the entire test suite.
Why:   Provides reusable test infrastructure (real SQLite database, temp blob
       store, stubbed providers, API client).
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.

Fixture Hierarchy:
    Function-scoped (created fresh for each test):
    ├── test_settings: Settings pointing at tmp_path (SQLite file + storage)
    ├── database: Database with all tables created
    ├── storage: StorageService rooted in tmp_path
    ├── identity / other_identity: two verified callers
    ├── profiles / contact_service: services over the test database
    ├── set_quota: force a profile's plan and contact_count
    ├── stripe_client: MagicMock standing in for stripe.StripeClient
    ├── container: ServiceContainer with a stub extractor
    └── test_client / anon_client: HTTPX AsyncClient (signed in / anonymous)
"""

import base64
import hashlib
import hmac
import json
import os
import tempfile
import time
from typing import Optional
from unittest.mock import MagicMock

import jwt
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import update

# ══════════════════════════════════════════════════════════════════════════
# Environment Setup
# ══════════════════════════════════════════════════════════════════════════

# Override settings for testing BEFORE any cardsync imports
# Why: cardsync.main builds a default app at import time from the environment
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test.db"
os.environ["GEMINI_API_KEY"] = "test-key-not-real"
os.environ["STORAGE_ROOT"] = tempfile.mkdtemp(prefix="cardsync_test_")
os.environ["SESSION_SECRET"] = "test-session-secret"
os.environ["FIREBASE_PROJECT_ID"] = "cardsync-test"
os.environ["LOG_LEVEL"] = "WARNING"  # Reduce noise during tests

from cardsync.config import Settings  # noqa: E402
from cardsync.container import ServiceContainer  # noqa: E402
from cardsync.database import Database  # noqa: E402
from cardsync.models.user_profile import UserProfile  # noqa: E402
from cardsync.schemas.contact import ContactInfo  # noqa: E402
from cardsync.services.auth_service import AuthService, Identity  # noqa: E402
from cardsync.services.billing_service import BillingService  # noqa: E402
from cardsync.services.contact_service import ContactService  # noqa: E402
from cardsync.services.export_service import ExportService  # noqa: E402
from cardsync.services.llm_base import ContactExtractor  # noqa: E402
from cardsync.services.profile_service import ProfileService  # noqa: E402
from cardsync.services.storage_service import StorageService  # noqa: E402

SESSION_SECRET = "test-session-secret"
WEBHOOK_SECRET = "whsec_test_secret"

# 1x1 transparent PNG
PNG_BYTES = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
)


class StubExtractor(ContactExtractor):
    """ContactExtractor that answers without calling any provider."""

    def __init__(self, info: Optional[ContactInfo] = None, healthy: bool = True):
        self.info = info or ContactInfo(full_name="Jane Doe", email_address="jane@acme.com")
        self.healthy = healthy
        self.calls = []

    async def extract_from_image(self, image: bytes, mime_type: str) -> ContactInfo:
        self.calls.append((len(image), mime_type))
        return self.info

    async def health_check(self) -> bool:
        return self.healthy


# ══════════════════════════════════════════════════════════════════════════
# Function-Scoped Fixtures (created fresh for each test)
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def test_settings(tmp_path):
    """
    Settings isolated to this test.

    A file-backed SQLite database (not :memory:) so that concurrent
    transactions use separate connections, as they would on PostgreSQL.
    """
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'cardsync.db'}",
        storage_root=str(tmp_path / "storage"),
        public_base_url="http://testserver",
        gemini_api_key="test-key-not-real",
        firebase_project_id="cardsync-test",
        session_secret=SESSION_SECRET,
        stripe_webhook_secret=WEBHOOK_SECRET,
        stripe_price_pro="price_pro",
        stripe_price_business="price_business",
        retry_max_attempts=1,
        log_level="WARNING",
    )


@pytest_asyncio.fixture
async def database(test_settings):
    db = Database.from_settings(test_settings)
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
def storage(test_settings):
    return StorageService(test_settings)


@pytest.fixture
def identity():
    return Identity(subject_id="user-1", email="jane@example.com", email_verified=True)


@pytest.fixture
def other_identity():
    return Identity(subject_id="user-2", email="bob@example.com", email_verified=True)


@pytest.fixture
def profiles(database):
    return ProfileService(database)


@pytest.fixture
def contact_service(database, storage):
    return ContactService(database, storage)


@pytest_asyncio.fixture
async def profile(profiles, identity):
    """The signed-in caller's profile (free plan, no contacts)."""
    return await profiles.get_or_create_profile(identity)


@pytest.fixture
def set_quota(database):
    """
    Force a profile's counter (and optionally plan) directly in the database.

    Usage:
        await set_quota("user-1", 9)
        await set_quota("user-1", 50, plan="pro")
    """
    async def _set(user_id: str, contact_count: int, plan: Optional[str] = None) -> None:
        values = {"contact_count": contact_count}
        if plan:
            values["subscription_plan"] = plan
        async with database.transaction() as session:
            await session.execute(
                update(UserProfile).where(UserProfile.id == user_id).values(**values)
            )
    return _set


@pytest.fixture
def sample_image_bytes():
    return PNG_BYTES


@pytest.fixture
def stripe_client():
    """
    MagicMock in place of stripe.StripeClient.

    Tests set return values on the resource methods they exercise, e.g.
    stripe_client.checkout.sessions.create.return_value = {...}
    """
    return MagicMock()


@pytest.fixture
def billing_service(test_settings, stripe_client, profiles):
    return BillingService(test_settings, stripe_client, profiles)


@pytest.fixture
def extractor():
    return StubExtractor()


@pytest.fixture
def container(test_settings, database, storage, extractor, profiles, contact_service, billing_service):
    return ServiceContainer(
        settings=test_settings,
        database=database,
        storage=storage,
        extractor=extractor,
        auth=AuthService(test_settings, jwk_client=MagicMock()),
        profiles=profiles,
        contacts=contact_service,
        billing=billing_service,
        exports=ExportService(),
    )


def make_session_token(identity: Identity, secret: str = SESSION_SECRET, expires_in: int = 3600) -> str:
    now = int(time.time())
    return jwt.encode(
        {
            "iss": "cardsync",
            "sub": identity.subject_id,
            "email": identity.email,
            "email_verified": identity.email_verified,
            "iat": now,
            "exp": now + expires_in,
        },
        secret,
        algorithm="HS256",
    )


@pytest.fixture
def session_token(identity):
    return make_session_token(identity)


@pytest_asyncio.fixture
async def test_client(container, session_token):
    """
    Provides an async HTTP client signed in as `identity` via the session cookie.

    Usage:
        async def test_profile(test_client):
            response = await test_client.get("/api/profile")
            assert response.status_code == 200
    """
    from cardsync.main import create_app

    app = create_app(services=container)
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        cookies={container.settings.session_cookie_name: session_token},
    ) as client:
        yield client


@pytest_asyncio.fixture
async def anon_client(container):
    """Same app, no credentials."""
    from cardsync.main import create_app

    app = create_app(services=container)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


# ══════════════════════════════════════════════════════════════════════════
# Stripe webhook helpers
# ══════════════════════════════════════════════════════════════════════════

def stripe_event(event_type: str, obj: dict) -> dict:
    return {"id": "evt_test", "object": "event", "type": event_type, "data": {"object": obj}}


def stripe_subscription(price_id: str = "price_pro", customer: str = "cus_1", sub_id: str = "sub_1", status: str = "active"):
    return {
        "id": sub_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "items": {"object": "list", "data": [{"id": "si_1", "price": {"id": price_id}}]},
    }


def sign_webhook(event: dict, secret: str = WEBHOOK_SECRET):
    """
    Serialize an event and sign it the way Stripe does.

    Returns:
        (payload bytes, Stripe-Signature header value "t=<ts>,v1=<hmac>")
    """
    body = json.dumps(event)
    timestamp = int(time.time())
    signature = hmac.new(
        secret.encode("utf-8"), f"{timestamp}.{body}".encode("utf-8"), hashlib.sha256
    ).hexdigest()
    return body.encode("utf-8"), f"t={timestamp},v1={signature}"
