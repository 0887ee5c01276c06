"""
CardSync Pro Backend — Service Container
=========================================

What:  Builds every client and service the API uses, once per process.
Why:   No module-level singletons: the entry point owns construction and
       lifetime, and tests build a container around their own database,
       storage root, and stubbed providers.
How:   `build_services(settings)` wires the services together explicitly;
       `create_app(services)` stores the result on app.state, and route
       dependencies read it from the request.
"""

import logging
from dataclasses import dataclass

from cardsync.config import Settings
from cardsync.database import Database
from cardsync.services.auth_service import AuthService
from cardsync.services.billing_service import BillingService, build_stripe_client
from cardsync.services.contact_service import ContactService
from cardsync.services.export_service import ExportService
from cardsync.services.gemini_service import GeminiService
from cardsync.services.llm_base import ContactExtractor
from cardsync.services.profile_service import ProfileService
from cardsync.services.storage_service import StorageService

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    database: Database
    storage: StorageService
    extractor: ContactExtractor
    auth: AuthService
    profiles: ProfileService
    contacts: ContactService
    billing: BillingService
    exports: ExportService

    async def close(self) -> None:
        await self.database.dispose()


def build_services(settings: Settings) -> ServiceContainer:
    database = Database.from_settings(settings)
    storage = StorageService(settings)
    profiles = ProfileService(database)
    container = ServiceContainer(
        settings=settings,
        database=database,
        storage=storage,
        extractor=GeminiService(settings),
        auth=AuthService(settings),
        profiles=profiles,
        contacts=ContactService(database, storage),
        billing=BillingService(
            settings,
            build_stripe_client(settings) if settings.stripe_secret_key else None,
            profiles,
        ),
        exports=ExportService(),
    )
    logger.info("Services built (database=%s)", database.engine.url.render_as_string(hide_password=True))
    return container
