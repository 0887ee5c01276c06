"""
CardSync Pro Backend — Abstract Contact Extractor Interface
============================================================

What:  Abstract base class for AI-powered business-card readers.
Why:   Routes depend on the interface, so the provider (Gemini today) can be
       swapped, and tests can pass a stub, without touching calling code.
How:   Concrete implementations inherit from ContactExtractor and implement
       extract_from_image() and health_check().
Who:   Called by the extract route; built by the service container.
"""

from abc import ABC, abstractmethod

from cardsync.schemas.contact import ContactInfo


class ContactExtractor(ABC):
    """
    Contract:
        - extract_from_image() accepts raw image bytes and returns ContactInfo
        - Undetected fields are None, never ""
        - Implementations handle their own retry logic and error translation
        - Provider-specific errors are wrapped in LLMServiceError
    """

    @abstractmethod
    async def extract_from_image(self, image: bytes, mime_type: str) -> ContactInfo:
        """
        Read the contact fields off a business-card photo.

        Args:
            image: Raw image bytes, already validated by StorageService.
            mime_type: Detected MIME type of the image (e.g. "image/jpeg").

        Returns:
            ContactInfo with whatever fields could be read. Nothing is saved;
            the user confirms the result before POST /api/contacts.

        Raises:
            LLMServiceError: When the AI service fails after all retries.
            CircuitBreakerOpenError: When the provider's circuit is open.
        """
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Lightweight connectivity test (does NOT consume API quota).

        Returns: True if the service is reachable, False otherwise.
        """
        ...
