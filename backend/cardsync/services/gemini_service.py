"""
CardSync Pro Backend — Google Gemini Contact Extractor
=======================================================

What:  Concrete ContactExtractor using the Google Gemini vision API.
Why:   Gemini reads printed cards well, has a free tier, and can be asked to
       answer in JSON directly.
How:   Sends the image bytes inline with a card-reading prompt and asks for
       a JSON object with the six contact fields. The reply is validated into
       ContactInfo. Calls are retried with exponential backoff + jitter and
       guarded by a circuit breaker.
Who:   Built once by the service container; called by POST /api/extract.

Resilience Strategy:
    1. Tenacity retry with exponential backoff + jitter for transient failures
    2. Circuit breaker to fail fast while Gemini is down
    3. Per-call timeout on the generate request
    4. If the model ignores the JSON instruction and answers in prose, the
       text is run through the heuristic extractor instead of failing
"""

import json
import logging
import time
import uuid
from typing import Any, Dict, Optional

import google.generativeai as genai
from fastapi.concurrency import run_in_threadpool
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from cardsync.config import Settings
from cardsync.exceptions import CircuitBreakerOpenError, LLMServiceError
from cardsync.models.contact import CONTACT_INFO_FIELDS
from cardsync.schemas.contact import ContactInfo
from cardsync.services.extractor import extract_contact_fields
from cardsync.services.llm_base import ContactExtractor
from cardsync.services.resilience import CircuitBreaker

logger = logging.getLogger(__name__)

# Accept the field names the model is asked for and their snake_case twins
_FIELD_ALIASES = {
    "fullName": "full_name",
    "jobTitle": "job_title",
    "companyName": "company_name",
    "phoneNumber": "phone_number",
    "emailAddress": "email_address",
    "physicalAddress": "physical_address",
}


def parse_model_reply(text: str) -> Optional[ContactInfo]:
    """
    Turn a JSON reply into ContactInfo.

    Returns None when the reply is not a JSON object, so the caller can fall
    back to the heuristic extractor. Blank values become None.
    """
    try:
        payload = json.loads(text)
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None

    # Some replies nest the fields one level down
    for wrapper in ("contactInfo", "contact_info"):
        if isinstance(payload.get(wrapper), dict):
            payload = payload[wrapper]
            break

    fields: Dict[str, Any] = {}
    for key, value in payload.items():
        name = _FIELD_ALIASES.get(key, key)
        if name not in CONTACT_INFO_FIELDS or value is None:
            continue
        value = str(value).strip()
        if value:
            fields[name] = value
    return ContactInfo(**fields)


class GeminiService(ContactExtractor):
    """
    Gemini vision implementation of ContactExtractor.

    Error Handling Chain:
        API call fails → tenacity retries (N attempts with backoff)
        → All retries fail → record circuit breaker failure → LLMServiceError
        → Circuit breaker threshold reached → future calls rejected instantly
        → Recovery timeout → allow test call (HALF_OPEN)
        → Test succeeds → resume normal operation (CLOSED)
    """

    EXTRACT_PROMPT = """You read business cards. Extract the contact details printed on this card.

Reply with ONLY a JSON object with exactly these keys:
  "fullName", "jobTitle", "companyName", "phoneNumber", "emailAddress", "physicalAddress"

Rules:
1. Copy text as printed; do not invent or normalize values
2. Use null for any field that is not on the card
3. Put a multi-line address on one line, separated by ", "
4. If the card shows several phone numbers, use the main one"""

    def __init__(self, settings: Settings, model: Optional[Any] = None, breaker: Optional[CircuitBreaker] = None):
        """
        Args:
            settings: Application settings (API key, model, retry/breaker tuning)
            model: Pre-built generative model (tests pass a mock)
            breaker: Circuit breaker; one is created from settings if omitted
        """
        self.settings = settings
        if model is None:
            # The SDK keeps the API key in module-level state
            if settings.gemini_api_key and settings.gemini_api_key != "your_gemini_api_key_here":
                genai.configure(api_key=settings.gemini_api_key)
            model = genai.GenerativeModel(settings.gemini_model)
        self.model = model

        self.circuit_breaker = breaker or CircuitBreaker(
            service="gemini",
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
        )

        logger.info(
            "GeminiService initialized with model=%s, circuit_breaker(threshold=%d, recovery=%ds)",
            settings.gemini_model,
            self.circuit_breaker.failure_threshold,
            self.circuit_breaker.recovery_timeout,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            # The SDK raises assorted exception types for API errors
            retry=retry_if_exception_type(Exception),
            stop=stop_after_attempt(self.settings.retry_max_attempts),
            # wait = min(max_wait, min_wait * 2^attempt) + random(0, 1)
            wait=wait_exponential_jitter(
                initial=self.settings.retry_min_wait,
                max=self.settings.retry_max_wait,
                jitter=1,
            ),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    async def extract_from_image(self, image: bytes, mime_type: str) -> ContactInfo:
        """
        Flow:
            1. Check circuit breaker → may raise CircuitBreakerOpenError
            2. Send image + prompt with retry logic
            3. Record success/failure in circuit breaker
            4. Parse JSON reply, falling back to the heuristic extractor
        """
        request_id = str(uuid.uuid4())[:8]

        self.circuit_breaker.can_execute()

        logger.info("[%s] Starting Gemini extraction (%s, %d bytes)", request_id, mime_type, len(image))

        try:
            reply = None
            async for attempt in self._retrying():
                with attempt:
                    reply = await self._call_gemini(image, mime_type, request_id)
            self.circuit_breaker.record_success()
        except CircuitBreakerOpenError:
            raise
        except Exception as e:
            self.circuit_breaker.record_failure()
            logger.error("[%s] Gemini extraction failed after retries: %s", request_id, str(e))
            raise LLMServiceError(
                message="AI contact extraction failed after multiple attempts. Please try again later.",
                retry_after=self.circuit_breaker.recovery_timeout,
                context={
                    "request_id": request_id,
                    "attempts": self.settings.retry_max_attempts,
                    "error_type": type(e).__name__,
                },
            ) from e

        info = parse_model_reply(reply)
        if info is None:
            logger.warning("[%s] Gemini reply was not JSON; using heuristic extractor", request_id)
            info = extract_contact_fields(reply)
        return info

    async def _call_gemini(self, image: bytes, mime_type: str, request_id: str) -> str:
        """One generate call; tenacity decides whether to try again."""
        start_time = time.time()
        try:
            response = await self.model.generate_content_async(
                [self.EXTRACT_PROMPT, {"mime_type": mime_type, "data": image}],
                generation_config={"response_mime_type": "application/json"},
                request_options={"timeout": 60},
            )
            text = response.text.strip() if response.text else ""
        except Exception as e:
            logger.warning(
                "[%s] Gemini API call failed after %.0fms: %s",
                request_id,
                (time.time() - start_time) * 1000,
                str(e),
            )
            raise

        logger.info(
            "[%s] Gemini extraction completed in %.0fms, reply %d chars",
            request_id,
            (time.time() - start_time) * 1000,
            len(text),
        )
        return text

    async def health_check(self) -> bool:
        """
        Lists models (free, no token cost) to verify the key and connectivity.
        """
        try:
            model_names = await run_in_threadpool(lambda: [m.name for m in genai.list_models()])
        except Exception as e:
            logger.warning("Gemini health check failed: %s", str(e))
            return False
        target = f"models/{self.settings.gemini_model}"
        if target not in model_names:
            logger.warning("Configured model %s not found in available models", target)
        return True
