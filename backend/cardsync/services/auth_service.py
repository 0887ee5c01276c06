"""
CardSync Pro Backend — Identity & Sessions
===========================================

What:  Verifies Firebase ID tokens and issues/verifies our own session tokens.
Why:   Every data operation needs one verified identity, passed explicitly.
       There is no "current user" lookup anywhere else in the code.
How:
    - ID tokens: RS256 JWTs signed by Google's secure-token service. Keys are
      fetched (and cached) from the JWKS endpoint with PyJWT's PyJWKClient.
    - Sessions: after sign-in the client exchanges its ID token for an HS256
      token signed with SESSION_SECRET, delivered as an httpOnly cookie that
      lives five days.
Who:   POST /api/auth/session, and the `get_identity` dependency.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import jwt
from jwt import PyJWKClient

from cardsync.config import Settings
from cardsync.exceptions import AuthenticationError

logger = logging.getLogger(__name__)

FIREBASE_ISSUER_PREFIX = "https://securetoken.google.com/"
SESSION_ISSUER = "cardsync"
SESSION_ALGORITHM = "HS256"


@dataclass(frozen=True)
class Identity:
    """A verified caller. subject_id is the Firebase uid and the profile id."""
    subject_id: str
    email: str = ""
    email_verified: bool = False
    claims: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)


class AuthService:
    """
    Token verification for the two credential kinds the API accepts.

    Failure reasons (expired, bad signature, wrong audience...) are logged
    and kept in the error context; the client only ever sees a 401 asking
    it to sign in again.
    """

    def __init__(self, settings: Settings, jwk_client: Optional[PyJWKClient] = None):
        self.settings = settings
        self.project_id = settings.firebase_project_id
        self.issuer = f"{FIREBASE_ISSUER_PREFIX}{self.project_id}"
        self._jwk_client = jwk_client or PyJWKClient(settings.firebase_jwks_url, cache_keys=True)

    def verify_id_token(self, token: str) -> Identity:
        """
        Verify a Firebase ID token.

        Checks: RS256 signature against the JWKS, aud == project id,
        iss == https://securetoken.google.com/<project id>, exp, and a
        non-empty subject.
        """
        if not self.project_id:
            raise AuthenticationError(context={"reason": "firebase_project_id not configured"})
        try:
            signing_key = self._jwk_client.get_signing_key_from_jwt(token)
            claims = jwt.decode(
                token,
                signing_key.key,
                algorithms=["RS256"],
                audience=self.project_id,
                issuer=self.issuer,
                options={"verify_exp": True, "require": ["exp", "iat", "sub"]},
            )
        except jwt.PyJWTError as e:
            logger.info("ID token rejected: %s", type(e).__name__)
            raise AuthenticationError(context={"reason": type(e).__name__}) from e
        return self._identity_from_claims(claims)

    def create_session(self, id_token: str) -> Tuple[str, int]:
        """
        Exchange a verified ID token for a session token.

        Returns:
            (session token, max age in seconds)
        """
        identity = self.verify_id_token(id_token)
        if not self.settings.session_secret:
            raise AuthenticationError(context={"reason": "session_secret not configured"})

        now = int(time.time())
        max_age = self.settings.session_max_age
        payload = {
            "iss": SESSION_ISSUER,
            "sub": identity.subject_id,
            "email": identity.email,
            "email_verified": identity.email_verified,
            "iat": now,
            "exp": now + max_age,
        }
        token = jwt.encode(payload, self.settings.session_secret, algorithm=SESSION_ALGORITHM)
        logger.info("Session issued for subject %s", identity.subject_id)
        return token, max_age

    def verify_session(self, token: str) -> Identity:
        if not self.settings.session_secret:
            raise AuthenticationError(context={"reason": "session_secret not configured"})
        try:
            claims = jwt.decode(
                token,
                self.settings.session_secret,
                algorithms=[SESSION_ALGORITHM],
                issuer=SESSION_ISSUER,
                options={"require": ["exp", "sub"]},
            )
        except jwt.PyJWTError as e:
            logger.info("Session token rejected: %s", type(e).__name__)
            raise AuthenticationError(context={"reason": type(e).__name__}) from e
        return self._identity_from_claims(claims)

    @staticmethod
    def _identity_from_claims(claims: Dict[str, Any]) -> Identity:
        subject = claims.get("sub")
        if not subject:
            raise AuthenticationError(context={"reason": "missing subject"})
        return Identity(
            subject_id=str(subject),
            email=claims.get("email") or "",
            email_verified=bool(claims.get("email_verified", False)),
            claims=claims,
        )
