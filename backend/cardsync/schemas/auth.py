"""
CardSync Pro Backend — Session Schemas
=======================================
"""

from pydantic import BaseModel, Field


class SessionLoginRequest(BaseModel):
    id_token: str = Field(min_length=1, description="Firebase ID token from the client SDK")


class SessionLoginResponse(BaseModel):
    success: bool = True
    expires_in: int = Field(description="Session lifetime in seconds")
