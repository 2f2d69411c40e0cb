"""
API request and response models for EventDesk REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
events/models.py, which own the internal domain representation. Route
handlers map between the two.

Credentials never appear in a response model: UserPublic has no password hash
and no verification token.
"""

from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

from auth.models import User
from events.models import Event

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


# Emails are stripped before length checks. Passwords never are.
Email = Annotated[str, StringConstraints(strip_whitespace=True, min_length=3, max_length=255)]


class LoginRequest(BaseModel):
    email: Email
    # 72 bytes is bcrypt's truncation point; stay well clear of it.
    password: str = Field(min_length=1, max_length=64)


class RefreshTokenRequest(BaseModel):
    refresh_token: str = Field(min_length=1, max_length=4096)


class VerifyEmailRequest(BaseModel):
    token: str = Field(min_length=1, max_length=255)


class ResendVerificationRequest(BaseModel):
    email: Email


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserPublic(BaseModel):
    """Public projection of a User -- safe to return to any authenticated caller."""

    model_config = ConfigDict(frozen=True)

    id: str
    uid: Optional[str] = None
    email: str
    name: str
    role: str
    is_verified: bool

    @classmethod
    def from_user(cls, user: User) -> "UserPublic":
        return cls(
            id=user.id,
            uid=user.uid,
            email=user.email,
            name=user.name,
            role=user.role.value,
            is_verified=user.is_verified,
        )


class LoginResponse(BaseModel):
    user: UserPublic
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class RefreshTokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class VerifyEmailResponse(BaseModel):
    message: str = "Email verified successfully."
    user: UserPublic


class MessageResponse(BaseModel):
    message: str


class MeResponse(BaseModel):
    user: UserPublic
    campus: Optional[str] = None
    phone: Optional[str] = None


class DomainLeadResponse(BaseModel):
    id: str
    uid: str
    name: str
    email: str
    role: str


class EventResponse(BaseModel):
    id: str
    slug: str
    name: str
    description: str
    thumb_url: str
    max_registrations: Optional[int]
    date: str
    domain_lead: Optional[DomainLeadResponse] = None

    @classmethod
    def from_event(cls, event: Event) -> "EventResponse":
        lead = event.domain_lead
        return cls(
            id=event.id,
            slug=event.slug,
            name=event.name,
            description=event.description,
            thumb_url=event.thumb_url,
            max_registrations=event.max_registrations,
            date=event.date,
            domain_lead=DomainLeadResponse(**vars(lead)) if lead is not None else None,
        )


class ErrorDetail(BaseModel):
    """Inner error object. code is stable and machine-readable; message is for humans."""

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Envelope shared by every error response: {"error": {...}}."""

    error: ErrorDetail


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
