"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the engine
do the work; these classes only own shape.

Layer rule: no imports from api/, events/, or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """The four fixed staff roles. There is no self-service signup."""

    SUPER_ADMIN = "SUPER_ADMIN"
    DOMAIN_LEAD = "DOMAIN_LEAD"
    CAMPUS_AMBASSADOR = "CAMPUS_AMBASSADOR"
    CHECKIN_CREW = "CHECKIN_CREW"


@dataclass
class User:
    """A pre-provisioned staff account.

    id is an opaque uuid hex string and is what tokens carry as `sub`.
    uid is the role-prefixed display handle (e.g. "CA_1F3A09BC") shown to staff.

    verification_token mirrors the outstanding cache entry for audit; the
    cache entry is authoritative for expiry. Only CAMPUS_AMBASSADOR accounts
    start with is_verified=False.
    """

    email: str
    name: str
    role: Role
    hashed_password: str
    id: str | None = None
    uid: str | None = None
    phone: str | None = None
    campus: str | None = None
    is_verified: bool = False
    verification_token: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


# ---------------------------------------------------------------------------
# Engine outcomes
#
# Rejections are ordinary return values, not exceptions. Only infrastructure
# failures (auth/errors.py) propagate.
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Rejected:
    """A recoverable, caller-visible refusal.

    code is stable and machine-readable ("invalid_credentials"); message is
    deliberately generic so callers cannot tell which check failed.
    """

    code: str
    message: str


@dataclass(frozen=True)
class LoginSuccess:
    user: User
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class ResendOutcome:
    """Result of a verification resend.

    user is the account the resend was for, so callers can address the email
    without a second lookup. token is None when the account was already
    verified (nothing issued).
    """

    user: User
    token: str | None
    already_verified: bool = False


@dataclass(frozen=True)
class Principal:
    """Caller identity asserted by a verified access token.

    Built from token claims alone -- no store lookup. An access token stays
    valid until its own expiry even if the account changes meanwhile.
    """

    user_id: str
    email: str
    role: Role
