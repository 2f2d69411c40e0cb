"""
auth/provisioning.py -- Account creation and CSV user seeding.

There is no self-service signup. Every account is created here, either one at
a time (provision_user) or in bulk from the staff CSV export (seed_users).

Role policy:
  SUPER_ADMIN, DOMAIN_LEAD and CHECKIN_CREW are verified at creation.
  CAMPUS_AMBASSADOR starts unverified and receives a verification token
  through the engine, unless the caller explicitly auto-verifies.

Identifiers:
  uid = role prefix + 8 upper-case hex chars, e.g. "DL_9C04E1A2".
  role_prefix() is total over Role; an unmapped role raises instead of
  silently producing a generic prefix.

CSV format (header row required):
  First_Name,Middle_Name,Last_Name,Email,Phone,Campus,Role,Timestamp
Rows with an unknown Role, a missing Email/First_Name, or an unparseable
Timestamp are skipped with a warning.

Layer rule: no imports from api/ or events/.
"""

from __future__ import annotations

import csv
import io
import logging
import re
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone

from auth.engine import AuthEngine
from auth.models import Role, User
from auth.store import UserStore
from auth.tokens import hash_password

logger = logging.getLogger("eventdesk.provisioning")

_ROLE_PREFIXES: dict[Role, str] = {
    Role.SUPER_ADMIN: "SA_",
    Role.DOMAIN_LEAD: "DL_",
    Role.CAMPUS_AMBASSADOR: "CA_",
    Role.CHECKIN_CREW: "CC_",
}

_TIMESTAMP_FORMATS = (
    "%m/%d/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%m/%d/%Y",
    "%Y-%m-%d",
)


def role_prefix(role: Role) -> str:
    """Map a role to its uid prefix. Raises ValueError for anything unmapped."""
    try:
        return _ROLE_PREFIXES[Role(role)]
    except (KeyError, ValueError):
        raise ValueError(f"No uid prefix defined for role {role!r}") from None


def generate_uid(prefix: str) -> str:
    return f"{prefix}{secrets.token_hex(4).upper()}"


def parse_timestamp(value: str) -> datetime:
    """Parse a CSV timestamp (ISO 8601 or common form-export layouts) as UTC."""
    value = value.strip()
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        for fmt in _TIMESTAMP_FORMATS:
            try:
                parsed = datetime.strptime(value, fmt)
                break
            except ValueError:
                continue
        else:
            raise ValueError(f"Unrecognised timestamp: {value!r}") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def generate_password(prefix: str, first_name: str, timestamp: str) -> str:
    """Initial password: {prefix}{first_name}@{epoch seconds without the first 5 digits}.

    Example: ("CA_", "Asha", "2025-11-09T15:35:14Z") -> "CA_Asha@02514"
    """
    epoch = int(parse_timestamp(timestamp).timestamp())
    return f"{prefix}{first_name}@{str(epoch)[5:]}"


def provision_user(
    store: UserStore,
    engine: AuthEngine,
    *,
    email: str,
    name: str,
    role: Role,
    password: str,
    phone: str | None = None,
    campus: str | None = None,
    auto_verify: bool = False,
) -> User:
    """Create one account and, for unverified ambassadors, issue a verification token.

    Returns the stored User (verification_token set when one was issued).
    """
    role = Role(role)
    verified = auto_verify or role is not Role.CAMPUS_AMBASSADOR
    user = User(
        email=email,
        name=name,
        role=role,
        hashed_password=hash_password(password),
        uid=generate_uid(role_prefix(role)),
        phone=phone or None,
        campus=campus or None,
        is_verified=verified,
    )
    user.id = store.create_user(user)
    if not verified:
        engine.issue_verification_token(user)
    logger.info("Provisioned %s %s (%s)", role.value, user.uid, "verified" if verified else "pending verification")
    return user


# ---------------------------------------------------------------------------
# CSV seeding
# ---------------------------------------------------------------------------


@dataclass
class UserSeedRecord:
    """One parsed staff CSV row. raw keeps the original row for diagnostics."""

    email: str
    name: str
    role: Role
    password: str
    phone: str | None = None
    campus: str | None = None
    raw: dict = field(default_factory=dict)


@dataclass
class SeededUser:
    user: User
    password: str
    created: bool


def parse_users_csv(content: str) -> list[UserSeedRecord]:
    """Parse the staff CSV into seed records, skipping invalid rows."""
    records: list[UserSeedRecord] = []
    reader = csv.DictReader(io.StringIO(content))
    for line_no, row in enumerate(reader, start=2):
        email = (row.get("Email") or "").strip()
        first = (row.get("First_Name") or "").strip()
        role_raw = (row.get("Role") or "").strip().upper()
        if not email or not first:
            logger.warning("users.csv line %d: missing Email or First_Name, skipping", line_no)
            continue
        try:
            role = Role(role_raw)
        except ValueError:
            logger.warning("users.csv line %d: invalid role %r for %s, skipping", line_no, role_raw, email)
            continue
        try:
            password = generate_password(role_prefix(role), first, row.get("Timestamp") or "")
        except ValueError as exc:
            logger.warning("users.csv line %d: %s, skipping", line_no, exc)
            continue
        parts = (first, row.get("Middle_Name") or "", row.get("Last_Name") or "")
        name = re.sub(r"\s+", " ", " ".join(parts)).strip()
        records.append(
            UserSeedRecord(
                email=email,
                name=name,
                role=role,
                password=password,
                phone=(row.get("Phone") or "").strip() or None,
                campus=(row.get("Campus") or "").strip() or None,
                raw=dict(row),
            )
        )
    return records


def seed_users(
    store: UserStore,
    engine: AuthEngine,
    records: list[UserSeedRecord],
    *,
    auto_verify: bool = False,
) -> list[SeededUser]:
    """Create new accounts and refresh profile fields of existing ones (matched by email).

    Existing accounts keep their password. A role change assigns a uid with
    the new prefix, and an unverified account moved off CAMPUS_AMBASSADOR is
    verified through the engine, which also revokes its pending link.
    Returned passwords are only meaningful for created=True entries.
    """
    seeded: list[SeededUser] = []
    for record in records:
        existing = store.get_by_email(record.email)
        if existing is not None:
            if existing.role is not record.role:
                existing.uid = generate_uid(role_prefix(record.role))
                logger.info("Role of %s changed to %s, new uid %s", existing.id, record.role.value, existing.uid)
            existing.name = record.name
            existing.phone = record.phone
            existing.role = record.role
            existing.campus = record.campus
            store.upsert_user(existing)
            if not existing.is_verified and record.role is not Role.CAMPUS_AMBASSADOR:
                existing = engine.mark_verified(existing)
            seeded.append(SeededUser(user=existing, password="", created=False))
            continue
        user = provision_user(
            store,
            engine,
            email=record.email,
            name=record.name,
            role=record.role,
            password=record.password,
            phone=record.phone,
            campus=record.campus,
            auto_verify=auto_verify,
        )
        seeded.append(SeededUser(user=user, password=record.password, created=True))
    logger.info(
        "%d users processed (%d created)",
        len(seeded),
        sum(1 for s in seeded if s.created),
    )
    return seeded
