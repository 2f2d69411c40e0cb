"""
events/models.py -- Domain dataclasses for events.

Pure data containers with zero logic. Queries live in events/store.py.

An event belongs to exactly one domain lead; the lead's public fields are
carried alongside so list views never need a second lookup.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class DomainLead:
    """Public projection of the user who owns an event. No credentials."""

    id: str
    uid: str
    name: str
    email: str
    role: str


@dataclass
class Event:
    """A published event.

    slug is the stable public identifier used in URLs.
    id is None before the record is written to the database.
    """

    slug: str
    name: str
    description: str
    thumb_url: str
    domain_lead_id: str
    date: str  # ISO 8601
    max_registrations: Optional[int] = None
    id: Optional[str] = None
    domain_lead: Optional[DomainLead] = None
    created_at: str = ""
    updated_at: str = ""
