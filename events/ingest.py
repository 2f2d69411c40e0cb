"""
events/ingest.py -- Events CSV parser and seeder.

Expected header:
  Name,Description,Slug,Thumb_URL,Max_Registrations,Domain_Lead_Email,Date

Parsing and storage are separate steps, as with the staff CSV:
  events.csv -> parse_events_csv() -> list[EventSeedRecord]
  -> seed_events(): resolve Domain_Lead_Email -> EventStore.upsert_event()
  -> EventStore.invalidate() once the batch is written

Rows missing Name/Slug/Domain_Lead_Email, with a non-integer
Max_Registrations, or with an unparseable Date are skipped with a warning.
Events whose lead email matches no user are skipped at seed time.
"""

import csv
import io
import logging
from dataclasses import dataclass, field
from typing import Optional

from auth.provisioning import parse_timestamp
from auth.store import UserStore
from events.models import Event
from events.store import EventStore

logger = logging.getLogger("eventdesk.events")


@dataclass
class EventSeedRecord:
    slug: str
    name: str
    description: str
    thumb_url: str
    domain_lead_email: str
    date: str  # ISO 8601 UTC
    max_registrations: Optional[int] = None
    raw: dict = field(default_factory=dict)


def parse_events_csv(content: str) -> list[EventSeedRecord]:
    records: list[EventSeedRecord] = []
    reader = csv.DictReader(io.StringIO(content))
    for line_no, row in enumerate(reader, start=2):
        name = (row.get("Name") or "").strip()
        slug = (row.get("Slug") or "").strip()
        lead_email = (row.get("Domain_Lead_Email") or "").strip()
        if not name or not slug or not lead_email:
            logger.warning("events.csv line %d: missing Name, Slug or Domain_Lead_Email, skipping", line_no)
            continue
        max_raw = (row.get("Max_Registrations") or "").strip()
        try:
            max_registrations = int(max_raw) if max_raw else None
            date = parse_timestamp(row.get("Date") or "").isoformat()
        except ValueError as exc:
            logger.warning("events.csv line %d: %s, skipping", line_no, exc)
            continue
        records.append(
            EventSeedRecord(
                slug=slug,
                name=name,
                description=(row.get("Description") or "").strip(),
                thumb_url=(row.get("Thumb_URL") or "").strip(),
                domain_lead_email=lead_email,
                date=date,
                max_registrations=max_registrations,
                raw=dict(row),
            )
        )
    return records


def seed_events(event_store: EventStore, user_store: UserStore, records: list[EventSeedRecord]) -> int:
    """Upsert events by slug, then drop cached event reads. Returns how many rows were written."""
    written = 0
    for record in records:
        lead = user_store.get_by_email(record.domain_lead_email)
        if lead is None:
            logger.warning("Domain lead %s not found, skipping event %s", record.domain_lead_email, record.slug)
            continue
        event_store.upsert_event(
            Event(
                slug=record.slug,
                name=record.name,
                description=record.description,
                thumb_url=record.thumb_url,
                domain_lead_id=lead.id,
                date=record.date,
                max_registrations=record.max_registrations,
            )
        )
        written += 1
    if written:
        event_store.invalidate()
    logger.info("%d of %d events seeded", written, len(records))
    return written
