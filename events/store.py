"""
events/store.py -- SQLAlchemy Core read/write layer for events.

Pattern: Repository + Data Mapper (same as auth/store.py). The events table
lives on the same MetaData as users so the domain_lead_id foreign key and the
lead join work; EventStore and UserStore must point at the same database.

Reads are what the API exposes. upsert_event() and delete_all() exist for the
seeding CLI only.

Read-through cache (optional, shares the token cache backend):
  events:all:{skip}:{take}    -- list page        (list_ttl, default 5 min)
  events:name:{query}         -- name search      (list_ttl)
  events:lead:{identifier}    -- lead search      (list_ttl)
  event:id:{id}               -- single event     (item_ttl, default 10 min)
  event:slug:{slug}           -- single event     (item_ttl)
Values are the JSON form of the Event dataclasses. Misses are not cached.
A corrupt entry is dropped and read from the database. CacheUnavailableError
propagates like any other infrastructure failure.

Invalidation: upsert_event() drops the written event's id and slug entries,
invalidate() drops every event:* and events:* key, and delete_all() calls it.
seed_events() calls invalidate() once after a batch.

Security:
  All queries use bound parameters. Name and lead searches go through
  icontains(autoescape=True) so user input cannot inject LIKE wildcards.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Callable
from dataclasses import asdict
from typing import Any, Optional, Protocol

from sqlalchemy import Column, ForeignKey, Integer, String, Table, Text, select
from sqlalchemy.engine import Engine

from auth.store import DEFAULT_DB_URL, make_engine, metadata, users
from core.config import now_iso
from events.models import DomainLead, Event

logger = logging.getLogger("eventdesk.events")


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

events = Table(
    "events",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("slug", String(100), nullable=False, unique=True),
    Column("name", String(255), nullable=False),
    Column("description", Text, nullable=False),
    Column("thumb_url", String(500), nullable=False),
    Column("max_registrations", Integer),
    Column("domain_lead_id", String(32), ForeignKey("users.id"), nullable=False, index=True),
    Column("date", String(32), nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

MAX_PAGE_SIZE = 100

_ITEM_PREFIX = "event:"
_LIST_PREFIX = "events:"


def event_list_key(skip: int, take: int) -> str:
    return f"{_LIST_PREFIX}all:{skip}:{take}"


def event_name_key(name: str) -> str:
    return f"{_LIST_PREFIX}name:{name.lower()}"


def event_lead_key(identifier: str) -> str:
    return f"{_LIST_PREFIX}lead:{identifier.lower()}"


def event_id_key(event_id: str) -> str:
    return f"{_ITEM_PREFIX}id:{event_id}"


def event_slug_key(slug: str) -> str:
    return f"{_ITEM_PREFIX}slug:{slug}"


class EventCache(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    def delete(self, key: str) -> None: ...

    def delete_prefix(self, prefix: str) -> int: ...


def _with_lead():
    """SELECT events.* plus the owning lead's public fields."""
    return select(
        events,
        users.c.uid.label("lead_uid"),
        users.c.name.label("lead_name"),
        users.c.email.label("lead_email"),
        users.c.role.label("lead_role"),
    ).select_from(events.outerjoin(users, events.c.domain_lead_id == users.c.id))


class EventStore:
    """Repository for Event entities, with an optional read-through cache.

    Usage:
        store = EventStore(cache=token_cache)
        page = store.list_events(skip=0, take=20)
        event = store.get_by_slug("hackathon-2025")
        store.close()
    """

    def __init__(
        self,
        db_url: str = DEFAULT_DB_URL,
        cache: EventCache | None = None,
        *,
        list_ttl: int = 5 * 60,
        item_ttl: int = 10 * 60,
    ) -> None:
        self.engine: Engine = make_engine(db_url)
        metadata.create_all(self.engine)
        self.cache = cache
        self.list_ttl = list_ttl
        self.item_ttl = item_ttl

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_events(self, skip: int = 0, take: int = MAX_PAGE_SIZE) -> list[Event]:
        """Return events ordered by date, soonest first. take is capped at MAX_PAGE_SIZE."""
        skip = max(skip, 0)
        take = max(1, min(take, MAX_PAGE_SIZE))
        query = _with_lead().order_by(events.c.date.asc()).offset(skip).limit(take)
        return self._many(event_list_key(skip, take), query)

    def get_by_id(self, event_id: str) -> Optional[Event]:
        return self._one(event_id_key(event_id), _with_lead().where(events.c.id == event_id))

    def get_by_slug(self, slug: str) -> Optional[Event]:
        return self._one(event_slug_key(slug), _with_lead().where(events.c.slug == slug))

    def search_by_name(self, name: str) -> list[Event]:
        """Case-insensitive substring match on the event name, ordered by name."""
        query = _with_lead().where(events.c.name.icontains(name, autoescape=True)).order_by(events.c.name)
        return self._many(event_name_key(name), query)

    def by_domain_lead(self, identifier: str) -> list[Event]:
        """Events whose lead's name or email contains identifier (case-insensitive)."""
        query = (
            _with_lead()
            .where(
                users.c.name.icontains(identifier, autoescape=True)
                | users.c.email.icontains(identifier, autoescape=True)
            )
            .order_by(events.c.date.asc())
        )
        return self._many(event_lead_key(identifier), query)

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    def upsert_event(self, event: Event) -> tuple[str, bool]:
        """Insert by slug, or update the mutable fields of an existing slug.

        Returns (event_id, created). Cached lists are left for invalidate().
        """
        stamp = now_iso()
        fields = {
            "name": event.name,
            "description": event.description,
            "thumb_url": event.thumb_url,
            "max_registrations": event.max_registrations,
            "domain_lead_id": event.domain_lead_id,
            "date": event.date,
            "updated_at": stamp,
        }
        with self.engine.begin() as conn:
            existing = conn.execute(select(events.c.id).where(events.c.slug == event.slug)).scalar()
            if existing is not None:
                conn.execute(events.update().where(events.c.id == existing).values(**fields))
                event_id, created = existing, False
            else:
                event_id, created = event.id or uuid.uuid4().hex, True
                conn.execute(events.insert().values(id=event_id, slug=event.slug, created_at=stamp, **fields))
        if self.cache is not None:
            self.cache.delete(event_id_key(event_id))
            self.cache.delete(event_slug_key(event.slug))
        return event_id, created

    def delete_all(self) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(events.delete())
        self.invalidate()
        return result.rowcount

    def invalidate(self) -> int:
        """Drop every event:* and events:* key. Returns how many entries went."""
        if self.cache is None:
            return 0
        removed = self.cache.delete_prefix(_ITEM_PREFIX) + self.cache.delete_prefix(_LIST_PREFIX)
        logger.info("Invalidated %d event cache entries", removed)
        return removed

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Read-through helpers
    # ------------------------------------------------------------------

    def _many(self, key: str, query) -> list[Event]:
        cached = self._lookup(key, lambda data: [_event_from_dict(d) for d in data])
        if cached is not None:
            return cached
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        found = [_row_to_event(r) for r in rows]
        self._remember(key, [asdict(e) for e in found], self.list_ttl)
        return found

    def _one(self, key: str, query) -> Optional[Event]:
        cached = self._lookup(key, _event_from_dict)
        if cached is not None:
            return cached
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        if row is None:
            return None
        event = _row_to_event(row)
        self._remember(key, asdict(event), self.item_ttl)
        return event

    def _lookup(self, key: str, decode: Callable[[Any], Any]) -> Any:
        if self.cache is None:
            return None
        raw = self.cache.get(key)
        if raw is None:
            return None
        try:
            value = decode(json.loads(raw))
        except (ValueError, TypeError, KeyError, AttributeError):
            logger.warning("Dropping corrupt event cache entry %s", key)
            self.cache.delete(key)
            return None
        logger.debug("Event cache hit: %s", key)
        return value

    def _remember(self, key: str, payload: Any, ttl: int) -> None:
        if self.cache is not None:
            self.cache.set(key, json.dumps(payload), ttl)


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_event(row) -> Event:
    lead = None
    if row.lead_uid is not None:
        lead = DomainLead(
            id=row.domain_lead_id,
            uid=row.lead_uid,
            name=row.lead_name,
            email=row.lead_email,
            role=row.lead_role,
        )
    return Event(
        id=row.id,
        slug=row.slug,
        name=row.name,
        description=row.description,
        thumb_url=row.thumb_url,
        max_registrations=row.max_registrations,
        domain_lead_id=row.domain_lead_id,
        date=row.date,
        domain_lead=lead,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _event_from_dict(data: dict) -> Event:
    lead = data.pop("domain_lead", None)
    return Event(**data, domain_lead=DomainLead(**lead) if lead else None)
