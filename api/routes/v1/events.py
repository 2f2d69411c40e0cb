"""
api/routes/v1/events.py -- Read-only event routes.

Routes (in registration order to avoid FastAPI path capture conflicts):
  GET /events                       -- paginated list, soonest first
  GET /events/search?name=          -- case-insensitive name search
  GET /events/by-lead?identifier=   -- events owned by a lead (name or email match)
  GET /events/slug/{slug}           -- single event by slug
  GET /events/{event_id}            -- single event by id

Events are created by the seeding CLI, not through the API.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from api.models import EventResponse
from auth.dependencies import get_current_user
from events.models import Event
from events.store import MAX_PAGE_SIZE, EventStore

# All event routes require authentication.
router = APIRouter(dependencies=[Depends(get_current_user)])


def _store(request: Request) -> EventStore:
    return request.app.state.event_store


def _found(event: Event | None) -> EventResponse:
    if event is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "Event not found."},
        )
    return EventResponse.from_event(event)


@router.get("/events", response_model=list[EventResponse])
def list_events(
    request: Request,
    skip: int = Query(default=0, ge=0),
    take: int = Query(default=MAX_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
) -> list[EventResponse]:
    return [EventResponse.from_event(e) for e in _store(request).list_events(skip=skip, take=take)]


@router.get("/events/search", response_model=list[EventResponse])
def search_events(request: Request, name: str = Query(min_length=1, max_length=255)) -> list[EventResponse]:
    return [EventResponse.from_event(e) for e in _store(request).search_by_name(name)]


@router.get("/events/by-lead", response_model=list[EventResponse])
def events_by_lead(request: Request, identifier: str = Query(min_length=1, max_length=255)) -> list[EventResponse]:
    return [EventResponse.from_event(e) for e in _store(request).by_domain_lead(identifier)]


@router.get("/events/slug/{slug}", response_model=EventResponse)
def get_event_by_slug(request: Request, slug: str) -> EventResponse:
    return _found(_store(request).get_by_slug(slug))


@router.get("/events/{event_id}", response_model=EventResponse)
def get_event(request: Request, event_id: str) -> EventResponse:
    return _found(_store(request).get_by_id(event_id))
