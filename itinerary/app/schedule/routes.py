"""Schedule read endpoint and day/event write endpoints."""

from collections.abc import Mapping
from typing import Any

import fastapi
import pydantic
import sqlmodel
from fastapi.responses import JSONResponse

from common import settings

from .. import auth, database
from ..dependencies import CurrentUserId, DatabaseSession, Ids, TableSchema
from ..responses import (
    DAY_NOT_FOUND,
    EVENT_NOT_FOUND,
    INVALID_PAYLOAD,
    MISSING_IDS,
    ApiError,
    ok,
)
from . import fields, services
from .assembler import ScheduleAssembler
from .fields import EntityKind

router = fastapi.APIRouter()


class _Payload(pydantic.BaseModel):
    """Request body that may carry the event itself at the top level."""

    model_config = pydantic.ConfigDict(extra='allow')

    event: dict[str, Any] | None = None

    def event_payload(self) -> dict[str, Any]:
        if self.event is not None:
            return self.event
        return dict(self.model_extra or {})


class EventsCreate(_Payload):
    events: list[Any] | None = None
    position: Any = None


class EventUpdate(_Payload):
    pass


class DayCreate(pydantic.BaseModel):
    day: Any = None
    position: Any = None


class EventsDelete(pydantic.BaseModel):
    eventIds: Any = None


class EventsReorder(pydantic.BaseModel):
    order: Any = None


# ---------------------------------------------------------------------------
# Schedule read
# ---------------------------------------------------------------------------


def _schedule_response(
    session: sqlmodel.Session,
    table_schema: database.TableSchemaCache,
    user_id: str | None,
    params: Mapping[str, str],
    body: dict[str, Any] | None,
) -> JSONResponse:
    trip_id = params.get('tripId') or params.get('scheduleId')
    if not trip_id:
        raise ApiError(400, MISSING_IDS, 'Missing tripId or scheduleId parameter')
    access = auth.require_read(session, trip_id, user_id)

    schema = fields.parse_schema(params.get('schema'), body, params.get('fields'))
    if schema is None and params.get('template'):
        schema = fields.get_template(params.get('template'))
    if schema is None:
        schema = fields.get_template(settings.DEFAULT_SCHEMA_TEMPLATE)

    assembler = ScheduleAssembler(session, table_schema, is_owner=access.is_owner)
    assembly = assembler.assemble(
        trip_id,
        day_filter=params.get('dayId') or None,
        schema=schema,
        event_id=params.get('eventId') or None,
    )

    data: dict[str, Any] = {'tripId': trip_id, 'data': assembly.days}
    if (schema is None or EntityKind.LOCATION in schema) and assembly.locations:
        data['locations'] = assembly.locations
    if params.get('includeTrip') == 'true':
        data['daysList'] = assembler.days_list(trip_id)
    return ok(data)


@router.get('/api/schedule')
async def read_schedule(
    request: fastapi.Request,
    session: DatabaseSession,
    table_schema: TableSchema,
    user_id: CurrentUserId,
) -> JSONResponse:
    """Projected schedule of a trip, optionally narrowed to a day or event."""
    return _schedule_response(session, table_schema, user_id, request.query_params, None)


@router.post('/api/schedule')
async def query_schedule(
    request: fastapi.Request,
    session: DatabaseSession,
    table_schema: TableSchema,
    user_id: CurrentUserId,
    body: dict[str, Any] | None = fastapi.Body(default=None),
) -> JSONResponse:
    """Same as the GET form, with the schema in the request body."""
    return _schedule_response(session, table_schema, user_id, request.query_params, body)


# ---------------------------------------------------------------------------
# Days
# ---------------------------------------------------------------------------


@router.post('/api/trips/{trip_id}/days')
async def create_day(
    trip_id: str,
    body: DayCreate,
    session: DatabaseSession,
    id_generator: Ids,
    user_id: CurrentUserId,
) -> JSONResponse:
    """Create a day at a position (default: last)."""
    auth.require_owner(session, trip_id, user_id)
    result = services.create_day(session, id_generator, trip_id, body.day, body.position)
    if result is None:
        raise ApiError(400, INVALID_PAYLOAD, 'Invalid day data')
    if result.get('existed'):
        return ok(result)
    return ok(result, 'created', 201)


@router.put('/api/trips/{trip_id}/days/{day_id}/reorder')
async def reorder_events(
    trip_id: str,
    day_id: str,
    body: EventsReorder,
    session: DatabaseSession,
    table_schema: TableSchema,
    user_id: CurrentUserId,
) -> JSONResponse:
    """Overwrite the order of a day's events with the listed sequence."""
    access = auth.require_owner(session, trip_id, user_id)
    resolved = services.resolve_day_id(session, trip_id, day_id)
    if resolved is None:
        raise ApiError(404, DAY_NOT_FOUND, 'Day not found')
    if not isinstance(body.order, list):
        raise ApiError(400, INVALID_PAYLOAD, 'Invalid order: expected array')
    services.reorder_events(
        session,
        trip_id,
        resolved,
        body.order,
        soft_delete=services.soft_delete_enabled(table_schema.ensure(session)),
    )
    return ok(
        {'tripId': trip_id, 'dayId': resolved, 'updatedAt': access.trip.updated_at},
        'reordered',
    )


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@router.post('/api/trips/{trip_id}/days/{day_id}/events')
async def create_events(
    trip_id: str,
    day_id: str,
    body: EventsCreate,
    session: DatabaseSession,
    table_schema: TableSchema,
    id_generator: Ids,
    user_id: CurrentUserId,
) -> JSONResponse:
    """Create one event (``event``) or several (``events``) in a day."""
    auth.require_owner(session, trip_id, user_id)
    resolved = services.resolve_event_day(session, trip_id, day_id)
    if resolved is None:
        raise ApiError(404, EVENT_NOT_FOUND, 'Day not found for the given date')

    soft_delete = services.soft_delete_enabled(table_schema.ensure(session))
    assembler = ScheduleAssembler(session, table_schema)
    if isinstance(body.events, list):
        created = services.create_events(
            session, id_generator, trip_id, resolved, body.events, body.position, soft_delete
        )
        events = [assembler.get_event_with_options(trip_id, e) for e in created]
        return ok(
            {'events': [e for e in events if e], 'eventIds': created, 'count': len(created)},
            'created',
            201,
        )

    result = services.create_event(
        session,
        id_generator,
        trip_id,
        resolved,
        body.event_payload(),
        body.position,
        soft_delete,
    )
    if result is None:
        raise ApiError(400, INVALID_PAYLOAD, 'Invalid event data')
    event_id, order = result
    return ok(
        {
            'event': assembler.get_event_with_options(trip_id, event_id),
            'eventId': event_id,
            'eventOrder': order,
        },
        'created',
        201,
    )


@router.api_route('/api/trips/{trip_id}/events/{event_id}', methods=['PUT', 'PATCH'])
async def update_event(
    trip_id: str,
    event_id: str,
    body: EventUpdate,
    session: DatabaseSession,
    table_schema: TableSchema,
    id_generator: Ids,
    user_id: CurrentUserId,
) -> JSONResponse:
    """Merge the payload over the stored event; options are replaced."""
    auth.require_owner(session, trip_id, user_id)
    table_schema.ensure(session)
    if not services.update_event(
        session, id_generator, table_schema, trip_id, event_id, body.event_payload()
    ):
        raise ApiError(404, EVENT_NOT_FOUND, 'Event not found')
    event = ScheduleAssembler(session, table_schema).get_event_with_options(trip_id, event_id)
    return ok(
        {'event': event, 'eventId': event_id, 'updatedAt': event['updatedAt'] if event else None},
        'updated',
    )


@router.delete('/api/trips/{trip_id}/events/{event_id}')
async def delete_event(
    trip_id: str,
    event_id: str,
    session: DatabaseSession,
    table_schema: TableSchema,
    user_id: CurrentUserId,
) -> JSONResponse:
    """Delete one event and close the gap it leaves."""
    auth.require_owner(session, trip_id, user_id)
    if not services.delete_event(session, table_schema.ensure(session), trip_id, event_id):
        raise ApiError(404, EVENT_NOT_FOUND, 'Event not found')
    return ok({'eventId': event_id, 'deleted': True}, 'deleted')


@router.delete('/api/trips/{trip_id}/events')
async def delete_events(
    trip_id: str,
    body: EventsDelete,
    session: DatabaseSession,
    table_schema: TableSchema,
    user_id: CurrentUserId,
) -> JSONResponse:
    """Delete several events of a trip."""
    access = auth.require_owner(session, trip_id, user_id)
    if not isinstance(body.eventIds, list) or not body.eventIds:
        raise ApiError(400, INVALID_PAYLOAD, 'Invalid eventIds: expected non-empty array')
    deleted = services.delete_events(
        session, table_schema.ensure(session), trip_id, body.eventIds
    )
    return ok(
        {'tripId': trip_id, 'deletedCount': deleted, 'updatedAt': access.trip.updated_at}
    )
