"""Trip, progress, location and distance endpoints."""

from typing import Any

import fastapi
import pydantic
from fastapi.responses import JSONResponse

from .. import auth
from ..dependencies import CurrentUserId, DatabaseSession, Ids, TableSchema
from ..responses import (
    INVALID_PAYLOAD,
    LOGIN_REQUIRED,
    MISSING_PARAMETER,
    ApiError,
    ok,
)
from ..schedule import fields, normalize, progress, services as schedule_services
from ..schedule.fields import EntityKind
from . import services

router = fastapi.APIRouter(prefix='/api/trips')


class TripCreate(pydantic.BaseModel):
    trip: dict[str, Any] | None = None


class VisibilityUpdate(pydantic.BaseModel):
    visibility: Any = None


class LocationSave(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(extra='allow')

    location: dict[str, Any] | None = None


class RouteSave(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(populate_by_name=True)

    from_id: Any = pydantic.Field(default=None, alias='from')
    to_id: Any = pydantic.Field(default=None, alias='to')
    distanceKm: Any = None
    distance_km: Any = None
    source: Any = None


@router.post('')
async def create_trip(
    body: TripCreate,
    session: DatabaseSession,
    id_generator: Ids,
    user_id: CurrentUserId,
) -> JSONResponse:
    """Create a trip owned by the caller."""
    if user_id is None:
        raise ApiError(401, LOGIN_REQUIRED, 'Login required')
    trip = services.create_trip(session, id_generator, user_id, body.trip)
    if trip is None:
        raise ApiError(400, INVALID_PAYLOAD, 'Invalid trip data')
    return ok(services.project_trip(session, trip, None, True), 'created', 201)


@router.get('/{trip_id}')
async def read_trip(
    trip_id: str,
    session: DatabaseSession,
    table_schema: TableSchema,
    user_id: CurrentUserId,
    schema: str | None = None,
    template: str = 'detail',
) -> JSONResponse:
    """Trip projection with progress and the list of days."""
    access = auth.require_read(session, trip_id, user_id)
    resolved = fields.parse_schema(schema)
    if resolved is None or EntityKind.TRIP not in resolved:
        resolved = fields.get_template(template) or fields.get_template('detail')
    return ok(
        services.get_trip(session, table_schema, access.trip, resolved, access.is_owner)
    )


@router.api_route('/{trip_id}', methods=['PUT', 'PATCH'])
async def update_trip(
    trip_id: str,
    session: DatabaseSession,
    user_id: CurrentUserId,
    body: dict[str, Any] | None = fastapi.Body(default=None),
) -> JSONResponse:
    """Update the trip fields present in the body (or its ``trip`` object)."""
    auth.require_owner(session, trip_id, user_id)
    payload = body.get('trip') if body and isinstance(body.get('trip'), dict) else body
    columns = services.trip_updates(payload)
    if columns is None:
        raise ApiError(400, INVALID_PAYLOAD, 'Invalid trip data')
    if not columns:
        raise ApiError(400, MISSING_PARAMETER, 'No fields to update')
    updated_at = services.update_trip(session, trip_id, columns)
    return ok({'tripId': trip_id, 'updatedAt': updated_at}, 'updated')


@router.delete('/{trip_id}')
async def delete_trip(
    trip_id: str,
    session: DatabaseSession,
    user_id: CurrentUserId,
) -> JSONResponse:
    """Soft-delete the trip."""
    auth.require_owner(session, trip_id, user_id)
    deleted_at = services.delete_trip(session, trip_id, str(user_id))
    return ok({'tripId': trip_id, 'deleted': True, 'deletedAt': deleted_at}, 'deleted')


@router.put('/{trip_id}/visibility')
async def update_visibility(
    trip_id: str,
    body: VisibilityUpdate,
    session: DatabaseSession,
    user_id: CurrentUserId,
) -> JSONResponse:
    auth.require_owner(session, trip_id, user_id)
    try:
        visibility = services.Visibility(body.visibility)
    except ValueError:
        raise ApiError(400, INVALID_PAYLOAD, 'Invalid visibility') from None
    services.set_visibility(session, trip_id, visibility)
    return ok({'tripId': trip_id, 'visibility': visibility.value}, 'updated')


@router.get('/{trip_id}/export')
async def export_trip(
    trip_id: str,
    session: DatabaseSession,
    user_id: CurrentUserId,
) -> JSONResponse:
    """The trip with every day and live event, fully projected."""
    access = auth.require_read(session, trip_id, user_id)
    return ok(services.export_trip(session, access.trip, access.is_owner))


@router.get('/{trip_id}/progress')
async def read_progress(
    trip_id: str,
    session: DatabaseSession,
    user_id: CurrentUserId,
) -> JSONResponse:
    """Completion percentage of the trip."""
    auth.require_read(session, trip_id, user_id)
    return ok(
        {'tripId': trip_id, 'progress': progress.calculate_trip_progress(session, trip_id)}
    )


@router.get('/{trip_id}/locations')
async def read_locations(
    trip_id: str,
    session: DatabaseSession,
    user_id: CurrentUserId,
) -> JSONResponse:
    """Locations referenced by the trip's events."""
    auth.require_read(session, trip_id, user_id)
    return ok({'locations': services.trip_locations(session, trip_id)})


@router.api_route('/{trip_id}/locations', methods=['PUT', 'POST'])
async def save_location(
    trip_id: str,
    body: LocationSave,
    session: DatabaseSession,
    user_id: CurrentUserId,
) -> JSONResponse:
    """Insert or replace a location (``location`` or the body itself)."""
    auth.require_owner(session, trip_id, user_id)
    payload = body.location if body.location is not None else dict(body.model_extra or {})
    location_id = schedule_services.save_location(session, payload)
    if location_id is None:
        raise ApiError(400, INVALID_PAYLOAD, 'Invalid location data')
    return ok({'locationId': location_id}, 'saved')


@router.get('/{trip_id}/routes')
async def read_route(
    trip_id: str,
    session: DatabaseSession,
    user_id: CurrentUserId,
    from_id: str | None = fastapi.Query(default=None, alias='from'),
    to_id: str | None = fastapi.Query(default=None, alias='to'),
) -> JSONResponse:
    """Stored distance between two locations."""
    auth.require_read(session, trip_id, user_id)
    if not from_id or not to_id:
        raise ApiError(400, MISSING_PARAMETER, 'Missing from/to parameters')
    pair = services.distance_pair(from_id, to_id)
    if pair is None:
        raise ApiError(400, INVALID_PAYLOAD, 'Invalid from/to')
    if pair[0] == pair[1]:
        return ok({'distanceKm': 0, 'source': 'same'})
    route = services.get_route(session, pair)
    if route is None:
        return ok({'distanceKm': 0, 'source': None, 'notFound': True})
    return ok(
        {
            'from': pair[0],
            'to': pair[1],
            'distanceKm': (route.distance_m or 0) / 1000,
            'source': route.source,
            'updatedAt': route.updated_at,
        }
    )


@router.api_route('/{trip_id}/routes', methods=['PUT', 'POST'])
async def save_route(
    trip_id: str,
    body: RouteSave,
    session: DatabaseSession,
    user_id: CurrentUserId,
) -> JSONResponse:
    """Store the distance between two locations."""
    auth.require_owner(session, trip_id, user_id)
    pair = services.distance_pair(body.from_id, body.to_id)
    if pair is None:
        raise ApiError(400, INVALID_PAYLOAD, 'Invalid from/to')
    if pair[0] == pair[1]:
        return ok({'distanceKm': 0})
    raw = body.distanceKm if body.distanceKm is not None else body.distance_km
    distance_km = normalize.normalize_cost(raw) or 0.0
    source = str(body.source or '').strip() or None
    services.save_route(session, pair, distance_km, source)
    return ok(
        {'from': pair[0], 'to': pair[1], 'distanceKm': distance_km, 'source': source},
        'saved',
    )
