"""Trip-level reads and writes: trips, referenced locations and distances."""

import enum
import logging
from collections.abc import Mapping
from typing import Any

import sqlalchemy
import sqlmodel

from .. import database, models
from ..schedule import fields, normalize, progress
from ..schedule.assembler import ScheduleAssembler
from ..schedule.fields import EntityKind
from ..schedule.ids import IdGenerator

logger = logging.getLogger(__name__)


class Visibility(enum.StrEnum):
    PRIVATE = 'private'
    PUBLIC = 'public'
    LINK = 'link'


class Status(enum.StrEnum):
    DRAFT = 'draft'
    PUBLISHED = 'published'


# Trip fields a client may set on creation.
_WRITABLE_TRIP_FIELDS = (
    'slug', 'title', 'year', 'description', 'startDate', 'endDate', 'days',
    'cityList', 'coverImage', 'status', 'visibility', 'footerText',
    'travelerCount', 'budgetPerPersonMin', 'budgetPerPersonMax', 'budgetUnit',
)

_NUMERIC_TRIP_COLUMNS = frozenset(
    {'year', 'days', 'traveler_count', 'budget_per_person_min', 'budget_per_person_max'}
)


# ---------------------------------------------------------------------------
# Trips
# ---------------------------------------------------------------------------


def trip_columns(payload: Any) -> dict[str, Any] | None:
    """Storage columns for a new trip, or None if the payload is invalid."""
    if not isinstance(payload, Mapping):
        return None
    mapping = fields.FIELD_MAPS[EntityKind.TRIP]
    columns: dict[str, Any] = {}
    for name in _WRITABLE_TRIP_FIELDS:
        if payload.get(name) is not None:
            columns[mapping[name]] = payload[name]
    try:
        columns['status'] = Status(columns.get('status', Status.DRAFT)).value
        columns['visibility'] = Visibility(
            columns.get('visibility', Visibility.PRIVATE)
        ).value
    except ValueError:
        return None
    if 'city_list' in columns:
        columns['city_list'] = fields.encode_json(columns['city_list'])
    for key in ('year', 'days', 'traveler_count'):
        if key in columns:
            columns[key] = normalize.to_int(columns[key], 0)
    for key in ('start_date', 'end_date'):
        if key in columns:
            columns[key] = str(columns[key])[:10]
    return columns


def create_trip(
    session: sqlmodel.Session, ids: IdGenerator, user_id: str, payload: Any
) -> models.Trip | None:
    """Insert a trip owned by *user_id*."""
    columns = trip_columns(payload)
    if columns is None:
        return None
    trip = models.Trip(trip_id=ids.trip_id(), user_id=user_id, **columns)
    session.add(trip)
    session.commit()
    session.refresh(trip)
    logger.info('Created trip %s for user %s', trip.trip_id, user_id)
    return trip


def trip_updates(payload: Any) -> dict[str, Any] | None:
    """Column changes for the writable fields present in *payload*.

    Present fields are applied as given: blank strings and nulls clear the
    column, numbers that do not parse become NULL. None if the payload is
    not an object or names an unknown status or visibility.
    """
    if not isinstance(payload, Mapping):
        return None
    mapping = fields.FIELD_MAPS[EntityKind.TRIP]
    columns: dict[str, Any] = {}
    for name in _WRITABLE_TRIP_FIELDS:
        if name not in payload:
            continue
        column, value = mapping[name], payload[name]
        if name == 'cityList':
            columns[column] = fields.encode_json(value) if value else None
        elif column in _NUMERIC_TRIP_COLUMNS:
            number = normalize.normalize_cost(value)
            if number is not None and not column.startswith('budget'):
                number = int(number)
            columns[column] = number
        else:
            columns[column] = str(value if value is not None else '').strip() or None
    try:
        if 'status' in columns:
            columns['status'] = Status(columns['status']).value
        if 'visibility' in columns:
            columns['visibility'] = Visibility(columns['visibility']).value
    except ValueError:
        return None
    for key in ('start_date', 'end_date'):
        if columns.get(key):
            columns[key] = columns[key][:10]
    return columns


def update_trip(session: sqlmodel.Session, trip_id: str, columns: Mapping[str, Any]) -> int:
    """Apply *columns* to the trip and return the new ``updated_at``."""
    now = models.now_ms()
    session.execute(
        sqlalchemy.update(models.Trip)
        .where(models.Trip.trip_id == trip_id)
        .values(**columns, updated_at=now)
    )
    session.commit()
    logger.info('Updated trip %s (%s)', trip_id, ', '.join(sorted(columns)))
    return now


def set_visibility(session: sqlmodel.Session, trip_id: str, visibility: Visibility) -> None:
    update_trip(session, trip_id, {'visibility': visibility.value})


def delete_trip(session: sqlmodel.Session, trip_id: str, user_id: str) -> int:
    """Soft-delete the trip; returns ``deleted_at``.

    Its days and events stay stored but the trip no longer loads.
    """
    now = models.now_ms()
    session.execute(
        sqlalchemy.update(models.Trip)
        .where(models.Trip.trip_id == trip_id)
        .values(is_deleted=True, deleted_at=now, deleted_by=user_id)
    )
    session.commit()
    logger.info('Deleted trip %s by user %s', trip_id, user_id)
    return now


def export_trip(
    session: sqlmodel.Session, trip: models.Trip, is_owner: bool
) -> dict[str, Any]:
    """Full projections of the trip, its days and its live events."""
    row = {column: getattr(trip, column) for column in models.Trip.__table__.columns.keys()}  # type: ignore[attr-defined]
    days = session.execute(
        sqlalchemy.select(models.Day.__table__)  # type: ignore[attr-defined]
        .where(models.Day.trip_id == trip.trip_id)
        .order_by(models.Day.day_order, models.Day.day_id)
    ).mappings()
    events = session.execute(
        sqlalchemy.select(models.Event.__table__)  # type: ignore[attr-defined]
        .where(
            models.Event.trip_id == trip.trip_id,
            sqlalchemy.or_(
                models.Event.is_deleted.is_(None),  # type: ignore[attr-defined]
                models.Event.is_deleted.is_(False),  # type: ignore[attr-defined]
            ),
        )
        .order_by(models.Event.day_id, models.Event.event_order, models.Event.event_id)
    ).mappings()
    return {
        'trip': fields.project_row(EntityKind.TRIP, row, None, is_owner),
        'schedule': [fields.project_row(EntityKind.DAY, d, None, is_owner) for d in days],
        'events': [fields.project_row(EntityKind.EVENT, e, None, is_owner) for e in events],
    }


def project_trip(
    session: sqlmodel.Session,
    trip: models.Trip,
    trip_fields: fields.FieldSelection,
    is_owner: bool,
) -> dict[str, Any]:
    """Trip projection plus the derived ``completed`` percentage."""
    # getattr reloads attributes expired by an earlier commit
    row = {column: getattr(trip, column) for column in models.Trip.__table__.columns.keys()}  # type: ignore[attr-defined]
    projected = fields.project_row(EntityKind.TRIP, row, trip_fields, is_owner) or {}
    if fields.wants(trip_fields, 'completed'):
        projected['completed'] = progress.calculate_trip_progress(session, trip.trip_id)
    return projected


def get_trip(
    session: sqlmodel.Session,
    table_schema: database.TableSchemaCache,
    trip: models.Trip,
    schema: fields.Schema | None,
    is_owner: bool,
) -> dict[str, Any]:
    """``{trip, daysList}`` for the trip page."""
    trip_fields = fields.selection(schema, EntityKind.TRIP)
    assembler = ScheduleAssembler(session, table_schema, is_owner=is_owner)
    return {
        'trip': project_trip(session, trip, trip_fields, is_owner),
        'daysList': assembler.days_list(trip.trip_id),
    }


# ---------------------------------------------------------------------------
# Locations
# ---------------------------------------------------------------------------


def trip_locations(session: sqlmodel.Session, trip_id: str) -> list[dict[str, Any]]:
    """Locations referenced by the trip's live events, newest first."""
    referenced = (
        sqlalchemy.select(models.Event.location_id)
        .where(
            models.Event.trip_id == trip_id,
            models.Event.location_id.is_not(None),  # type: ignore[union-attr]
            sqlalchemy.or_(
                models.Event.is_deleted.is_(None),  # type: ignore[attr-defined]
                models.Event.is_deleted.is_(False),  # type: ignore[attr-defined]
            ),
        )
        .distinct()
    )
    rows = session.execute(
        sqlalchemy.select(models.Location.__table__)  # type: ignore[attr-defined]
        .where(models.Location.location_id.in_(referenced))  # type: ignore[attr-defined]
        .order_by(models.Location.updated_at.desc())  # type: ignore[attr-defined]
    ).mappings()
    return [fields.project_row(EntityKind.LOCATION, row, None) or {} for row in rows]


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


def distance_pair(from_id: Any, to_id: Any) -> tuple[str, str] | None:
    """Canonical ``(a, b)`` with ``a <= b``, or None if either id is invalid."""
    a = normalize.normalize_location_id(from_id)
    b = normalize.normalize_location_id(to_id)
    if not a or not b:
        return None
    return (a, b) if a <= b else (b, a)


def get_route(session: sqlmodel.Session, pair: tuple[str, str]) -> models.Route | None:
    return session.get(models.Route, pair)


def save_route(
    session: sqlmodel.Session,
    pair: tuple[str, str],
    distance_km: float,
    source: str | None,
) -> models.Route:
    """Insert or replace the distance between a pair of locations."""
    now = models.now_ms()
    route = session.merge(
        models.Route(
            from_location=pair[0],
            to_location=pair[1],
            distance_m=distance_km * 1000,
            source=source,
            created_at=now,
            updated_at=now,
        )
    )
    session.commit()
    return route
