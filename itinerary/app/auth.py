"""Caller identity and trip access checks.

User sessions are managed elsewhere; the caller's id arrives in the
``X-User-Id`` header. Tests override :func:`get_current_user_id`.
"""

import dataclasses

import fastapi
import sqlalchemy
import sqlmodel

from . import models
from .responses import (
    LOGIN_REQUIRED,
    PERMISSION_DENIED,
    TRIP_NOT_FOUND,
    ApiError,
)


USER_HEADER = 'X-User-Id'


def get_current_user_id(request: fastapi.Request) -> str | None:
    """The authenticated user's id, or None for anonymous callers."""
    user_id = request.headers.get(USER_HEADER, '').strip()
    return user_id or None


@dataclasses.dataclass(frozen=True)
class TripAccess:
    trip: models.Trip
    is_owner: bool


def load_trip(session: sqlmodel.Session, trip_id: str) -> models.Trip | None:
    """The trip unless it is missing or soft-deleted."""
    return session.exec(
        sqlmodel.select(models.Trip).where(
            models.Trip.trip_id == trip_id,
            sqlalchemy.or_(
                models.Trip.is_deleted.is_(None),  # type: ignore[attr-defined]
                models.Trip.is_deleted.is_(False),  # type: ignore[attr-defined]
            ),
        )
    ).first()


def is_owner(trip: models.Trip, user_id: str | None) -> bool:
    return user_id is not None and str(trip.user_id) == str(user_id)


def can_read(trip: models.Trip, user_id: str | None) -> bool:
    """Owners, published public trips and link-shared trips are readable."""
    if is_owner(trip, user_id):
        return True
    if trip.visibility == 'public' and trip.status == 'published':
        return True
    return trip.visibility == 'link'


def require_read(
    session: sqlmodel.Session, trip_id: str, user_id: str | None
) -> TripAccess:
    """Trip readable by *user_id*, else 404 or 403."""
    trip = load_trip(session, trip_id)
    if trip is None:
        raise ApiError(404, TRIP_NOT_FOUND, 'Trip not found')
    if not can_read(trip, user_id):
        raise ApiError(403, PERMISSION_DENIED, 'Permission denied')
    return TripAccess(trip=trip, is_owner=is_owner(trip, user_id))


def require_owner(
    session: sqlmodel.Session, trip_id: str, user_id: str | None
) -> TripAccess:
    """Trip owned by *user_id*, else 401, 404 or 403."""
    if user_id is None:
        raise ApiError(401, LOGIN_REQUIRED, 'Login required')
    trip = load_trip(session, trip_id)
    if trip is None:
        raise ApiError(404, TRIP_NOT_FOUND, 'Trip not found')
    if not is_owner(trip, user_id):
        raise ApiError(403, PERMISSION_DENIED, 'Permission denied')
    return TripAccess(trip=trip, is_owner=True)
