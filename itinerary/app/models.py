"""Database models for trips, days, events, locations and routes.

Column names are the storage vocabulary; the client-facing names live in
:mod:`itinerary.app.schedule.fields`. Timestamps are Unix epoch
milliseconds.
"""

import time

import sqlalchemy
import sqlmodel


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class Trip(sqlmodel.SQLModel, table=True):
    """A trip owned by one user."""

    __tablename__ = 'trip'  # type: ignore[misc]

    trip_id: str = sqlmodel.Field(primary_key=True, max_length=64)
    user_id: str | None = sqlmodel.Field(default=None, index=True, max_length=64)
    slug: str | None = sqlmodel.Field(default=None, max_length=200)
    title: str | None = sqlmodel.Field(default=None, max_length=200)
    year: int | None = None
    description: str | None = None
    start_date: str | None = sqlmodel.Field(default=None, max_length=10)
    end_date: str | None = sqlmodel.Field(default=None, max_length=10)
    days: int | None = None
    city_list: str | None = None  # JSON array
    cover_image: str | None = None
    status: str = sqlmodel.Field(default='draft', max_length=20)
    visibility: str = sqlmodel.Field(default='private', max_length=20)
    footer_text: str | None = None
    traveler_count: int | None = None
    budget_per_person_min: float | None = None
    budget_per_person_max: float | None = None
    budget_unit: str | None = sqlmodel.Field(default=None, max_length=20)
    is_deleted: bool = False
    deleted_at: int | None = None
    deleted_by: str | None = sqlmodel.Field(default=None, max_length=64)
    created_at: int = sqlmodel.Field(default_factory=now_ms)
    updated_at: int = sqlmodel.Field(default_factory=now_ms)


class Day(sqlmodel.SQLModel, table=True):
    """One day of a trip; ``day_order`` is contiguous within the trip."""

    __tablename__ = 'day'  # type: ignore[misc]
    __table_args__ = (sqlalchemy.Index('idx_day_trip_order', 'trip_id', 'day_order'),)

    day_id: str = sqlmodel.Field(primary_key=True, max_length=64)
    trip_id: str = sqlmodel.Field(primary_key=True, max_length=64)
    day_order: int = 0
    date: str | None = sqlmodel.Field(default=None, max_length=10)
    short_date: str | None = sqlmodel.Field(default=None, max_length=20)
    location: str | None = None
    title: str | None = None
    description: str | None = None
    cover_image: str | None = None
    created_at: int = sqlmodel.Field(default_factory=now_ms)
    updated_at: int = sqlmodel.Field(default_factory=now_ms)


class Event(sqlmodel.SQLModel, table=True):
    """A scheduled activity, or an option nested under a multi-option card."""

    __tablename__ = 'event'  # type: ignore[misc]
    __table_args__ = (
        sqlalchemy.Index('idx_event_day_order', 'trip_id', 'day_id', 'event_order'),
    )

    event_id: str = sqlmodel.Field(primary_key=True, max_length=64)
    day_id: str = sqlmodel.Field(max_length=64)
    trip_id: str = sqlmodel.Field(max_length=64)
    event_order: int = 0
    type: str = sqlmodel.Field(default='activity', max_length=40)
    state: str = sqlmodel.Field(default='active', max_length=20)
    card_type: str = sqlmodel.Field(default='single', max_length=20)
    title: str | None = None
    description: str | None = None
    detail: str | None = None
    start_time: str | None = sqlmodel.Field(default=None, max_length=20)
    end_time: str | None = sqlmodel.Field(default=None, max_length=20)
    duration_min: int | None = None
    priority: int = 0
    location_id: str | None = sqlmodel.Field(default=None, max_length=64)
    location_name: str | None = None
    tags: str | None = None  # JSON array
    images: str | None = None  # JSON array
    cost: float | None = None
    cost_currency: str | None = sqlmodel.Field(default='CNY', max_length=10)
    parent_event_id: str | None = sqlmodel.Field(
        default=None, index=True, max_length=64
    )
    weather_json: str | None = None
    is_deleted: bool = False
    deleted_at: int | None = None
    created_at: int = sqlmodel.Field(default_factory=now_ms)
    updated_at: int = sqlmodel.Field(default_factory=now_ms)


class Location(sqlmodel.SQLModel, table=True):
    """A place shared across events, keyed by an external id."""

    __tablename__ = 'location'  # type: ignore[misc]

    location_id: str = sqlmodel.Field(primary_key=True, max_length=64)
    name: str | None = None
    address: str | None = None
    lat: float | None = None
    lng: float | None = None
    images: str | None = None  # JSON array
    tags: str | None = None  # JSON array
    rating: float | None = None
    open_time: str | None = None
    price: float | None = None
    meta_json: str | None = None
    created_at: int = sqlmodel.Field(default_factory=now_ms)
    updated_at: int = sqlmodel.Field(default_factory=now_ms)


class Route(sqlmodel.SQLModel, table=True):
    """Distance between an unordered pair of locations (``from <= to``)."""

    __tablename__ = 'route'  # type: ignore[misc]

    from_location: str = sqlmodel.Field(primary_key=True, max_length=64)
    to_location: str = sqlmodel.Field(primary_key=True, max_length=64)
    distance_m: float = 0.0
    source: str | None = sqlmodel.Field(default=None, max_length=40)
    created_at: int = sqlmodel.Field(default_factory=now_ms)
    updated_at: int = sqlmodel.Field(default_factory=now_ms)
