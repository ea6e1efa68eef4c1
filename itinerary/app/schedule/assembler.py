"""Builds the projected schedule of a trip.

A schedule read costs at most three queries regardless of the number of
days: one for the days, one for every event and option of those days, and
one for the referenced locations. Rows are grouped in a single pass and
projected through :mod:`.fields`.
"""

from __future__ import annotations

import dataclasses
import datetime
import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

import sqlalchemy
import sqlmodel

from .. import database, models
from . import fields, normalize
from .fields import EntityKind

logger = logging.getLogger(__name__)

# Event columns the assembler needs regardless of the client selection.
_EVENT_STRUCTURAL = ('event_id', 'day_id', 'card_type', 'parent_event_id')

_MODELS: dict[EntityKind, type[sqlmodel.SQLModel]] = {
    EntityKind.TRIP: models.Trip,
    EntityKind.DAY: models.Day,
    EntityKind.EVENT: models.Event,
    EntityKind.LOCATION: models.Location,
}


@dataclasses.dataclass
class Assembly:
    """Projected days (each with ``events``) and the locations they use."""

    days: list[dict[str, Any]]
    locations: list[dict[str, Any]]


def duration_object(minutes: Any) -> dict[str, Any] | None:
    """``{hours, minutes, text}`` for a positive minute count."""
    total = normalize.to_int(minutes, 0)
    if total <= 0:
        return None
    return {
        'hours': total // 60,
        'minutes': total % 60,
        'text': normalize.format_duration_text(total),
    }


def build_location_map(
    rows: Iterable[tuple[Any, dict[str, Any]]],
) -> dict[Any, dict[str, Any]]:
    """Map location ids to projections, keyed by both str and int forms."""
    lookup: dict[Any, dict[str, Any]] = {}
    for raw_id, projected in rows:
        if raw_id is None or raw_id == '':
            continue
        key = str(raw_id)
        lookup[key] = projected
        if key.isdigit():
            lookup[int(key)] = projected
    return lookup


def lookup_location(
    location_map: Mapping[Any, dict[str, Any]], location_id: Any
) -> dict[str, Any] | None:
    """Find a location by id in either representation."""
    found = location_map.get(str(location_id))
    if found is None and str(location_id).isdigit():
        found = location_map.get(int(str(location_id)))
    return found


def build_days_from_trip(start_date: Any, end_date: Any) -> list[dict[str, Any]]:
    """Synthesise a days list from a trip's date range (one entry per date)."""
    try:
        start = datetime.date.fromisoformat(str(start_date or '')[:10])
        end = datetime.date.fromisoformat(str(end_date or '')[:10])
    except ValueError:
        return []
    count = max(1, (end - start).days + 1)
    days = []
    for offset in range(count):
        date = (start + datetime.timedelta(days=offset)).isoformat()
        days.append(
            {
                'id': date,
                'date': date,
                'shortDate': normalize.dotted_short_date(date),
                'location': '',
            }
        )
    return days


class ScheduleAssembler:
    """Fetches, groups and projects days, events and locations of a trip."""

    def __init__(
        self,
        session: sqlmodel.Session,
        table_schema: database.TableSchemaCache,
        is_owner: bool = True,
    ) -> None:
        self.session = session
        self.table_schema = table_schema.ensure(session)
        self.is_owner = is_owner

    # ------------------------------------------------------------------
    # Column plumbing
    # ------------------------------------------------------------------

    def _select_list(self, kind: EntityKind, columns: Sequence[str]) -> list[Any]:
        """Model columns for *columns*; ones missing from storage become NULL."""
        table = _MODELS[kind].__table__  # type: ignore[attr-defined]
        known = self.table_schema.columns(kind.value)
        selected: list[Any] = []
        for name in dict.fromkeys(columns):
            if name not in table.c or (known and not self.table_schema.has_column(kind.value, name)):
                selected.append(sqlalchemy.null().label(name))
            else:
                selected.append(table.c[name])
        return selected

    def _live_event_condition(self) -> Any:
        if not self.table_schema.has_column('event', 'is_deleted'):
            return sqlalchemy.true()
        return sqlalchemy.or_(
            models.Event.is_deleted.is_(None),  # type: ignore[attr-defined]
            models.Event.is_deleted.is_(False),  # type: ignore[attr-defined]
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def resolve_day_filter(self, trip_id: str, day_filter: str | None) -> str | None:
        """Turn a day id or calendar date into a day id.

        Dates with no stored row fall back to the date itself so days that
        were never persisted still resolve.
        """
        if not day_filter:
            return None
        if not normalize.looks_like_date(day_filter):
            return day_filter
        found = self.session.execute(
            sqlalchemy.select(models.Day.day_id).where(
                models.Day.trip_id == trip_id, models.Day.date == day_filter
            )
        ).scalar()
        return str(found).strip() if found else day_filter

    def fetch_days(
        self, trip_id: str, day_id: str | None, day_fields: fields.FieldSelection
    ) -> list[Mapping[str, Any]]:
        columns = [*fields.resolve_columns(EntityKind.DAY, day_fields, self.is_owner), 'day_id']
        stmt = sqlalchemy.select(*self._select_list(EntityKind.DAY, columns)).where(
            models.Day.trip_id == trip_id
        )
        if day_id:
            stmt = stmt.where(models.Day.day_id == day_id)
        stmt = stmt.order_by(models.Day.day_order, models.Day.day_id)
        rows: list[Mapping[str, Any]] = list(self.session.execute(stmt).mappings())
        if not rows and day_id:
            rows = [self.virtual_day(day_id)]
        return rows

    @staticmethod
    def virtual_day(day_id: str) -> dict[str, Any]:
        """Placeholder row for a requested day that has no stored row yet."""
        is_date = normalize.looks_like_date(day_id)
        return {
            'day_id': day_id,
            'date': day_id if is_date else '',
            'short_date': normalize.dotted_short_date(day_id) if is_date else '',
            'location': '',
        }

    def fetch_events(
        self,
        trip_id: str,
        day_ids: Sequence[str],
        event_fields: fields.FieldSelection,
        event_id: str | None = None,
    ) -> list[Mapping[str, Any]]:
        """Top-level events and options of every day in one query."""
        if not day_ids:
            return []
        columns = [
            *fields.resolve_columns(EntityKind.EVENT, event_fields, self.is_owner),
            *_EVENT_STRUCTURAL,
            'location_id',
            'location_name',
            'start_time',
            'duration_min',
        ]
        is_child = sqlalchemy.case(
            (models.Event.parent_event_id.is_(None), 0), else_=1  # type: ignore[union-attr]
        ).label('is_child')
        stmt = sqlalchemy.select(
            *self._select_list(EntityKind.EVENT, columns), is_child
        ).where(
            models.Event.trip_id == trip_id,
            models.Event.day_id.in_(list(day_ids)),  # type: ignore[attr-defined]
            self._live_event_condition(),
        )
        if event_id:
            stmt = stmt.where(
                sqlalchemy.or_(
                    models.Event.event_id == event_id,
                    models.Event.parent_event_id == event_id,
                )
            )
        stmt = stmt.order_by(models.Event.event_order, models.Event.event_id)
        return list(self.session.execute(stmt).mappings())

    def fetch_locations(
        self, location_ids: Iterable[str], location_fields: fields.FieldSelection
    ) -> list[tuple[Any, dict[str, Any]]]:
        """(raw id, projection) pairs for the given ids in one query."""
        ids = list(dict.fromkeys(location_ids))
        if not ids:
            return []
        columns = [
            *fields.resolve_columns(EntityKind.LOCATION, location_fields, self.is_owner),
            'location_id',
        ]
        stmt = sqlalchemy.select(*self._select_list(EntityKind.LOCATION, columns)).where(
            models.Location.location_id.in_(ids)  # type: ignore[attr-defined]
        )
        return [
            (
                row['location_id'],
                fields.project_row(EntityKind.LOCATION, row, location_fields, self.is_owner) or {},
            )
            for row in self.session.execute(stmt).mappings()
        ]

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------

    def _project_event(
        self, row: Mapping[str, Any], event_fields: fields.FieldSelection
    ) -> dict[str, Any]:
        return fields.project_row(EntityKind.EVENT, row, event_fields, self.is_owner) or {}

    def assemble(
        self,
        trip_id: str,
        day_filter: str | None = None,
        schema: fields.Schema | None = None,
        event_id: str | None = None,
    ) -> Assembly:
        """Project the schedule of *trip_id*, optionally one day or event."""
        day_fields = fields.selection(schema, EntityKind.DAY)
        event_fields = fields.selection(schema, EntityKind.EVENT)
        location_fields = fields.selection(schema, EntityKind.LOCATION)

        day_id = self.resolve_day_filter(trip_id, day_filter)
        day_rows = self.fetch_days(trip_id, day_id, day_fields)
        day_ids = [str(r['day_id']) for r in day_rows if r.get('day_id')]
        event_rows = self.fetch_events(trip_id, day_ids, event_fields, event_id)

        collect_locations = fields.wants(event_fields, 'locationId') or fields.wants(
            event_fields, 'location'
        )
        location_ids: list[str] = []
        top_level: dict[str, list[Mapping[str, Any]]] = {}
        children: dict[str, list[Mapping[str, Any]]] = {}
        for row in event_rows:
            if collect_locations and row['location_id']:
                location_ids.append(str(row['location_id']))
            if row['is_child'] == 0 or row['parent_event_id'] is None:
                top_level.setdefault(str(row['day_id']), []).append(row)
            else:
                children.setdefault(str(row['parent_event_id']), []).append(row)

        want_options = fields.wants(event_fields, 'options')
        enriched: list[tuple[dict[str, Any], Mapping[str, Any]]] = []
        days: list[dict[str, Any]] = []
        for day_row in day_rows:
            day = fields.project_row(EntityKind.DAY, day_row, day_fields, self.is_owner) or {}
            day['events'] = []
            for row in top_level.get(str(day_row.get('day_id')), []):
                event = self._project_event(row, event_fields)
                enriched.append((event, row))
                if row['card_type'] == normalize.MULTI and want_options:
                    options = []
                    for child_row in children.get(str(row['event_id']), []):
                        option = self._project_event(child_row, event_fields)
                        if child_row['location_id']:
                            option['locationId'] = child_row['location_id']
                        if child_row['location_name']:
                            option['locationName'] = child_row['location_name']
                        enriched.append((option, child_row))
                        options.append(option)
                    event['options'] = options
                day['events'].append(event)
            days.append(day)

        location_pairs: list[tuple[Any, dict[str, Any]]] = []
        if schema is None or EntityKind.LOCATION in schema:
            location_pairs = self.fetch_locations(location_ids, location_fields)
        location_map = build_location_map(location_pairs)

        self._enrich(enriched, location_map, event_fields)
        return Assembly(days=days, locations=[p for _, p in location_pairs])

    def _enrich(
        self,
        targets: Iterable[tuple[dict[str, Any], Mapping[str, Any]]],
        location_map: Mapping[Any, dict[str, Any]],
        event_fields: fields.FieldSelection,
    ) -> None:
        """Attach ``location`` and the derived ``time``/``duration`` fields."""
        want_location = fields.wants(event_fields, 'location')
        want_time = fields.wants(event_fields, 'time')
        want_duration = fields.wants(event_fields, 'duration')
        for target, row in targets:
            derive_event_fields(
                target,
                row,
                location_map if want_location else None,
                want_time=want_time,
                want_duration=want_duration,
            )

    # ------------------------------------------------------------------
    # Secondary reads
    # ------------------------------------------------------------------

    def days_list(self, trip_id: str) -> list[dict[str, Any]]:
        """Every day of the trip, or a list synthesised from its date range."""
        rows = self.session.execute(
            sqlalchemy.select(
                models.Day.day_id,
                models.Day.date,
                models.Day.short_date,
                models.Day.location,
                models.Day.day_order,
            )
            .where(models.Day.trip_id == trip_id)
            .order_by(models.Day.day_order, models.Day.date)
        ).all()
        if rows:
            return [
                {
                    'id': str(r.day_id or ''),
                    'date': str(r.date or ''),
                    'shortDate': str(r.short_date or ''),
                    'location': str(r.location or ''),
                    'order': int(r.day_order or 0),
                }
                for r in rows
            ]
        trip = self.session.get(models.Trip, trip_id)
        if trip is None:
            return []
        return build_days_from_trip(trip.start_date, trip.end_date)

    def get_event_with_options(self, trip_id: str, event_id: str) -> dict[str, Any] | None:
        """Full projection of one event, with ``options`` for multi cards."""
        row = self.session.execute(
            sqlalchemy.select(models.Event.__table__).where(  # type: ignore[attr-defined]
                models.Event.trip_id == trip_id, models.Event.event_id == event_id
            )
        ).mappings().first()
        if row is None:
            return None
        event = self._project_event(row, None)
        derive_event_fields(event, row)
        if row['card_type'] == normalize.MULTI:
            child_rows = self.session.execute(
                sqlalchemy.select(models.Event.__table__)  # type: ignore[attr-defined]
                .where(
                    models.Event.parent_event_id == event_id,
                    self._live_event_condition(),
                )
                .order_by(models.Event.event_order, models.Event.event_id)
            ).mappings()
            options = []
            for child_row in child_rows:
                option = self._project_event(child_row, None)
                derive_event_fields(option, child_row)
                options.append(option)
            event['options'] = options
        return event


def derive_event_fields(
    target: dict[str, Any],
    row: Mapping[str, Any],
    location_map: Mapping[Any, dict[str, Any]] | None = None,
    want_time: bool = True,
    want_duration: bool = True,
) -> dict[str, Any]:
    """Fill the virtual ``time``, ``duration`` and ``location`` fields.

    ``location`` is only touched when a *location_map* is given; an id
    with no stored location yields ``None``.
    """
    if want_time and row.get('start_time'):
        target['time'] = row['start_time']
    if want_duration:
        duration = duration_object(row.get('duration_min'))
        if duration is not None:
            target['duration'] = duration
    if location_map is not None and row.get('location_id'):
        target['location'] = lookup_location(location_map, row['location_id'])
    return target
