"""Write operations on days and events.

Each public function performs its order shifting and the dependent
insert, update or delete on one session and commits once. Functions return
None (or a falsy count) when the target does not exist; the route layer
turns that into an error response.
"""

import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

import sqlalchemy
import sqlmodel

from .. import database, models
from . import fields, normalize
from .fields import EntityKind
from .ids import IdGenerator
from .ordering import DayScope, EventScope, OrderingManager

logger = logging.getLogger(__name__)

# When a payload carries the first key of a pair but not the second, the
# stored value of the second must not shadow it during a merge.
_ALIASED_KEYS = (
    ('time', 'startTime'),
    ('end_time', 'endTime'),
    ('duration', 'durationMin'),
    ('card_type', 'cardType'),
    ('cost_currency', 'costCurrency'),
)


def soft_delete_enabled(table_schema: database.TableSchemaCache) -> bool:
    """Events are soft-deleted only when storage has the flag column."""
    enabled = table_schema.has_column('event', 'is_deleted')
    logger.debug('Event delete mode: %s', 'soft' if enabled else 'hard')
    return enabled


def touch_trip(session: sqlmodel.Session, trip_id: str, now: int) -> None:
    session.execute(
        sqlalchemy.update(models.Trip)
        .where(models.Trip.trip_id == trip_id)
        .values(updated_at=now)
    )


# ---------------------------------------------------------------------------
# Locations
# ---------------------------------------------------------------------------


def upsert_location(session: sqlmodel.Session, raw: Any) -> str | None:
    """Replace the stored location with the payload's columns (no commit)."""
    values = normalize.normalize_location(raw)
    if values is None:
        return None
    now = models.now_ms()
    session.merge(models.Location(**values, created_at=now, updated_at=now))
    return values['location_id']


def save_location(session: sqlmodel.Session, raw: Any) -> str | None:
    """Upsert a location from a client payload and return its id."""
    location_id = upsert_location(session, raw)
    if location_id is not None:
        session.commit()
    return location_id


# ---------------------------------------------------------------------------
# Day resolution
# ---------------------------------------------------------------------------


def day_id_for_date(session: sqlmodel.Session, trip_id: str, date: str) -> str | None:
    found = session.execute(
        sqlalchemy.select(models.Day.day_id).where(
            models.Day.trip_id == trip_id, models.Day.date == date
        )
    ).scalar()
    return str(found).strip() if found else None


def resolve_event_day(session: sqlmodel.Session, trip_id: str, day_id: str) -> str | None:
    """Day id to create events under; dates must match a stored day."""
    if normalize.looks_like_date(day_id):
        return day_id_for_date(session, trip_id, day_id)
    return day_id


def resolve_day_id(session: sqlmodel.Session, trip_id: str, raw: Any) -> str | None:
    """Resolve a position-or-id reference to a stored day id.

    A non-negative integer is first tried as a zero-based position in day
    order, then every input is tried as a literal day id.
    """
    if raw is None or raw == '':
        return None
    index = normalize.to_int(raw, -1)
    if index >= 0:
        found = session.execute(
            sqlalchemy.select(models.Day.day_id)
            .where(models.Day.trip_id == trip_id)
            .order_by(models.Day.day_order, models.Day.day_id)
            .limit(1)
            .offset(index)
        ).scalar()
        if found:
            return str(found)
    found = session.execute(
        sqlalchemy.select(models.Day.day_id).where(
            models.Day.trip_id == trip_id, models.Day.day_id == str(raw)
        )
    ).scalar()
    return str(found) if found else None


# ---------------------------------------------------------------------------
# Inserts
# ---------------------------------------------------------------------------


def _add_event(
    session: sqlmodel.Session,
    event: normalize.CanonicalEvent,
    trip_id: str,
    day_id: str,
    order: int,
    now: int,
    parent_event_id: str | None = None,
) -> models.Event:
    if event.location_from_payload:
        upsert_location(session, event.location)
    columns = event.columns()
    if parent_event_id is not None:
        columns['card_type'] = normalize.SINGLE
    row = models.Event(
        event_id=event.uid,
        day_id=day_id,
        trip_id=trip_id,
        event_order=order,
        parent_event_id=parent_event_id,
        created_at=now,
        updated_at=now,
        **columns,
    )
    session.add(row)
    return row


def _add_options(
    session: sqlmodel.Session,
    ids: IdGenerator,
    parent: normalize.CanonicalEvent,
    trip_id: str,
    day_id: str,
    now: int,
) -> int:
    """Insert the options of a multi card with order = index; returns count."""
    children = normalize.expand_options(parent, ids)
    for index, child in enumerate(children):
        _add_event(session, child, trip_id, day_id, index, now, parent_event_id=parent.uid)
    return len(children)


def _add_with_options(
    session: sqlmodel.Session,
    ids: IdGenerator,
    event: normalize.CanonicalEvent,
    trip_id: str,
    day_id: str,
    order: int,
    now: int,
) -> None:
    _add_event(session, event, trip_id, day_id, order, now)
    if event.is_multi:
        _add_options(session, ids, event, trip_id, day_id, now)


def _position(raw: Any) -> int | None:
    """Requested insert position, or None to append (missing or not numeric)."""
    number = normalize.normalize_cost(raw)
    return None if number is None else int(number)


def create_event(
    session: sqlmodel.Session,
    ids: IdGenerator,
    trip_id: str,
    day_id: str,
    payload: Any,
    position: Any = None,
    soft_delete: bool = True,
) -> tuple[str, int] | None:
    """Insert one event (and its options) and return (event id, order).

    None if the payload is not an event object.
    """
    event = normalize.normalize_event(payload, ids)
    if event is None:
        return None
    manager = OrderingManager(session, soft_delete=soft_delete)
    scope = EventScope(trip_id, day_id)
    requested = _position(position)
    if requested is None:
        order = manager.append(scope)
    else:
        order = manager.insert_at(scope, manager.clamp(scope, requested))
    now = models.now_ms()
    _add_with_options(session, ids, event, trip_id, day_id, order, now)
    touch_trip(session, trip_id, now)
    session.commit()
    return event.uid, order


def create_events(
    session: sqlmodel.Session,
    ids: IdGenerator,
    trip_id: str,
    day_id: str,
    payloads: Sequence[Any],
    position: Any = None,
    soft_delete: bool = True,
) -> list[str]:
    """Insert several sibling events, opening one gap of the batch size.

    Non-object payloads are skipped. Without a position (or with a
    negative one) the events are appended in payload order.
    """
    events = [e for e in (normalize.normalize_event(p, ids) for p in payloads) if e]
    if not events:
        return []
    manager = OrderingManager(session, soft_delete=soft_delete)
    scope = EventScope(trip_id, day_id)
    requested = _position(position)
    if requested is None or requested < 0:
        start = manager.append(scope)
    else:
        start = manager.insert_at(scope, manager.clamp(scope, requested), len(events))
    now = models.now_ms()
    for offset, event in enumerate(events):
        _add_with_options(session, ids, event, trip_id, day_id, start + offset, now)
    touch_trip(session, trip_id, now)
    session.commit()
    return [e.uid for e in events]


def create_day(
    session: sqlmodel.Session,
    ids: IdGenerator,
    trip_id: str,
    payload: Any,
    position: Any = None,
) -> dict[str, Any] | None:
    """Insert a day (and any embedded events); None for an invalid payload.

    An id that is already stored is reported with ``existed`` and nothing
    is written.
    """
    day = normalize.normalize_day(payload)
    if day is None:
        return None
    day_id = day['id']
    existing = session.execute(
        sqlalchemy.select(models.Day.day_id).where(
            models.Day.trip_id == trip_id, models.Day.day_id == day_id
        )
    ).scalar()
    if existing:
        return {'dayId': day_id, 'existed': True}

    manager = OrderingManager(session)
    scope = DayScope(trip_id)
    requested = _position(position)
    if requested is None:
        order = manager.append(scope)
    else:
        order = manager.insert_at(scope, manager.clamp(scope, requested))

    raw_date = day.get('date') or ''
    now = models.now_ms()
    session.add(
        models.Day(
            day_id=day_id,
            trip_id=trip_id,
            day_order=order,
            date=str(raw_date)[:10] or None,
            short_date=day.get('shortDate') or normalize.generate_short_date(raw_date),
            location=day.get('location') or None,
            title=day.get('title') or None,
            description=day.get('description') or None,
            cover_image=day.get('coverImage') or None,
            created_at=now,
            updated_at=now,
        )
    )

    embedded = payload.get('events') if isinstance(payload, Mapping) else None
    if isinstance(embedded, list):
        events = [e for e in (normalize.normalize_event(p, ids) for p in embedded) if e]
        for index, event in enumerate(events):
            _add_with_options(session, ids, event, trip_id, day_id, index, now)

    touch_trip(session, trip_id, now)
    session.commit()
    return {'dayId': day_id, 'dayOrder': order, 'createdAt': now}


# ---------------------------------------------------------------------------
# Updates
# ---------------------------------------------------------------------------


def merge_event_payload(
    current: Mapping[str, Any], payload: Mapping[str, Any]
) -> dict[str, Any]:
    """Overlay *payload* on the stored event's client projection."""
    merged = fields.project_row(EntityKind.EVENT, current, None) or {}
    for legacy, canonical in _ALIASED_KEYS:
        if legacy in payload and canonical not in payload:
            merged.pop(canonical, None)
    merged.update(payload)
    return merged


def update_event(
    session: sqlmodel.Session,
    ids: IdGenerator,
    table_schema: database.TableSchemaCache,
    trip_id: str,
    event_id: str,
    payload: Mapping[str, Any],
) -> bool:
    """Update an event in place; False if it does not exist.

    A soft-deleted event is brought back at its former index, shifting the
    live siblings from there on. When the result is a multi card
    and the payload lists ``options``, every stored option is replaced.
    """
    current = session.execute(
        sqlalchemy.select(models.Event.__table__).where(  # type: ignore[attr-defined]
            models.Event.trip_id == trip_id, models.Event.event_id == event_id
        )
    ).mappings().first()
    if current is None:
        return False

    event = normalize.normalize_event(merge_event_payload(current, payload), ids, event_id)
    if event is None:
        return False
    if event.location_from_payload:
        upsert_location(session, event.location)

    now = models.now_ms()
    values = event.columns()
    values['updated_at'] = now
    if table_schema.initialized and not table_schema.has_column('event', 'weather_json'):
        values.pop('weather_json')
    if soft_delete_enabled(table_schema):
        values['is_deleted'] = False
        values['deleted_at'] = None
        if current['is_deleted']:
            # Its old slot was closed on delete; reopen one at the same index.
            manager = OrderingManager(session)
            scope = EventScope(trip_id, str(current['day_id']), current['parent_event_id'])
            requested = normalize.to_int(current['event_order'], 0)
            values['event_order'] = manager.insert_at(scope, manager.clamp(scope, requested))
    session.execute(
        sqlalchemy.update(models.Event)
        .where(models.Event.trip_id == trip_id, models.Event.event_id == event_id)
        .values(**values)
    )

    if event.is_multi and isinstance(payload.get('options'), list):
        session.execute(
            sqlalchemy.delete(models.Event)
            .where(models.Event.parent_event_id == event_id)
        )
        event.options = payload['options']
        _add_options(session, ids, event, trip_id, str(current['day_id']), now)

    touch_trip(session, trip_id, now)
    session.commit()
    return True


def reorder_events(
    session: sqlmodel.Session,
    trip_id: str,
    day_id: str,
    ordered_ids: Iterable[Any],
    soft_delete: bool = True,
) -> int:
    """Assign order = index to the listed top-level events of a day."""
    updated = OrderingManager(session, soft_delete=soft_delete).reorder(
        EventScope(trip_id, day_id), ordered_ids
    )
    touch_trip(session, trip_id, models.now_ms())
    session.commit()
    return updated


# ---------------------------------------------------------------------------
# Deletes
# ---------------------------------------------------------------------------


def _delete_one(
    session: sqlmodel.Session,
    manager: OrderingManager,
    trip_id: str,
    event_id: str,
    now: int,
) -> bool:
    conditions = [models.Event.trip_id == trip_id, models.Event.event_id == event_id]
    if manager.soft_delete:
        conditions.append(
            sqlalchemy.or_(
                models.Event.is_deleted.is_(None),  # type: ignore[attr-defined]
                models.Event.is_deleted.is_(False),  # type: ignore[attr-defined]
            )
        )
    current = session.execute(
        sqlalchemy.select(
            models.Event.day_id, models.Event.event_order, models.Event.parent_event_id
        ).where(*conditions)
    ).first()
    if current is None:
        return False

    if manager.soft_delete:
        stmt = (
            sqlalchemy.update(models.Event)
            .where(*conditions)
            .values(is_deleted=True, deleted_at=now, updated_at=now)
        )
    else:
        stmt = sqlalchemy.delete(models.Event).where(*conditions)
    session.execute(stmt)
    manager.remove_and_close(
        EventScope(trip_id, str(current.day_id), current.parent_event_id),
        normalize.to_int(current.event_order, 0),
    )
    return True


def delete_event(
    session: sqlmodel.Session,
    table_schema: database.TableSchemaCache,
    trip_id: str,
    event_id: str,
) -> bool:
    """Delete one event and close its order gap; False if not live."""
    manager = OrderingManager(session, soft_delete=soft_delete_enabled(table_schema))
    now = models.now_ms()
    deleted = _delete_one(session, manager, trip_id, event_id, now)
    if deleted:
        touch_trip(session, trip_id, now)
        session.commit()
    return deleted


def delete_events(
    session: sqlmodel.Session,
    table_schema: database.TableSchemaCache,
    trip_id: str,
    event_ids: Iterable[Any],
) -> int:
    """Delete every listed event; returns how many were live."""
    manager = OrderingManager(session, soft_delete=soft_delete_enabled(table_schema))
    now = models.now_ms()
    deleted = 0
    for raw_id in event_ids:
        event_id = str(raw_id if raw_id is not None else '').strip()
        if event_id and _delete_one(session, manager, trip_id, event_id, now):
            deleted += 1
    touch_trip(session, trip_id, now)
    session.commit()
    return deleted
