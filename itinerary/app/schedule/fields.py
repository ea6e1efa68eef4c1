"""Client field selection for trip, day, event and location projections.

A *schema* tells the server which client-facing fields each entity should
carry. Per entity the selection is either a list of field names or
``None`` meaning "every known field". The resolver translates field names
into storage columns for the SELECT and maps fetched rows back into
client-shaped dictionaries.

Three templates are built in: ``card`` (list views), ``detail`` (single
trip page) and ``edit`` (everything).
"""

from __future__ import annotations

import dataclasses
import enum
import json
import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

logger = logging.getLogger(__name__)


class EntityKind(enum.StrEnum):
    """Entities that can be projected."""

    TRIP = 'trip'
    DAY = 'day'
    EVENT = 'event'
    LOCATION = 'location'


FieldSelection = list[str] | None
Schema = dict[EntityKind, FieldSelection]

# ---------------------------------------------------------------------------
# Field dictionaries (client name -> storage column)
# ---------------------------------------------------------------------------

FIELD_MAPS: dict[EntityKind, dict[str, str]] = {
    EntityKind.TRIP: {
        'id': 'trip_id',
        'tripId': 'trip_id',
        'userId': 'user_id',
        'slug': 'slug',
        'title': 'title',
        'year': 'year',
        'description': 'description',
        'startDate': 'start_date',
        'endDate': 'end_date',
        'days': 'days',
        'cityList': 'city_list',
        'coverImage': 'cover_image',
        'status': 'status',
        'visibility': 'visibility',
        'footerText': 'footer_text',
        'travelerCount': 'traveler_count',
        'budgetPerPersonMin': 'budget_per_person_min',
        'budgetPerPersonMax': 'budget_per_person_max',
        'budgetUnit': 'budget_unit',
        'createdAt': 'created_at',
        'updatedAt': 'updated_at',
    },
    EntityKind.DAY: {
        'id': 'day_id',
        'dayId': 'day_id',
        'tripId': 'trip_id',
        'dayOrder': 'day_order',
        'date': 'date',
        'shortDate': 'short_date',
        'location': 'location',
        'title': 'title',
        'description': 'description',
        'coverImage': 'cover_image',
        'createdAt': 'created_at',
        'updatedAt': 'updated_at',
    },
    EntityKind.EVENT: {
        'id': 'event_id',
        'eventId': 'event_id',
        'uid': 'event_id',
        'dayId': 'day_id',
        'tripId': 'trip_id',
        'eventOrder': 'event_order',
        'type': 'type',
        'state': 'state',
        'cardType': 'card_type',
        'title': 'title',
        'description': 'description',
        'detail': 'detail',
        'startTime': 'start_time',
        'endTime': 'end_time',
        'durationMin': 'duration_min',
        'priority': 'priority',
        'locationId': 'location_id',
        'locationName': 'location_name',
        'tags': 'tags',
        'images': 'images',
        'cost': 'cost',
        'costCurrency': 'cost_currency',
        'parentEventId': 'parent_event_id',
        'weather': 'weather_json',
        'createdAt': 'created_at',
        'updatedAt': 'updated_at',
    },
    EntityKind.LOCATION: {
        'id': 'location_id',
        'locationId': 'location_id',
        'name': 'name',
        'address': 'address',
        'lat': 'lat',
        'lng': 'lng',
        'images': 'images',
        'tags': 'tags',
        'rating': 'rating',
        'openTime': 'open_time',
        'price': 'price',
        'createdAt': 'created_at',
        'updatedAt': 'updated_at',
    },
}

# Client fields with no storage column. They are filled in after the fetch
# (time, duration, location, options, completed) or ignored.
VIRTUAL_FIELDS: dict[EntityKind, frozenset[str]] = {
    EntityKind.TRIP: frozenset({'completed'}),
    EntityKind.DAY: frozenset({'events'}),
    EntityKind.EVENT: frozenset(
        {'time', 'duration', 'location', 'options', 'completed'}
    ),
    EntityKind.LOCATION: frozenset(),
}

# Fields stored as JSON text.
JSON_FIELDS = frozenset({'tags', 'images', 'cityList', 'weather'})

DEFAULT_VALUES: dict[EntityKind, dict[str, Any]] = {
    EntityKind.TRIP: {
        'id': '',
        'title': '',
        'year': None,
        'description': '',
        'startDate': '',
        'endDate': '',
        'days': 0,
        'cityList': [],
        'coverImage': '',
        'status': 'draft',
        'visibility': 'private',
        'footerText': '',
        'travelerCount': 1,
        'budgetPerPersonMin': None,
        'budgetPerPersonMax': None,
        'budgetUnit': '元',
        'createdAt': 0,
        'updatedAt': 0,
    },
    EntityKind.DAY: {
        'id': '',
        'tripId': '',
        'dayOrder': 0,
        'date': '',
        'shortDate': '',
        'location': '',
        'title': '',
        'description': '',
        'coverImage': '',
        'createdAt': 0,
        'updatedAt': 0,
    },
    EntityKind.EVENT: {
        'id': '',
        'dayId': '',
        'tripId': '',
        'eventOrder': 0,
        'type': 'scenic',
        'state': 'active',
        'cardType': 'single',
        'title': '',
        'description': '',
        'detail': '',
        'startTime': '',
        'endTime': '',
        'durationMin': None,
        'priority': 0,
        'locationId': None,
        'locationName': '',
        'cost': None,
        'costCurrency': 'CNY',
        'parentEventId': None,
        'createdAt': 0,
        'updatedAt': 0,
    },
    EntityKind.LOCATION: {
        'id': '',
        'name': '',
        'address': '',
        'openTime': '',
        'createdAt': 0,
        'updatedAt': 0,
    },
}

# Storage columns never returned to any client.
SECRET_COLUMNS = frozenset({'password_hash', 'password', 'token', 'secret', 'api_key'})

# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

TEMPLATES: dict[str, Schema] = {
    'card': {
        EntityKind.TRIP: [
            'id', 'title', 'year', 'description', 'startDate', 'endDate',
            'days', 'cityList', 'coverImage', 'status', 'visibility',
            'footerText', 'travelerCount', 'budgetPerPersonMin',
            'budgetPerPersonMax', 'budgetUnit', 'completed',
        ],
        EntityKind.DAY: ['id', 'date', 'shortDate', 'location'],
        EntityKind.EVENT: [
            'id', 'type', 'title', 'description', 'detail', 'state',
            'startTime', 'endTime', 'time', 'durationMin', 'duration',
            'locationId', 'locationName', 'location', 'tags', 'images',
            'cost', 'costCurrency', 'cardType', 'completed', 'options',
            'parentEventId',
        ],
        EntityKind.LOCATION: [
            'id', 'name', 'lat', 'lng', 'address', 'images', 'tags',
            'rating', 'openTime', 'price',
        ],
    },
    'detail': {
        EntityKind.TRIP: [
            'id', 'userId', 'title', 'description', 'coverImage', 'cityList',
            'visibility', 'status', 'startDate', 'endDate', 'days',
            'travelerCount', 'budgetPerPersonMin', 'budgetPerPersonMax',
            'budgetUnit', 'completed',
        ],
        EntityKind.DAY: ['id', 'date', 'shortDate', 'location', 'title', 'description'],
        EntityKind.EVENT: [
            'id', 'type', 'title', 'description', 'detail', 'state',
            'startTime', 'endTime', 'durationMin', 'locationId',
            'locationName', 'location', 'tags', 'images', 'cost',
            'costCurrency', 'cardType',
        ],
        EntityKind.LOCATION: [
            'id', 'name', 'address', 'lat', 'lng', 'images', 'tags',
            'rating', 'openTime', 'price',
        ],
    },
    'edit': {
        EntityKind.TRIP: None,
        EntityKind.DAY: None,
        EntityKind.EVENT: None,
        EntityKind.LOCATION: None,
    },
}

# Location fields implied by the ``fields=a,b,c`` shorthand.
SHORTHAND_LOCATION_FIELDS = ['id', 'name', 'lat', 'lng', 'address']


def get_template(name: str | None) -> Schema | None:
    """Return a copy of the named template, or None for unknown names."""
    template = TEMPLATES.get(name or '')
    if template is None:
        return None
    return {kind: (list(f) if f is not None else None) for kind, f in template.items()}


# ---------------------------------------------------------------------------
# JSON columns
# ---------------------------------------------------------------------------


@dataclasses.dataclass(frozen=True)
class Parsed:
    """A JSON column that decoded successfully."""

    value: Any


class Absent:
    """A JSON column that was empty or undecodable."""

    def __repr__(self) -> str:
        return 'ABSENT'


ABSENT = Absent()
JsonColumn = Parsed | Absent


def decode_json(raw: Any) -> JsonColumn:
    """Decode a JSON text column; failures collapse into ``ABSENT``.

    Values that are already native (list/dict) pass through as parsed.
    """
    if raw is None or raw == '':
        return ABSENT
    if not isinstance(raw, str | bytes):
        return Parsed(raw)
    try:
        return Parsed(json.loads(raw))
    except ValueError:
        return ABSENT


def json_or_none(raw: Any) -> Any:
    """Decoded value of a JSON column, or None."""
    decoded = decode_json(raw)
    return decoded.value if isinstance(decoded, Parsed) else None


def encode_json(value: Any) -> str | None:
    """Serialize a native value for a JSON text column."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def all_columns(kind: EntityKind) -> list[str]:
    """Every storage column known for *kind*, in dictionary order."""
    return list(dict.fromkeys(FIELD_MAPS[kind].values()))


def is_column_visible(kind: EntityKind, column: str, is_owner: bool) -> bool:
    """Sensitive-field policy for a storage column.

    Secrets are never visible. ``user_id`` stays on trips (clients compare
    it for ownership) and is otherwise only shown to the owner.
    """
    lowered = column.lower()
    if lowered in SECRET_COLUMNS:
        return False
    if lowered == 'user_id':
        return kind is EntityKind.TRIP or is_owner
    return True


def resolve_columns(
    kind: EntityKind, fields: Iterable[str] | None, is_owner: bool = True
) -> list[str]:
    """Translate client field names into the storage columns to select.

    Unknown and virtual names are dropped. When nothing valid remains (or
    *fields* is None) every known column is returned, so a row is never
    empty.
    """
    mapping = FIELD_MAPS[kind]
    columns: list[str] = []
    if fields is not None:
        for name in fields:
            column = mapping.get(name)
            if column and column not in columns:
                columns.append(column)
    if not columns:
        columns = all_columns(kind)
    return [c for c in columns if is_column_visible(kind, c, is_owner)]


def project_row(
    kind: EntityKind,
    row: Mapping[str, Any] | None,
    fields: Iterable[str] | None,
    is_owner: bool = True,
) -> dict[str, Any] | None:
    """Map a storage row to a dictionary keyed by client field names.

    Requested fields missing from the row take the entity default. Virtual
    fields are left for the caller to compute. Like :func:`resolve_columns`,
    a list naming no known column projects every field.
    """
    if row is None:
        return None
    mapping = FIELD_MAPS[kind]
    defaults = DEFAULT_VALUES[kind]
    names = list(fields) if fields is not None else []
    if not any(mapping.get(name) for name in names):
        names = list(mapping)
    result: dict[str, Any] = {}
    for name in names:
        if name in VIRTUAL_FIELDS[kind]:
            continue
        column = mapping.get(name)
        if column is None:
            continue
        if not is_column_visible(kind, column, is_owner):
            continue
        if column in row:
            value = row[column]
            if name in JSON_FIELDS and value is not None:
                value = json_or_none(value)
            result[name] = value
        else:
            result[name] = defaults.get(name)
    return result


@dataclasses.dataclass(frozen=True)
class Projection:
    """Columns to select for an entity and the row mapper that undoes them."""

    kind: EntityKind
    fields: FieldSelection
    columns: list[str]
    project: Callable[[Mapping[str, Any] | None], dict[str, Any] | None]


def resolve(
    kind: EntityKind, fields: Iterable[str] | None, is_owner: bool = True
) -> Projection:
    """Resolve a field selection into a :class:`Projection`."""
    selection = list(fields) if fields is not None else None
    return Projection(
        kind=kind,
        fields=selection,
        columns=resolve_columns(kind, selection, is_owner),
        project=lambda row: project_row(kind, row, selection, is_owner),
    )


def wants(fields: FieldSelection, name: str) -> bool:
    """True if a selection requests *name* (None requests everything)."""
    return fields is None or name in fields


# ---------------------------------------------------------------------------
# Schema parsing and merging
# ---------------------------------------------------------------------------


def coerce_schema(raw: Any) -> Schema | None:
    """Build a Schema from a decoded JSON object; anything else gives None.

    Entity keys are matched case-insensitively; unknown keys and non-list
    values other than null are ignored.
    """
    if not isinstance(raw, dict):
        return None
    schema: Schema = {}
    for key, value in raw.items():
        try:
            kind = EntityKind(str(key).lower())
        except ValueError:
            continue
        if value is None:
            schema[kind] = None
        elif isinstance(value, list):
            schema[kind] = [str(v) for v in value if isinstance(v, str)]
    return schema or None


def parse_schema(
    schema_param: str | None = None,
    body: Mapping[str, Any] | None = None,
    fields_param: str | None = None,
) -> Schema | None:
    """Read a schema from the request.

    Sources, in order: the JSON ``schema`` query parameter, a ``schema``
    object in the body, then the ``fields=a,b`` shorthand. Malformed input
    is treated as "no schema" so the caller can fall back to a template.
    """
    if schema_param:
        try:
            schema = coerce_schema(json.loads(schema_param))
        except ValueError:
            logger.debug('Ignoring malformed schema parameter')
            schema = None
        if schema is not None:
            return schema

    if body and body.get('schema') is not None:
        schema = coerce_schema(body['schema'])
        if schema is not None:
            return schema

    if fields_param:
        names = [f.strip() for f in fields_param.split(',') if f.strip()]
        if names:
            return {
                EntityKind.EVENT: names,
                EntityKind.LOCATION: list(SHORTHAND_LOCATION_FIELDS),
            }

    return None


def merge_schema(base: Schema | None, override: Schema | None) -> Schema | None:
    """Union two schemas; ``None`` (all fields) on either side wins."""
    if base is None:
        return override
    if override is None:
        return base
    result: Schema = dict(base)
    for kind, fields in override.items():
        if fields is None or (kind in result and result[kind] is None):
            result[kind] = None
        else:
            result[kind] = list(dict.fromkeys([*(result.get(kind) or []), *fields]))
    return result


def selection(schema: Schema | None, kind: EntityKind) -> FieldSelection:
    """Field selection for *kind*; a missing schema or entity means all fields."""
    if schema is None:
        return None
    return schema.get(kind)
