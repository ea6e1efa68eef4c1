"""Canonicalisation of client payloads for days, events and locations.

Clients send events in several historical shapes: ``time`` instead of
``startTime``, ``end_time`` instead of ``endTime``, free-text durations such
as ``"1小时30分钟"``, embedded map-provider location objects, and so on.
:func:`normalize_event` folds all of them into one :class:`CanonicalEvent`.

These helpers never raise on bad input; they return None and leave the
decision to the request layer.
"""

from __future__ import annotations

import json
import math
import re
from collections.abc import Mapping
from typing import Any

import pydantic

from .fields import encode_json
from .ids import IdGenerator

_HOURS_RE = re.compile(r'(\d+)\s*小时')
_MINUTES_RE = re.compile(r'(\d+)\s*分钟')
_ISO_DATE_RE = re.compile(r'^(\d{4})-(\d{1,2})-(\d{1,2})')

MULTI = 'multi'
SINGLE = 'single'


# ---------------------------------------------------------------------------
# Scalars
# ---------------------------------------------------------------------------


def to_int(value: Any, fallback: int = 0) -> int:
    """Truncate *value* to an int, or return *fallback* if it is not numeric."""
    if value is None or isinstance(value, bool):
        return fallback
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(number):
        return fallback
    return int(number)


def normalize_cost(value: Any) -> float | None:
    """Coerce a cost to a number; blanks and non-numeric values become None."""
    if value is None or value == '' or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def parse_duration_text(text: Any) -> int | None:
    """Convert ``"<N>小时<M>分钟"`` style text into minutes.

    Either unit may be missing. Returns None when neither unit is present
    or the total is zero.
    """
    if isinstance(text, Mapping):
        text = text.get('text')
    source = str(text or '')
    total = 0
    hours = _HOURS_RE.search(source)
    minutes = _MINUTES_RE.search(source)
    if hours:
        total += int(hours.group(1)) * 60
    if minutes:
        total += int(minutes.group(1))
    return total if total > 0 else None


def format_duration_text(minutes: int | None) -> str:
    """Inverse of :func:`parse_duration_text`: 90 -> ``"1小时30分钟"``."""
    if not minutes or minutes <= 0:
        return ''
    hours, mins = divmod(minutes, 60)
    if hours and mins:
        return f'{hours}小时{mins}分钟'
    if hours:
        return f'{hours}小时'
    return f'{mins}分钟'


def normalize_location_id(value: Any) -> str | None:
    """Location ids are non-empty strings or positive integers (as strings)."""
    if isinstance(value, str):
        stripped = value.strip()
        if stripped:
            return stripped
    if isinstance(value, bool):
        return None
    number = to_int(value, 0)
    return str(number) if number > 0 else None


def generate_short_date(date_str: Any) -> str:
    """``'2025-02-11'`` -> ``'2月11日'``; anything else -> ``''``."""
    if not isinstance(date_str, str):
        return ''
    match = re.fullmatch(r'(\d{4})-(\d{1,2})-(\d{1,2})', date_str)
    if not match:
        return ''
    return f'{int(match.group(2))}月{int(match.group(3))}日'


def dotted_short_date(date_str: Any) -> str:
    """``'2025-02-11'`` -> ``'2.11'``; anything else -> ``''``."""
    match = _ISO_DATE_RE.match(str(date_str or ''))
    if not match:
        return ''
    return f'{int(match.group(2))}.{int(match.group(3))}'


def looks_like_date(value: str | None) -> bool:
    """Day ids containing a dash are treated as calendar dates."""
    return bool(value) and '-' in str(value)


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class CanonicalEvent(pydantic.BaseModel):
    """An event payload after back-compat folding and defaulting."""

    uid: str
    type: str = 'activity'
    state: str = 'active'
    card_type: str = SINGLE
    title: str | None = None
    description: str | None = None
    detail: str | None = None
    start_time: str | None = None
    end_time: str | None = None
    duration_min: int | None = None
    priority: int = 0
    location_id: str | None = None
    location_name: str | None = None
    # True when the payload carried an embedded location object.
    location_from_payload: bool = False
    location: dict[str, Any] | None = None
    tags: Any = None
    images: Any = pydantic.Field(default_factory=list)
    cost: float | None = None
    cost_currency: str = 'CNY'
    weather: Any = None
    options: list[Any] | None = None

    @property
    def is_multi(self) -> bool:
        return self.card_type == MULTI

    def columns(self) -> dict[str, Any]:
        """Storage column values (ids, order and parent are set by the caller)."""
        return {
            'type': self.type,
            'state': self.state,
            'card_type': self.card_type,
            'title': self.title or None,
            'description': self.description or None,
            'detail': self.detail or None,
            'start_time': self.start_time or None,
            'end_time': self.end_time or None,
            'duration_min': self.duration_min or None,
            'priority': self.priority,
            'location_id': self.location_id or None,
            'location_name': self.location_name or None,
            'tags': None if self.tags is None else json.dumps(self.tags, ensure_ascii=False),
            'images': json.dumps(self.images, ensure_ascii=False),
            'cost': self.cost,
            'cost_currency': self.cost_currency,
            'weather_json': encode_json(self.weather) if self.weather else None,
        }


def _text(value: Any) -> str | None:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def _first(raw: Mapping[str, Any], *keys: str) -> Any:
    """First truthy value among *keys*."""
    for key in keys:
        value = raw.get(key)
        if value:
            return value
    return None


def normalize_event(
    raw: Any, ids: IdGenerator, existing_id: str | None = None
) -> CanonicalEvent | None:
    """Fold a client event payload into a :class:`CanonicalEvent`.

    Returns None if *raw* is not an object. The id is *existing_id*, else
    the payload's ``uid``, else a freshly allocated one.
    """
    if not isinstance(raw, Mapping):
        return None

    uid = str(existing_id or raw.get('uid') or '').strip() or ids.event_id()

    start_time = raw.get('startTime')
    if start_time is None:
        start_time = raw.get('time')
    end_time = raw.get('endTime')
    if end_time is None:
        end_time = raw.get('end_time')

    if raw.get('durationMin') is not None:
        duration_min = to_int(raw.get('durationMin'), 0) or None
    elif 'duration' in raw:
        duration_min = parse_duration_text(raw.get('duration'))
    else:
        duration_min = None

    location_id = normalize_location_id(raw.get('locationId'))
    location_name = _text(raw.get('locationName'))
    location = raw.get('location')
    embedded = isinstance(location, Mapping)
    if embedded:
        poi = location.get('poi')
        poi_id = poi.get('id') if isinstance(poi, Mapping) else None
        location_id = normalize_location_id(
            location.get('locationId') or location.get('id') or poi_id
        )
        location_name = _text(location.get('name')) or None

    options = raw.get('options')

    return CanonicalEvent(
        uid=uid,
        type=str(raw.get('type') or 'activity'),
        state=str(raw.get('state') or 'active'),
        card_type=str(_first(raw, 'cardType', 'card_type') or SINGLE),
        title=_text(raw.get('title')),
        description=_text(raw.get('description')),
        detail=_text(raw.get('detail')),
        start_time=_text(start_time),
        end_time=_text(end_time),
        duration_min=duration_min,
        priority=to_int(raw.get('priority'), 0),
        location_id=location_id,
        location_name=location_name,
        location_from_payload=embedded,
        location=dict(location) if embedded else None,
        tags=raw.get('tags'),
        images=raw.get('images') or [],
        cost=normalize_cost(raw.get('cost')),
        cost_currency=str(_first(raw, 'costCurrency', 'cost_currency') or 'CNY'),
        weather=raw.get('weather') or None,
        options=list(options) if isinstance(options, list) else None,
    )


def expand_options(parent: CanonicalEvent, ids: IdGenerator) -> list[CanonicalEvent]:
    """Normalise the options of a multi-option card.

    Non-object entries are skipped. Every option is stored as a single card
    regardless of what the payload says. Empty when *parent* is not multi or
    carries no options list.
    """
    if not parent.is_multi or parent.options is None:
        return []
    children: list[CanonicalEvent] = []
    for raw in parent.options:
        child = normalize_event(raw, ids)
        if child is None:
            continue
        child.card_type = SINGLE
        child.options = None
        children.append(child)
    return children


# ---------------------------------------------------------------------------
# Days and locations
# ---------------------------------------------------------------------------


def normalize_day(raw: Any) -> dict[str, Any] | None:
    """Validate a day payload; the id is required, nested events are dropped."""
    if not isinstance(raw, Mapping):
        return None
    day_id = str(raw.get('id') or '').strip()
    if not day_id:
        return None
    cleaned = {k: v for k, v in raw.items() if k != 'events'}
    cleaned['id'] = day_id
    return cleaned


def normalize_location(raw: Any) -> dict[str, Any] | None:
    """Extract storable location columns from a client payload."""
    if not isinstance(raw, Mapping):
        return None
    poi = raw.get('poi')
    poi_id = poi.get('id') if isinstance(poi, Mapping) else None
    location_id = normalize_location_id(raw.get('locationId') or raw.get('id') or poi_id)
    if not location_id:
        return None

    def _number(key: str) -> float | None:
        return normalize_cost(raw.get(key)) if raw.get(key) else None

    return {
        'location_id': location_id,
        'name': _text(raw.get('name')) or None,
        'address': _text(raw.get('address')) or None,
        'lat': _number('lat'),
        'lng': _number('lng'),
        'meta_json': encode_json(dict(poi)) if isinstance(poi, Mapping) else None,
    }
