"""Trip completion percentage over the event hierarchy."""

import logging
import math
from collections.abc import Iterable, Mapping
from typing import Any

import sqlalchemy
import sqlalchemy.exc
import sqlmodel

from .. import models

logger = logging.getLogger(__name__)

COMPLETED = 'completed'
INACTIVE = 'inactive'


def compute_progress(rows: Iterable[Mapping[str, Any]]) -> int:
    """Percentage of done items among live events, rounded half up.

    A top-level event with options counts each option; an option is done
    when ``completed`` or ``inactive``. A top-level event without options
    counts once and is done only when ``completed``.
    """
    top_level: list[Mapping[str, Any]] = []
    children: dict[str, list[Mapping[str, Any]]] = {}
    for row in rows:
        parent_id = row.get('parent_event_id')
        if parent_id is None:
            top_level.append(row)
        else:
            children.setdefault(str(parent_id), []).append(row)

    total = 0
    done = 0
    for event in top_level:
        options = children.get(str(event.get('event_id')), [])
        if options:
            for option in options:
                total += 1
                if option.get('state') in (COMPLETED, INACTIVE):
                    done += 1
        else:
            total += 1
            if event.get('state') == COMPLETED:
                done += 1

    if total == 0:
        return 0
    return math.floor(done / total * 100 + 0.5)


def calculate_trip_progress(session: sqlmodel.Session, trip_id: str) -> int:
    """Progress of *trip_id*; storage failures are logged and give 0."""
    try:
        rows = session.execute(
            sqlalchemy.select(
                models.Event.event_id,
                models.Event.parent_event_id,
                models.Event.state,
                models.Event.card_type,
            ).where(
                models.Event.trip_id == trip_id,
                sqlalchemy.or_(
                    models.Event.is_deleted.is_(None),  # type: ignore[attr-defined]
                    models.Event.is_deleted.is_(False),  # type: ignore[attr-defined]
                ),
            )
        ).mappings()
        return compute_progress(rows)
    except sqlalchemy.exc.SQLAlchemyError:
        logger.exception('Could not compute progress for trip %s', trip_id)
        return 0
