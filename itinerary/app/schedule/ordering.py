"""Contiguous ``order`` maintenance for days and events.

Two kinds of scope are maintained:

* days within a trip (``day.day_order``)
* events within a (trip, day); top-level events and the options of one
  multi-option card are separate scopes (``event.event_order``)

Within a scope the live rows are expected to carry orders ``0..n-1``. The
manager only issues statements on the session it is given; it never
commits. Callers run the shift together with the dependent insert or
delete and commit once, so the pair is applied atomically.

Readers must still treat ``order`` as a sort key (with the id as
tie-break) rather than a unique value: rows written by older clients or by
concurrent writers on other connections may briefly collide.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable
from typing import Any

import sqlalchemy
import sqlmodel

from .. import models


@dataclasses.dataclass(frozen=True)
class DayScope:
    """Days of one trip."""

    trip_id: str


@dataclasses.dataclass(frozen=True)
class EventScope:
    """Events of one (trip, day).

    ``parent_event_id=None`` selects top-level events; otherwise the scope is
    the options of that multi-option card.
    """

    trip_id: str
    day_id: str
    parent_event_id: str | None = None


Scope = DayScope | EventScope


class OrderingManager:
    """Shift, close and overwrite order values within a scope."""

    def __init__(self, session: sqlmodel.Session, soft_delete: bool = True) -> None:
        self.session = session
        # Soft-deleted events are outside every scope when the column exists.
        self.soft_delete = soft_delete

    # ------------------------------------------------------------------
    # Scope plumbing
    # ------------------------------------------------------------------

    def _target(self, scope: Scope) -> tuple[type[sqlmodel.SQLModel], Any, Any]:
        """Return (model, order column, id column) for *scope*."""
        if isinstance(scope, DayScope):
            return models.Day, models.Day.day_order, models.Day.day_id
        return models.Event, models.Event.event_order, models.Event.event_id

    def _conditions(self, scope: Scope) -> list[Any]:
        if isinstance(scope, DayScope):
            return [models.Day.trip_id == scope.trip_id]
        conditions: list[Any] = [
            models.Event.trip_id == scope.trip_id,
            models.Event.day_id == scope.day_id,
        ]
        if scope.parent_event_id is None:
            conditions.append(models.Event.parent_event_id.is_(None))  # type: ignore[union-attr]
        else:
            conditions.append(models.Event.parent_event_id == scope.parent_event_id)
        if self.soft_delete:
            conditions.append(
                sqlalchemy.or_(
                    models.Event.is_deleted.is_(None),  # type: ignore[attr-defined]
                    models.Event.is_deleted.is_(False),  # type: ignore[attr-defined]
                )
            )
        return conditions

    def _shift(self, scope: Scope, condition: Any, delta: int) -> int:
        model, order_col, _ = self._target(scope)
        stmt = (
            sqlalchemy.update(model)
            .where(*self._conditions(scope), condition)
            .values({order_col: order_col + delta})
        )
        result = self.session.execute(stmt)
        return result.rowcount or 0  # type: ignore[attr-defined]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def max_order(self, scope: Scope) -> int:
        """Highest order in *scope*, or -1 when the scope is empty."""
        _, order_col, _ = self._target(scope)
        value = self.session.execute(
            sqlalchemy.select(sqlalchemy.func.max(order_col)).where(
                *self._conditions(scope)
            )
        ).scalar()
        return int(value) if value is not None else -1

    def count(self, scope: Scope) -> int:
        """Number of live rows in *scope*."""
        _, _, id_col = self._target(scope)
        value = self.session.execute(
            sqlalchemy.select(sqlalchemy.func.count(id_col)).where(
                *self._conditions(scope)
            )
        ).scalar()
        return int(value or 0)

    def ordered_ids(self, scope: Scope) -> list[str]:
        """Ids in *scope* sorted by order, id as tie-break."""
        _, order_col, id_col = self._target(scope)
        rows = self.session.execute(
            sqlalchemy.select(id_col)
            .where(*self._conditions(scope))
            .order_by(order_col, id_col)
        ).scalars()
        return [str(r) for r in rows]

    def clamp(self, scope: Scope, position: int | None) -> int:
        """Clamp *position* into ``[0, max_order + 1]``; None means append."""
        upper = self.max_order(scope) + 1
        if position is None:
            return upper
        return max(0, min(upper, position))

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def insert_at(self, scope: Scope, position: int, count: int = 1) -> int:
        """Open a gap of *count* slots at *position* and return *position*.

        Every row with ``order >= position`` moves up by *count* in a single
        statement. The caller assigns ``position .. position + count - 1`` to
        the new rows and must have clamped *position* beforehand.
        """
        if count > 0:
            self._shift(scope, self._target(scope)[1] >= position, count)
        return position

    def append(self, scope: Scope) -> int:
        """Order for a new row at the end of *scope* (no shifting)."""
        return self.max_order(scope) + 1

    def remove_and_close(self, scope: Scope, removed_order: int) -> int:
        """Close the gap left at *removed_order*; returns rows shifted."""
        return self._shift(scope, self._target(scope)[1] > removed_order, -1)

    def reorder(self, scope: Scope, ordered_ids: Iterable[Any]) -> int:
        """Overwrite orders so each listed id gets its list index.

        Blank ids and ids outside the scope are skipped (their index is
        still consumed). Returns the number of rows updated.
        """
        model, order_col, id_col = self._target(scope)
        updated = 0
        now = models.now_ms()
        for index, raw_id in enumerate(ordered_ids):
            item_id = str(raw_id if raw_id is not None else '').strip()
            if not item_id:
                continue
            stmt = (
                sqlalchemy.update(model)
                .where(*self._conditions(scope), id_col == item_id)
                .values({order_col: index})
                .values(updated_at=now)
            )
            updated += self.session.execute(stmt).rowcount or 0  # type: ignore[attr-defined]
        return updated
