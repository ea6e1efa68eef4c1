"""Unit tests for order maintenance."""

import unittest

import sqlalchemy
import sqlalchemy.pool
import sqlmodel

from itinerary.app import models
from itinerary.app.schedule.ordering import DayScope, EventScope, OrderingManager


def make_in_memory_engine() -> sqlalchemy.Engine:
    """Create an in-memory SQLite engine for testing."""
    engine = sqlmodel.create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=sqlalchemy.pool.StaticPool,
    )
    sqlmodel.SQLModel.metadata.create_all(engine)
    return engine


class TestEventOrdering(unittest.TestCase):
    """Tests for OrderingManager over events of one day."""

    def setUp(self) -> None:
        self.engine = make_in_memory_engine()
        self.session = sqlmodel.Session(self.engine)
        self.scope = EventScope('t1', 'd1')
        self.manager = OrderingManager(self.session)

    def tearDown(self) -> None:
        self.session.close()

    def _add(self, event_id: str, order: int, **kwargs: object) -> None:
        self.session.add(
            models.Event(event_id=event_id, trip_id='t1', day_id='d1', event_order=order, **kwargs)
        )
        self.session.commit()

    def _orders(self) -> dict[str, int]:
        rows = self.session.exec(sqlmodel.select(models.Event)).all()
        return {r.event_id: r.event_order for r in rows}

    def test_max_order_empty_scope(self) -> None:
        """An empty scope has max order -1."""
        self.assertEqual(self.manager.max_order(self.scope), -1)
        self.assertEqual(self.manager.append(self.scope), 0)

    def test_max_order_and_count(self) -> None:
        """max_order and count see live top-level rows only."""
        self._add('e1', 0)
        self._add('e2', 1)
        self._add('gone', 2, is_deleted=True)
        self._add('opt', 5, parent_event_id='e1')
        self.assertEqual(self.manager.max_order(self.scope), 1)
        self.assertEqual(self.manager.count(self.scope), 2)
        self.assertEqual(self.manager.max_order(EventScope('t1', 'd1', 'e1')), 5)

    def test_clamp(self) -> None:
        """Positions clamp into [0, max + 1]; None appends."""
        self._add('e1', 0)
        self._add('e2', 1)
        self.assertEqual(self.manager.clamp(self.scope, -3), 0)
        self.assertEqual(self.manager.clamp(self.scope, 1), 1)
        self.assertEqual(self.manager.clamp(self.scope, 99), 2)
        self.assertEqual(self.manager.clamp(self.scope, None), 2)

    def test_insert_at_shifts_successors(self) -> None:
        """Inserting at 1 moves the old 1 to 2."""
        self._add('e1', 0)
        self._add('e2', 1)
        position = self.manager.insert_at(self.scope, 1)
        self._add('new', position)
        self.assertEqual(self._orders(), {'e1': 0, 'new': 1, 'e2': 2})

    def test_batch_insert_shifts_once(self) -> None:
        """A batch of two opens a gap of two in one step."""
        self._add('e1', 0)
        self._add('e2', 1)
        start = self.manager.insert_at(self.scope, 1, count=2)
        self._add('a', start)
        self._add('b', start + 1)
        self.assertEqual(self._orders(), {'e1': 0, 'a': 1, 'b': 2, 'e2': 3})

    def test_insert_leaves_other_scopes(self) -> None:
        """Other days, options and deleted rows are not shifted."""
        self._add('e1', 0)
        self._add('opt', 0, parent_event_id='e1')
        self._add('gone', 0, is_deleted=True)
        self.session.add(models.Event(event_id='other', trip_id='t1', day_id='d2', event_order=0))
        self.session.commit()
        self.manager.insert_at(self.scope, 0)
        self.session.commit()
        self.assertEqual(self._orders(), {'e1': 1, 'opt': 0, 'gone': 0, 'other': 0})

    def test_remove_and_close(self) -> None:
        """Removing order k shifts the rows above k down by one."""
        for index, event_id in enumerate(['e0', 'e1', 'e2', 'e3']):
            self._add(event_id, index)
        self.session.delete(self.session.get(models.Event, 'e1'))
        shifted = self.manager.remove_and_close(self.scope, 1)
        self.session.commit()
        self.assertEqual(shifted, 2)
        self.assertEqual(self._orders(), {'e0': 0, 'e2': 1, 'e3': 2})

    def test_reorder(self) -> None:
        """Listed ids get their index; unknown and blank ids are skipped."""
        self._add('E1', 0)
        self._add('E2', 1)
        updated = self.manager.reorder(self.scope, ['E2', '', 'missing', 'E1'])
        self.session.commit()
        self.assertEqual(updated, 2)
        self.assertEqual(self._orders(), {'E2': 0, 'E1': 3})

    def test_reorder_two(self) -> None:
        """Reordering [E2, E1] swaps them."""
        self._add('E1', 0)
        self._add('E2', 1)
        self.manager.reorder(self.scope, ['E2', 'E1'])
        self.session.commit()
        self.assertEqual(self._orders(), {'E2': 0, 'E1': 1})
        self.assertEqual(self.manager.ordered_ids(self.scope), ['E2', 'E1'])

    def test_ordered_ids_tie_break(self) -> None:
        """Rows sharing an order sort by id."""
        self._add('b', 0)
        self._add('a', 0)
        self.assertEqual(self.manager.ordered_ids(self.scope), ['a', 'b'])

    def test_hard_delete_mode_includes_flagged_rows(self) -> None:
        """Without soft delete every row is in scope."""
        self._add('e1', 0)
        self._add('flagged', 1, is_deleted=True)
        manager = OrderingManager(self.session, soft_delete=False)
        self.assertEqual(manager.count(self.scope), 2)


class TestDayOrdering(unittest.TestCase):
    """Tests for OrderingManager over days of one trip."""

    def setUp(self) -> None:
        self.engine = make_in_memory_engine()
        self.session = sqlmodel.Session(self.engine)
        self.manager = OrderingManager(self.session)

    def tearDown(self) -> None:
        self.session.close()

    def test_insert_day(self) -> None:
        """Days of the trip shift; days of other trips do not."""
        self.session.add(models.Day(day_id='d1', trip_id='t1', day_order=0))
        self.session.add(models.Day(day_id='d2', trip_id='t1', day_order=1))
        self.session.add(models.Day(day_id='d1', trip_id='t2', day_order=0))
        self.session.commit()
        scope = DayScope('t1')
        self.assertEqual(self.manager.max_order(scope), 1)
        self.manager.insert_at(scope, 0)
        self.session.add(models.Day(day_id='d0', trip_id='t1', day_order=0))
        self.session.commit()
        self.assertEqual(self.manager.ordered_ids(scope), ['d0', 'd1', 'd2'])
        self.assertEqual(self.manager.ordered_ids(DayScope('t2')), ['d1'])


if __name__ == '__main__':
    unittest.main()
