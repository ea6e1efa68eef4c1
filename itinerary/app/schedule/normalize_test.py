"""Unit tests for payload canonicalisation."""

import json
import unittest

from itinerary.app.schedule import normalize
from itinerary.app.schedule.ids import IdGenerator


class FrozenClock:
    def __init__(self, now: float) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def make_ids() -> IdGenerator:
    return IdGenerator(clock=FrozenClock(1760912345))


class TestScalars(unittest.TestCase):
    """Tests for the scalar coercion helpers."""

    def test_to_int(self) -> None:
        """Numbers and numeric strings truncate; everything else falls back."""
        self.assertEqual(normalize.to_int('3.9'), 3)
        self.assertEqual(normalize.to_int(7), 7)
        self.assertEqual(normalize.to_int('abc', -1), -1)
        self.assertEqual(normalize.to_int(None, 5), 5)
        self.assertEqual(normalize.to_int(True, 5), 5)
        self.assertEqual(normalize.to_int(float('nan'), 2), 2)

    def test_normalize_cost(self) -> None:
        """Blank and non-numeric costs become None."""
        self.assertEqual(normalize.normalize_cost('12.5'), 12.5)
        self.assertEqual(normalize.normalize_cost(0), 0.0)
        self.assertIsNone(normalize.normalize_cost(''))
        self.assertIsNone(normalize.normalize_cost('free'))
        self.assertIsNone(normalize.normalize_cost(None))

    def test_parse_duration_text(self) -> None:
        """Hours and minutes are each optional."""
        self.assertEqual(normalize.parse_duration_text('1小时30分钟'), 90)
        self.assertEqual(normalize.parse_duration_text('2小时'), 120)
        self.assertEqual(normalize.parse_duration_text('45分钟'), 45)
        self.assertEqual(normalize.parse_duration_text({'text': '1小时'}), 60)
        self.assertIsNone(normalize.parse_duration_text('soon'))
        self.assertIsNone(normalize.parse_duration_text('0分钟'))
        self.assertIsNone(normalize.parse_duration_text(None))

    def test_format_duration_text(self) -> None:
        """Minutes render back into the same text form."""
        self.assertEqual(normalize.format_duration_text(90), '1小时30分钟')
        self.assertEqual(normalize.format_duration_text(120), '2小时')
        self.assertEqual(normalize.format_duration_text(5), '5分钟')
        self.assertEqual(normalize.format_duration_text(0), '')
        self.assertEqual(normalize.format_duration_text(None), '')

    def test_normalize_location_id(self) -> None:
        """Non-empty strings and positive integers are valid ids."""
        self.assertEqual(normalize.normalize_location_id(' B001 '), 'B001')
        self.assertEqual(normalize.normalize_location_id(42), '42')
        self.assertIsNone(normalize.normalize_location_id(0))
        self.assertIsNone(normalize.normalize_location_id('  '))
        self.assertIsNone(normalize.normalize_location_id(None))

    def test_short_dates(self) -> None:
        """ISO dates render in both short forms."""
        self.assertEqual(normalize.generate_short_date('2025-02-11'), '2月11日')
        self.assertEqual(normalize.generate_short_date('2025-02-11T08:00'), '')
        self.assertEqual(normalize.generate_short_date(None), '')
        self.assertEqual(normalize.dotted_short_date('2025-02-01'), '2.1')
        self.assertEqual(normalize.dotted_short_date('day-1x'), '')

    def test_looks_like_date(self) -> None:
        self.assertTrue(normalize.looks_like_date('2025-02-11'))
        self.assertFalse(normalize.looks_like_date('d1'))
        self.assertFalse(normalize.looks_like_date(None))


class TestNormalizeEvent(unittest.TestCase):
    """Tests for normalize_event."""

    def setUp(self) -> None:
        self.ids = make_ids()

    def test_non_object_rejected(self) -> None:
        """Lists, strings and None are not events."""
        for raw in (None, 'event', ['a']):
            self.assertIsNone(normalize.normalize_event(raw, self.ids))

    def test_defaults(self) -> None:
        """An empty object gets a fresh id and the default columns."""
        event = normalize.normalize_event({}, self.ids)
        assert event is not None
        self.assertEqual(event.uid, '7609123450000')
        self.assertEqual(event.type, 'activity')
        self.assertEqual(event.state, 'active')
        self.assertEqual(event.card_type, 'single')
        self.assertEqual(event.cost_currency, 'CNY')
        self.assertEqual(event.images, [])
        self.assertFalse(event.is_multi)

    def test_id_precedence(self) -> None:
        """An existing id beats the payload uid, which beats a fresh id."""
        event = normalize.normalize_event({'uid': 'u1'}, self.ids, existing_id='e9')
        assert event is not None
        self.assertEqual(event.uid, 'e9')
        event = normalize.normalize_event({'uid': 'u1'}, self.ids)
        assert event is not None
        self.assertEqual(event.uid, 'u1')

    def test_legacy_time_keys(self) -> None:
        """time and end_time fill startTime and endTime when those are absent."""
        event = normalize.normalize_event({'time': '09:00', 'end_time': '10:00'}, self.ids)
        assert event is not None
        self.assertEqual((event.start_time, event.end_time), ('09:00', '10:00'))
        event = normalize.normalize_event({'time': '09:00', 'startTime': '08:00'}, self.ids)
        assert event is not None
        self.assertEqual(event.start_time, '08:00')

    def test_duration_precedence(self) -> None:
        """durationMin wins over free-text duration."""
        event = normalize.normalize_event({'durationMin': 30, 'duration': '2小时'}, self.ids)
        assert event is not None
        self.assertEqual(event.duration_min, 30)
        event = normalize.normalize_event({'duration': '1小时30分钟'}, self.ids)
        assert event is not None
        self.assertEqual(event.duration_min, 90)

    def test_embedded_location(self) -> None:
        """An embedded location supplies the id and name and is kept for upsert."""
        raw = {'location': {'poi': {'id': 'B0FF'}, 'name': '故宫'}, 'locationId': 'ignored'}
        event = normalize.normalize_event(raw, self.ids)
        assert event is not None
        self.assertEqual(event.location_id, 'B0FF')
        self.assertEqual(event.location_name, '故宫')
        self.assertTrue(event.location_from_payload)

    def test_flat_location_reference(self) -> None:
        event = normalize.normalize_event({'locationId': 12, 'locationName': 'Park'}, self.ids)
        assert event is not None
        self.assertEqual((event.location_id, event.location_name), ('12', 'Park'))
        self.assertFalse(event.location_from_payload)

    def test_snake_case_aliases(self) -> None:
        """card_type and cost_currency are accepted."""
        event = normalize.normalize_event(
            {'card_type': 'multi', 'cost_currency': 'JPY', 'cost': '1200'}, self.ids
        )
        assert event is not None
        self.assertTrue(event.is_multi)
        self.assertEqual(event.cost_currency, 'JPY')
        self.assertEqual(event.cost, 1200.0)

    def test_columns(self) -> None:
        """JSON columns are encoded; missing tags stay NULL."""
        event = normalize.normalize_event(
            {'title': 'Lunch', 'images': ['a.jpg'], 'weather': {'t': 20}}, self.ids
        )
        assert event is not None
        columns = event.columns()
        self.assertEqual(columns['title'], 'Lunch')
        self.assertIsNone(columns['tags'])
        self.assertEqual(json.loads(columns['images']), ['a.jpg'])
        self.assertEqual(json.loads(columns['weather_json']), {'t': 20})
        self.assertNotIn('event_order', columns)


class TestExpandOptions(unittest.TestCase):
    """Tests for expand_options."""

    def setUp(self) -> None:
        self.ids = make_ids()

    def test_children_forced_single(self) -> None:
        """Every option is a single card; non-object entries are skipped."""
        parent = normalize.normalize_event(
            {
                'uid': 'p',
                'cardType': 'multi',
                'options': [{'title': 'A', 'cardType': 'multi'}, 'junk', {'title': 'B'}],
            },
            self.ids,
        )
        assert parent is not None
        children = normalize.expand_options(parent, self.ids)
        self.assertEqual([c.title for c in children], ['A', 'B'])
        self.assertTrue(all(c.card_type == 'single' for c in children))
        self.assertEqual(len({c.uid for c in children}), 2)

    def test_single_card_has_no_options(self) -> None:
        """Options on a single card are ignored."""
        parent = normalize.normalize_event({'options': [{'title': 'A'}]}, self.ids)
        assert parent is not None
        self.assertEqual(normalize.expand_options(parent, self.ids), [])


class TestNormalizeDayAndLocation(unittest.TestCase):
    """Tests for normalize_day and normalize_location."""

    def test_day_requires_id(self) -> None:
        self.assertIsNone(normalize.normalize_day({'date': '2025-02-11'}))
        self.assertIsNone(normalize.normalize_day('d1'))

    def test_day_drops_events(self) -> None:
        """Nested events are not part of the day record."""
        day = normalize.normalize_day({'id': ' d1 ', 'events': [{}], 'title': 'Arrive'})
        self.assertEqual(day, {'id': 'd1', 'title': 'Arrive'})

    def test_location(self) -> None:
        """The poi id is used when no other id is given; poi is stored as meta."""
        location = normalize.normalize_location(
            {'poi': {'id': 'B1', 'type': 'museum'}, 'name': 'Museum', 'lat': '39.9', 'lng': 116.4}
        )
        assert location is not None
        self.assertEqual(location['location_id'], 'B1')
        self.assertEqual(location['lat'], 39.9)
        self.assertEqual(location['lng'], 116.4)
        self.assertEqual(json.loads(location['meta_json']), {'id': 'B1', 'type': 'museum'})

    def test_location_without_id(self) -> None:
        self.assertIsNone(normalize.normalize_location({'name': 'Nowhere'}))


if __name__ == '__main__':
    unittest.main()
