"""Integration tests for the trip endpoints."""

import json
import unittest
from unittest import mock

import fastapi.testclient
import sqlalchemy
import sqlalchemy.pool
import sqlmodel

from itinerary.app import database, main, models
from itinerary.app.trips import services


def make_in_memory_engine() -> sqlalchemy.Engine:
    """Create an in-memory SQLite engine for testing."""
    engine = sqlmodel.create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=sqlalchemy.pool.StaticPool,
    )
    sqlmodel.SQLModel.metadata.create_all(engine)
    return engine


OWNER = {'X-User-Id': 'u1'}
STRANGER = {'X-User-Id': 'u2'}


class TripRoutesTestCase(unittest.TestCase):
    """App wired to an in-memory database holding trip t1 (owned by u1)."""

    def setUp(self) -> None:
        self.engine = make_in_memory_engine()
        with sqlmodel.Session(self.engine) as session:
            session.add(
                models.Trip(
                    trip_id='t1', user_id='u1', title='Japan',
                    start_date='2025-02-11', end_date='2025-02-12',
                )
            )
            session.add(models.Location(location_id='L1', name='Temple'))
            session.add(
                models.Event(
                    event_id='E1', trip_id='t1', day_id='d1', state='completed', location_id='L1'
                )
            )
            session.add(models.Event(event_id='E2', trip_id='t1', day_id='d1'))
            session.commit()

        def get_session_override():  # type: ignore[no-untyped-def]
            with sqlmodel.Session(self.engine) as session:
                yield session

        main.app.dependency_overrides[database.get_session] = get_session_override
        main.app.state.table_schema = database.TableSchemaCache()
        self.client = fastapi.testclient.TestClient(main.app)

    def tearDown(self) -> None:
        main.app.dependency_overrides.clear()


class TestTrips(TripRoutesTestCase):
    """Tests for trip create and read."""

    def test_create_trip(self) -> None:
        response = self.client.post(
            '/api/trips', json={'trip': {'title': 'Korea', 'cityList': ['Seoul']}}, headers=OWNER
        )
        self.assertEqual(response.status_code, 201)
        trip = response.json()['data']
        self.assertEqual(trip['title'], 'Korea')
        self.assertEqual(trip['cityList'], ['Seoul'])
        self.assertEqual(trip['userId'], 'u1')
        self.assertEqual(trip['completed'], 0)

    def test_create_trip_requires_login(self) -> None:
        response = self.client.post('/api/trips', json={'trip': {'title': 'Korea'}})
        self.assertEqual((response.status_code, response.json()['code']), (401, 40100))

    def test_create_trip_invalid(self) -> None:
        response = self.client.post(
            '/api/trips', json={'trip': {'visibility': 'friends'}}, headers=OWNER
        )
        self.assertEqual((response.status_code, response.json()['code']), (400, 40002))

    def test_read_trip(self) -> None:
        """The trip page gets progress and a days list built from the date range."""
        response = self.client.get('/api/trips/t1', headers=OWNER)
        self.assertEqual(response.status_code, 200)
        data = response.json()['data']
        self.assertEqual(data['trip']['title'], 'Japan')
        self.assertEqual(data['trip']['completed'], 50)
        self.assertEqual([d['date'] for d in data['daysList']], ['2025-02-11', '2025-02-12'])

    def test_read_trip_with_schema(self) -> None:
        response = self.client.get(
            '/api/trips/t1', params={'schema': json.dumps({'trip': ['id', 'title']})}, headers=OWNER
        )
        self.assertEqual(response.json()['data']['trip'], {'id': 't1', 'title': 'Japan'})

    def test_read_private_trip_as_stranger(self) -> None:
        response = self.client.get('/api/trips/t1', headers=STRANGER)
        self.assertEqual((response.status_code, response.json()['code']), (403, 40300))

    def test_progress(self) -> None:
        response = self.client.get('/api/trips/t1/progress', headers=OWNER)
        self.assertEqual(response.json()['data'], {'tripId': 't1', 'progress': 50})

    def test_unhandled_error(self) -> None:
        """Unexpected failures become a logged 500 envelope."""
        client = fastapi.testclient.TestClient(main.app, raise_server_exceptions=False)
        with mock.patch.object(services, 'trip_locations', side_effect=RuntimeError('boom')):
            with self.assertLogs('itinerary.app.responses', level='ERROR'):
                response = client.get('/api/trips/t1/locations', headers=OWNER)
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {'code': 50000, 'message': 'Internal server error', 'data': None})


class TestTripLifecycle(TripRoutesTestCase):
    """Tests for trip update, delete, visibility and export."""

    def test_update_trip(self) -> None:
        response = self.client.patch('/api/trips/t1', json={'title': 'Kansai', 'days': 3}, headers=OWNER)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['message'], 'updated')
        self.assertEqual(response.json()['data']['tripId'], 't1')
        trip = self.client.get('/api/trips/t1', headers=OWNER).json()['data']['trip']
        self.assertEqual((trip['title'], trip['days']), ('Kansai', 3))

    def test_update_trip_wrapped_payload(self) -> None:
        response = self.client.put('/api/trips/t1', json={'trip': {'status': 'published'}}, headers=OWNER)
        self.assertEqual(response.status_code, 200)

    def test_update_trip_without_fields(self) -> None:
        response = self.client.put('/api/trips/t1', json={'unknown': 1}, headers=OWNER)
        self.assertEqual((response.status_code, response.json()['code']), (400, 40003))

    def test_update_trip_invalid(self) -> None:
        response = self.client.put('/api/trips/t1', json={'status': 'archived'}, headers=OWNER)
        self.assertEqual((response.status_code, response.json()['code']), (400, 40002))

    def test_update_trip_requires_owner(self) -> None:
        response = self.client.put('/api/trips/t1', json={'title': 'Mine'}, headers=STRANGER)
        self.assertEqual((response.status_code, response.json()['code']), (403, 40300))
        response = self.client.put('/api/trips/t1', json={'title': 'Mine'})
        self.assertEqual((response.status_code, response.json()['code']), (401, 40100))

    def test_delete_trip(self) -> None:
        """A deleted trip is gone from every endpoint."""
        response = self.client.delete('/api/trips/t1', headers=OWNER)
        self.assertEqual(response.json()['message'], 'deleted')
        self.assertTrue(response.json()['data']['deleted'])
        response = self.client.get('/api/trips/t1', headers=OWNER)
        self.assertEqual((response.status_code, response.json()['code']), (404, 40400))
        response = self.client.delete('/api/trips/t1', headers=OWNER)
        self.assertEqual(response.status_code, 404)

    def test_delete_trip_requires_owner(self) -> None:
        response = self.client.delete('/api/trips/t1', headers=STRANGER)
        self.assertEqual(response.status_code, 403)
        self.assertEqual(self.client.get('/api/trips/t1', headers=OWNER).status_code, 200)

    def test_visibility(self) -> None:
        """A trip made public and published becomes readable by others."""
        response = self.client.put('/api/trips/t1/visibility', json={'visibility': 'public'}, headers=OWNER)
        self.assertEqual(response.json()['data'], {'tripId': 't1', 'visibility': 'public'})
        self.client.patch('/api/trips/t1', json={'status': 'published'}, headers=OWNER)
        self.assertEqual(self.client.get('/api/trips/t1', headers=STRANGER).status_code, 200)

    def test_invalid_visibility(self) -> None:
        response = self.client.put('/api/trips/t1/visibility', json={'visibility': 'friends'}, headers=OWNER)
        self.assertEqual((response.status_code, response.json()['code']), (400, 40002))
        response = self.client.put('/api/trips/t1/visibility', json={}, headers=OWNER)
        self.assertEqual(response.status_code, 400)

    def test_visibility_requires_owner(self) -> None:
        response = self.client.put('/api/trips/t1/visibility', json={'visibility': 'public'}, headers=STRANGER)
        self.assertEqual(response.status_code, 403)

    def test_export(self) -> None:
        response = self.client.get('/api/trips/t1/export', headers=OWNER)
        self.assertEqual(response.status_code, 200)
        data = response.json()['data']
        self.assertEqual(data['trip']['id'], 't1')
        self.assertEqual(data['schedule'], [])
        self.assertEqual([e['id'] for e in data['events']], ['E1', 'E2'])

    def test_export_private_trip_as_stranger(self) -> None:
        response = self.client.get('/api/trips/t1/export', headers=STRANGER)
        self.assertEqual((response.status_code, response.json()['code']), (403, 40300))


class TestLocations(TripRoutesTestCase):
    """Tests for the location endpoints."""

    def test_list_locations(self) -> None:
        response = self.client.get('/api/trips/t1/locations', headers=OWNER)
        locations = response.json()['data']['locations']
        self.assertEqual([(loc['id'], loc['name']) for loc in locations], [('L1', 'Temple')])

    def test_save_location(self) -> None:
        """PUT replaces the stored location."""
        response = self.client.put(
            '/api/trips/t1/locations', json={'location': {'id': 'L1', 'name': 'Shrine'}}, headers=OWNER
        )
        self.assertEqual(response.json()['data'], {'locationId': 'L1'})
        self.assertEqual(response.json()['message'], 'saved')
        locations = self.client.get('/api/trips/t1/locations', headers=OWNER).json()['data']['locations']
        self.assertEqual(locations[0]['name'], 'Shrine')

    def test_save_location_body_itself(self) -> None:
        response = self.client.post('/api/trips/t1/locations', json={'id': 42}, headers=OWNER)
        self.assertEqual(response.json()['data'], {'locationId': '42'})

    def test_save_invalid_location(self) -> None:
        response = self.client.put('/api/trips/t1/locations', json={'name': 'x'}, headers=OWNER)
        self.assertEqual((response.status_code, response.json()['code']), (400, 40002))

    def test_save_location_requires_owner(self) -> None:
        response = self.client.put(
            '/api/trips/t1/locations', json={'id': 'L9'}, headers=STRANGER
        )
        self.assertEqual(response.status_code, 403)


class TestDistances(TripRoutesTestCase):
    """Tests for the route distance endpoints."""

    def test_missing_parameters(self) -> None:
        response = self.client.get('/api/trips/t1/routes?from=A', headers=OWNER)
        self.assertEqual((response.status_code, response.json()['code']), (400, 40003))

    def test_same_location(self) -> None:
        response = self.client.get('/api/trips/t1/routes?from=A&to=A', headers=OWNER)
        self.assertEqual(response.json()['data'], {'distanceKm': 0, 'source': 'same'})

    def test_not_found(self) -> None:
        response = self.client.get('/api/trips/t1/routes?from=A&to=B', headers=OWNER)
        self.assertEqual(
            response.json()['data'], {'distanceKm': 0, 'source': None, 'notFound': True}
        )

    def test_save_then_read(self) -> None:
        """A saved pair is readable in either direction."""
        response = self.client.put(
            '/api/trips/t1/routes',
            json={'from': 'B', 'to': 'A', 'distanceKm': 3.2, 'source': 'amap'},
            headers=OWNER,
        )
        self.assertEqual(
            response.json()['data'], {'from': 'A', 'to': 'B', 'distanceKm': 3.2, 'source': 'amap'}
        )
        data = self.client.get('/api/trips/t1/routes?from=B&to=A', headers=OWNER).json()['data']
        self.assertEqual((data['from'], data['to'], data['source']), ('A', 'B', 'amap'))
        self.assertAlmostEqual(data['distanceKm'], 3.2)

    def test_save_same_location(self) -> None:
        response = self.client.put(
            '/api/trips/t1/routes', json={'from': 'A', 'to': 'A', 'distanceKm': 9}, headers=OWNER
        )
        self.assertEqual(response.json()['data'], {'distanceKm': 0})


if __name__ == '__main__':
    unittest.main()
