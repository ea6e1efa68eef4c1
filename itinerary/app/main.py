"""Itinerary planner API: trips, days, events and schedule projections."""

import contextlib
from collections.abc import AsyncGenerator

import fastapi
import uvicorn

from common import app as common_app
from common import settings
from itinerary.app import database, responses
from itinerary.app.schedule import ids
from itinerary.app.schedule import routes as schedule_routes
from itinerary.app.trips import routes as trip_routes


@contextlib.asynccontextmanager
async def lifespan(app: fastapi.FastAPI) -> AsyncGenerator[None, None]:
    """Create tables and cache their columns on startup."""
    database.create_db_and_tables()
    app.state.table_schema.initialize(database.engine)
    yield


app = common_app.create_app('Itinerary', lifespan=lifespan)
app.state.table_schema = database.TableSchemaCache()
app.state.id_generator = ids.IdGenerator(
    timestamp_digits=settings.ID_TIMESTAMP_DIGITS,
    sequence_digits=settings.ID_SEQUENCE_DIGITS,
)
responses.install_handlers(app)
app.include_router(schedule_routes.router)
app.include_router(trip_routes.router)


if __name__ == '__main__':
    uvicorn.run(app, host='0.0.0.0', port=8000)
