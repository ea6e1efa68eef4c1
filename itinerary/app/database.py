"""Database configuration, session management and table metadata cache."""

import collections.abc
import logging
import pathlib
import threading

import fastapi
import sqlalchemy
import sqlalchemy.exc
import sqlmodel

from common import settings

logger = logging.getLogger(__name__)

DATABASE_URL = settings.DATABASE_URL

_connect_args = (
    {'check_same_thread': False} if DATABASE_URL.startswith('sqlite') else {}
)
engine = sqlmodel.create_engine(DATABASE_URL, connect_args=_connect_args, echo=False)


def create_db_and_tables() -> None:
    """Create database tables if they don't exist."""
    # Import models to ensure they're registered with SQLModel
    from . import models  # noqa: F401 # pyright: ignore[reportUnusedImport]

    database = engine.url.database
    if engine.url.get_backend_name() == 'sqlite' and database:
        pathlib.Path(database).parent.mkdir(parents=True, exist_ok=True)
    sqlmodel.SQLModel.metadata.create_all(engine)


def get_session() -> collections.abc.Generator[sqlmodel.Session, None, None]:
    """Get a database session."""
    with sqlmodel.Session(engine) as session:
        yield session


# ---------------------------------------------------------------------------
# Table metadata cache
# ---------------------------------------------------------------------------


class TableSchemaCache:
    """Column names of the itinerary tables, reflected once per process.

    Older databases may lack columns the models declare (``is_deleted``,
    ``weather_json``, location extras). Callers consult this cache instead
    of reflecting on every request. ``reset()`` forces a fresh reflection.
    """

    TABLES = ('trip', 'day', 'event', 'location')

    def __init__(self) -> None:
        self._columns: dict[str, list[str]] = {}
        self._initialized = False
        self._lock = threading.Lock()

    @property
    def initialized(self) -> bool:
        """True once the tables have been reflected."""
        return self._initialized

    def initialize(self, bind: sqlalchemy.Engine | sqlalchemy.Connection) -> None:
        """Reflect column names for every cached table (no-op if done)."""
        with self._lock:
            if self._initialized:
                return
            inspector = sqlalchemy.inspect(bind)
            for table in self.TABLES:
                try:
                    names = [str(c['name']) for c in inspector.get_columns(table)]
                except sqlalchemy.exc.SQLAlchemyError:
                    logger.exception('Could not reflect columns of %s', table)
                    names = []
                self._columns[table] = names
                logger.info('Cached table schema: %s (%d columns)', table, len(names))
            self._initialized = True

    def ensure(self, session: sqlmodel.Session) -> 'TableSchemaCache':
        """Initialize from the session's connection if not yet done."""
        if not self._initialized:
            self.initialize(session.connection())
        return self

    def columns(self, table: str) -> list[str]:
        """Return the reflected columns of *table*, or [] if unknown."""
        return list(self._columns.get(table, []))

    def has_column(self, table: str, column: str) -> bool:
        """Case-insensitive check for *column* on *table*."""
        wanted = column.lower()
        return any(name.lower() == wanted for name in self._columns.get(table, []))

    def reset(self) -> None:
        """Drop cached metadata; the next ``ensure`` reflects again."""
        with self._lock:
            self._columns.clear()
            self._initialized = False


def get_table_schema(request: fastapi.Request) -> TableSchemaCache:
    """Return the application's shared table metadata cache."""
    return request.app.state.table_schema
