"""Annotated dependency aliases shared by the route modules."""

from typing import Annotated

import fastapi
import sqlmodel

from . import auth, database
from .schedule import ids

DatabaseSession = Annotated[sqlmodel.Session, fastapi.Depends(database.get_session)]
TableSchema = Annotated[
    database.TableSchemaCache, fastapi.Depends(database.get_table_schema)
]
Ids = Annotated[ids.IdGenerator, fastapi.Depends(ids.get_id_generator)]
CurrentUserId = Annotated[str | None, fastapi.Depends(auth.get_current_user_id)]
