"""Shared application settings read from environment variables."""

import os

DATA_DIR: str = os.environ.get('DATA_DIR', 'data')
DATABASE_URL: str = os.environ.get(
    'DATABASE_URL', f'sqlite:///{DATA_DIR}/itinerary.db'
)
LOG_LEVEL: str = os.environ.get('LOG_LEVEL', 'INFO').upper()

# Identifier layout: <timestamp digits><sequence digits>
ID_TIMESTAMP_DIGITS: int = int(os.environ.get('ID_TIMESTAMP_DIGITS', '9'))
ID_SEQUENCE_DIGITS: int = int(os.environ.get('ID_SEQUENCE_DIGITS', '4'))

DEFAULT_SCHEMA_TEMPLATE: str = os.environ.get('DEFAULT_SCHEMA_TEMPLATE', 'card')
