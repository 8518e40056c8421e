"""
appsettings/store.py -- Key/value persistence for application settings.

Values are JSON objects serialized to Text. put() is an upsert written with
portable Core statements (UPDATE, then INSERT when nothing was updated) so
the same code runs on SQLite and PostgreSQL; a concurrent insert of the same
key is resolved by retrying the UPDATE.

Layer rule: no imports from api/, auth/, or policies/.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from core.database import create_schema, now_iso
from core.schema import app_settings as _settings


@dataclass
class StoredSetting:
    key: str
    value: dict
    updated_at: str


class SettingsStore:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        create_schema(self.engine)

    def list_settings(self) -> list[StoredSetting]:
        """Return every setting ordered by key."""
        with self.engine.connect() as conn:
            rows = conn.execute(_settings.select().order_by(_settings.c.key)).fetchall()
        return [_row_to_setting(r) for r in rows]

    def get(self, key: str) -> Optional[StoredSetting]:
        with self.engine.connect() as conn:
            row = conn.execute(_settings.select().where(_settings.c.key == key)).fetchone()
        return _row_to_setting(row) if row is not None else None

    def put(self, key: str, value: dict) -> StoredSetting:
        """Insert or replace the value for key and return the stored row."""
        payload = json.dumps(value)
        now = now_iso()
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _settings.update().where(_settings.c.key == key).values(value=payload, updated_at=now)
                )
                if result.rowcount == 0:
                    conn.execute(_settings.insert().values(key=key, value=payload, updated_at=now))
        except IntegrityError:
            # Lost an insert race for the same key: the row exists now.
            with self.engine.begin() as conn:
                conn.execute(
                    _settings.update().where(_settings.c.key == key).values(value=payload, updated_at=now)
                )
        return StoredSetting(key=key, value=value, updated_at=now)


def _row_to_setting(row) -> StoredSetting:
    try:
        value = json.loads(row.value)
    except ValueError:
        value = {}
    return StoredSetting(
        key=row.key,
        value=value if isinstance(value, dict) else {},
        updated_at=row.updated_at,
    )
