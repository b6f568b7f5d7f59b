"""Persisted user preferences and whitelist rows."""

from __future__ import annotations

from typing import Any

from sqlalchemy import delete, select

from persistence.schemas import PreferenceRecord, WhitelistRecord
from persistence.sql_store import SQLStore


class Preferences:
    """Key/value preference access over the SQL store."""

    def __init__(self, sql_store: SQLStore) -> None:
        self.sql_store = sql_store

    def get(self, key: str, default: Any = None) -> Any:
        with self.sql_store.session() as sess:
            record = sess.scalar(select(PreferenceRecord).where(PreferenceRecord.key == key))
            return default if record is None else record.value

    def set(self, key: str, value: Any) -> None:
        with self.sql_store.session() as sess:
            record = sess.scalar(select(PreferenceRecord).where(PreferenceRecord.key == key))
            if record is None:
                sess.add(PreferenceRecord(key=key, value=value))
            else:
                record.value = value

    def all(self) -> dict[str, Any]:
        with self.sql_store.session() as sess:
            return {r.key: r.value for r in sess.scalars(select(PreferenceRecord))}

    def whitelist_ids(self) -> set[str]:
        with self.sql_store.session() as sess:
            return set(sess.scalars(select(WhitelistRecord.app_id)))

    def add_whitelist(self, app_id: str) -> None:
        with self.sql_store.session() as sess:
            exists = sess.scalar(select(WhitelistRecord).where(WhitelistRecord.app_id == app_id))
            if exists is None:
                sess.add(WhitelistRecord(app_id=app_id))

    def remove_whitelist(self, app_id: str) -> None:
        with self.sql_store.session() as sess:
            sess.execute(delete(WhitelistRecord).where(WhitelistRecord.app_id == app_id))
