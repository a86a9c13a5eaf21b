"""SQLite storage for user preferences and tenant settings."""

import asyncio
import json
import logging
import sqlite3
import threading
from dataclasses import asdict, replace
from pathlib import Path
from typing import Any

from .responder.models import TenantSettings, UserPreferences

logger = logging.getLogger(__name__)


class SettingsStore:
    """Persistent user preferences and tenant settings.

    Implements both ``PreferenceProvider`` and ``TenantSettingsProvider``.
    Unknown users and tenants get the defaults.
    """

    def __init__(
        self,
        db_path: Path,
        user_defaults: UserPreferences | None = None,
        tenant_defaults: TenantSettings | None = None,
    ) -> None:
        self.db_path = db_path
        self.user_defaults = user_defaults or UserPreferences()
        self.tenant_defaults = tenant_defaults or TenantSettings()
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def init_db(self) -> None:
        """Create the settings tables if they don't exist."""
        with self._lock:
            conn = self._get_connection()
            conn.execute("""
                CREATE TABLE IF NOT EXISTS user_preferences (
                    user_id   TEXT PRIMARY KEY,
                    data      TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tenant_settings (
                    tenant_id  TEXT PRIMARY KEY,
                    data       TEXT NOT NULL
                )
            """)
            conn.commit()

    def _read(self, table: str, column: str, key: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._get_connection().execute(
                f"SELECT data FROM {table} WHERE {column} = ?", (key,)
            ).fetchone()
        if row is None:
            return None
        try:
            data = json.loads(row["data"])
        except json.JSONDecodeError:
            logger.warning(f"Corrupt {table} row for {key}, using defaults")
            return None
        return data if isinstance(data, dict) else None

    def _write(self, table: str, column: str, key: str, data: dict[str, Any]) -> None:
        with self._lock:
            conn = self._get_connection()
            conn.execute(
                f"""
                INSERT INTO {table} ({column}, data) VALUES (?, ?)
                ON CONFLICT({column}) DO UPDATE SET data = excluded.data
                """,
                (key, json.dumps(data)),
            )
            conn.commit()

    def load_user_preferences(self, user_id: str) -> UserPreferences:
        data = self._read("user_preferences", "user_id", user_id)
        if data is None:
            return replace(self.user_defaults)
        known = {k: v for k, v in data.items() if k in asdict(self.user_defaults)}
        return replace(self.user_defaults, **known)

    def update_user_preferences(self, user_id: str, **changes: Any) -> UserPreferences:
        """Change some preferences and return the result."""
        prefs = replace(self.load_user_preferences(user_id), **changes)
        self._write("user_preferences", "user_id", user_id, asdict(prefs))
        return prefs

    def load_tenant_settings(self, tenant_id: str) -> TenantSettings:
        data = self._read("tenant_settings", "tenant_id", tenant_id)
        if data is None:
            return replace(
                self.tenant_defaults,
                ambient_channels=list(self.tenant_defaults.ambient_channels),
            )
        known = {k: v for k, v in data.items() if k in asdict(self.tenant_defaults)}
        return replace(self.tenant_defaults, **known)

    def update_tenant_settings(self, tenant_id: str, **changes: Any) -> TenantSettings:
        """Change some tenant settings and return the result."""
        settings = replace(self.load_tenant_settings(tenant_id), **changes)
        self._write("tenant_settings", "tenant_id", tenant_id, asdict(settings))
        return settings

    async def get_user_preferences(self, user_id: str) -> UserPreferences:
        return await asyncio.to_thread(self.load_user_preferences, user_id)

    async def get_tenant_settings(self, tenant_id: str) -> TenantSettings:
        return await asyncio.to_thread(self.load_tenant_settings, tenant_id)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
