"""
Lightweight SQLite store for tenant (bot) configuration records.

Table: tenants (tenant_id, config_json, embedding_status, created_at, updated_at).
Configs are validated as TenantConfig before they are written, so a record that
made it to disk always parses on the request path.
"""

import logging
import sqlite3
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from app.core.config import TENANT_DB_PATH, TENANT_ID_PREFIX
from app.core.errors import InvalidTenantConfigError, TenantNotFoundError
from app.schemas.tenant import EmbeddingStatus, TenantConfig

logger = logging.getLogger(__name__)

_TABLE = "tenants"
_IMMUTABLE_FIELDS = frozenset({"tenant_id", "created_at"})


def new_tenant_id() -> str:
    return f"{TENANT_ID_PREFIX}{uuid.uuid4()}"


def _validation_message(err: ValidationError) -> str:
    first = err.errors()[0]
    loc = ".".join(str(p) for p in first.get("loc", ()))
    return f"{loc}: {first.get('msg', 'invalid value')}" if loc else first.get("msg", "invalid value")


def build_tenant_config(data: dict[str, Any]) -> TenantConfig:
    """Validate raw tenant fields. Raises InvalidTenantConfigError with the first problem found."""
    try:
        return TenantConfig.model_validate(data)
    except ValidationError as e:
        raise InvalidTenantConfigError(_validation_message(e)) from e


class TenantStore:
    """Create/read/update tenant records. Records are never deleted here."""

    def __init__(self, db_path: str | Path = TENANT_DB_PATH) -> None:
        self.db_path = Path(db_path)
        self._lock = threading.Lock()
        self.init_db()

    def _get_conn(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        return sqlite3.connect(str(self.db_path))

    def init_db(self) -> None:
        """Create the tenants table if it does not exist."""
        conn = self._get_conn()
        try:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {_TABLE} (
                    tenant_id TEXT PRIMARY KEY,
                    config_json TEXT NOT NULL,
                    embedding_status TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.commit()
        finally:
            conn.close()

    def _write(self, config: TenantConfig, insert: bool) -> None:
        row = (
            config.model_dump_json(),
            config.embedding_status,
            config.created_at.isoformat(),
            config.updated_at.isoformat(),
            config.tenant_id,
        )
        conn = self._get_conn()
        try:
            if insert:
                conn.execute(
                    f"INSERT INTO {_TABLE} (config_json, embedding_status, created_at, updated_at, tenant_id) "
                    "VALUES (?, ?, ?, ?, ?)",
                    row,
                )
            else:
                conn.execute(
                    f"UPDATE {_TABLE} SET config_json = ?, embedding_status = ?, created_at = ?, updated_at = ? "
                    "WHERE tenant_id = ?",
                    row,
                )
            conn.commit()
        finally:
            conn.close()

    def create(self, data: dict[str, Any]) -> TenantConfig:
        """Validate and insert a new tenant. A tenant_id is generated when none is given."""
        fields = dict(data)
        fields.setdefault("tenant_id", new_tenant_id())
        config = build_tenant_config(fields)
        with self._lock:
            try:
                self._write(config, insert=True)
            except sqlite3.IntegrityError as e:
                raise InvalidTenantConfigError(f"tenant_id already exists: {config.tenant_id}") from e
        logger.info("[tenant_db:create] tenant_id=%s policies=%d", config.tenant_id, len(config.endpoint_policies))
        return config

    def get(self, tenant_id: str) -> TenantConfig:
        conn = self._get_conn()
        try:
            cur = conn.execute(f"SELECT config_json FROM {_TABLE} WHERE tenant_id = ?", (tenant_id,))
            row = cur.fetchone()
        finally:
            conn.close()
        if row is None:
            raise TenantNotFoundError("Bot not found")
        return TenantConfig.model_validate_json(row[0])

    def update(self, tenant_id: str, changes: dict[str, Any]) -> TenantConfig:
        """Apply a partial update; the merged record is re-validated before it is written."""
        with self._lock:
            current = self.get(tenant_id)
            merged = current.model_dump()
            merged.update({k: v for k, v in changes.items() if k not in _IMMUTABLE_FIELDS})
            merged["updated_at"] = datetime.now(timezone.utc)
            config = build_tenant_config(merged)
            self._write(config, insert=False)
        logger.info("[tenant_db:update] tenant_id=%s fields=%s", tenant_id, sorted(changes))
        return config

    def set_embedding_status(self, tenant_id: str, status: EmbeddingStatus) -> TenantConfig:
        return self.update(tenant_id, {"embedding_status": status})

