"""SQLite-based configuration and run persistence using aiosqlite.

This module provides the ConfigurationStore class, the persistence
collaborator of the pipeline core. It stores raw configuration documents
(in whatever schema version they were saved), snapshots of paused runs, and
final run metrics. All operations are async and designed to fail gracefully:
a database error is logged and never crashes a running pipeline.

Tables:
    configurations: Raw documents keyed by configuration id.
    run_snapshots: Latest snapshot of each run, for resuming after a pause.
    run_metrics: Aggregate generation counts and timing per run.

Usage:
    >>> from models.database import ConfigurationStore
    >>> store = ConfigurationStore("./data/pipeline.db")
    >>> await store.init()
    >>> await store.save_configuration("cfg_abc123", document.to_raw(), name="Spec pipeline")
    >>> raw = await store.get_configuration("cfg_abc123")
"""

import json
import time
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import aiosqlite
import structlog

from models.runtime import RunSnapshot
from versioning.registry import detect_version

logger = structlog.get_logger(__name__)


@runtime_checkable
class DocumentStore(Protocol):
    """Supplies raw configuration documents and accepts new ones."""

    async def get_configuration(self, config_id: str) -> dict[str, Any] | None: ...

    async def save_configuration(
        self,
        config_id: str,
        document: Mapping[str, Any],
        name: str = "",
    ) -> None: ...


class ConfigurationStore:
    """Async SQLite store for configurations, run snapshots and metrics.

    All public methods catch exceptions internally and log errors rather
    than propagating them, except init(), which raises so that a host fails
    at startup instead of running without persistence.

    Attributes:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        """Initialize the configuration store.

        Args:
            db_path: Filesystem path to the SQLite database file.
                     Parent directories are created automatically on init().
        """
        self.db_path = db_path

    async def init(self) -> None:
        """Create database tables if they do not exist."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS configurations (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL DEFAULT '',
                        schema_version TEXT NOT NULL,
                        document TEXT NOT NULL,
                        created_at REAL NOT NULL,
                        updated_at REAL NOT NULL
                    )
                """)
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS run_snapshots (
                        run_id TEXT PRIMARY KEY,
                        config_id TEXT,
                        status TEXT NOT NULL,
                        snapshot TEXT NOT NULL,
                        updated_at REAL NOT NULL
                    )
                """)
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS run_metrics (
                        run_id TEXT PRIMARY KEY,
                        generation_calls INTEGER NOT NULL DEFAULT 0,
                        failed_agents INTEGER NOT NULL DEFAULT 0,
                        prompt_chars INTEGER NOT NULL DEFAULT 0,
                        response_chars INTEGER NOT NULL DEFAULT 0,
                        generation_ms INTEGER NOT NULL DEFAULT 0,
                        duration_ms INTEGER NOT NULL DEFAULT 0,
                        created_at REAL NOT NULL
                    )
                """)
                await db.execute("""
                    CREATE INDEX IF NOT EXISTS idx_configurations_updated_at
                    ON configurations(updated_at DESC)
                """)
                await db.commit()
            logger.info("configuration_store_initialized", db_path=self.db_path)
        except Exception as e:
            logger.error(
                "configuration_store_init_failed",
                db_path=self.db_path,
                error=str(e),
            )
            raise

    # -----------------------------------------------------------------
    # Configurations
    # -----------------------------------------------------------------

    async def save_configuration(
        self,
        config_id: str,
        document: Mapping[str, Any],
        name: str = "",
    ) -> None:
        """Insert or replace a raw configuration document.

        The creation time of an existing configuration is preserved.

        Args:
            config_id: Unique configuration identifier.
            document: Raw camelCase document (any schema version).
            name: Optional display name.
        """
        now = time.time()
        version = detect_version(document) or ""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    """
                    INSERT INTO configurations
                        (id, name, schema_version, document, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        name = excluded.name,
                        schema_version = excluded.schema_version,
                        document = excluded.document,
                        updated_at = excluded.updated_at
                    """,
                    (
                        config_id,
                        name,
                        version,
                        json.dumps(dict(document)),
                        now,
                        now,
                    ),
                )
                await db.commit()
            logger.debug(
                "configuration_saved",
                config_id=config_id,
                schema_version=version,
            )
        except Exception as e:
            logger.error(
                "configuration_save_failed",
                config_id=config_id,
                error=str(e),
            )

    async def get_configuration(self, config_id: str) -> dict[str, Any] | None:
        """Retrieve a raw document by id, or None if not found."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute(
                    "SELECT document FROM configurations WHERE id = ?",
                    (config_id,),
                )
                row = await cursor.fetchone()
                if row is None:
                    return None
                return json.loads(row[0])
        except Exception as e:
            logger.error(
                "configuration_get_failed",
                config_id=config_id,
                error=str(e),
            )
            return None

    async def list_configurations(
        self,
        limit: int = 50,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """List configuration summaries, most recently updated first.

        Returns:
            Dicts with id, name, schema_version, created_at and updated_at.
        """
        try:
            async with aiosqlite.connect(self.db_path) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(
                    """
                    SELECT id, name, schema_version, created_at, updated_at
                    FROM configurations
                    ORDER BY updated_at DESC
                    LIMIT ? OFFSET ?
                    """,
                    (limit, offset),
                )
                rows = await cursor.fetchall()
                return [dict(row) for row in rows]
        except Exception as e:
            logger.error("configuration_list_failed", error=str(e))
            return []

    async def delete_configuration(self, config_id: str) -> bool:
        """Delete a configuration; return True if a row was removed."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute(
                    "DELETE FROM configurations WHERE id = ?",
                    (config_id,),
                )
                await db.commit()
                deleted = cursor.rowcount > 0
            logger.debug("configuration_deleted", config_id=config_id, deleted=deleted)
            return deleted
        except Exception as e:
            logger.error(
                "configuration_delete_failed",
                config_id=config_id,
                error=str(e),
            )
            return False

    # -----------------------------------------------------------------
    # Run snapshots
    # -----------------------------------------------------------------

    async def save_snapshot(
        self,
        snapshot: RunSnapshot,
        status: str,
        config_id: str | None = None,
    ) -> None:
        """Save or replace the latest snapshot of a run.

        Args:
            snapshot: The run snapshot to persist.
            status: Run status at the time of the snapshot.
            config_id: Configuration the run executes, if known.
        """
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    """
                    INSERT OR REPLACE INTO run_snapshots
                        (run_id, config_id, status, snapshot, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        snapshot.run_id,
                        config_id,
                        status,
                        snapshot.model_dump_json(),
                        time.time(),
                    ),
                )
                await db.commit()
            logger.debug("run_snapshot_saved", run_id=snapshot.run_id, status=status)
        except Exception as e:
            logger.error(
                "run_snapshot_save_failed",
                run_id=snapshot.run_id,
                error=str(e),
            )

    async def get_snapshot(self, run_id: str) -> RunSnapshot | None:
        """Retrieve the latest snapshot of a run, or None if not found."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute(
                    "SELECT snapshot FROM run_snapshots WHERE run_id = ?",
                    (run_id,),
                )
                row = await cursor.fetchone()
                if row is None:
                    return None
                return RunSnapshot.model_validate_json(row[0])
        except Exception as e:
            logger.error(
                "run_snapshot_get_failed",
                run_id=run_id,
                error=str(e),
            )
            return None

    async def get_snapshot_config_id(self, run_id: str) -> str | None:
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute(
                    "SELECT config_id FROM run_snapshots WHERE run_id = ?",
                    (run_id,),
                )
                row = await cursor.fetchone()
                return row[0] if row else None
        except Exception as e:
            logger.error(
                "run_snapshot_config_get_failed",
                run_id=run_id,
                error=str(e),
            )
            return None

    async def delete_snapshot(self, run_id: str) -> None:
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("DELETE FROM run_snapshots WHERE run_id = ?", (run_id,))
                await db.commit()
            logger.debug("run_snapshot_deleted", run_id=run_id)
        except Exception as e:
            logger.error(
                "run_snapshot_delete_failed",
                run_id=run_id,
                error=str(e),
            )

    # -----------------------------------------------------------------
    # Run metrics
    # -----------------------------------------------------------------

    async def save_metrics(self, run_id: str, metrics_data: dict[str, Any]) -> None:
        """Save or replace aggregate metrics for a run.

        Args:
            run_id: The run the metrics belong to.
            metrics_data: Dict as produced by RunMetricsData.to_dict().
        """
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    """
                    INSERT OR REPLACE INTO run_metrics
                        (run_id, generation_calls, failed_agents, prompt_chars,
                         response_chars, generation_ms, duration_ms, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        run_id,
                        metrics_data.get("generation_calls", 0),
                        metrics_data.get("failed_agents", 0),
                        metrics_data.get("prompt_chars", 0),
                        metrics_data.get("response_chars", 0),
                        metrics_data.get("generation_ms", 0),
                        metrics_data.get("duration_ms", 0),
                        time.time(),
                    ),
                )
                await db.commit()
            logger.debug("run_metrics_saved", run_id=run_id)
        except Exception as e:
            logger.error(
                "run_metrics_save_failed",
                run_id=run_id,
                error=str(e),
            )

    async def get_metrics(self, run_id: str) -> dict[str, Any] | None:
        """Retrieve aggregate metrics for a run, or None if not found."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(
                    "SELECT * FROM run_metrics WHERE run_id = ?",
                    (run_id,),
                )
                row = await cursor.fetchone()
                if row is None:
                    return None
                return dict(row)
        except Exception as e:
            logger.error(
                "run_metrics_get_failed",
                run_id=run_id,
                error=str(e),
            )
            return None
