"""Usage and publishing metrics for the EOS defenses bot.

Events are buffered in memory and written to a small SQLite file in
batches. Recording and flushing never raise into callers: a metrics database
that cannot be written only costs the buffered events and a log line.
Creating a collector and the reporting queries do raise ``sqlite3.Error``.
"""
from __future__ import annotations

import json
import logging
import os
import sqlite3
import time
from contextlib import closing
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

_METRICS_SCHEMA = """
CREATE TABLE IF NOT EXISTS metrics (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp REAL NOT NULL,
    metric_type TEXT NOT NULL,
    name TEXT NOT NULL,
    value REAL NOT NULL,
    tags TEXT,
    metadata TEXT
);
CREATE INDEX IF NOT EXISTS idx_metrics_kind ON metrics (metric_type, name);
"""

_BUFFER_LIMIT = 100


class MetricType(Enum):
    COMMAND_USAGE = "command_usage"
    ERROR_RATE = "error_rate"
    PUBLISH_BATCH = "publish_batch"
    SYSTEM_EVENT = "system_event"


@dataclass
class MetricEvent:
    """One recorded measurement."""

    timestamp: float
    metric_type: MetricType
    name: str
    value: float
    tags: Dict[str, str] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)


class TelemetryCollector:
    """Buffers metric events and persists them to ``db_path``."""

    def __init__(self, db_path: Optional[Path] = None, *, flush_interval: float = 60):
        self.db_path = Path(db_path or os.environ.get("EOS_TELEMETRY_DB", "telemetry.db"))
        self._flush_interval = flush_interval
        self._metrics_buffer: List[MetricEvent] = []
        self._last_flush = time.time()
        with closing(sqlite3.connect(self.db_path)) as conn:
            conn.executescript(_METRICS_SCHEMA)
            conn.commit()

    # Recording ---------------------------------------------------------
    def record(
        self,
        metric_type: MetricType,
        name: str,
        value: float,
        tags: Optional[Dict[str, str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._metrics_buffer.append(
            MetricEvent(
                timestamp=time.time(),
                metric_type=metric_type,
                name=name,
                value=value,
                tags=tags or {},
                metadata=metadata or {},
            )
        )
        overdue = time.time() - self._last_flush > self._flush_interval
        if len(self._metrics_buffer) >= _BUFFER_LIMIT or overdue:
            self.flush()

    def track_command(
        self,
        command_name: str,
        user_id: str,
        guild_id: str,
        success: bool = True,
        duration_ms: Optional[float] = None,
    ) -> None:
        """Count one slash command invocation."""
        metadata = {"duration_ms": duration_ms} if duration_ms else {}
        tags = {"user_id": user_id, "guild_id": guild_id, "success": str(success)}
        self.record(MetricType.COMMAND_USAGE, command_name, 1.0, tags=tags, metadata=metadata)

    def track_error(
        self,
        error_type: str,
        command: Optional[str] = None,
        user_id: Optional[str] = None,
        error_details: Optional[str] = None,
    ) -> None:
        tags = {key: value for key, value in (("command", command), ("user_id", user_id)) if value}
        metadata = {"error_details": error_details} if error_details else {}
        self.record(MetricType.ERROR_RATE, error_type, 1.0, tags=tags, metadata=metadata)

    def track_publish_batch(
        self,
        kind: str,
        *,
        attempted: int,
        published: int,
        trigger: str = "manual",
        season: Optional[str] = None,
    ) -> None:
        """Record how a bulk publish went; ``value`` is the published count."""
        metadata: Dict[str, Any] = {"attempted": attempted}
        if season:
            metadata["season"] = season
        tags = {"trigger": trigger, "complete": str(attempted == published)}
        self.record(MetricType.PUBLISH_BATCH, kind, float(published), tags=tags, metadata=metadata)

    def track_system_event(
        self,
        event: str,
        *,
        source: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> None:
        tags = {"source": source} if source else {}
        metadata = {"reason": reason} if reason else {}
        self.record(MetricType.SYSTEM_EVENT, event, 1.0, tags=tags, metadata=metadata)

    # Persistence -------------------------------------------------------
    def flush(self) -> None:
        if not self._metrics_buffer:
            return
        rows = [
            (
                event.timestamp,
                event.metric_type.value,
                event.name,
                event.value,
                json.dumps(event.tags),
                json.dumps(event.metadata),
            )
            for event in self._metrics_buffer
        ]
        try:
            with closing(sqlite3.connect(self.db_path)) as conn:
                conn.executemany(
                    "INSERT INTO metrics (timestamp, metric_type, name, value, tags, metadata) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    rows,
                )
                conn.commit()
        except sqlite3.Error as exc:
            logger.error("Failed to flush %d metrics: %s", len(rows), exc)
            return
        logger.debug("Flushed %d metrics", len(rows))
        self._metrics_buffer.clear()
        self._last_flush = time.time()

    def _query(self, sql: str, params: tuple) -> List[tuple]:
        self.flush()
        with closing(sqlite3.connect(self.db_path)) as conn:
            return conn.execute(sql, params).fetchall()

    # Reporting ---------------------------------------------------------
    def get_command_stats(self) -> Dict[str, Dict[str, Any]]:
        """Usage count, success rate and distinct users per slash command."""
        rows = self._query(
            "SELECT name, COUNT(*), "
            "AVG(CASE WHEN json_extract(tags, '$.success') = 'True' THEN 1 ELSE 0 END), "
            "COUNT(DISTINCT json_extract(tags, '$.user_id')) "
            "FROM metrics WHERE metric_type = ? GROUP BY name",
            (MetricType.COMMAND_USAGE.value,),
        )
        return {
            name: {"usage_count": count, "success_rate": rate, "unique_users": users}
            for name, count, rate, users in rows
        }

    def get_publish_summary(self) -> Dict[str, Dict[str, Any]]:
        """Batches, published items and attempted items per publish kind."""
        rows = self._query(
            "SELECT name, COUNT(*), SUM(value), SUM(json_extract(metadata, '$.attempted')) "
            "FROM metrics WHERE metric_type = ? GROUP BY name",
            (MetricType.PUBLISH_BATCH.value,),
        )
        return {
            name: {
                "batches": batches,
                "published": int(published or 0),
                "attempted": int(attempted or 0),
            }
            for name, batches, published, attempted in rows
        }


_telemetry: Optional[TelemetryCollector] = None


def get_telemetry() -> TelemetryCollector:
    """Process-wide collector, created on first use."""
    global _telemetry
    if _telemetry is None:
        _telemetry = TelemetryCollector()
    return _telemetry


__all__ = ["MetricEvent", "MetricType", "TelemetryCollector", "get_telemetry"]
