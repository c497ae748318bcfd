"""Per-user daily usage quota backed by SQLite."""

from __future__ import annotations

import logging
import math
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path

from ..models import QuotaStatus
from .schema import ensure_schema

logger = logging.getLogger(__name__)

LOOKUP = "lookup"
ANALYSIS = "analysis"


class UsageQuota:
    """Counts lookup and analysis calls per user per local day.

    A limit of 0 means unlimited. Calls without a user id are not metered.
    """

    def __init__(
        self,
        db_path: str | Path = "~/.config/goodfood/scanner.db",
        limits: dict[str, int] | None = None,
        utc_offset_hours: int = 7,
    ) -> None:
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._limits = {LOOKUP: 3, ANALYSIS: 3, **(limits or {})}
        self._tz = timezone(timedelta(hours=utc_offset_hours))

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = ensure_schema(self._db_path)
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def day_range(self, now: datetime | None = None) -> tuple[str, str]:
        """Return the UTC ISO bounds [start, end) of the local day containing ``now``."""
        now = now or datetime.now(timezone.utc)
        local = now.astimezone(self._tz)
        start = local.replace(hour=0, minute=0, second=0, microsecond=0)
        end = start + timedelta(days=1)
        return (
            start.astimezone(timezone.utc).isoformat(timespec="microseconds"),
            end.astimezone(timezone.utc).isoformat(timespec="microseconds"),
        )

    def used(self, user_id: str, kind: str, now: datetime | None = None) -> int:
        start, end = self.day_range(now)
        conn = self._get_conn()
        row = conn.execute(
            """SELECT COUNT(*) AS n FROM usage_log
               WHERE user_id = ? AND usage_type = ?
                 AND created_at >= ? AND created_at < ?""",
            (user_id, kind, start, end),
        ).fetchone()
        return row["n"]

    def check(self, user_id: str | None, kind: str, now: datetime | None = None) -> QuotaStatus:
        """Report whether ``user_id`` may make another ``kind`` call today."""
        limit = self._limits.get(kind, 0)
        if not user_id or limit == 0:
            return QuotaStatus(allowed=True, limit=limit, used=0, remaining=math.inf)
        used = self.used(user_id, kind, now)
        return QuotaStatus(
            allowed=used < limit,
            limit=limit,
            used=used,
            remaining=max(0, limit - used),
        )

    def record(self, user_id: str | None, kind: str, now: datetime | None = None) -> None:
        """Count one successful call."""
        if not user_id:
            return
        now = now or datetime.now(timezone.utc)
        conn = self._get_conn()
        conn.execute(
            "INSERT INTO usage_log (user_id, usage_type, created_at) VALUES (?, ?, ?)",
            (user_id, kind, now.astimezone(timezone.utc).isoformat(timespec="microseconds")),
        )
        conn.commit()
        logger.debug("usage recorded: user=%s kind=%s", user_id, kind)
