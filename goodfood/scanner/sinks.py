"""Boundaries the workflow reports to: the meal log and UI observers."""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path

from .models import LimitReached, MealEntry

logger = logging.getLogger(__name__)


class MealLogSink(ABC):
    """Receives finalized meal records."""

    @abstractmethod
    async def save(self, entry: MealEntry) -> None: ...


class JsonlMealLog(MealLogSink):
    """Appends one JSON object per meal to a local file."""

    def __init__(self, path: str | Path = "~/.config/goodfood/meals.jsonl") -> None:
        self._path = Path(path).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    async def save(self, entry: MealEntry) -> None:
        record = {
            "logged_at": datetime.now(timezone.utc).isoformat(),
            **entry.to_dict(),
        }
        await asyncio.to_thread(self._append, json.dumps(record, ensure_ascii=False))
        logger.info("meal logged to %s: %s", self._path, entry.name)

    def _append(self, line: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._path, "a", encoding="utf-8") as f:
            f.write(line + "\n")


class InMemoryMealLog(MealLogSink):
    def __init__(self) -> None:
        self.entries: list[MealEntry] = []

    async def save(self, entry: MealEntry) -> None:
        self.entries.append(entry)


class WorkflowObserver:
    """Hooks for presenting workflow progress. All methods are no-ops by default."""

    def on_state_change(self, old, new) -> None:
        pass

    def on_limit_reached(self, event: LimitReached) -> None:
        pass

    def on_error(self, message: str) -> None:
        pass

    def on_low_confidence(self, confidence: float) -> None:
        pass

    def on_emit(self, entry: MealEntry) -> None:
        pass
