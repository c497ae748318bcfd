"""TOML configuration loader for the scanner module."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomli as tomllib
    except ImportError:
        tomllib = None  # type: ignore[assignment]


@dataclass
class CameraConfig:
    index: int = 0
    width: int = 1280
    height: int = 720
    jpeg_quality: int = 90


@dataclass
class DecoderConfig:
    interval_ms: int = 150
    try_harder: bool = True
    formats: list[str] = field(default_factory=lambda: [
        "EAN13", "EAN8", "UPCA", "UPCE", "CODE128", "CODE39", "QRCODE",
    ])


@dataclass
class ServiceConfig:
    backend: str = "http"  # http | local
    base_url: str = "http://localhost:3000"
    timeout: float = 10.0


@dataclass
class DatabaseConfig:
    path: str = "~/.config/goodfood/scanner.db"


@dataclass
class OpenFoodFactsConfig:
    base_url: str = "https://world.openfoodfacts.org/api/v2/product"
    user_agent: str = "GoodFood Menu App/1.0"
    timeout: float = 8.0


@dataclass
class QuotaConfig:
    lookup_limit: int = 3  # per user per day, 0 = unlimited
    analysis_limit: int = 3
    utc_offset_hours: int = 7


@dataclass
class ClaudeVisionConfig:
    api_key: str = ""
    model: str = "claude-sonnet-4-5-20250929"


@dataclass
class GeminiVisionConfig:
    api_key: str = ""
    model: str = "gemini-2.0-flash"


@dataclass
class VisionConfig:
    backend: str = "http"  # http | claude | gemini
    claude: ClaudeVisionConfig = field(default_factory=ClaudeVisionConfig)
    gemini: GeminiVisionConfig = field(default_factory=GeminiVisionConfig)


@dataclass
class WorkflowConfig:
    user_id: str = ""
    low_confidence_threshold: float = 70.0


@dataclass
class MealLogConfig:
    path: str = "~/.config/goodfood/meals.jsonl"


@dataclass
class ScannerConfig:
    camera: CameraConfig = field(default_factory=CameraConfig)
    decoder: DecoderConfig = field(default_factory=DecoderConfig)
    service: ServiceConfig = field(default_factory=ServiceConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    openfoodfacts: OpenFoodFactsConfig = field(default_factory=OpenFoodFactsConfig)
    quota: QuotaConfig = field(default_factory=QuotaConfig)
    vision: VisionConfig = field(default_factory=VisionConfig)
    workflow: WorkflowConfig = field(default_factory=WorkflowConfig)
    meal_log: MealLogConfig = field(default_factory=MealLogConfig)


def load_config(path: str | Path | None = None) -> ScannerConfig:
    """Load configuration from a TOML file.

    Falls back to defaults if no path is given or the file doesn't exist.
    API keys, the service URL and the user id can be overridden via
    environment variables.
    """
    raw: dict = {}

    if path is not None:
        p = Path(path)
        if p.exists():
            if tomllib is None:
                raise ImportError(
                    "tomli is required on Python < 3.11: pip install tomli"
                )
            with open(p, "rb") as f:
                raw = tomllib.load(f)

    cam = raw.get("camera", {})
    dec = raw.get("decoder", {})
    svc = raw.get("service", {})
    dbc = raw.get("database", {})
    off = raw.get("openfoodfacts", {})
    quo = raw.get("quota", {})
    vis = raw.get("vision", {})
    wfl = raw.get("workflow", {})
    mlg = raw.get("meal_log", {})

    claude_cfg = vis.get("claude", {})
    gemini_cfg = vis.get("gemini", {})

    # Resolve secrets and endpoints: config file → environment variable
    claude_api_key = claude_cfg.get("api_key", "") or os.environ.get(
        "ANTHROPIC_API_KEY", ""
    )
    gemini_api_key = gemini_cfg.get("api_key", "") or os.environ.get(
        "GEMINI_API_KEY", ""
    )
    base_url = svc.get("base_url", "") or os.environ.get(
        "GOODFOOD_API_URL", "http://localhost:3000"
    )
    user_id = wfl.get("user_id", "") or os.environ.get("GOODFOOD_USER_ID", "")

    return ScannerConfig(
        camera=CameraConfig(
            index=cam.get("index", 0),
            width=cam.get("width", 1280),
            height=cam.get("height", 720),
            jpeg_quality=cam.get("jpeg_quality", 90),
        ),
        decoder=DecoderConfig(
            interval_ms=dec.get("interval_ms", 150),
            try_harder=dec.get("try_harder", True),
            formats=dec.get("formats", DecoderConfig().formats),
        ),
        service=ServiceConfig(
            backend=svc.get("backend", "http"),
            base_url=base_url.rstrip("/"),
            timeout=svc.get("timeout", 10.0),
        ),
        database=DatabaseConfig(
            path=dbc.get("path", "~/.config/goodfood/scanner.db"),
        ),
        openfoodfacts=OpenFoodFactsConfig(
            base_url=off.get(
                "base_url", "https://world.openfoodfacts.org/api/v2/product"
            ),
            user_agent=off.get("user_agent", "GoodFood Menu App/1.0"),
            timeout=off.get("timeout", 8.0),
        ),
        quota=QuotaConfig(
            lookup_limit=quo.get("lookup_limit", 3),
            analysis_limit=quo.get("analysis_limit", 3),
            utc_offset_hours=quo.get("utc_offset_hours", 7),
        ),
        vision=VisionConfig(
            backend=vis.get("backend", "http"),
            claude=ClaudeVisionConfig(
                api_key=claude_api_key,
                model=claude_cfg.get("model", "claude-sonnet-4-5-20250929"),
            ),
            gemini=GeminiVisionConfig(
                api_key=gemini_api_key,
                model=gemini_cfg.get("model", "gemini-2.0-flash"),
            ),
        ),
        workflow=WorkflowConfig(
            user_id=user_id,
            low_confidence_threshold=wfl.get("low_confidence_threshold", 70.0),
        ),
        meal_log=MealLogConfig(
            path=mlg.get("path", "~/.config/goodfood/meals.jsonl"),
        ),
    )
