"""Tests for scanner config loading."""

import os
import tempfile
from unittest.mock import patch

from goodfood.scanner.config import ScannerConfig, load_config


def test_load_config_defaults():
    """Loading with no path returns all defaults."""
    with patch.dict(os.environ, {}, clear=True):
        config = load_config()
    assert isinstance(config, ScannerConfig)
    assert config.camera.index == 0
    assert config.decoder.interval_ms == 150
    assert "EAN13" in config.decoder.formats
    assert config.service.backend == "http"
    assert config.service.base_url == "http://localhost:3000"
    assert config.quota.lookup_limit == 3
    assert config.quota.analysis_limit == 3
    assert config.quota.utc_offset_hours == 7
    assert config.vision.backend == "http"
    assert config.workflow.low_confidence_threshold == 70.0
    assert config.workflow.user_id == ""


def test_load_config_nonexistent_file():
    """Loading a nonexistent file returns defaults."""
    config = load_config("/nonexistent/path.toml")
    assert config.camera.width == 1280


def test_load_config_from_toml():
    """Loading a valid TOML file populates config."""
    toml_content = b"""\
[camera]
index = 2
jpeg_quality = 75

[decoder]
interval_ms = 200
formats = ["EAN13"]

[service]
backend = "local"
base_url = "https://goodfood.example/"

[database]
path = "/var/lib/goodfood/scanner.db"

[quota]
lookup_limit = 0
analysis_limit = 10

[vision]
backend = "gemini"

[vision.gemini]
api_key = "test-key-123"
model = "gemini-pro"

[workflow]
user_id = "member-42"
low_confidence_threshold = 60
"""
    with tempfile.NamedTemporaryFile(suffix=".toml", delete=False) as f:
        f.write(toml_content)
        f.flush()
        config = load_config(f.name)

    os.unlink(f.name)

    assert config.camera.index == 2
    assert config.camera.jpeg_quality == 75
    assert config.decoder.interval_ms == 200
    assert config.decoder.formats == ["EAN13"]
    assert config.service.backend == "local"
    assert config.service.base_url == "https://goodfood.example"
    assert config.database.path == "/var/lib/goodfood/scanner.db"
    assert config.quota.lookup_limit == 0
    assert config.quota.analysis_limit == 10
    assert config.vision.backend == "gemini"
    assert config.vision.gemini.api_key == "test-key-123"
    assert config.vision.gemini.model == "gemini-pro"
    assert config.workflow.user_id == "member-42"
    assert config.workflow.low_confidence_threshold == 60


def test_env_var_overrides():
    """Secrets and endpoints fall back to environment variables."""
    env = {
        "ANTHROPIC_API_KEY": "sk-ant-env",
        "GEMINI_API_KEY": "gemini-env",
        "GOODFOOD_API_URL": "https://api.goodfood.example",
        "GOODFOOD_USER_ID": "env-user",
    }
    with patch.dict(os.environ, env, clear=True):
        config = load_config()
    assert config.vision.claude.api_key == "sk-ant-env"
    assert config.vision.gemini.api_key == "gemini-env"
    assert config.service.base_url == "https://api.goodfood.example"
    assert config.workflow.user_id == "env-user"


def test_file_values_take_precedence_over_env():
    toml_content = b"""\
[vision.claude]
api_key = "from-file"
"""
    with tempfile.NamedTemporaryFile(suffix=".toml", delete=False) as f:
        f.write(toml_content)
        f.flush()
        with patch.dict(os.environ, {"ANTHROPIC_API_KEY": "from-env"}):
            config = load_config(f.name)

    os.unlink(f.name)

    assert config.vision.claude.api_key == "from-file"
