"""
Central configuration for the purchase order lifecycle engine.

All paths, defaults and notification settings are defined here.
Override via environment variables or by passing a Config instance directly.

Settings priority (highest wins):
  1. Environment variables
  2. config/engine_settings.json  (admin-editable, persisted)
  3. Hardcoded defaults in this file

Approval thresholds and receiving tolerances are NOT here: they live in
config/workflow_settings.json and are re-read on every request
(see lifecycle/settings.py).
"""
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Project root (directory containing this file)
PROJECT_ROOT = Path(__file__).parent

DEFAULT_OUTPUT_DIR = PROJECT_ROOT / "output"
DEFAULT_DB_PATH    = DEFAULT_OUTPUT_DIR / "lifecycle.db"
DEFAULT_CONFIG_DIR = PROJECT_ROOT / "config"


@dataclass
class Config:
    # --- Storage ---
    db_path: Path = field(
        default_factory=lambda: Path(os.getenv("DB_PATH", str(DEFAULT_DB_PATH)))
    )
    config_dir: Path = field(
        default_factory=lambda: Path(os.getenv("CONFIG_DIR", str(DEFAULT_CONFIG_DIR)))
    )
    workflow_settings_file: str = field(
        default_factory=lambda: os.getenv("WORKFLOW_SETTINGS_FILE", "workflow_settings.json")
    )

    # --- Defaults for new orders ---
    default_currency: str = field(
        default_factory=lambda: os.getenv("DEFAULT_CURRENCY", "PHP")
    )
    default_page_size: int = field(
        default_factory=lambda: int(os.getenv("DEFAULT_PAGE_SIZE", "50"))
    )

    # --- Acting user for the CLI (HTTP requests send X-Actor-* headers) ---
    actor_id: Optional[str] = field(default_factory=lambda: os.getenv("ACTOR_ID"))
    actor_name: Optional[str] = field(default_factory=lambda: os.getenv("ACTOR_NAME"))
    actor_role: str = field(default_factory=lambda: os.getenv("ACTOR_ROLE", "employee"))

    # --- Notification webhook ---
    notify_webhook_url: Optional[str] = field(
        default_factory=lambda: os.getenv("NOTIFY_WEBHOOK_URL")
    )
    notify_webhook_method: str = field(
        default_factory=lambda: os.getenv("NOTIFY_WEBHOOK_METHOD", "POST")
    )
    notify_webhook_headers_json: Optional[str] = field(
        default_factory=lambda: os.getenv("NOTIFY_WEBHOOK_HEADERS")
    )
    notify_webhook_template: str = field(
        default_factory=lambda: os.getenv("NOTIFY_WEBHOOK_TEMPLATE", "notification_template.json.j2")
    )
    notify_webhook_timeout: int = 10    # Seconds before a webhook call is abandoned

    def __post_init__(self) -> None:
        """Overlay runtime-tunable settings from engine_settings.json if present."""
        settings_file = self.config_dir / "engine_settings.json"
        if not settings_file.exists():
            return
        _type_map: dict[str, type] = {
            "default_currency":            str,
            "default_page_size":           int,
            "notify_webhook_url":          str,
            "notify_webhook_method":       str,
            "notify_webhook_headers_json": str,
            "notify_webhook_template":     str,
            "notify_webhook_timeout":      int,
        }
        try:
            with open(settings_file, encoding="utf-8") as f:
                overrides = {k: v for k, v in json.load(f).items() if not k.startswith("_")}
            for key, val in overrides.items():
                # Environment variables win over the file
                env_key = key.upper().replace("_JSON", "")
                if key in _type_map and hasattr(self, key) and env_key not in os.environ:
                    setattr(self, key, _type_map[key](val))
        except Exception as exc:
            logger.warning("Failed to load engine_settings.json: %s", exc)

    @property
    def workflow_settings_path(self) -> Path:
        return self.config_dir / self.workflow_settings_file

    def ensure_output_dir(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
