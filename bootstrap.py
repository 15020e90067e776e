"""
Bootstrap script to ensure essential configuration files exist in the config volume.
Copies factory defaults from defaults/ to the config directory if files are missing.
"""
import json
import os
import shutil
from pathlib import Path
from typing import Optional

# Project structure
PROJECT_ROOT = Path(__file__).parent
CONFIG_DIR = Path(os.getenv("CONFIG_DIR", str(PROJECT_ROOT / "config")))
DEFAULTS_DIR = PROJECT_ROOT / "defaults"


def ensure_config_files(config_dir: Optional[Path] = None, defaults_dir: Optional[Path] = None) -> list[str]:
    """
    Verify and restore missing config files from the defaults folder.

    A corrupt workflow_settings.json is left alone: the engine refuses to
    run on it rather than quietly reverting approval rules.
    Returns the names of files that were written.
    """
    config_dir = Path(config_dir or CONFIG_DIR)
    defaults_dir = Path(defaults_dir or DEFAULTS_DIR)
    config_dir.mkdir(parents=True, exist_ok=True)
    restored: list[str] = []

    if not defaults_dir.exists():
        print(f"[Bootstrap] Warning: Defaults directory not found at {defaults_dir}")
        return restored

    # 1. Essential JSON files
    json_files = ["workflow_settings.json", "engine_settings.json"]

    for filename in json_files:
        src = defaults_dir / filename
        dst = config_dir / filename

        if not dst.exists() and src.exists():
            print(f"[Bootstrap] Restoring missing config file: {filename}")
            shutil.copy2(src, dst)
            restored.append(filename)
        elif dst.exists() and filename == "engine_settings.json":
            # Repair corrupted engine_settings.json
            try:
                if dst.stat().st_size == 0:
                    raise ValueError("Empty file")
                with open(dst, "r", encoding="utf-8") as f:
                    json.load(f)
            except (json.JSONDecodeError, ValueError):
                print("[Bootstrap] Repairing invalid engine_settings.json")
                shutil.copy2(src, dst)
                restored.append(filename)

    # 2. Jinja2 templates
    for src_template in defaults_dir.glob("*.j2"):
        dst_template = config_dir / src_template.name
        if not dst_template.exists():
            print(f"[Bootstrap] Restoring missing template: {src_template.name}")
            shutil.copy2(src_template, dst_template)
            restored.append(src_template.name)

    return restored


if __name__ == "__main__":
    ensure_config_files()
