from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

CONFIG_ENV = "USTVA_CONFIG"

DEFAULT_CONFIG: Dict[str, Any] = {
    "database_url": "",
    "cors_origins": ["http://localhost:8080"],
    "log_level": "INFO",
    "local_ocr": False,
    "tesseract_cmd": None,
    "tesseract_lang": "deu+eng",
    "ocr_dpi": 300,
    "ocr_max_pages": 1,
    "recent_default_limit": 10,
    "recent_max_limit": 100,
}

ENV_OVERRIDES = {
    "DATABASE_URL": "database_url",
    "CORS_ORIGIN": "cors_origins",
    "LOG_LEVEL": "log_level",
    "USTVA_LOCAL_OCR": "local_ocr",
    "TESSERACT_CMD": "tesseract_cmd",
}

TRUTHY = {"1", "true", "yes", "on", "ja"}


def _read_yaml(path: Optional[Union[str, Path]]) -> Dict[str, Any]:
    if not path:
        return {}
    cfg_path = Path(path)
    if not cfg_path.exists():
        logging.warning("Konfiguration %s nicht gefunden – Standardwerte", cfg_path)
        return {}
    try:
        with cfg_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as e:
        logging.error("Konfiguration fehlerhaft – es werden Standardwerte verwendet: %s", e)
        return {}
    return data if isinstance(data, dict) else {}


def _split_origins(value: Union[str, List[str], None]) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        value = value.split(",")
    return [o.strip() for o in value if o and o.strip()]


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in TRUTHY
    return bool(value)


def load_config(path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """Standardwerte < YAML-Datei (``path`` oder $USTVA_CONFIG) < Umgebungsvariablen."""
    cfg = dict(DEFAULT_CONFIG)
    raw = _read_yaml(path or os.getenv(CONFIG_ENV))
    # Only allow known keys
    cfg.update({k: raw[k] for k in DEFAULT_CONFIG if k in raw})

    for env_key, cfg_key in ENV_OVERRIDES.items():
        value = os.getenv(env_key)
        if value:
            cfg[cfg_key] = value

    cfg["cors_origins"] = _split_origins(cfg["cors_origins"])
    cfg["local_ocr"] = _as_bool(cfg["local_ocr"])
    cfg["log_level"] = str(cfg["log_level"] or "INFO").upper()
    return cfg
