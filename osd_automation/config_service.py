"""Tool defaults, optionally overlaid by a JSON config file passed with --config."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

TOKEN_ENV_VAR = "ADMINSERVICE_TOKEN"


def get_default_config() -> Dict[str, Any]:
    return {
        # ConfigMgr AdminService
        "adminservice_scheme": "https",
        "adminservice_verify_tls": True,
        "adminservice_timeout": 60,
        # Language Pack packaging
        "installer_prefix": "Microsoft-Windows-Client-Language-Pack",
        "installer_extension": ".cab",
        "console_root_folder": "Language Packs",
        "package_manufacturer": "Microsoft",
        "language_pack_log_file": "LanguagePackPackaging.log",
        # BIOS update
        "bios_log_file": "BIOSUpdate.log",
    }


def load_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Defaults, overlaid with the JSON object in `path` when given."""
    config = get_default_config()
    if path is None:
        return config
    if not path.exists():
        raise SystemExit(f"Config file not found: {path}")
    try:
        file_cfg = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise SystemExit(f"Invalid JSON in config file {path}: {e}")
    if not isinstance(file_cfg, dict):
        raise SystemExit(f"Config file {path} must contain a JSON object")
    config.update(file_cfg)
    return config
