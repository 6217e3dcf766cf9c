"""Read-only view over task-sequence variables."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Mapping, Optional

LOG_PATH_VAR = "_SMSTSLogPath"
IN_WINPE_VAR = "_SMSTSInWinPE"
SYSTEM_DRIVE_VAR = "SystemDrive"


class TaskSequenceEnvironment:
    def __init__(self, variables: Mapping[str, str]):
        self.variables = dict(variables)

    @classmethod
    def from_environ(cls) -> "TaskSequenceEnvironment":
        return cls(os.environ)

    @classmethod
    def from_file(cls, path: Path) -> "TaskSequenceEnvironment":
        """Load a JSON object of variable name -> value, layered over the process environment."""
        if not path.exists():
            raise SystemExit(f"Task-sequence variables file not found: {path}")
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise SystemExit(f"Invalid JSON in task-sequence variables file {path}: {e}")
        if not isinstance(data, dict):
            raise SystemExit(f"Task-sequence variables file {path} must contain a JSON object")
        variables = dict(os.environ)
        variables.update({str(k): str(v) for k, v in data.items()})
        return cls(variables)

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.variables.get(name, default)

    @property
    def log_path(self) -> Path:
        value = self.get(LOG_PATH_VAR)
        return Path(value) if value else Path(tempfile.gettempdir())

    @property
    def in_winpe(self) -> bool:
        return (self.get(IN_WINPE_VAR) or "").strip().lower() == "true"

    @property
    def system_drive(self) -> str:
        return self.get(SYSTEM_DRIVE_VAR) or "C:"
