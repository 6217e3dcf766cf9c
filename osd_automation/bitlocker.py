"""BitLocker status and suspension through manage-bde."""

from __future__ import annotations

import re
import subprocess
from typing import List

MANAGE_BDE = "manage-bde.exe"

PROTECTION_ON_RE = re.compile(r"Protection Status:\s*Protection On", re.IGNORECASE)


class BitLockerError(RuntimeError):
    pass


class BitLockerControl:
    def __init__(self, manage_bde: str = MANAGE_BDE):
        self.manage_bde = manage_bde

    def _run(self, args: List[str]) -> str:
        try:
            proc = subprocess.run([self.manage_bde] + args, capture_output=True, text=True)
        except OSError as e:
            raise BitLockerError(f"Unable to run {self.manage_bde}: {e}") from e
        output = (proc.stdout or "") + (proc.stderr or "")
        if proc.returncode != 0:
            raise BitLockerError(f"{self.manage_bde} {' '.join(args)} exited with {proc.returncode}: {output.strip()}")
        return output

    def is_protected(self, volume: str) -> bool:
        return PROTECTION_ON_RE.search(self._run(["-status", volume])) is not None

    def suspend(self, volume: str) -> None:
        """Disable key protectors; Windows re-enables them after the next restart."""
        self._run(["-protectors", "-disable", volume])
