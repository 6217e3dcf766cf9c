#!/usr/bin/env python3
"""
Run the BIOS flashing utility shipped in a task-sequence package.

Usage:
  osd-bios-update --path C:\\_SMSTaskSequence\\Packages\\PS100123 [--password secret] [--log-file-name BIOSUpdate.log]

Detection order (last match wins):
  1. HPBIOSUPDREC64.exe / HPBIOSUPDREC.exe (64/32-bit OS), run with -s -r -b
  2. HPQFlash.cmd, run with -s

Outside WinPE, BitLocker protection on the system drive is suspended before
flashing. The utility's exit code is logged and returned unchanged so the task
sequence can interpret it.
"""

from __future__ import annotations

import argparse
import logging
import os
import platform
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from osd_automation.bitlocker import BitLockerControl, BitLockerError
from osd_automation.cmtrace import configure_logging
from osd_automation.config_service import load_config
from osd_automation.task_sequence import TaskSequenceEnvironment

logger = logging.getLogger(__name__)

PASSWORD_REDACTION = "<Password Removed>"


class UtilityKind(Enum):
    EXECUTABLE = "executable"
    SCRIPT = "script"


class UtilityNotFoundError(RuntimeError):
    pass


class FlashExecutionError(RuntimeError):
    pass


@dataclass(frozen=True)
class UtilityDetector:
    kind: UtilityKind
    filename_x86: str
    filename_x64: str
    silent_args: str
    vendor_log: str

    def filename(self, is_64bit: bool) -> str:
        return self.filename_x64 if is_64bit else self.filename_x86


@dataclass(frozen=True)
class FlashUtility:
    kind: UtilityKind
    path: Path
    silent_args: str
    vendor_log: str


@dataclass(frozen=True)
class FlashInvocation:
    utility: FlashUtility
    arguments: str
    password: Optional[str]
    log_destination: Path

    @property
    def redacted_arguments(self) -> str:
        if not self.password:
            return self.arguments
        return self.arguments.replace(self.password, PASSWORD_REDACTION)


DEFAULT_DETECTORS: Sequence[UtilityDetector] = (
    UtilityDetector(UtilityKind.EXECUTABLE, "HPBIOSUPDREC.exe", "HPBIOSUPDREC64.exe", "-s -r -b", "HPBIOSUPDREC.log"),
    UtilityDetector(UtilityKind.SCRIPT, "HPQFlash.cmd", "HPQFlash.cmd", "-s", "HPQFlash.log"),
)


def os_is_64bit() -> bool:
    return platform.machine().lower() in ("amd64", "x86_64", "arm64", "aarch64")


def find_file(root: Path, filename: str) -> Optional[Path]:
    """Recursive, case-insensitive search; first hit in sorted walk order."""
    wanted = filename.lower()
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for name in sorted(filenames):
            if name.lower() == wanted:
                return Path(dirpath) / name
    return None


def detect_utility(
    root: Path,
    is_64bit: bool,
    detectors: Sequence[UtilityDetector] = DEFAULT_DETECTORS,
) -> Optional[FlashUtility]:
    selected: Optional[FlashUtility] = None
    for det in detectors:
        path = find_file(root, det.filename(is_64bit))
        if path is None:
            continue
        logger.info("Found %s flash utility: %s", det.kind.value, path)
        if selected is not None:
            logger.info("Overriding previously detected %s utility %s", selected.kind.value, selected.path)
        selected = FlashUtility(kind=det.kind, path=path, silent_args=det.silent_args, vendor_log=det.vendor_log)
    return selected


def build_arguments(utility: FlashUtility, password: Optional[str] = None) -> str:
    args = utility.silent_args
    if password:
        args += f' -p"{password}"'
    return args


def run_utility(utility_path: Path, arguments: str) -> int:
    """Start the utility and block until it exits."""
    if os.name == "nt":
        command = f'"{utility_path}" {arguments}'
    else:
        command = [str(utility_path)] + shlex.split(arguments)
    proc = subprocess.run(command, cwd=str(utility_path.parent))
    return proc.returncode


class BiosUpdater:
    def __init__(
        self,
        environment: TaskSequenceEnvironment,
        is_64bit: bool,
        encryption: Optional[BitLockerControl] = None,
        runner: Optional[Callable[[Path, str], int]] = None,
        detectors: Sequence[UtilityDetector] = DEFAULT_DETECTORS,
    ):
        self.environment = environment
        self.is_64bit = is_64bit
        self.encryption = encryption or BitLockerControl()
        self.runner = runner or run_utility
        self.detectors = detectors

    def prepare(self, path: Path, password: Optional[str] = None) -> FlashInvocation:
        utility = detect_utility(path, self.is_64bit, self.detectors)
        if utility is None:
            raise UtilityNotFoundError(f"No supported BIOS flash utility found under {path}")
        return FlashInvocation(
            utility=utility,
            arguments=build_arguments(utility, password),
            password=password,
            log_destination=self.environment.log_path / utility.vendor_log,
        )

    def suspend_encryption(self) -> None:
        volume = self.environment.system_drive
        try:
            if not self.encryption.is_protected(volume):
                logger.info("BitLocker protection is not active on %s", volume)
                return
            logger.info("BitLocker protection is active on %s, suspending", volume)
            self.encryption.suspend(volume)
            logger.info("BitLocker protection suspended on %s until the next restart", volume)
        except BitLockerError as e:
            logger.warning("BitLocker handling failed on %s, continuing with flash: %s", volume, e)

    def execute(self, invocation: FlashInvocation) -> int:
        logger.info("Running %s with arguments: %s", invocation.utility.path, invocation.redacted_arguments)
        try:
            exit_code = self.runner(invocation.utility.path, invocation.arguments)
        except OSError as e:
            raise FlashExecutionError(f"Failed to start {invocation.utility.path}: {e}") from e
        logger.info("Flash utility exit code: %d", exit_code)
        return exit_code

    def collect_vendor_log(self, invocation: FlashInvocation) -> None:
        source = invocation.utility.path.parent / invocation.utility.vendor_log
        try:
            invocation.log_destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, invocation.log_destination)
            logger.info("Copied %s to %s", source, invocation.log_destination)
        except OSError as e:
            logger.debug("Vendor log %s not collected: %s", source, e)

    def run(self, path: Path, password: Optional[str] = None) -> int:
        invocation = self.prepare(path, password)
        if self.environment.in_winpe:
            logger.info("Running in WinPE, skipping BitLocker checks")
        else:
            self.suspend_encryption()
        exit_code = self.execute(invocation)
        self.collect_vendor_log(invocation)
        return exit_code


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Invoke a vendor BIOS flash utility from a task sequence.")
    ap.add_argument("--path", required=True, type=Path, help="Folder containing the BIOS update package")
    ap.add_argument("--password", required=False, help="BIOS setup password")
    ap.add_argument("--log-file-name", required=False, help="Log file created under _SMSTSLogPath")
    ap.add_argument("--ts-variables", type=Path, required=False,
                    help="JSON snapshot of task-sequence variables (default: process environment)")
    ap.add_argument("--config", type=Path, required=False, help="JSON file overriding defaults")
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    cfg = load_config(args.config)

    if args.ts_variables:
        environment = TaskSequenceEnvironment.from_file(args.ts_variables)
    else:
        environment = TaskSequenceEnvironment.from_environ()

    log_name = args.log_file_name or cfg["bios_log_file"]
    configure_logging(environment.log_path / log_name, component="BIOSUpdate")

    updater = BiosUpdater(environment, is_64bit=os_is_64bit())
    try:
        return updater.run(args.path, args.password)
    except UtilityNotFoundError as e:
        logger.error("%s", e)
        return 1
    except FlashExecutionError as e:
        logger.error("%s", e)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
