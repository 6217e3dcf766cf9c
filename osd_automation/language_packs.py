#!/usr/bin/env python3
"""
Create ConfigMgr packages for Windows client Language Packs.

Usage:
  osd-language-packs --site-server cm01.corp.local --media-root E:\\ \\
      --destination-root \\\\cm01\\Sources\\OSD\\LanguagePacks \\
      --package-name "Windows 10" --package-version 1803 --package-build 17134 \\
      --architecture x64 --language de-DE fr-FR

For each requested locale found on the mounted media the installer is copied to
<destination-root>/<version>/<arch>/<locale>/, a package is created and moved to
the console folder "Language Packs/<package-name>/<version>".

Missing locales are skipped with a warning; connectivity or authorization
failures against the AdminService stop the run (exit code 1).
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional

from osd_automation.cmtrace import configure_logging
from osd_automation.config_service import TOKEN_ENV_VAR, load_config
from osd_automation.configmgr import (
    AdminServiceConnector,
    ConfigMgrConnectionError,
    ConfigMgrError,
    PackageRecord,
)
from osd_automation.locales import ALLOWED_ARCHITECTURES, LOCALE_LABELS, SUPPORTED_LOCALES

logger = logging.getLogger(__name__)

EXCLUDED_MARKER = "interface"


@dataclass(frozen=True)
class LocaleInstaller:
    locale: str
    source_path: Path
    description: str


@dataclass
class PackagingResult:
    locale: str
    status: str  # created|planned|skipped|failed
    detail: str = ""
    package_id: str = ""


def validate_request(architectures: Iterable[str], locales: Iterable[str], build: str) -> None:
    """Reject out-of-range input before anything touches disk or the site server."""
    bad_arch = [a for a in architectures if a not in ALLOWED_ARCHITECTURES]
    if bad_arch:
        raise ValueError(f"Invalid architecture(s): {bad_arch}. Allowed: {list(ALLOWED_ARCHITECTURES)}")
    bad_locales = [loc for loc in locales if loc not in SUPPORTED_LOCALES]
    if bad_locales:
        raise ValueError(f"Unsupported locale(s): {bad_locales}")
    if not build or not build.strip():
        raise ValueError("Build label must not be empty")


def locale_from_filename(filename: str, prefix: str, architecture: str) -> str:
    """
    Microsoft-Windows-Client-Language-Pack_x64_de-DE.cab -> de-DE

    Prefix matching ignores case; the locale part keeps its original case.
    """
    stem = os.path.splitext(filename)[0]
    head = f"{prefix}_{architecture}_"
    if stem.lower().startswith(head.lower()):
        return stem[len(head):]
    return stem


def scan_media(media_root: Path, architecture: str, prefix: str, extension: str = ".cab") -> Dict[str, Path]:
    """Map locale identifier -> installer path for one architecture. Later duplicates overwrite."""
    found: Dict[str, Path] = {}
    arch = architecture.lower()
    for p in sorted(media_root.rglob("*")):
        if not p.is_file() or p.suffix.lower() != extension.lower():
            continue
        name = p.name.lower()
        if arch not in name or EXCLUDED_MARKER in name:
            continue
        found[locale_from_filename(p.name, prefix, architecture)] = p
    logger.info("Found %d Language Pack file(s) for %s under %s", len(found), architecture, media_root)
    return found


def package_name(name: str, version: str, architecture: str) -> str:
    return f"Language Pack - {name} {version} {architecture}"


def describe(
    locale: str,
    name: str,
    architecture: str,
    version: str,
    build: str,
    labels: Mapping[str, str] = LOCALE_LABELS,
) -> str:
    label = labels.get(locale)
    if label is None:
        logger.warning("No description available for locale %s, creating package without one", locale)
        return ""
    return f"{label} Language Pack for {name} {architecture} (Release {version} Build {build})"


class LanguagePackPackager:
    def __init__(
        self,
        connector: Optional[AdminServiceConnector],
        media_root: Path,
        destination_root: Path,
        name: str,
        version: str,
        build: str,
        prefix: str = "Microsoft-Windows-Client-Language-Pack",
        extension: str = ".cab",
        console_root_folder: str = "Language Packs",
        manufacturer: str = "Microsoft",
        labels: Mapping[str, str] = LOCALE_LABELS,
        dry_run: bool = False,
    ):
        self.connector = connector
        self.media_root = media_root
        self.destination_root = destination_root
        self.name = name
        self.version = version
        self.build = build
        self.prefix = prefix
        self.extension = extension
        self.console_root_folder = console_root_folder
        self.manufacturer = manufacturer
        self.labels = labels
        self.dry_run = dry_run

    def destination_for(self, architecture: str, locale: str) -> Path:
        return self.destination_root / self.version / architecture / locale

    def console_folder(self) -> List[str]:
        return [self.console_root_folder, self.name, self.version]

    def run(self, architecture: str, locales: Iterable[str]) -> List[PackagingResult]:
        installers = scan_media(self.media_root, architecture, self.prefix, self.extension)
        results: List[PackagingResult] = []
        folder_id: Optional[int] = None

        for locale in locales:
            source = installers.get(locale)
            if source is None:
                logger.warning("Language Pack file for %s (%s) not found on media, skipping", locale, architecture)
                results.append(PackagingResult(locale=locale, status="skipped", detail="file not found"))
                continue

            installer = LocaleInstaller(
                locale=locale,
                source_path=source,
                description=describe(locale, self.name, architecture, self.version, self.build, self.labels),
            )
            target_dir = self.destination_for(architecture, locale)

            if self.dry_run:
                logger.info("Dry run: would package %s from %s into %s", locale, source, target_dir)
                results.append(PackagingResult(locale=locale, status="planned", detail=str(target_dir)))
                continue

            try:
                self._stage(installer, target_dir)
            except OSError as e:
                logger.warning("Unable to stage %s into %s: %s", installer.source_path, target_dir, e)
                results.append(PackagingResult(locale=locale, status="skipped", detail=str(e)))
                continue

            record = PackageRecord(
                name=package_name(self.name, self.version, architecture),
                description=installer.description,
                language=locale,
                version=self.version,
                source_path=str(target_dir),
                manufacturer=self.manufacturer,
            )
            try:
                package_id = self.connector.create_package(record)
            except ConfigMgrConnectionError:
                raise
            except ConfigMgrError as e:
                logger.error("Package registration for %s failed: %s", locale, e)
                results.append(PackagingResult(locale=locale, status="failed", detail=str(e)))
                continue
            logger.info("Created package %s (%s) for %s", record.name, package_id, locale)

            try:
                if folder_id is None:
                    folder_id = self.connector.ensure_folder(self.console_folder())
                self.connector.move_object(package_id, folder_id)
                logger.info("Moved package %s to folder %s", package_id, "/".join(self.console_folder()))
            except ConfigMgrConnectionError:
                raise
            except ConfigMgrError as e:
                logger.error("Package %s created but not moved to %s: %s",
                             package_id, "/".join(self.console_folder()), e)
                results.append(PackagingResult(
                    locale=locale, status="failed", detail=f"created, move failed: {e}", package_id=package_id,
                ))
                continue

            results.append(PackagingResult(locale=locale, status="created", package_id=package_id))

        return results

    def _stage(self, installer: LocaleInstaller, target_dir: Path) -> None:
        if not target_dir.exists():
            target_dir.mkdir(parents=True)
            logger.info("Created folder %s", target_dir)
        shutil.copy2(installer.source_path, target_dir / installer.source_path.name)
        logger.info("Copied %s to %s", installer.source_path.name, target_dir)


def write_audit_log(out_path: Path, site_code: str, architecture_results: Dict[str, List[PackagingResult]]) -> None:
    flat = [r for results in architecture_results.values() for r in results]
    payload = {
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "site_code": site_code,
        "results": {arch: [r.__dict__ for r in results] for arch, results in architecture_results.items()},
        "summary": {
            status: sum(1 for r in flat if r.status == status)
            for status in ("created", "planned", "skipped", "failed")
        },
    }
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Create ConfigMgr packages for Windows Language Packs.")
    ap.add_argument("--site-server", required=True, help="Site server hosting the SMS Provider / AdminService")
    ap.add_argument("--media-root", required=True, type=Path, help="Root of the mounted Language Pack media")
    ap.add_argument("--destination-root", required=True, type=Path, help="Package source root")
    ap.add_argument("--package-name", required=True, help='Product label, e.g. "Windows 10"')
    ap.add_argument("--package-version", required=True, help="Release label, e.g. 1803")
    ap.add_argument("--package-build", required=True, help="Build label, e.g. 17134")
    ap.add_argument("--language", nargs="+", choices=SUPPORTED_LOCALES, default=list(SUPPORTED_LOCALES),
                    metavar="LOCALE", help="Locale(s) to package (default: all supported)")
    ap.add_argument("--architecture", nargs="+", choices=ALLOWED_ARCHITECTURES, default=["x64"])
    ap.add_argument("--config", type=Path, required=False, help="JSON file overriding defaults")
    ap.add_argument("--log-dir", type=Path, default=Path("logs"))
    ap.add_argument("--dry-run", action="store_true", help="Scan and report without copying or registering")
    ap.add_argument("--audit-out", type=Path, required=False, help="Write a JSON summary here")
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        validate_request(args.architecture, args.language, args.package_build)
    except ValueError as e:
        raise SystemExit(str(e))

    cfg = load_config(args.config)
    configure_logging(args.log_dir / cfg["language_pack_log_file"], component="LanguagePackPackaging")

    if not args.media_root.is_dir():
        logger.error("Media root not found: %s", args.media_root)
        return 2

    connector: Optional[AdminServiceConnector] = None
    site_code = ""
    if not args.dry_run:
        token = os.environ.get(TOKEN_ENV_VAR, "")
        if not token:
            print(f"WARN: {TOKEN_ENV_VAR} not set, requests will be sent without credentials.")
        connector = AdminServiceConnector(
            args.site_server,
            token=token,
            scheme=cfg["adminservice_scheme"],
            verify_tls=cfg["adminservice_verify_tls"],
            timeout=cfg["adminservice_timeout"],
        )

    packager = LanguagePackPackager(
        connector,
        media_root=args.media_root,
        destination_root=args.destination_root,
        name=args.package_name,
        version=args.package_version,
        build=args.package_build,
        prefix=cfg["installer_prefix"],
        extension=cfg["installer_extension"],
        console_root_folder=cfg["console_root_folder"],
        manufacturer=cfg["package_manufacturer"],
        dry_run=args.dry_run,
    )

    by_arch: Dict[str, List[PackagingResult]] = {}
    try:
        if connector is not None:
            site_code = connector.resolve_site_code()
        for arch in args.architecture:
            by_arch[arch] = packager.run(arch, args.language)
    except ConfigMgrConnectionError as e:
        logger.error("Unable to reach the SMS Provider on %s: %s", args.site_server, e)
        return 1

    if args.audit_out:
        write_audit_log(args.audit_out, site_code, by_arch)

    flat = [r for results in by_arch.values() for r in results]
    print(f"Created={sum(1 for r in flat if r.status == 'created')}, "
          f"Planned={sum(1 for r in flat if r.status == 'planned')}, "
          f"Skipped={sum(1 for r in flat if r.status == 'skipped')}, "
          f"Failed={sum(1 for r in flat if r.status == 'failed')}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
