# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/chartops/helm/backup.py

from __future__ import annotations

import logging
import re
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from packaging.version import Version

from chartops.config.models import ChartDescriptor
from chartops.errors import ClusterApiError, CommandError
from chartops.helm.interface import IHelm
from chartops.kube.kubectl import IKubectl

log = logging.getLogger("chartops")

# fields restored after an upgrade; everything else is owned by the chart
CAPTURED_METADATA = ("annotations", "labels")


@dataclass
class BackupRecord:
    chart_name: str
    installed_version: Optional[Version]
    backup_path: Path = field(default_factory=Path)
    is_backupable: bool = False
    files: List[Path] = field(default_factory=list)


def _file_name(selector: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]+", "_", selector).strip("_") + ".yaml"


def _resource_ref(obj: Dict[str, Any]) -> str:
    kind = obj.get("kind", "")
    api_version = obj.get("apiVersion", "")
    if "/" in api_version:
        return f"{kind}.{api_version.split('/')[0]}"
    return kind


def snapshot(obj: Dict[str, Any]) -> Dict[str, Any]:
    """Keep the identity of an object plus the metadata fields we restore."""
    meta = obj.get("metadata", {})
    snap: Dict[str, Any] = {
        "resource": _resource_ref(obj),
        "name": meta.get("name"),
        "namespace": meta.get("namespace"),
    }
    for key in CAPTURED_METADATA:
        if meta.get(key):
            snap[key] = dict(meta[key])
    return snap


class BackupManager:
    """
    Captures live resource fields before a chart upgrade and merges them
    back afterwards.

    Layout: <backup_dir>/<chart name>/rev-<revision>/<selector>.yaml
    Each chart only ever touches its own directory.
    """

    def __init__(self, *, helm: IHelm, kubectl: IKubectl, backup_dir: Path | None = None):
        self.helm = helm
        self.kubectl = kubectl
        self.backup_dir = backup_dir or (Path(tempfile.gettempdir()) / "chartops" / "backups")

    def _revision(self, chart: ChartDescriptor) -> int:
        try:
            history = self.helm.history(chart.name, chart.get_namespace())
        except CommandError as e:
            log.warning("unable to read history of %s, using revision 0: %s", chart.name, e.message)
            return 0
        return history[-1].revision if history else 0

    def _capture(self, chart: ChartDescriptor, path: Path) -> List[Path]:
        if path.exists():
            shutil.rmtree(path)
        path.mkdir(parents=True, exist_ok=True)

        files = []
        for selector in chart.backup_resources:
            objects = self.kubectl.get_resources(selector, chart.get_namespace())
            if not objects:
                log.debug("no %s found for chart %s, nothing to back up", selector, chart.name)
                continue
            target = path / _file_name(selector)
            target.write_text(yaml.safe_dump([snapshot(o) for o in objects], sort_keys=False))
            files.append(target)
        return files

    def prepare(self, chart: ChartDescriptor, installed_version: Optional[Version]) -> BackupRecord:
        """
        Capture the chart's backup resources. Never raises: any failure
        leaves `is_backupable` False so the upgrade carries on without a backup.
        """
        record = BackupRecord(chart_name=chart.name, installed_version=installed_version)
        if not chart.backup_resources or installed_version is None:
            return record

        try:
            record.backup_path = self.backup_dir / chart.name / f"rev-{self._revision(chart)}"
            record.files = self._capture(chart, record.backup_path)
            record.is_backupable = bool(record.files)
        except (CommandError, OSError, yaml.YAMLError) as e:
            log.warning("error while trying to prepare backup for %s: %s", chart.name, e)
            record.is_backupable = False
            record.files = []
            if record.backup_path != Path():
                shutil.rmtree(record.backup_path, ignore_errors=True)

        if record.is_backupable:
            log.info("backup of %s ready at %s", chart.name, record.backup_path)
        return record

    def restore(self, chart: ChartDescriptor, record: BackupRecord) -> int:
        """
        Merge captured fields back onto the live objects, then drop the backup.
        Returns the number of patched objects.
        """
        if not record.is_backupable:
            return 0

        patched = 0
        for f in record.files:
            for snap in yaml.safe_load(f.read_text()) or []:
                patch = {"metadata": {k: snap[k] for k in CAPTURED_METADATA if snap.get(k)}}
                if not patch["metadata"]:
                    continue
                try:
                    self.kubectl.patch_merge(snap["resource"], snap["name"], snap.get("namespace"), patch)
                except ClusterApiError as e:
                    if "notfound" in (e.detail or "").replace(" ", "").lower():
                        log.info("%s/%s no longer exists, skipping restore", snap["resource"], snap["name"])
                        continue
                    raise
                patched += 1

        self.discard(record)
        return patched

    def discard(self, record: BackupRecord) -> None:
        if record.backup_path != Path() and record.backup_path.exists():
            shutil.rmtree(record.backup_path)
        record.is_backupable = False
