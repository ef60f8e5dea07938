# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/chartops/config/loader.py
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

import yaml
from pydantic import ValidationError

from chartops.errors import PlanError
from .models import PlanConfig

log = logging.getLogger("chartops")

# chart keys whose secrets overlay is appended rather than replaced
_LIST_KEYS = ("values", "values_string", "values_files", "yaml_files_content")


def _read_yaml(path: Path) -> Dict[str, Any]:
    """Parse a YAML mapping after expanding ${ENV_VAR} references."""
    try:
        data = yaml.safe_load(os.path.expandvars(path.read_text()))
    except yaml.YAMLError as e:
        raise PlanError(f"Unable to parse {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise PlanError(f"{path} must contain a mapping, got {type(data).__name__}")
    return data


def _secrets_file(plan_path: Path) -> Optional[Path]:
    env = os.environ.get("CHARTOPS_SECRETS_FILE")
    if env:
        p = Path(env)
        if p.is_file():
            return p
        log.warning("CHARTOPS_SECRETS_FILE=%s does not exist, skipping", env)
        return None

    p = plan_path.parent / "secrets.yaml"
    return p if p.is_file() else None


def _chart_entries(data: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
    for level in data.get("levels") or []:
        if isinstance(level, list):
            for entry in level:
                if isinstance(entry, dict):
                    yield entry


def _apply_secrets(data: Dict[str, Any], secrets: Dict[str, Any], source: Path) -> None:
    """
    Top level keys replace plan keys when non-empty. The `charts` mapping
    targets releases by name: list keys are appended to, the rest replaced.
    """
    overlays = secrets.pop("charts", None) or {}
    for key, value in secrets.items():
        if value not in (None, ""):
            data[key] = value

    entries = {e.get("name"): e for e in _chart_entries(data)}
    for name, overlay in overlays.items():
        entry = entries.get(name)
        if entry is None:
            raise PlanError(f"{source} overrides release '{name}' which is not in the plan")
        for key, value in (overlay or {}).items():
            if key in _LIST_KEYS:
                entry[key] = list(entry.get(key) or []) + list(value or [])
            elif value not in (None, ""):
                entry[key] = value


def _resolve(base: Path, value: str) -> str:
    p = Path(value).expanduser()
    return str(p if p.is_absolute() else base / p)


def _resolve_paths(data: Dict[str, Any], base: Path) -> None:
    """
    Make plan paths independent of the working directory. Values files and
    backup/vpa locations are always local. A chart `path` is only rewritten
    when it exists next to the plan, so `repo/chart` references still reach helm.
    CRD manifest paths stay relative to their chart.
    """
    for key in ("backup_dir", "vpa_chart_path"):
        if isinstance(data.get(key), str) and data[key]:
            data[key] = _resolve(base, data[key])

    for entry in _chart_entries(data):
        files = entry.get("values_files")
        if isinstance(files, list):
            entry["values_files"] = [_resolve(base, f) if isinstance(f, str) else f for f in files]
        chart_path = entry.get("path")
        if isinstance(chart_path, str) and (base / chart_path).exists():
            entry["path"] = _resolve(base, chart_path)


def load_config(path: str | Path) -> PlanConfig:
    """
    Load and validate a chartops plan file.

    Secrets stay out of the plan two ways:

    **environment variables**
        ``${ENV_VAR}`` placeholders are expanded in both files before parsing.

    **secrets file**
        ``CHARTOPS_SECRETS_FILE``, else ``secrets.yaml`` next to the plan.
        Top level keys (``kubeconfig``, ``context``, ...) replace the plan's;
        per release overrides go under ``charts``::

            charts:
              keycloak:
                values_string:
                  - {key: auth.adminPassword, value: s3cr3t}

    Relative paths are resolved against the plan's directory.
    """
    path = Path(path)
    if not path.is_file():
        raise PlanError(f"Plan file not found: {path}")

    data = _read_yaml(path)

    secrets_path = _secrets_file(path)
    if secrets_path:
        log.debug("merging secrets from %s", secrets_path)
        _apply_secrets(data, _read_yaml(secrets_path), secrets_path)

    _resolve_paths(data, path.resolve().parent)

    try:
        return PlanConfig.model_validate(data)
    except ValidationError as e:
        raise PlanError(f"Invalid plan file {path}:\n{e}") from e
