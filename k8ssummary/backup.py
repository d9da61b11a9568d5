"""PerconaXtraDBClusterBackup rows for the report, built from the backup resources in a dump."""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping

import yaml

from .pods import (
    PodLoader,
    _YamlLoader,
    _find_named_files,
    _html_escape,
    _mapping,
    _text,
    read_pod_log,
    safe_store_id,
)
from .timeutil import _parse_rfc3339, humanize_duration

BACKUP_FILE_NAME = "perconaxtradbclusterbackups.pxc.percona.com.yaml"

_DASH = "—"
_EARLIEST = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class BackupRow:
    name: str
    namespace: str
    cluster: str
    storage: str
    destination: str
    status: str
    age: str
    log_pod_name: str = ""
    has_pod_log: bool = False
    pod_log_escaped: str = ""
    pod_log_modal_id: str = ""
    backup_manifest_escaped: str = ""
    backup_manifest_modal_id: str = ""


def find_backup_yamls(root: str | os.PathLike[str]) -> list[str]:
    """Every backup resource list file under ``root``, sorted.

    Raises OSError if ``root`` cannot be walked.
    """
    return _find_named_files(root, BACKUP_FILE_NAME)


def backup_creation_time(backup: Mapping[str, Any] | None) -> datetime | None:
    """The backup's metadata.creationTimestamp, or None when missing or invalid."""
    if backup is None:
        return None
    text = _text(_mapping(backup.get("metadata")).get("creationTimestamp")).strip()
    if not text:
        return None
    return _parse_rfc3339(text)


def format_backup_storage(backup: Mapping[str, Any] | None) -> str:
    """Storage name and type, such as ``s3-us-west (s3)``; a dash when neither is known."""
    if backup is None:
        return _DASH
    status = _mapping(backup.get("status"))
    spec = _mapping(backup.get("spec"))
    name = _text(status.get("storageName")).strip() or _text(spec.get("storageName")).strip()
    kind = _text(status.get("storage_type")).strip()
    if name and kind:
        return f"{name} ({kind})"
    return name or kind or _DASH


def build_backup_row(
    backup: Mapping[str, Any],
    now: datetime,
    pods: PodLoader | None,
    dump_root: str | os.PathLike[str],
    manifest: str,
) -> BackupRow:
    """Build the report row for one backup document."""
    metadata = _mapping(backup.get("metadata"))
    spec = _mapping(backup.get("spec"))
    status = _mapping(backup.get("status"))
    namespace = _text(metadata.get("namespace")).strip()
    name = _text(metadata.get("name")).strip()

    age = _DASH
    created = _text(metadata.get("creationTimestamp"))
    if created:
        moment = _parse_rfc3339(created.strip())
        if moment is not None:
            age = humanize_duration(moment, now)

    pod_name = pods.pod_name_for_backup(namespace, name) if pods is not None else ""
    log_escaped, has_log, log_id = "", False, ""
    if pod_name:
        log_escaped, has_log = read_pod_log(dump_root, namespace, pod_name)
        log_id = safe_store_id("podlog", namespace, pod_name)

    return BackupRow(
        name=name,
        namespace=namespace,
        cluster=_text(spec.get("pxcCluster")).strip() or _DASH,
        storage=format_backup_storage(backup),
        destination=_text(status.get("destination")).strip() or _DASH,
        status=_text(status.get("state")).strip() or _DASH,
        age=age,
        log_pod_name=pod_name,
        has_pod_log=has_log,
        pod_log_escaped=log_escaped,
        pod_log_modal_id=log_id,
        backup_manifest_escaped=_html_escape(manifest),
        backup_manifest_modal_id=safe_store_id("backupyaml", namespace, name),
    )


def _backup_items(path: str, data: bytes) -> list[Any]:
    try:
        document = yaml.load(data, Loader=_YamlLoader)
    except yaml.YAMLError as exc:
        raise ValueError(f"{path}: yaml: {exc}") from exc
    if document is None:
        return []
    if not isinstance(document, dict):
        raise ValueError(f"{path}: yaml: top level is not a mapping")
    items = document.get("items")
    return items if isinstance(items, list) else []


def load_backup_rows(
    dump_root: str | os.PathLike[str],
    now: datetime,
    pods: PodLoader | None,
) -> tuple[list[BackupRow], int]:
    """Build rows for every named backup in the dump, newest first; also return the file count.

    Raises OSError for unreadable files and ValueError for malformed YAML.
    """
    dump_abs = os.path.abspath(os.fspath(dump_root))
    paths = find_backup_yamls(dump_abs)
    pending: list[tuple[datetime, str, Mapping[str, Any], str]] = []
    for path in paths:
        try:
            with open(path, "rb") as handle:
                data = handle.read()
        except OSError as exc:
            raise OSError(f"{path}: {exc}") from exc
        for item in _backup_items(path, data):
            if not isinstance(item, dict) or not all(isinstance(key, str) for key in item):
                continue
            try:
                text = yaml.safe_dump(
                    item, sort_keys=True, allow_unicode=True, default_flow_style=False
                )
            except yaml.YAMLError:
                continue
            name = _text(_mapping(item.get("metadata")).get("name"))
            if not name.strip():
                continue
            manifest = text.rstrip("\n") + "\n"
            moment = backup_creation_time(item) or _EARLIEST
            pending.append((moment, name, item, manifest))
    pending.sort(key=lambda entry: (entry[0], entry[1]), reverse=True)
    rows = [
        build_backup_row(item, now, pods, dump_abs, manifest)
        for _, _, item, manifest in pending
    ]
    return rows, len(paths)