"""Kubernetes node rows for the cluster report, built from a nodes.yaml list."""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Mapping

import yaml

from .quantity import to_bytes
from .timeutil import _parse_rfc3339

_GIB = 1024.0**3
_MIB = 1024.0**2
_KIB = 1024.0

_MINUTE = timedelta(minutes=1)
_HOUR = timedelta(hours=1)
_DAY = timedelta(days=1)


class _YamlLoader(yaml.SafeLoader):
    """Safe loader that keeps timestamps as plain strings."""


_YamlLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != "tag:yaml.org,2002:timestamp"]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


@dataclass(frozen=True)
class ConditionRow:
    status: str
    status_true: bool = False
    since_transition: str = "n/a"
    highlight_pressure: bool = False


@dataclass(frozen=True)
class ConditionCell:
    status: str
    since_transition: str
    status_class: str
    duration_class: str


@dataclass(frozen=True)
class NodeRow:
    hostname: str
    os: str
    kernel: str
    kubelet_version: str
    role: str
    instance_type: str
    ip: str
    cpu_cap: str
    ephemeral_gib: str
    memory: str
    pods: str
    ready: ConditionRow
    pid_pressure: ConditionRow
    disk_pressure: ConditionRow
    memory_pressure: ConditionRow
    row_pressure_class: str


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, dict) else {}


def _sequence(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _labels(node: Mapping[str, Any]) -> Mapping[str, Any]:
    return _mapping(_mapping(node.get("metadata")).get("labels"))


def condition_cell(row: ConditionRow, is_pressure: bool) -> ConditionCell:
    """Pick the CSS classes for a condition cell."""
    if is_pressure:
        if row.status_true:
            status_class, duration_class = "status-bad", "sub-bad"
        elif row.status == "False":
            status_class, duration_class = "status-true", "sub-ok"
        else:
            status_class, duration_class = "status-muted", "sub"
    elif row.status == "True":
        status_class, duration_class = "status-true", "sub-ok"
    else:
        status_class, duration_class = "status-bad", "sub-bad"
    return ConditionCell(row.status, row.since_transition, status_class, duration_class)


def k8s_role(node: Mapping[str, Any] | None) -> str:
    """Return ``control-plane`` or ``worker`` from the node's role labels."""
    if node is None:
        return ""
    labels = _labels(node)
    if "node-role.kubernetes.io/control-plane" in labels or "node-role.kubernetes.io/master" in labels:
        return "control-plane"
    return "worker"


def node_ip(node: Mapping[str, Any]) -> str:
    """Return the node's internal IP, falling back to external, annotated, then hostname."""
    found: dict[str, str] = {}
    for address in _sequence(_mapping(node.get("status")).get("addresses")):
        address = _mapping(address)
        kind = _text(address.get("type"))
        if kind in ("InternalIP", "ExternalIP", "Hostname"):
            found[kind] = _text(address.get("address"))
    if found.get("InternalIP"):
        return found["InternalIP"]
    if found.get("ExternalIP"):
        return found["ExternalIP"]
    annotations = _mapping(_mapping(node.get("metadata")).get("annotations"))
    provided = _text(annotations.get("alpha.kubernetes.io/provided-node-ip"))
    if provided:
        return provided
    return found.get("Hostname", "")


def instance_type(node: Mapping[str, Any]) -> str:
    """Return the cloud instance type from the node labels."""
    labels = _labels(node)
    current = _text(labels.get("node.kubernetes.io/instance-type"))
    if current:
        return current
    return _text(labels.get("beta.kubernetes.io/instance-type"))


def quantity_to_gib_string(text: str) -> str:
    """Render a quantity in GiB with two decimals, or return it unchanged."""
    value = to_bytes(text)
    if value is None or value <= 0:
        return text
    return f"{value / _GIB:.2f}"


def quantity_memory_display(text: str) -> str:
    """Render a memory quantity as GiB, MiB, KiB or B."""
    text = text.strip()
    if not text:
        return ""
    value = to_bytes(text)
    if value is None:
        return text
    if value >= _GIB:
        return f"{value / _GIB:.2f} GiB"
    if value >= _MIB:
        return f"{value / _MIB:.2f} MiB"
    if value >= _KIB:
        return f"{value / _KIB:.2f} KiB"
    return f"{value:.0f} B"


def find_condition(conditions: list[Any] | None, kind: str) -> Mapping[str, Any] | None:
    """Return the first condition of the given type, or None."""
    for condition in _sequence(conditions):
        condition = _mapping(condition)
        if _text(condition.get("type")) == kind:
            return condition
    return None


def humanize_node_duration(start: datetime, now: datetime) -> str:
    """Time spent in a condition since ``start``, without a trailing "ago"."""
    if not now > start:
        return "0s"
    delta = now - start
    if delta < _MINUTE:
        return f"{delta.total_seconds():.0f}s"
    if delta < _HOUR:
        return f"{delta.total_seconds() / 60:.0f}m"
    seconds = int(delta.total_seconds())
    if delta < _DAY:
        return f"{seconds // 3600}h {(seconds // 60) % 60}m"
    return f"{seconds // 86400}d {(seconds // 3600) % 24}h"


def condition_row(condition: Mapping[str, Any] | None, now: datetime, pressure: bool) -> ConditionRow:
    """Summarise one node condition."""
    if condition is None:
        return ConditionRow(status="Unknown", since_transition="n/a")
    status = _text(condition.get("status")).strip()
    since = "n/a"
    transition = _text(condition.get("lastTransitionTime"))
    if transition:
        moment = _parse_rfc3339(transition)
        if moment is not None:
            since = humanize_node_duration(moment, now)
    is_true = status == "True"
    return ConditionRow(
        status=status,
        status_true=is_true,
        since_transition=since,
        highlight_pressure=pressure and is_true,
    )


def build_node_row(node: Mapping[str, Any], now: datetime) -> NodeRow:
    """Build the report row for one node document."""
    metadata = _mapping(node.get("metadata"))
    status = _mapping(node.get("status"))
    info = _mapping(status.get("nodeInfo"))

    os_name = _text(info.get("operatingSystem"))
    os_image = _text(info.get("osImage"))
    if os_image:
        os_name = f"{os_image} ({os_name})" if os_name else os_image

    conditions = status.get("conditions")
    ready = condition_row(find_condition(conditions, "Ready"), now, False)
    pid = condition_row(find_condition(conditions, "PIDPressure"), now, True)
    disk = condition_row(find_condition(conditions, "DiskPressure"), now, True)
    memory = condition_row(find_condition(conditions, "MemoryPressure"), now, True)

    under_pressure = pid.highlight_pressure or disk.highlight_pressure or memory.highlight_pressure

    capacity = _mapping(status.get("capacity"))
    host = _text(metadata.get("name"))
    label_host = _text(_labels(node).get("kubernetes.io/hostname"))
    if label_host:
        host = label_host

    return NodeRow(
        hostname=host,
        os=os_name,
        kernel=_text(info.get("kernelVersion")),
        kubelet_version=_text(info.get("kubeletVersion")),
        role=k8s_role(node),
        instance_type=instance_type(node),
        ip=node_ip(node),
        cpu_cap=_text(capacity.get("cpu")).strip(),
        ephemeral_gib=quantity_to_gib_string(_text(capacity.get("ephemeral-storage")).strip()),
        memory=quantity_memory_display(_text(capacity.get("memory"))),
        pods=_text(capacity.get("pods")).strip(),
        ready=ready,
        pid_pressure=pid,
        disk_pressure=disk,
        memory_pressure=memory,
        row_pressure_class="pressure-alert" if under_pressure else "",
    )


def load_node_rows(path: str | os.PathLike[str], now: datetime) -> list[NodeRow]:
    """Read a nodes.yaml list and build one row per node.

    Raises OSError when the file cannot be read and ValueError when it is not a node list.
    """
    with open(path, "rb") as handle:
        data = handle.read()
    try:
        document = yaml.load(data, Loader=_YamlLoader)
    except yaml.YAMLError as exc:
        raise ValueError(f"parse nodes yaml: {exc}") from exc
    if document is None:
        return []
    if not isinstance(document, dict):
        raise ValueError("parse nodes yaml: top level is not a mapping")
    items = document.get("items")
    if items is None:
        return []
    if not isinstance(items, list):
        raise ValueError("parse nodes yaml: items is not a list")
    rows = []
    for item in items:
        if item is None:
            item = {}
        if not isinstance(item, dict):
            raise ValueError("parse nodes yaml: item is not a mapping")
        rows.append(build_node_row(item, now))
    return rows