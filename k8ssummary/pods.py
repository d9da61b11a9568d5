"""Pod listings from pods.yaml files in a cluster dump, with log and spec excerpts."""

from __future__ import annotations

import json
import math
import os
import re
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Mapping

import yaml

from .certified import normalize_oci_image_ref
from .timeutil import _parse_rfc3339, humanize_duration

PODS_FILE_NAME = "pods.yaml"
POD_YAML_MODAL_MAX_BYTES = 512 * 1024

_DASH = "—"
_BACKUP_NAME_KEY = "percona.com/backup-name"
_SPEC_COMPONENTS = ("haproxy", "proxysql", "pxc")

_HTML_ESCAPES = str.maketrans(
    {
        "\0": "\ufffd",
        '"': "&#34;",
        "'": "&#39;",
        "&": "&amp;",
        "<": "&lt;",
        ">": "&gt;",
    }
)


class _YamlLoader(yaml.SafeLoader):
    """Safe loader that keeps timestamps as strings and only reads true/false as booleans."""


_YamlLoader.yaml_implicit_resolvers = {
    first: [
        (tag, regexp)
        for tag, regexp in resolvers
        if tag not in ("tag:yaml.org,2002:timestamp", "tag:yaml.org,2002:bool")
    ]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}
_YamlLoader.add_implicit_resolver(
    "tag:yaml.org,2002:bool",
    re.compile(r"^(?:true|True|TRUE|false|False|FALSE)$"),
    list("tTfF"),
)


@dataclass(frozen=True)
class PodRow:
    name: str
    ready: str
    status: str
    restarts: str
    age: str
    pod_ip: str
    node: str
    has_pod_log: bool = False
    pod_log_escaped: str = ""
    pod_log_modal_id: str = ""
    pod_spec_modal_id: str = ""
    pod_spec_escaped: str = ""


@dataclass(frozen=True)
class PodK8sMeta:
    ready: str
    status: str
    restarts: str
    age: str
    ip: str
    node: str


@dataclass(frozen=True)
class PodImageRef:
    display: str
    norm: str


def _html_escape(text: str) -> str:
    return text.translate(_HTML_ESCAPES)


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _mapping(value: Any) -> Mapping[Any, Any]:
    return value if isinstance(value, dict) else {}


def _sequence(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _int(value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return 0


def _metadata(pod: Mapping[str, Any]) -> Mapping[Any, Any]:
    return _mapping(pod.get("metadata"))


def _spec(pod: Mapping[str, Any]) -> Mapping[Any, Any]:
    return _mapping(pod.get("spec"))


def _status(pod: Mapping[str, Any]) -> Mapping[Any, Any]:
    return _mapping(pod.get("status"))


def _string_map(value: Any) -> dict[str, str]:
    return {_text(k): _text(v) for k, v in _mapping(value).items()}


def _find_named_files(root: str | os.PathLike[str], file_name: str) -> list[str]:
    """Every file called ``file_name`` under ``root``, sorted.

    Symlinked directories are not followed. Raises OSError if a directory cannot be read.
    """
    base = os.path.normpath(os.fspath(root))
    if not os.path.isdir(base):
        os.lstat(base)
        return [base] if os.path.basename(base) == file_name else []
    found: list[str] = []
    pending = [base]
    while pending:
        directory = pending.pop()
        with os.scandir(directory) as entries:
            for entry in entries:
                if entry.is_dir(follow_symlinks=False):
                    pending.append(entry.path)
                elif entry.name == file_name:
                    found.append(entry.path)
    return sorted(found)


def safe_store_id(prefix: str, namespace: str, name: str) -> str:
    """Build an HTML-safe id ``<prefix>-<namespace>-<name>`` of letters, digits and single dashes."""
    raw = f"{prefix}-{namespace}-{name}"
    cleaned = "".join(ch if ch.isalpha() or ch.isdecimal() else "-" for ch in raw)
    return re.sub("-{2,}", "-", cleaned.strip("-"))


def flatten_pod_log_json_lines(raw: str) -> str:
    """Replace JSON lines that carry a non-empty ``log`` field with that message.

    Other lines are left unchanged.
    """
    lines = raw.replace("\r\n", "\n").split("\n")
    return "\n".join(_flatten_line(line) for line in lines)


def _flatten_line(line: str) -> str:
    stripped = line.strip()
    if not stripped.startswith("{"):
        return line
    try:
        pairs = json.loads(stripped, object_pairs_hook=list)
    except ValueError:
        return line
    if not isinstance(pairs, list):
        return line
    message = ""
    for key, value in pairs:
        if key.lower() != "log":
            continue
        if value is None:
            continue
        if not isinstance(value, str):
            return line
        message = value
    return message or line


def read_pod_log(dump_root: str | os.PathLike[str], namespace: str, pod_name: str) -> tuple[str, bool]:
    """Read ``<root>/<ns>/<pod>/logs.txt`` (or ``log``) and return it HTML-escaped.

    The second value tells whether a non-empty log was found.
    """
    ns = namespace.strip()
    pod = pod_name.strip()
    root = os.fspath(dump_root)
    if not ns or not pod or not root.strip():
        return "", False
    base = os.path.normpath(root)
    data: bytes | None = None
    for candidate in ("logs.txt", "log"):
        try:
            with open(os.path.join(base, ns, pod, candidate), "rb") as handle:
                data = handle.read()
            break
        except OSError:
            continue
    if not data:
        return "", False
    text = data.decode("utf-8", errors="replace")
    return _html_escape(flatten_pod_log_json_lines(text)), True


def _format_go_g(value: float) -> str:
    """Format a float the way a shortest ``%g`` verb does."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value == 0:
        return "0"
    sign, digit_tuple, exponent = Decimal(repr(value)).as_tuple()
    digits = list(digit_tuple)
    while len(digits) > 1 and digits[-1] == 0:
        digits.pop()
        exponent += 1
    text_digits = "".join(str(d) for d in digits)
    count = len(text_digits)
    point = count + exponent
    exp = point - 1
    prefix = "-" if sign else ""
    if exp < -4 or exp >= 6:
        mantissa = text_digits[0]
        if count > 1:
            mantissa += "." + text_digits[1:]
        exp_sign = "-" if exp < 0 else "+"
        return f"{prefix}{mantissa}e{exp_sign}{abs(exp):02d}"
    integer = text_digits[:point].ljust(point, "0") if point > 0 else "0"
    places = max(count - point, 0)
    if places == 0:
        return prefix + integer
    fraction = "".join(
        text_digits[i] if 0 <= i < count else "0" for i in range(point, point + places)
    )
    return f"{prefix}{integer}.{fraction}"


def pod_quantity_string(value: Any) -> str:
    """Render a resource quantity decoded from YAML as text; None becomes ""."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return str(int(value))
        return _format_go_g(value).rstrip("0").rstrip(".").strip()
    return str(value).strip()


def _resource_cpu_and_memory(resources: Any, kind: str) -> tuple[str, str]:
    limits = _mapping(resources).get(kind)
    if not isinstance(limits, dict):
        return _DASH, _DASH
    cpu = pod_quantity_string(limits.get("cpu")) or _DASH
    memory = pod_quantity_string(limits.get("memory")) or _DASH
    return cpu, memory


def _container_section(title: str, containers: list[Any]) -> Iterable[str]:
    if not containers:
        return
    yield f"=== {title} ===\n\n"
    for container in containers:
        container = _mapping(container)
        name = _text(container.get("name")).strip() or _DASH
        image = _text(container.get("image")).strip() or _DASH
        resources = container.get("resources")
        req_cpu, req_mem = _resource_cpu_and_memory(resources, "requests")
        lim_cpu, lim_mem = _resource_cpu_and_memory(resources, "limits")
        yield (
            f"{name}\n"
            f"  image:     {image}\n"
            f"  requests:  CPU {req_cpu}, memory {req_mem}\n"
            f"  limits:    CPU {lim_cpu}, memory {lim_mem}\n"
            "\n"
        )


def pod_spec_detail_text(pod: Mapping[str, Any] | None) -> str:
    """Plain-text summary of a pod's init containers and containers."""
    if pod is None:
        return "No pod data."
    spec = _spec(pod)
    text = "".join(
        [
            *_container_section("Init containers", _sequence(spec.get("initContainers"))),
            *_container_section("Containers", _sequence(spec.get("containers"))),
        ]
    ).strip()
    return text or "No container specs in this pod document."


def pod_to_row(pod: Mapping[str, Any], now: datetime, dump_root: str | os.PathLike[str]) -> PodRow:
    """Build the table row for one pod document."""
    metadata = _metadata(pod)
    spec = _spec(pod)
    status = _status(pod)

    containers = _sequence(spec.get("containers"))
    statuses = [_mapping(s) for s in _sequence(status.get("containerStatuses"))]
    init_statuses = [_mapping(s) for s in _sequence(status.get("initContainerStatuses"))]

    ready_by_name: dict[str, bool] = {}
    for entry in statuses:
        ready_by_name[_text(entry.get("name"))] = entry.get("ready") is True
    restarts = sum(_int(entry.get("restartCount")) for entry in statuses + init_statuses)
    ready = sum(1 for c in containers if ready_by_name.get(_text(_mapping(c).get("name")), False))
    total = len(containers) or len(statuses)
    ready_text = f"{ready}/{total}" if total else "0/0"

    age = _DASH
    created = _text(metadata.get("creationTimestamp"))
    if created:
        moment = _parse_rfc3339(created.strip())
        if moment is not None:
            age = humanize_duration(moment, now)

    name = _text(metadata.get("name"))
    namespace = _text(metadata.get("namespace"))
    log_escaped, has_log = read_pod_log(dump_root, namespace, name)
    return PodRow(
        name=name,
        ready=ready_text,
        status=_text(status.get("phase")).strip() or _DASH,
        restarts=str(restarts),
        age=age,
        pod_ip=_text(status.get("podIP")).strip() or _DASH,
        node=_text(spec.get("nodeName")).strip() or _DASH,
        has_pod_log=has_log,
        pod_log_escaped=log_escaped,
        pod_log_modal_id=safe_store_id("podlog", namespace, name),
        pod_spec_modal_id=safe_store_id("podspect", namespace, name),
        pod_spec_escaped=_html_escape(pod_spec_detail_text(pod)),
    )


def _project_container(container: Any) -> dict[str, Any]:
    container = _mapping(container)
    resources = container.get("resources")
    projected_resources = None
    if isinstance(resources, dict):
        projected_resources = {}
        for kind in ("requests", "limits"):
            limits = resources.get(kind)
            projected_resources[kind] = (
                {"cpu": limits.get("cpu"), "memory": limits.get("memory")}
                if isinstance(limits, dict)
                else None
            )
    return {
        "name": _text(container.get("name")),
        "image": _text(container.get("image")),
        "resources": projected_resources,
    }


def _project_status(entry: Any) -> dict[str, Any]:
    entry = _mapping(entry)
    return {
        "name": _text(entry.get("name")),
        "ready": entry.get("ready") is True,
        "restartCount": _int(entry.get("restartCount")),
    }


def _project_pod(pod: Mapping[str, Any]) -> dict[str, Any]:
    metadata = _metadata(pod)
    spec = _spec(pod)
    status = _status(pod)
    return {
        "metadata": {
            "name": _text(metadata.get("name")),
            "namespace": _text(metadata.get("namespace")),
            "creationTimestamp": _text(metadata.get("creationTimestamp")),
            "labels": _string_map(metadata.get("labels")),
            "annotations": _string_map(metadata.get("annotations")),
        },
        "spec": {
            "nodeName": _text(spec.get("nodeName")),
            "initContainers": [_project_container(c) for c in _sequence(spec.get("initContainers"))],
            "containers": [_project_container(c) for c in _sequence(spec.get("containers"))],
        },
        "status": {
            "phase": _text(status.get("phase")),
            "podIP": _text(status.get("podIP")),
            "containerStatuses": [_project_status(s) for s in _sequence(status.get("containerStatuses"))],
            "initContainerStatuses": [
                _project_status(s) for s in _sequence(status.get("initContainerStatuses"))
            ],
        },
    }


def _truncate_for_modal(data: bytes, note: str) -> str:
    if len(data) > POD_YAML_MODAL_MAX_BYTES:
        return data[:POD_YAML_MODAL_MAX_BYTES].decode("utf-8", errors="replace") + note
    return data.decode("utf-8", errors="replace")


class PodLoader:
    """All pod documents merged from the pods.yaml files of a dump."""

    def __init__(self, pods: Iterable[Mapping[str, Any]] = ()) -> None:
        self.pods: list[Mapping[str, Any]] = list(pods)

    def k8s_meta_by_pod(
        self, dump_root: str | os.PathLike[str], now: datetime
    ) -> dict[tuple[str, str], PodK8sMeta]:
        """Status columns for every pod, keyed by ``(namespace, name)``."""
        result: dict[tuple[str, str], PodK8sMeta] = {}
        for pod in self.pods:
            row = pod_to_row(pod, now, dump_root)
            metadata = _metadata(pod)
            key = (_text(metadata.get("namespace")), _text(metadata.get("name")))
            result[key] = PodK8sMeta(
                ready=row.ready,
                status=row.status,
                restarts=row.restarts,
                age=row.age,
                ip=row.pod_ip,
                node=row.node,
            )
        return result

    def distinct_images_for_instance(self, namespace: str, instance: str) -> list[PodImageRef]:
        """Unique images of the haproxy, proxysql and pxc pods of one cluster, sorted by reference."""
        ns = namespace.strip()
        inst = instance.strip()
        seen: dict[str, str] = {}
        for pod in self.pods:
            metadata = _metadata(pod)
            if _text(metadata.get("namespace")).strip() != ns:
                continue
            labels = _mapping(metadata.get("labels"))
            if _text(labels.get("app.kubernetes.io/instance")).strip() != inst:
                continue
            if _text(labels.get("app.kubernetes.io/component")).strip() not in _SPEC_COMPONENTS:
                continue
            spec = _spec(pod)
            for container in _sequence(spec.get("initContainers")) + _sequence(spec.get("containers")):
                image = _text(_mapping(container).get("image")).strip()
                if not image:
                    continue
                norm = normalize_oci_image_ref(image)
                if norm:
                    seen.setdefault(norm, image)
        return [PodImageRef(display=seen[norm], norm=norm) for norm in sorted(seen)]

    def pod_name_for_backup(self, namespace: str, backup_name: str) -> str:
        """Name of the backup job pod labelled or annotated with the backup's name, or ""."""
        ns = namespace.strip()
        name = backup_name.strip()
        if not ns or not name:
            return ""
        for pod in self.pods:
            metadata = _metadata(pod)
            if _text(metadata.get("namespace")).strip() != ns:
                continue
            for source in (metadata.get("labels"), metadata.get("annotations")):
                if _text(_mapping(source).get(_BACKUP_NAME_KEY)).strip() == name:
                    return _text(metadata.get("name")).strip()
        return ""

    def pods_for_component(
        self,
        namespace: str,
        instance: str,
        component: str,
        now: datetime,
        dump_root: str | os.PathLike[str],
    ) -> list[PodRow]:
        """Rows for the pods of one cluster component, sorted by pod name."""
        ns = namespace.strip()
        inst = instance.strip()
        comp = component.strip()
        matches = []
        for pod in self.pods:
            metadata = _metadata(pod)
            labels = metadata.get("labels")
            if not isinstance(labels, dict):
                continue
            if (
                _text(metadata.get("namespace")).strip() == ns
                and _text(labels.get("app.kubernetes.io/instance")).strip() == inst
                and _text(labels.get("app.kubernetes.io/component")).strip() == comp
            ):
                matches.append(pod)
        matches.sort(key=lambda p: _text(_metadata(p).get("name")))
        return [pod_to_row(pod, now, dump_root) for pod in matches]

    def pod_yaml_for_modal(
        self, dump_root: str | os.PathLike[str], namespace: str, pod_name: str
    ) -> tuple[str, str] | None:
        """HTML-escaped YAML of one pod and its modal id, or None when the pod is unknown.

        An on-disk ``<root>/<ns>/<pod>/pod.yaml`` is preferred over the merged document.
        """
        ns = namespace.strip()
        name = pod_name.strip()
        if not ns or not name:
            return None
        found = None
        for pod in self.pods:
            metadata = _metadata(pod)
            if _text(metadata.get("namespace")) == ns and _text(metadata.get("name")) == name:
                found = pod
        if found is None:
            return None
        modal_id = safe_store_id("plgpodyaml", ns, name)
        base = os.path.normpath(os.fspath(dump_root).strip() or ".")
        if base != ".":
            for file_name in ("pod.yaml", "Pod.yaml"):
                try:
                    with open(os.path.join(base, ns, name, file_name), "rb") as handle:
                        data = handle.read()
                except OSError:
                    continue
                if not data:
                    continue
                text = _truncate_for_modal(
                    data,
                    "\n\n# … truncated for report embed (see raw cluster dump for full file)",
                )
                return _html_escape(text), modal_id
        dumped = yaml.safe_dump(
            _project_pod(found), sort_keys=False, allow_unicode=True, default_flow_style=False
        ).encode("utf-8")
        if not dumped:
            return None
        text = _truncate_for_modal(
            dumped,
            "\n\n# … truncated for report embed (see raw cluster dump for full document)",
        )
        return _html_escape(text), modal_id


def find_pods_yamls(root: str | os.PathLike[str]) -> list[str]:
    """Every pods.yaml under ``root``, sorted. Raises OSError if ``root`` cannot be walked."""
    return _find_named_files(root, PODS_FILE_NAME)


def _load_items(path: str) -> list[Mapping[str, Any]]:
    with open(path, "rb") as handle:
        data = handle.read()
    try:
        document = yaml.load(data, Loader=_YamlLoader)
    except yaml.YAMLError as exc:
        raise ValueError(f"{path}: yaml: {exc}") from exc
    if document is None:
        return []
    if not isinstance(document, dict):
        raise ValueError(f"{path}: yaml: top level is not a mapping")
    items = document.get("items")
    if items is None:
        return []
    if not isinstance(items, list):
        raise ValueError(f"{path}: yaml: items is not a list")
    pods = []
    for item in items:
        if item is None:
            item = {}
        if not isinstance(item, dict):
            raise ValueError(f"{path}: yaml: item is not a mapping")
        pods.append(item)
    return pods


def load_pod_loader(root: str | os.PathLike[str]) -> PodLoader:
    """Merge the pods of every pods.yaml under ``root``.

    Raises OSError for unreadable files and ValueError for malformed YAML.
    """
    pods: list[Mapping[str, Any]] = []
    for path in find_pods_yamls(root):
        try:
            pods.extend(_load_items(path))
        except OSError as exc:
            raise OSError(f"{path}: {exc}") from exc
    return PodLoader(pods)