"""PerconaXtraDBCluster rows for the report, built from the cluster resources in a dump."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Mapping

import yaml

from .certified import CertifiedImageCache
from .pods import (
    PodLoader,
    PodRow,
    _YamlLoader,
    _format_go_g,
    _html_escape,
    _int,
    _mapping,
    _sequence,
    _text,
)
from .timeutil import _parse_rfc3339, humanize_duration

PXC_FILE_NAME = "perconaxtradbclusters.pxc.percona.com.yaml"
PXC_CONFIGURATION_MAX_LINES = 5
PXC_CR_YAML_MODAL_MAX_BYTES = 512 * 1024

_DASH = "—"
_TRUNCATED_NOTE = "\n\n# … truncated for report embed (see raw cluster dump for full document)"


@dataclass(frozen=True)
class ImageCertRow:
    image_escaped: str
    is_certified: bool


@dataclass(frozen=True)
class PXCRow:
    name: str
    namespace: str
    cr_version: str
    created: str
    ready_status: str
    ready_since: str
    ready_status_class: str
    pmm_enabled: str
    unsafe_flags_ok: bool
    unsafe_flags_escaped: str
    update_strategy: str
    haproxy_enabled: bool
    proxysql_enabled: bool
    haproxy_size: str = ""
    haproxy_status: str = ""
    haproxy_version: str = ""
    proxysql_size: str = ""
    proxysql_status: str = ""
    proxysql_version: str = ""
    pxc_size: str = ""
    pxc_status: str = ""
    pxc_version: str = ""
    pxc_config_snippet: str = ""
    pxc_config_full_escaped: str = ""
    pxc_config_truncated: bool = False
    pxc_config_modal_id: str = ""
    cr_yaml_modal_id: str = ""
    cr_yaml_escaped: str = ""
    haproxy_pods: tuple[PodRow, ...] = ()
    proxysql_pods: tuple[PodRow, ...] = ()
    pxc_pods: tuple[PodRow, ...] = ()
    certified_doc_url: str = ""
    certified_fetch_err_escaped: str = ""
    image_cert_rows: tuple[ImageCertRow, ...] = ()


def _optional_int(value: Any) -> int | None:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def _status_mapping(value: Any) -> Mapping[Any, Any] | None:
    return value if isinstance(value, dict) else None


def sanitize_modal_fragment(text: str) -> str:
    """Reduce text to letters, digits and single dashes; an empty result becomes ``x``."""
    cleaned = "".join(ch if ch.isalpha() or ch.isdecimal() else "-" for ch in text)
    result = re.sub("-{2,}", "-", cleaned.strip("-"))
    return result or "x"


def image_tag(image: str) -> str:
    """Return the tag of an image reference, or its last path part when it has none."""
    image = image.strip()
    if not image:
        return ""
    image = image.rpartition("/")[2]
    if ":" in image:
        return image.rpartition(":")[2].strip()
    return image


def _size_text(spec_size: int, status: Mapping[Any, Any] | None) -> str:
    if status is not None:
        ready = _optional_int(status.get("ready"))
        total = _optional_int(status.get("size"))
        if ready is not None:
            return f"{ready} / {total if total is not None else spec_size}"
    return str(spec_size)


def sidecar_columns(spec_size: int, status: Any, image: str) -> tuple[str, str, str]:
    """Size, status and version columns for HAProxy or ProxySQL."""
    st = _status_mapping(status)
    version = image_tag(image) or _DASH
    state = _DASH
    if st is not None:
        state = _text(st.get("status")).strip() or _DASH
    return _size_text(spec_size, st), state, version


def pxc_columns(spec: Any, status: Any) -> tuple[str, str, str]:
    """Size, status and version columns for the PXC nodes."""
    if spec is None:
        return _DASH, _DASH, _DASH
    spec = _mapping(spec)
    st = _status_mapping(status)
    version = _DASH
    reported = _text(st.get("version")).strip() if st is not None else ""
    if reported:
        version = reported
    else:
        version = image_tag(_text(spec.get("image"))) or _DASH
    state = _DASH
    if st is not None:
        state = _text(st.get("status")).strip() or _DASH
    return _size_text(_int(spec.get("size")), st), state, version


def format_pxc_configuration(
    namespace: str, name: str, configuration: str
) -> tuple[str, str, bool, str]:
    """Return ``(snippet, full_escaped, truncated, modal_id)`` for spec.pxc.configuration."""
    cfg = configuration.rstrip("\n")
    modal_id = f"pxc-cfg-{sanitize_modal_fragment(namespace)}-{sanitize_modal_fragment(name)}"
    if not cfg.strip():
        return _DASH, "", False, modal_id
    full_escaped = _html_escape(cfg)
    lines = cfg.split("\n")
    if len(lines) > PXC_CONFIGURATION_MAX_LINES:
        return "\n".join(lines[:PXC_CONFIGURATION_MAX_LINES]), full_escaped, True, modal_id
    return cfg, full_escaped, False, modal_id


def _flag_is_true(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    if isinstance(value, (int, float)):
        return value != 0
    return False


def _flag_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, float):
        return _format_go_g(value).strip()
    return str(value).strip()


def unsafe_flags_cell(flags: Any) -> tuple[bool, str]:
    """Return ``(ok, escaped_list)``: ok when no unsafe flag is switched on."""
    active = sorted(
        f"{key}: {_flag_text(value)}"
        for key, value in ((_text(k).strip(), v) for k, v in _mapping(flags).items())
        if key and _flag_is_true(value)
    )
    if not active:
        return True, ""
    return False, _html_escape("; ".join(active))


def pxc_ready_condition(conditions: Any, now: datetime) -> tuple[str, str, str]:
    """Status, time in state and CSS class of the last ``ready`` condition."""
    ready = None
    for condition in _sequence(conditions):
        condition = _mapping(condition)
        if _text(condition.get("type")).strip().lower() == "ready":
            ready = condition
    if ready is None:
        return _DASH, _DASH, "status-muted"
    state = _text(ready.get("status")).strip()
    if not state:
        return _DASH, _DASH, "status-muted"
    lowered = state.lower()
    if lowered == "true":
        state, css = "True", "status-true"
    elif lowered == "false":
        state, css = "False", "status-false"
    else:
        css = "status-muted"
    since = _DASH
    transition = _text(ready.get("lastTransitionTime"))
    if transition:
        moment = _parse_rfc3339(transition.strip())
        since = humanize_duration(moment, now) if moment is not None else transition.strip()
    return state, since, css


def _node_value(node: Any, key: str) -> Any:
    if not isinstance(node, yaml.MappingNode):
        return None
    for key_node, value_node in node.value:
        if isinstance(key_node, yaml.ScalarNode) and key_node.value == key:
            return value_node
    return None


def _scalar(node: Any) -> str:
    return node.value.strip() if isinstance(node, yaml.ScalarNode) else ""


def extract_cr_item_yaml(data: bytes, namespace: str, name: str) -> bytes | None:
    """Return the YAML of the list item whose metadata matches, or None."""
    want_ns = namespace.strip()
    want_name = name.strip()
    if not want_name:
        return None
    try:
        root = next(yaml.compose_all(data, Loader=yaml.SafeLoader), None)
    except yaml.YAMLError:
        return None
    items = _node_value(root, "items")
    if not isinstance(items, yaml.SequenceNode):
        return None
    for element in items.value:
        metadata = _node_value(element, "metadata")
        if metadata is None:
            continue
        got_ns = _scalar(_node_value(metadata, "namespace"))
        got_name = _scalar(_node_value(metadata, "name"))
        if got_name == want_name and got_ns == want_ns:
            try:
                text = yaml.serialize(element, Dumper=yaml.SafeDumper, allow_unicode=True)
            except yaml.YAMLError:
                return None
            return text.encode("utf-8") or None
    return None


def _project_sidecar_spec(value: Any) -> dict[str, Any] | None:
    if not isinstance(value, dict):
        return None
    enabled = value.get("enabled")
    return {
        "enabled": enabled if isinstance(enabled, bool) else None,
        "size": _int(value.get("size")),
        "image": _text(value.get("image")),
    }


def _project_component_status(value: Any, *extra: str) -> dict[str, Any] | None:
    if not isinstance(value, dict):
        return None
    projected = {
        "size": _optional_int(value.get("size")),
        "ready": _optional_int(value.get("ready")),
        "status": _text(value.get("status")),
    }
    projected.update({key: _text(value.get(key)) for key in extra})
    return projected


def _project_cr(cr: Mapping[str, Any]) -> dict[str, Any]:
    metadata = _mapping(cr.get("metadata"))
    spec = _mapping(cr.get("spec"))
    status = _mapping(cr.get("status"))
    pxc = _mapping(spec.get("pxc"))
    return {
        "metadata": {
            "name": _text(metadata.get("name")),
            "namespace": _text(metadata.get("namespace")),
            "creationTimestamp": _text(metadata.get("creationTimestamp")),
        },
        "spec": {
            "crVersion": _text(spec.get("crVersion")),
            "updateStrategy": _text(spec.get("updateStrategy")),
            "pmm": {"enabled": _mapping(spec.get("pmm")).get("enabled") is True},
            "haproxy": _project_sidecar_spec(spec.get("haproxy")),
            "proxysql": _project_sidecar_spec(spec.get("proxysql")),
            "pxc": {
                "size": _int(pxc.get("size")),
                "image": _text(pxc.get("image")),
                "configuration": _text(pxc.get("configuration")),
            },
            "unsafeFlags": dict(_mapping(spec.get("unsafeFlags"))),
        },
        "status": {
            "conditions": [
                {
                    "type": _text(c.get("type")),
                    "status": _text(c.get("status")),
                    "lastTransitionTime": _text(c.get("lastTransitionTime")),
                }
                for c in map(_mapping, _sequence(status.get("conditions")))
            ],
            "haproxy": _project_component_status(status.get("haproxy")),
            "proxysql": _project_component_status(status.get("proxysql")),
            "pxc": _project_component_status(status.get("pxc"), "image", "version"),
        },
    }


def cr_yaml_for_modal(
    file_bytes: bytes, cr: Mapping[str, Any] | None, file_index: int, item_index: int
) -> tuple[str, str] | None:
    """HTML-escaped YAML of one cluster resource and its modal id, or None.

    The original list item is preferred; the parsed fields are dumped when it cannot be found.
    """
    if cr is None:
        return None
    metadata = _mapping(cr.get("metadata"))
    namespace = _text(metadata.get("namespace")).strip()
    name = _text(metadata.get("name")).strip()
    if not name:
        return None
    modal_id = (
        f"pxccryaml-{sanitize_modal_fragment(namespace)}-{sanitize_modal_fragment(name)}"
        f"-f{file_index}-i{item_index}"
    )
    raw = extract_cr_item_yaml(file_bytes, namespace, name)
    if raw is None:
        try:
            raw = yaml.safe_dump(
                _project_cr(cr), sort_keys=False, allow_unicode=True, default_flow_style=False
            ).encode("utf-8")
        except yaml.YAMLError:
            return None
        if not raw:
            return None
    if len(raw) > PXC_CR_YAML_MODAL_MAX_BYTES:
        text = raw[:PXC_CR_YAML_MODAL_MAX_BYTES].decode("utf-8", errors="replace") + _TRUNCATED_NOTE
    else:
        text = raw.decode("utf-8", errors="replace")
    return _html_escape(text), modal_id


def _sidecar_enabled(value: Any) -> bool:
    if not isinstance(value, dict):
        return False
    enabled = value.get("enabled")
    return enabled is None or enabled is True


def build_pxc_row(
    cr: Mapping[str, Any],
    now: datetime,
    pods: PodLoader | None,
    dump_root: str | os.PathLike[str],
    cert: CertifiedImageCache | None,
) -> PXCRow:
    """Build the report row for one PerconaXtraDBCluster document."""
    metadata = _mapping(cr.get("metadata"))
    spec = _mapping(cr.get("spec"))
    status = _mapping(cr.get("status"))
    name = _text(metadata.get("name"))
    namespace = _text(metadata.get("namespace"))

    ready_status, ready_since, ready_class = pxc_ready_condition(status.get("conditions"), now)
    haproxy_spec = spec.get("haproxy")
    proxysql_spec = spec.get("proxysql")
    haproxy_on = _sidecar_enabled(haproxy_spec)
    proxysql_on = _sidecar_enabled(proxysql_spec)
    cr_version = _text(spec.get("crVersion")).strip()
    unsafe_ok, unsafe_escaped = unsafe_flags_cell(spec.get("unsafeFlags"))

    empty = ("", "", "")
    haproxy_cols = (
        sidecar_columns(
            _int(haproxy_spec.get("size")), status.get("haproxy"), _text(haproxy_spec.get("image"))
        )
        if haproxy_on
        else empty
    )
    proxysql_cols = (
        sidecar_columns(
            _int(proxysql_spec.get("size")), status.get("proxysql"), _text(proxysql_spec.get("image"))
        )
        if proxysql_on
        else empty
    )
    pxc_spec = _mapping(spec.get("pxc"))
    pxc_cols = pxc_columns(pxc_spec, status.get("pxc"))
    snippet, full_escaped, truncated, config_id = format_pxc_configuration(
        namespace, name, _text(pxc_spec.get("configuration"))
    )

    haproxy_pods: tuple[PodRow, ...] = ()
    proxysql_pods: tuple[PodRow, ...] = ()
    pxc_pods: tuple[PodRow, ...] = ()
    if pods is not None:
        if haproxy_on:
            haproxy_pods = tuple(pods.pods_for_component(namespace, name, "haproxy", now, dump_root))
        if proxysql_on:
            proxysql_pods = tuple(pods.pods_for_component(namespace, name, "proxysql", now, dump_root))
        pxc_pods = tuple(pods.pods_for_component(namespace, name, "pxc", now, dump_root))

    doc_url = ""
    fetch_error = ""
    cert_rows: tuple[ImageCertRow, ...] = ()
    if cert is not None:
        refs, doc_url, error = cert.lookup(cr_version)
        fetch_error = _html_escape(error)
        list_ok = not error and refs is not None
        images = pods.distinct_images_for_instance(namespace, name) if pods is not None else []
        cert_rows = tuple(
            ImageCertRow(
                image_escaped=_html_escape(image.display),
                is_certified=list_ok and image.norm in refs,
            )
            for image in images
        )

    return PXCRow(
        name=name,
        namespace=namespace,
        cr_version=cr_version or _DASH,
        created=_text(metadata.get("creationTimestamp")),
        ready_status=ready_status,
        ready_since=ready_since,
        ready_status_class=ready_class,
        pmm_enabled="yes" if _mapping(spec.get("pmm")).get("enabled") is True else "no",
        unsafe_flags_ok=unsafe_ok,
        unsafe_flags_escaped=unsafe_escaped,
        update_strategy=_text(spec.get("updateStrategy")).strip() or _DASH,
        haproxy_enabled=haproxy_on,
        proxysql_enabled=proxysql_on,
        haproxy_size=haproxy_cols[0],
        haproxy_status=haproxy_cols[1],
        haproxy_version=haproxy_cols[2],
        proxysql_size=proxysql_cols[0],
        proxysql_status=proxysql_cols[1],
        proxysql_version=proxysql_cols[2],
        pxc_size=pxc_cols[0],
        pxc_status=pxc_cols[1],
        pxc_version=pxc_cols[2],
        pxc_config_snippet=snippet,
        pxc_config_full_escaped=full_escaped,
        pxc_config_truncated=truncated,
        pxc_config_modal_id=config_id,
        haproxy_pods=haproxy_pods,
        proxysql_pods=proxysql_pods,
        pxc_pods=pxc_pods,
        certified_doc_url=doc_url,
        certified_fetch_err_escaped=fetch_error,
        image_cert_rows=cert_rows,
    )


def list_pxc_yaml_files(root: str | os.PathLike[str]) -> list[str]:
    """Every cluster resource list file under ``root``, sorted.

    Raises OSError if ``root`` cannot be walked.
    """
    base = os.path.normpath(os.fspath(root))
    if not os.path.isdir(base):
        os.lstat(base)
        return [base] if os.path.basename(base) == PXC_FILE_NAME else []

    def _raise(error: OSError) -> None:
        raise error

    return sorted(
        os.path.join(directory, file_name)
        for directory, _, files in os.walk(base, onerror=_raise)
        for file_name in files
        if file_name == PXC_FILE_NAME
    )


def _parse_items(path: str, data: bytes) -> list[Mapping[str, Any]]:
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
    result = []
    for item in items:
        if item is None:
            item = {}
        if not isinstance(item, dict):
            raise ValueError(f"{path}: yaml: item is not a mapping")
        result.append(item)
    return result


def load_pxc_rows(
    dump_root: str | os.PathLike[str],
    now: datetime,
    pods: PodLoader | None,
    cert: CertifiedImageCache | None,
) -> tuple[list[PXCRow], int]:
    """Build rows for every named cluster in the dump; also return how many files were read.

    Raises OSError for unreadable files and ValueError for malformed YAML.
    """
    dump_abs = os.path.abspath(os.fspath(dump_root))
    paths = list_pxc_yaml_files(dump_abs)
    rows: list[PXCRow] = []
    for file_index, path in enumerate(paths):
        try:
            with open(path, "rb") as handle:
                data = handle.read()
        except OSError as exc:
            raise OSError(f"{path}: {exc}") from exc
        for item_index, cr in enumerate(_parse_items(path, data)):
            if not _text(_mapping(cr.get("metadata")).get("name")).strip():
                continue
            row = build_pxc_row(cr, now, pods, dump_abs, cert)
            modal = cr_yaml_for_modal(data, cr, file_index, item_index)
            if modal is not None:
                row = replace(row, cr_yaml_escaped=modal[0], cr_yaml_modal_id=modal[1])
            rows.append(row)
    return rows, len(paths)