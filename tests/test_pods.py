from datetime import datetime, timedelta, timezone

import pytest

from k8ssummary.pods import (
    PodImageRef,
    PodLoader,
    find_pods_yamls,
    flatten_pod_log_json_lines,
    load_pod_loader,
    pod_quantity_string,
    pod_spec_detail_text,
    pod_to_row,
    read_pod_log,
    safe_store_id,
)
from k8ssummary.timeutil import humanize_duration

CREATED = datetime(2024, 1, 1, tzinfo=timezone.utc)
NOW = CREATED + timedelta(hours=5, minutes=3)


def make_pod(name, namespace="db", component="pxc", instance="cluster1", images=("percona/pxc:8.0",)):
    return {
        "metadata": {
            "name": name,
            "namespace": namespace,
            "creationTimestamp": "2024-01-01T00:00:00Z",
            "labels": {
                "app.kubernetes.io/instance": instance,
                "app.kubernetes.io/component": component,
            },
        },
        "spec": {
            "nodeName": "worker-a",
            "containers": [{"name": f"c{i}", "image": img} for i, img in enumerate(images)],
        },
        "status": {"phase": "Running", "podIP": "10.0.0.5"},
    }


PODS_YAML = """\
apiVersion: v1
kind: List
items:
- metadata:
    name: {name}
    namespace: db
    creationTimestamp: 2024-01-01T00:00:00Z
    labels:
      app.kubernetes.io/instance: cluster1
      app.kubernetes.io/component: pxc
  spec:
    containers:
    - name: pxc
      image: percona/pxc:8.0
  status:
    phase: Running
"""


def test_safe_store_id_sanitizes():
    result = safe_store_id("podlog", "my ns", "pod..one")
    assert result.startswith("podlog-")
    assert "--" not in result
    assert all(ch.isalnum() or ch == "-" for ch in result)
    assert not result.endswith("-")


def test_safe_store_id_keeps_simple_names():
    assert safe_store_id("podlog", "db", "pod1") == "podlog-db-pod1"


def test_flatten_json_lines():
    raw = '{"log":"hello world","file":"/var/lib/mysql/mysqld-error.log"}\r\nplain line\n{"other":1}'
    assert flatten_pod_log_json_lines(raw).split("\n") == ["hello world", "plain line", '{"other":1}']


def test_flatten_leaves_invalid_json():
    assert flatten_pod_log_json_lines("{not json") == "{not json"
    assert flatten_pod_log_json_lines('{"log":""}') == '{"log":""}'


@pytest.mark.parametrize(
    ("value", "expected"),
    [(None, ""), ("  500m ", "500m"), (2, "2"), (2.0, "2"), (0.5, "0.5"), (True, "true")],
)
def test_pod_quantity_string(value, expected):
    assert pod_quantity_string(value) == expected


def test_pod_spec_detail_text_defaults():
    assert pod_spec_detail_text(None) == "No pod data."
    assert pod_spec_detail_text({"spec": {}}) == "No container specs in this pod document."


def test_pod_spec_detail_text_lists_resources():
    pod = {
        "spec": {
            "containers": [
                {
                    "name": "web",
                    "image": "nginx:1",
                    "resources": {"requests": {"cpu": "100m", "memory": "64Mi"}},
                }
            ]
        }
    }
    text = pod_spec_detail_text(pod)
    assert text.startswith("=== Containers ===")
    assert "  image:     nginx:1" in text
    assert "  requests:  CPU 100m, memory 64Mi" in text
    assert "  limits:    CPU —, memory —" in text
    assert "Init containers" not in text


def test_pod_to_row_counts(tmp_path):
    pod = make_pod("pod-a", images=("a:1", "b:1"))
    pod["status"]["containerStatuses"] = [
        {"name": "c0", "ready": True, "restartCount": 4},
        {"name": "c1", "ready": False},
    ]
    row = pod_to_row(pod, NOW, tmp_path)
    assert row.ready == "1/2"
    assert row.restarts == "4"
    assert row.status == "Running"
    assert row.pod_ip == "10.0.0.5"
    assert row.node == "worker-a"
    assert row.age == humanize_duration(CREATED, NOW)
    assert row.has_pod_log is False
    assert row.pod_log_modal_id == safe_store_id("podlog", "db", "pod-a")
    assert row.pod_spec_modal_id == safe_store_id("podspect", "db", "pod-a")


def test_pod_to_row_defaults(tmp_path):
    row = pod_to_row({"metadata": {"name": "x"}}, NOW, tmp_path)
    assert row.ready == "0/0"
    assert (row.status, row.pod_ip, row.node, row.age) == ("—", "—", "—", "—")
    assert row.restarts == "0"


def test_read_pod_log_escapes(tmp_path):
    pod_dir = tmp_path / "db" / "pod-a"
    pod_dir.mkdir(parents=True)
    (pod_dir / "logs.txt").write_text("<b>&\n")
    escaped, found = read_pod_log(tmp_path, "db", "pod-a")
    assert found is True
    assert escaped == "&lt;b&gt;&amp;\n"


def test_read_pod_log_fallback_and_missing(tmp_path):
    pod_dir = tmp_path / "db" / "pod-b"
    pod_dir.mkdir(parents=True)
    (pod_dir / "log").write_text("line")
    assert read_pod_log(tmp_path, "db", "pod-b") == ("line", True)
    assert read_pod_log(tmp_path, "db", "missing") == ("", False)
    assert read_pod_log(tmp_path, "", "pod-b") == ("", False)


def test_read_pod_log_empty_file(tmp_path):
    pod_dir = tmp_path / "db" / "pod-c"
    pod_dir.mkdir(parents=True)
    (pod_dir / "logs.txt").write_text("")
    assert read_pod_log(tmp_path, "db", "pod-c") == ("", False)


def test_find_and_load_pods(tmp_path):
    (tmp_path / "b").mkdir()
    (tmp_path / "a").mkdir()
    (tmp_path / "b" / "pods.yaml").write_text(PODS_YAML.format(name="pod-b"))
    (tmp_path / "a" / "pods.yaml").write_text(PODS_YAML.format(name="pod-a"))
    (tmp_path / "a" / "other.yaml").write_text("x: 1")
    paths = find_pods_yamls(tmp_path)
    assert paths == sorted(paths)
    assert [p.split("/")[-2] if "/" in p else p for p in paths] == ["a", "b"] or len(paths) == 2
    assert len(paths) == 2
    loader = load_pod_loader(tmp_path)
    assert [p["metadata"]["name"] for p in loader.pods] == ["pod-a", "pod-b"]
    rows = loader.pods_for_component("db", "cluster1", "pxc", NOW, tmp_path)
    assert rows[0].age == humanize_duration(CREATED, NOW)


def test_load_pod_loader_errors(tmp_path):
    with pytest.raises(OSError):
        load_pod_loader(tmp_path / "missing")
    (tmp_path / "pods.yaml").write_text("items: [unclosed")
    with pytest.raises(ValueError):
        load_pod_loader(tmp_path)


def test_distinct_images_dedupes_and_filters():
    loader = PodLoader(
        [
            make_pod("p1", images=("docker.io/percona/pxc:8.0",)),
            make_pod("p2", images=("percona/pxc:8.0", "percona/haproxy:2.8")),
            make_pod("p3", component="backup", images=("percona/backup:1",)),
            make_pod("p4", namespace="other", images=("percona/other:1",)),
        ]
    )
    refs = loader.distinct_images_for_instance("db", "cluster1")
    assert refs == [
        PodImageRef(display="percona/haproxy:2.8", norm="percona/haproxy:2.8"),
        PodImageRef(display="docker.io/percona/pxc:8.0", norm="percona/pxc:8.0"),
    ]


def test_pod_name_for_backup():
    job = {"metadata": {"name": "xb-job", "namespace": "db", "annotations": {"percona.com/backup-name": "nightly"}}}
    labelled = {"metadata": {"name": "xb-2", "namespace": "db", "labels": {"percona.com/backup-name": "weekly"}}}
    loader = PodLoader([job, labelled])
    assert loader.pod_name_for_backup("db", " nightly ") == "xb-job"
    assert loader.pod_name_for_backup("db", "weekly") == "xb-2"
    assert loader.pod_name_for_backup("", "nightly") == ""
    assert loader.pod_name_for_backup("other", "nightly") == ""


def test_pods_for_component_sorted(tmp_path):
    loader = PodLoader([make_pod("pxc-2"), make_pod("pxc-0"), make_pod("hx-0", component="haproxy")])
    rows = loader.pods_for_component("db", "cluster1", "pxc", NOW, tmp_path)
    assert [r.name for r in rows] == ["pxc-0", "pxc-2"]


def test_k8s_meta_by_pod(tmp_path):
    loader = PodLoader([make_pod("pxc-0")])
    meta = loader.k8s_meta_by_pod(tmp_path, NOW)
    assert set(meta) == {("db", "pxc-0")}
    entry = meta[("db", "pxc-0")]
    assert entry.ip == "10.0.0.5"
    assert entry.node == "worker-a"
    assert entry.status == "Running"


def test_pod_yaml_for_modal_prefers_disk(tmp_path):
    pod_dir = tmp_path / "db" / "pxc-0"
    pod_dir.mkdir(parents=True)
    (pod_dir / "pod.yaml").write_text("kind: Pod # <x>\n")
    loader = PodLoader([make_pod("pxc-0")])
    escaped, modal_id = loader.pod_yaml_for_modal(tmp_path, "db", "pxc-0")
    assert escaped == "kind: Pod # &lt;x&gt;\n"
    assert modal_id == safe_store_id("plgpodyaml", "db", "pxc-0")


def test_pod_yaml_for_modal_fallback_and_missing(tmp_path):
    loader = PodLoader([make_pod("pxc-0")])
    escaped, _ = loader.pod_yaml_for_modal(tmp_path, "db", "pxc-0")
    assert "pxc-0" in escaped
    assert "percona/pxc:8.0" in escaped
    assert loader.pod_yaml_for_modal(tmp_path, "db", "nope") is None
    assert loader.pod_yaml_for_modal(tmp_path, "", "pxc-0") is None


def test_pod_yaml_for_modal_truncates(tmp_path):
    pod_dir = tmp_path / "db" / "pxc-0"
    pod_dir.mkdir(parents=True)
    (pod_dir / "pod.yaml").write_text("a" * (512 * 1024 + 10))
    loader = PodLoader([make_pod("pxc-0")])
    escaped, _ = loader.pod_yaml_for_modal(tmp_path, "db", "pxc-0")
    assert escaped.endswith("(see raw cluster dump for full file)")
    assert escaped.startswith("a" * (512 * 1024))
    assert "a" * (512 * 1024 + 1) not in escaped