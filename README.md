# k8ssummary

A library for reading a Kubernetes cluster dump (a directory tree of YAML
resource lists and pod logs) and turning it into report-ready rows:

- **Nodes** from `nodes.yaml` (`k8ssummary.nodes`): hostname, role, IP,
  instance type, OS, kernel, kubelet version, capacity (CPU, memory,
  ephemeral storage in GiB, pods) and the Ready / PIDPressure / DiskPressure /
  MemoryPressure conditions with how long each has held.
- **Pods** merged from every `pods.yaml` under the dump (`k8ssummary.pods`):
  ready counts, restarts, age, IP, node, a container spec summary and the
  pod's `logs.txt` (or `log`), with Fluent-style JSON log lines flattened.
- **Percona XtraDB Cluster** resources from every
  `perconaxtradbclusters.pxc.percona.com.yaml` (`k8ssummary.pxc`): readiness,
  PMM, unsafe flags, HAProxy / ProxySQL / PXC sizes, states and versions, a
  configuration snippet, the pods of each component, the resource's YAML,
  and a comparison of the images in use against the certified image list for
  the CR version.
- **Backups** from every `perconaxtradbclusterbackups.pxc.percona.com.yaml`
  (`k8ssummary.backup`), newest first, with cluster, storage, destination,
  state, age, the backup manifest and the backup job's pod log when present.

Text meant for HTML (logs, YAML, configuration, image names) is returned
already HTML-escaped in the fields whose names end in `_escaped`.

## Installation

Install the package with pip; PyYAML is its only runtime dependency.

## Usage

```python
from datetime import datetime, timezone

from k8ssummary.backup import load_backup_rows
from k8ssummary.certified import CertifiedImageCache
from k8ssummary.nodes import load_node_rows
from k8ssummary.pods import load_pod_loader
from k8ssummary.pxc import load_pxc_rows

dump = "cluster-dump"
now = datetime.now(timezone.utc)

for node in load_node_rows(f"{dump}/nodes.yaml", now):
    print(node.hostname, node.role, node.ip, node.memory, node.ready.status)

pods = load_pod_loader(dump)

# With True, each distinct crVersion's release notes page is fetched once
# over HTTPS; with False no network access is made.
cert = CertifiedImageCache(False)

pxc_rows, pxc_files = load_pxc_rows(dump, now, pods, cert)
backup_rows, backup_files = load_backup_rows(dump, now, pods)
```

The loaders raise `OSError` for files that cannot be read and `ValueError`
for YAML that cannot be parsed. `CertifiedImageCache.lookup(cr_version)`
returns `(refs, doc_url, error)`; `refs` is `None` whenever `error` is set.

### Smaller helpers

```python
from datetime import datetime, timedelta, timezone

from k8ssummary.quantity import human_quantity, to_bytes
from k8ssummary.timeutil import humanize_duration

human_quantity("8Gi")        # "8.00 GiB"
to_bytes("100Mi")            # 104857600.0
to_bytes("12xyz")            # None

start = datetime(2024, 1, 1, tzinfo=timezone.utc)
humanize_duration(start, start + timedelta(hours=26))   # "1d 2h"
```

`k8ssummary.cliutil` holds argument helpers:

- `pull_known_flags(argv)` moves `-dump`, `-nodes`, `-out` and
  `-galera-since` (with their values) ahead of positional arguments;
- `normalize_galera_since(text)` returns `""` for empty input, otherwise the
  instant as a UTC RFC 3339 string, and raises `ValueError` for anything that
  is not an RFC 3339 time;
- `default_report_name_from_archive(path)` gives
  `reports/<stem>-summary.html` for a `.tar.gz` / `.tgz` archive;
- `truncate_text(data, limit)` decodes bytes, cutting at `limit` bytes with a
  truncation note.

## What this package does not do

It has no command-line program and does not write an HTML report: it
produces the rows, and rendering them is left to the caller. It does not
unpack dump archives; point it at an already extracted directory. It does
not gather sections beyond nodes, pods, PXC clusters and backups, and does
not analyse Galera logs.

## Running the tests

Install the `test` extra and run pytest from the project root.