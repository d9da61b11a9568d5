[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "k8ssummary"
version = "0.1.0"
description = "Summarise Kubernetes cluster dumps: nodes, Percona XtraDB Cluster resources, pods and backups."
requires-python = ">=3.10"
dependencies = [
    "pyyaml",
]
keywords = [
    "kubernetes",
    "k8s",
    "percona",
    "xtradb",
    "pxc",
    "cluster-dump",
    "report",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Systems Administration",
    "Topic :: Database",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["k8ssummary"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
