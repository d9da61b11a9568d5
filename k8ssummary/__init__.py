"""Report rows from Kubernetes cluster dumps: nodes, PXC clusters, pods and backups."""

__version__ = "0.1.0"