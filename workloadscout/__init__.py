"""Cluster workload discovery, service identity resolution, reconciliation against registered services, and informer wiring."""

__version__ = "0.1.0"