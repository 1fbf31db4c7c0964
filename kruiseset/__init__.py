"""Targeted edits to workload and RBAC manifests: images, resources, selectors,
service accounts and role binding subjects."""

__version__ = "0.1.0"