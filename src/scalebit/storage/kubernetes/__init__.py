"""Kubernetes implementation of the resource store."""
