"""Persistent per-student store and the reconciliation engine."""
