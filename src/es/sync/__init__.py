"""Sync pipeline, run-lock and interval scheduler."""
