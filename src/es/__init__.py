"""enrollment-sync: reconcile course orders into per-student enrollment records."""

__version__ = "0.1.0"
