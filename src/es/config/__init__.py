"""Configuration and secret retrieval."""
