"""Operator console for a Docker Compose document-management stack."""

__version__ = "0.1.0"
