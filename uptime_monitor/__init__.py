"""Uptime monitoring core: scheduled probes, incident lifecycle and alert fan-out."""

__version__ = "0.1.0"
