"""Incident lifecycle management."""

from .manager import IncidentManager

__all__ = ["IncidentManager"]
