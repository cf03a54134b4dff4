"""Collaborator store interfaces and implementations."""

from .base import AlertLogStore, CheckLogStore, IncidentStore, TargetSource, TenantSettingsStore
from .memory import MemoryAlertLog, MemoryCheckLog, MemoryIncidentStore, MemoryTargetSource, MemoryTenantSettings
from .sqlite import SqliteAlertLog, SqliteCheckLog, SqliteDatabase, SqliteIncidentStore
from .yaml_source import YamlTargetSource

__all__ = [
    "AlertLogStore",
    "CheckLogStore",
    "IncidentStore",
    "MemoryAlertLog",
    "MemoryCheckLog",
    "MemoryIncidentStore",
    "MemoryTargetSource",
    "MemoryTenantSettings",
    "SqliteAlertLog",
    "SqliteCheckLog",
    "SqliteDatabase",
    "SqliteIncidentStore",
    "TargetSource",
    "TenantSettingsStore",
    "YamlTargetSource",
]
