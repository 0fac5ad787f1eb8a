"""Data models, identifiers, configuration and reporting."""

from .config import ConfigManager, ConfigError
from .identifiers import IdentifierMapper, CLASS_SPECS, RAID_DIFFICULTIES
from .models import (
    Character,
    CharacterClass,
    DungeonRun,
    EntryKey,
    FetchOutcome,
    FetchTarget,
    Found,
    ManagedEntry,
    NotAvailable,
    Period,
    RaidEncounter,
    Selection,
    Settings,
    TransportError,
)
from .report import CategoryCounts, ReportBuilder, RunReport, TargetFailure

__all__ = [
    "CLASS_SPECS",
    "CategoryCounts",
    "Character",
    "CharacterClass",
    "ConfigError",
    "ConfigManager",
    "DungeonRun",
    "EntryKey",
    "FetchOutcome",
    "FetchTarget",
    "Found",
    "IdentifierMapper",
    "ManagedEntry",
    "NotAvailable",
    "Period",
    "RAID_DIFFICULTIES",
    "RaidEncounter",
    "ReportBuilder",
    "RunReport",
    "Selection",
    "Settings",
    "TargetFailure",
    "TransportError",
]
