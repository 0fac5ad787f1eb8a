"""Archon build updater - keeps addon talent builds in sync with Archon.gg."""

__version__ = "0.1.0"
