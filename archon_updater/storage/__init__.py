"""SavedVariables reading and writing."""

from .lua import LuaReader, LuaSyntaxError, LuaTable, format_value, quote_string
from .store import OpaqueEntry, PersistedDocument, PersistedStore, TriviaEntry

__all__ = [
    "LuaReader",
    "LuaSyntaxError",
    "LuaTable",
    "OpaqueEntry",
    "PersistedDocument",
    "PersistedStore",
    "TriviaEntry",
    "format_value",
    "quote_string",
]
