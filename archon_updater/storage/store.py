"""Reader/writer for the addon's SavedVariables build table."""

import os
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from archon_updater.data.models import ManagedEntry, Settings
from archon_updater.storage.lua import (
    LuaField,
    LuaReader,
    LuaSyntaxError,
    LuaTable,
    format_key,
    format_value,
)
from archon_updater.utils.errors import ParseError, SchemaError, WriteError
from archon_updater.utils.logger import get_logger


SEPARATORS = (",", ";")


@dataclass
class OpaqueEntry:
    """A field the updater does not own; written back exactly as read."""
    raw: str


@dataclass
class TriviaEntry:
    """
    Comments left behind by a removed managed entry.

    `raw` runs up to, but not including, the last line break of the removed
    entry's leading text; `newline` is that line break, restored when the
    following text does not already start a new line.
    """
    raw: str
    newline: str = ""


Entry = Union[OpaqueEntry, ManagedEntry, TriviaEntry]


@dataclass
class PersistedDocument:
    """
    A SavedVariables file split around the build table.

    ``prefix + entries + tail + suffix`` reproduces the file: `prefix` runs
    up to and including the table's ``{``, `tail` is the trivia before its
    ``}``, and `suffix` is the ``}`` plus everything after it.
    """
    prefix: str
    entries: List[Entry] = field(default_factory=list)
    tail: str = ""
    suffix: str = ""
    path: Optional[str] = None
    indent: str = "\t"

    @property
    def managed(self) -> List[ManagedEntry]:
        return [e for e in self.entries if isinstance(e, ManagedEntry)]

    @property
    def opaque(self) -> List[OpaqueEntry]:
        return [e for e in self.entries if isinstance(e, OpaqueEntry)]

    def find(self, label: str) -> Optional[ManagedEntry]:
        for entry in self.entries:
            if isinstance(entry, ManagedEntry) and entry.label == label:
                return entry
        return None


class PersistedStore:
    """
    Loads, edits and writes the build table of a SavedVariables file.

    Entries whose string key ends with the label marker are managed; every
    other entry, and all text outside the build table, is kept verbatim.

    Placement: opaque entries keep their relative order, a replaced managed
    entry keeps its position, and new managed entries are appended after
    the last existing entry. Removing a managed entry keeps any comments
    written before it.
    """

    def __init__(self, settings: Optional[Settings] = None):
        """
        Initialize store.

        Args:
            settings: Table name, label marker and write options
        """
        self.settings = settings or Settings()
        self.table_name = self.settings.table_name
        self.marker = self.settings.label_marker
        self.log = get_logger()

    # ========== Loading ==========

    def load(self, path: Union[str, Path]) -> PersistedDocument:
        """
        Load a SavedVariables file.

        Args:
            path: File to read

        Returns:
            Parsed document

        Raises:
            ParseError: If the file cannot be read or is not valid Lua
            SchemaError: If the build table is missing or malformed
        """
        path = Path(path)

        if not path.exists():
            if self.settings.create_if_missing:
                self.log.info(f"{path} does not exist, starting a new document")
                return self.new_document(path)
            raise ParseError(path, "file not found")

        try:
            with open(path, "r", encoding="utf-8", errors="surrogateescape", newline="") as f:
                text = f.read()
        except OSError as e:
            raise ParseError(path, "cannot read file", e)

        doc = self.parse(text, path)
        self.log.info(
            f"Loaded {path}: {len(doc.managed)} managed, "
            f"{len(doc.opaque)} other entries"
        )
        return doc

    def new_document(self, path: Union[str, Path, None] = None) -> PersistedDocument:
        """Create an empty document holding only the build table."""
        return self.parse(f"\n{self.table_name} = {{\n}}\n", path)

    def parse(self, text: str, path: Union[str, Path, None] = None) -> PersistedDocument:
        """
        Parse SavedVariables text.

        Args:
            text: File contents
            path: File path, used in error messages

        Returns:
            Parsed document

        Raises:
            ParseError: If the text is not a valid Lua literal chunk
            SchemaError: If the build table is missing, assigned twice or
                not a table
        """
        try:
            statements = LuaReader(text).parse_chunk()
        except LuaSyntaxError as e:
            raise ParseError(path, "not a valid Lua data file", e)

        matching = [s for s in statements if s.name == self.table_name]
        if not matching:
            raise SchemaError(path, f"no top-level '{self.table_name}' table")
        if len(matching) > 1:
            raise SchemaError(path, f"'{self.table_name}' is assigned {len(matching)} times")

        table = matching[0].value
        if not isinstance(table, LuaTable):
            raise SchemaError(
                path, f"'{self.table_name}' is a {type(table).__name__}, not a table"
            )

        doc = PersistedDocument(
            prefix=text[:table.start + 1],
            path=str(path) if path is not None else None,
        )

        boundary = table.start + 1
        for lua_field in table.fields:
            raw = text[boundary:lua_field.end]
            leading = text[boundary:lua_field.start]
            if self._is_managed_key(lua_field):
                doc.entries.append(self._parse_managed(lua_field, raw, leading))
            else:
                doc.entries.append(OpaqueEntry(raw=raw))
            boundary = lua_field.end

        doc.tail = text[boundary:table.end - 1]
        doc.suffix = text[table.end - 1:]

        if table.fields:
            doc.indent = self._detect_indent(text[table.start + 1:table.fields[0].start])
        return doc

    def _is_managed_key(self, lua_field: LuaField) -> bool:
        return (
            not lua_field.positional
            and isinstance(lua_field.key, str)
            and lua_field.key.endswith(self.marker)
        )

    def _parse_managed(self, lua_field: LuaField, raw: str, leading: str) -> ManagedEntry:
        value = lua_field.value
        build_code = None
        extra = {}

        if isinstance(value, LuaTable):
            data = value.to_python()
            if isinstance(data, dict):
                code = data.pop("code", None)
                build_code = code if isinstance(code, str) else None
                extra = data
        elif isinstance(value, str):
            build_code = value

        return ManagedEntry(
            label=lua_field.key,
            build_code=build_code,
            fields=extra,
            raw=raw,
            leading=leading,
        )

    @staticmethod
    def _detect_indent(leading: str) -> str:
        if "\n" not in leading:
            return "\t"
        indent = leading.rsplit("\n", 1)[1]
        return indent if indent and not indent.strip() else "\t"

    # ========== Editing ==========

    def clear_managed(self, doc: PersistedDocument) -> int:
        """
        Remove every managed entry.

        Args:
            doc: Document to edit

        Returns:
            Number of entries removed
        """
        indices = [i for i, e in enumerate(doc.entries) if isinstance(e, ManagedEntry)]
        self._remove_entries(doc, indices)
        if indices:
            self.log.info(f"Cleared {len(indices)} managed entries")
        return len(indices)

    def _remove_entries(self, doc: PersistedDocument, indices: List[int]) -> None:
        """Remove managed entries, keeping any comments in their leading text."""
        for i in sorted(indices, reverse=True):
            kept = self._kept_trivia(doc.entries[i].leading)
            if kept is None:
                del doc.entries[i]
            else:
                doc.entries[i] = kept

    @staticmethod
    def _kept_trivia(leading: str) -> Optional[TriviaEntry]:
        # Leading text is only whitespace and comments, so "--" starts a comment
        if "--" not in leading:
            return None
        end = leading.rfind("\n")
        if end < 0 or leading[end + 1:].strip():
            return TriviaEntry(raw=leading)
        cut = end - 1 if end > 0 and leading[end - 1] == "\r" else end
        return TriviaEntry(raw=leading[:cut], newline=leading[cut:end + 1])

    def upsert(self, doc: PersistedDocument, entry: ManagedEntry) -> bool:
        """
        Insert a managed entry or replace the one with the same label.

        A replaced entry keeps its position and leading whitespace; any
        further entries with the same label are dropped.

        Args:
            doc: Document to edit
            entry: Entry to store (label must end with the marker)

        Returns:
            True if a new entry was added, False if one was replaced
        """
        if not entry.label.endswith(self.marker):
            raise ValueError(f"label {entry.label!r} does not end with {self.marker!r}")

        indices = [
            i for i, e in enumerate(doc.entries)
            if isinstance(e, ManagedEntry) and e.label == entry.label
        ]

        if not indices:
            doc.entries.append(ManagedEntry(
                label=entry.label,
                build_code=entry.build_code,
                fields=dict(entry.fields),
            ))
            return True

        old = doc.entries[indices[0]]
        doc.entries[indices[0]] = ManagedEntry(
            label=entry.label,
            build_code=entry.build_code,
            fields=dict(entry.fields),
            leading=old.leading,
        )
        self._remove_entries(doc, indices[1:])
        return False

    # ========== Writing ==========

    def render_entry(self, doc: PersistedDocument, entry: Entry) -> str:
        """Text of one entry, including its leading trivia."""
        if entry.raw is not None:
            return entry.raw

        leading = entry.leading or "\n" + doc.indent
        body = {"code": entry.build_code}
        body.update(entry.fields)
        unit = doc.indent
        return f"{leading}{format_key(entry.label)} = {format_value(body, doc.indent, unit)},"

    def serialize(self, doc: PersistedDocument) -> bytes:
        """
        Produce the file contents for a document.

        Unedited entries are emitted from their original text. When an
        entry without a trailing separator is followed by another one, a
        comma is added after it. Comments kept from removed entries are
        emitted as-is and end their line before the next field.

        Args:
            doc: Document to serialize

        Returns:
            UTF-8 encoded file contents
        """
        fields = [i for i, e in enumerate(doc.entries) if not isinstance(e, TriviaEntry)]
        last_field = fields[-1] if fields else -1

        texts = []
        for i, entry in enumerate(doc.entries):
            text = self.render_entry(doc, entry)
            if i < last_field and i in fields and not text.endswith(SEPARATORS):
                text += ","
            texts.append(text)

        tail = doc.tail
        if doc.entries and doc.entries[-1].raw is None and "\n" not in tail:
            tail = "\n" + tail
        texts.append(tail)

        for i, entry in enumerate(doc.entries):
            if isinstance(entry, TriviaEntry) and not texts[i + 1].startswith(("\n", "\r")):
                texts[i] += entry.newline

        return "".join([doc.prefix] + texts + [doc.suffix]).encode("utf-8", errors="surrogateescape")

    def save(self, doc: PersistedDocument, path: Union[str, Path, None] = None) -> Path:
        """
        Write a document atomically.

        The new contents go to a temporary file next to the target which
        then replaces it, so the target is either fully old or fully new.

        Args:
            doc: Document to write
            path: Target file (defaults to the path it was loaded from)

        Returns:
            Path written

        Raises:
            WriteError: If serialization or any filesystem step fails
        """
        target = Path(path if path is not None else (doc.path or ""))
        if not str(target) or target.name == "":
            raise WriteError(None, "no output path given")

        try:
            data = self.serialize(doc)
        except (TypeError, ValueError) as e:
            raise WriteError(target, "could not serialize document", e)

        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(
                prefix=f".{target.name}.",
                suffix=".tmp",
                dir=str(target.parent),
            )
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())

            if self.settings.backup and target.exists():
                shutil.copy2(target, target.with_name(target.name + ".bak"))

            os.replace(tmp_path, target)
            tmp_path = None
        except OSError as e:
            raise WriteError(target, "could not write data file", e)
        finally:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.remove(tmp_path)

        self.log.info(f"Wrote {len(data)} bytes to {target}")
        return target
