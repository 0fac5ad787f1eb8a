"""Span-preserving reader and writer for Lua literal chunks.

WoW SavedVariables files are a sequence of ``Name = <constructor>``
statements built from strings, numbers, booleans, nil and nested table
constructors. The reader decodes values and records the character offsets
of every statement and table field so callers can splice the original text
back together untouched.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


_NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_HEX_NUMBER_RE = re.compile(r"0[xX](?:[0-9a-fA-F]+(?:\.[0-9a-fA-F]*)?|\.[0-9a-fA-F]+)(?:[pP][+-]?[0-9]+)?")
_DEC_NUMBER_RE = re.compile(r"(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+)(?:[eE][+-]?[0-9]+)?")
_WHITESPACE_RE = re.compile(r"[ \t\r\n\f\v\ufeff]+")
_LONG_OPEN_RE = re.compile(r"\[(=*)\[")

KEYWORDS = frozenset({
    "and", "break", "do", "else", "elseif", "end", "false", "for", "function",
    "goto", "if", "in", "local", "nil", "not", "or", "repeat", "return",
    "then", "true", "until", "while",
})

_SIMPLE_ESCAPES = {
    "a": b"\a", "b": b"\b", "f": b"\f", "n": b"\n", "r": b"\r",
    "t": b"\t", "v": b"\v", "\\": b"\\", '"': b'"', "'": b"'",
}


class LuaSyntaxError(Exception):
    """Text is not a valid Lua literal chunk."""

    def __init__(self, message: str, text: str, pos: int):
        self.pos = pos
        self.line = text.count("\n", 0, pos) + 1
        self.column = pos - (text.rfind("\n", 0, pos) + 1) + 1
        self.message = message
        super().__init__(f"line {self.line}, column {self.column}: {message}")


@dataclass
class LuaTable:
    """A decoded table constructor with the spans of its fields."""
    fields: List["LuaField"] = field(default_factory=list)
    start: int = 0      # offset of '{'
    end: int = 0        # offset just past '}'

    def get(self, key: Any, default: Any = None) -> Any:
        """Value of the last field with this key (Lua semantics)."""
        value = default
        for f in self.fields:
            if not f.positional and f.key == key:
                value = f.value
        return value

    def to_python(self) -> Any:
        """Convert to plain dicts/lists (positional-only tables become lists)."""
        if self.fields and all(f.positional for f in self.fields):
            return [_to_python(f.value) for f in self.fields]
        result: Dict[Any, Any] = {}
        for f in self.fields:
            result[f.key] = _to_python(f.value)
        return result


def _to_python(value: Any) -> Any:
    return value.to_python() if isinstance(value, LuaTable) else value


@dataclass
class LuaField:
    """One field of a table constructor."""
    key: Any
    value: Any
    positional: bool
    start: int              # first character of the field
    value_start: int
    value_end: int
    end: int                # past the separator if there is one
    has_separator: bool = False


@dataclass
class LuaAssignment:
    """A top-level ``Name = value`` statement."""
    name: str
    value: Any
    start: int
    value_start: int
    value_end: int
    end: int


class LuaReader:
    """Recursive-descent reader over a Lua literal chunk."""

    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    # ========== Entry Points ==========

    def parse_chunk(self) -> List[LuaAssignment]:
        """
        Read every top-level assignment.

        Returns:
            Assignments in source order

        Raises:
            LuaSyntaxError: If the text is not a valid literal chunk
        """
        statements: List[LuaAssignment] = []
        while True:
            self.skip_trivia()
            if self.pos >= len(self.text):
                return statements
            if self._peek() == ";":
                self.pos += 1
                continue

            start = self.pos
            name = self.read_name()
            if name == "local":
                self.skip_trivia()
                name = self.read_name()
            if name in KEYWORDS:
                raise self._error(f"unexpected keyword '{name}'", start)

            self.skip_trivia()
            self._expect("=")
            self.skip_trivia()
            value_start = self.pos
            value = self.read_value()
            statements.append(LuaAssignment(
                name=name,
                value=value,
                start=start,
                value_start=value_start,
                value_end=self.pos,
                end=self.pos,
            ))

    def parse_value(self) -> Any:
        """Read a single value spanning the whole text."""
        self.skip_trivia()
        value = self.read_value()
        self.skip_trivia()
        if self.pos < len(self.text):
            raise self._error("unexpected text after value")
        return value

    # ========== Lexical Helpers ==========

    def _peek(self, offset: int = 0) -> str:
        index = self.pos + offset
        return self.text[index] if index < len(self.text) else ""

    def _error(self, message: str, pos: Optional[int] = None) -> LuaSyntaxError:
        return LuaSyntaxError(message, self.text, self.pos if pos is None else pos)

    def _expect(self, char: str) -> None:
        if self._peek() != char:
            found = self._peek() or "end of file"
            raise self._error(f"expected '{char}', found '{found}'")
        self.pos += 1

    def skip_trivia(self) -> None:
        """Skip whitespace and comments."""
        text = self.text
        while self.pos < len(text):
            match = _WHITESPACE_RE.match(text, self.pos)
            if match:
                self.pos = match.end()
                continue
            if text.startswith("--", self.pos):
                self.pos += 2
                long_open = _LONG_OPEN_RE.match(text, self.pos)
                if long_open:
                    self._read_long_bracket()
                else:
                    newline = text.find("\n", self.pos)
                    self.pos = len(text) if newline < 0 else newline + 1
                continue
            return

    def read_name(self) -> str:
        match = _NAME_RE.match(self.text, self.pos)
        if not match:
            found = self._peek() or "end of file"
            raise self._error(f"expected a name, found '{found}'")
        self.pos = match.end()
        return match.group(0)

    # ========== Values ==========

    def read_value(self) -> Any:
        """Read a literal value or table constructor."""
        char = self._peek()
        if char == "{":
            return self.read_table()
        if char in ("'", '"'):
            return self.read_string()
        if char == "[" and _LONG_OPEN_RE.match(self.text, self.pos):
            return self._read_long_bracket()
        if char == "-":
            self.pos += 1
            self.skip_trivia()
            number = self.read_number()
            return -number
        if char.isdigit() or (char == "." and self._peek(1).isdigit()):
            return self.read_number()

        start = self.pos
        if _NAME_RE.match(self.text, self.pos):
            name = self.read_name()
            if name == "true":
                return True
            if name == "false":
                return False
            if name == "nil":
                return None
            raise self._error(f"unexpected name '{name}' in data", start)

        found = char or "end of file"
        raise self._error(f"unexpected '{found}'")

    def read_number(self) -> Any:
        match = _HEX_NUMBER_RE.match(self.text, self.pos)
        if match:
            self.pos = match.end()
            literal = match.group(0)
            if "." in literal or "p" in literal.lower():
                return float.fromhex(literal)
            return int(literal, 16)

        match = _DEC_NUMBER_RE.match(self.text, self.pos)
        if not match:
            raise self._error("malformed number")
        self.pos = match.end()
        literal = match.group(0)
        if any(c in literal for c in ".eE"):
            return float(literal)
        return int(literal)

    def read_string(self) -> str:
        """Read a quoted string, decoding escapes."""
        text = self.text
        quote = text[self.pos]
        start = self.pos
        self.pos += 1
        out = bytearray()

        while True:
            if self.pos >= len(text):
                raise self._error("unfinished string", start)
            char = text[self.pos]

            if char == quote:
                self.pos += 1
                return out.decode("utf-8", errors="surrogateescape")
            if char == "\n":
                raise self._error("unfinished string", start)
            if char != "\\":
                out += char.encode("utf-8", errors="surrogateescape")
                self.pos += 1
                continue

            self.pos += 1
            esc = self._peek()
            if esc in _SIMPLE_ESCAPES:
                out += _SIMPLE_ESCAPES[esc]
                self.pos += 1
            elif esc in ("\n", "\r"):
                out += b"\n"
                self.pos += 1
                # \r\n and \n\r count as one line break
                if self._peek() in ("\n", "\r") and self._peek() != esc:
                    self.pos += 1
            elif esc == "x":
                digits = text[self.pos + 1:self.pos + 3]
                if len(digits) != 2 or not all(c in "0123456789abcdefABCDEF" for c in digits):
                    raise self._error("hexadecimal digit expected")
                out.append(int(digits, 16))
                self.pos += 3
            elif esc == "z":
                self.pos += 1
                match = _WHITESPACE_RE.match(text, self.pos)
                if match:
                    self.pos = match.end()
            elif esc.isdigit():
                digits = ""
                while len(digits) < 3 and self._peek().isdigit():
                    digits += self._peek()
                    self.pos += 1
                value = int(digits)
                if value > 255:
                    raise self._error("decimal escape too large")
                out.append(value)
            elif esc == "u":
                close = text.find("}", self.pos)
                if self._peek(1) != "{" or close < 0:
                    raise self._error("malformed unicode escape")
                try:
                    codepoint = int(text[self.pos + 2:close], 16)
                    out += chr(codepoint).encode("utf-8", errors="surrogatepass")
                except ValueError:
                    raise self._error("malformed unicode escape")
                self.pos = close + 1
            else:
                raise self._error(f"invalid escape sequence '\\{esc}'")

    def _read_long_bracket(self) -> str:
        match = _LONG_OPEN_RE.match(self.text, self.pos)
        if not match:
            raise self._error("expected long bracket")
        start = self.pos
        closing = "]" + match.group(1) + "]"
        body_start = match.end()
        # A newline right after the opening bracket is not part of the string
        if self.text.startswith("\r\n", body_start):
            body_start += 2
        elif self.text.startswith("\n", body_start):
            body_start += 1
        end = self.text.find(closing, body_start)
        if end < 0:
            raise self._error("unfinished long string or comment", start)
        self.pos = end + len(closing)
        return self.text[body_start:end]

    def read_table(self) -> LuaTable:
        """Read a table constructor, recording field spans."""
        table = LuaTable(start=self.pos)
        self._expect("{")
        positional_index = 0

        while True:
            self.skip_trivia()
            if self._peek() == "}":
                self.pos += 1
                table.end = self.pos
                return table
            if not self._peek():
                raise self._error("unfinished table constructor", table.start)

            field_start = self.pos
            key, positional = self._read_field_key()
            if positional:
                positional_index += 1
                key = positional_index

            self.skip_trivia()
            value_start = self.pos
            value = self.read_value()
            value_end = self.pos

            # Trivia before a separator belongs to this field; trivia before
            # the closing brace belongs to the table
            self.skip_trivia()
            has_separator = self._peek() in (",", ";")
            if has_separator:
                self.pos += 1
                field_end = self.pos
            else:
                field_end = value_end
                if self._peek() != "}":
                    raise self._error("expected ',' or '}' after table field")

            table.fields.append(LuaField(
                key=key,
                value=value,
                positional=positional,
                start=field_start,
                value_start=value_start,
                value_end=value_end,
                end=field_end,
                has_separator=has_separator,
            ))
            if not has_separator:
                self.pos = value_end

    def _read_field_key(self) -> Tuple[Any, bool]:
        """Read ``[key] =`` or ``name =``; returns (None, True) for positional fields."""
        char = self._peek()

        if char == "[" and not _LONG_OPEN_RE.match(self.text, self.pos):
            self.pos += 1
            self.skip_trivia()
            key = self.read_value()
            self.skip_trivia()
            self._expect("]")
            self.skip_trivia()
            self._expect("=")
            return key, False

        match = _NAME_RE.match(self.text, self.pos)
        if match and match.group(0) not in KEYWORDS:
            saved = self.pos
            self.pos = match.end()
            self.skip_trivia()
            if self._peek() == "=" and self._peek(1) != "=":
                self.pos += 1
                return match.group(0), False
            self.pos = saved

        return None, True


# ========== Writing ==========


def quote_string(value: str) -> str:
    """Quote a string as a Lua double-quoted literal."""
    out = ['"']
    for char in value:
        if char == "\\":
            out.append("\\\\")
        elif char == '"':
            out.append('\\"')
        elif char == "\n":
            out.append("\\n")
        elif char == "\r":
            out.append("\\r")
        elif char == "\t":
            out.append("\\t")
        elif ord(char) < 32 or ord(char) == 127:
            out.append(f"\\{ord(char):03d}")
        else:
            out.append(char)
    out.append('"')
    return "".join(out)


def format_key(key: Any) -> str:
    """Format a table key the way WoW writes SavedVariables."""
    if isinstance(key, str):
        return f"[{quote_string(key)}]"
    return f"[{format_value(key)}]"


def format_value(value: Any, indent: str = "", unit: str = "\t") -> str:
    """
    Format a Python value as a Lua literal.

    Args:
        value: str, int, float, bool, None, dict or list
        indent: Indentation of the line the value starts on
        unit: One level of indentation

    Returns:
        Lua source text
    """
    if value is None:
        return "nil"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            raise ValueError(f"cannot write non-finite number {value!r}")
        return repr(value)
    if isinstance(value, str):
        return quote_string(value)
    if isinstance(value, dict):
        if not value:
            return "{\n" + indent + "}"
        inner = indent + unit
        lines = [
            f"{inner}{format_key(k)} = {format_value(v, inner, unit)},\n"
            for k, v in value.items()
        ]
        return "{\n" + "".join(lines) + indent + "}"
    if isinstance(value, (list, tuple)):
        inner = indent + unit
        lines = [
            f"{inner}{format_value(v, inner, unit)}, -- [{i}]\n"
            for i, v in enumerate(value, start=1)
        ]
        return "{\n" + "".join(lines) + indent + "}"
    raise TypeError(f"cannot format {type(value).__name__} as Lua")
