"""
Incremental writer for Lua table constructors.

=============================================================================
OUTPUT SHAPE
=============================================================================

The writer produces a single returned table:

    return {
      version = "1.1",
      backgroundcolor = { 255, 200, 100, },
      properties = {
        ["my key"] = "value",
      },
      layers = {
        {
          data = {
            { 1, 1, 0, },
          },
        },
      },
    }

Rules:
- two spaces of indentation per open table
- every entry, including the last one of a table, ends with a comma
- the returned root table is the only one not followed by a comma
- with newlines suppressed, entries are separated by a single space and
  the closing brace stays on the same line
- an empty table is written as {}

=============================================================================
STATE
=============================================================================

The writer only tracks structure: a stack with one flag per open table
(has anything been written into it yet), the suppress-newlines mode and a
pending forced line break. Callers declare intent (open, close, key/value,
positional value) and never write raw text.

Unbalanced calls raise TableWriterError. Those are bugs in the caller, so
nothing tries to recover from them.
=============================================================================
"""

import math
import numbers
import re
from typing import Any, List, Optional, TextIO

from ..errors import TableWriterError
from ..model import Color

INDENT = "  "

LUA_KEYWORDS = frozenset({
    "and", "break", "do", "else", "elseif", "end", "false", "for",
    "function", "goto", "if", "in", "local", "nil", "not", "or", "repeat",
    "return", "then", "true", "until", "while",
})

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def is_identifier(key: str) -> bool:
    """True if key can be written as a bare Lua table key."""
    return bool(_IDENTIFIER_RE.match(key)) and key not in LUA_KEYWORDS


def quote(text: str) -> str:
    """
    Quote a string as a Lua double-quoted literal.

    Backslash, double quote, newline and carriage return get their usual
    escapes; other control characters use decimal escapes (\\ddd), so the
    literal never spans several lines.
    """
    parts = ['"']
    for char in text:
        if char == '\\':
            parts.append('\\\\')
        elif char == '"':
            parts.append('\\"')
        elif char == '\n':
            parts.append('\\n')
        elif char == '\r':
            parts.append('\\r')
        elif ord(char) < 32 or ord(char) == 127:
            parts.append('\\%03d' % ord(char))
        else:
            parts.append(char)
    parts.append('"')
    return ''.join(parts)


def format_number(value: float) -> str:
    # Lua has no literals for these
    if math.isnan(value):
        return "0/0"
    if math.isinf(value):
        return "math.huge" if value > 0 else "-math.huge"
    if value.is_integer() and abs(value) < 1e15:
        return str(int(value))
    return repr(value)


def format_value(value: Any) -> str:
    """
    Format a scalar as a Lua expression.

    bool must be tested before the numeric types since it is an int.
    Colors end up as "#aarrggbb" strings here; use
    LuaTableWriter.write_color() for the numeric table form.
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, numbers.Integral):
        return str(int(value))
    if isinstance(value, numbers.Real):
        return format_number(float(value))
    if isinstance(value, str):
        return quote(value)
    if isinstance(value, Color):
        return quote(value.name(include_alpha=True))
    raise TypeError(f"Cannot write {type(value).__name__} value to a Lua table")


# =============================================================================
# WRITER
# =============================================================================

class LuaTableWriter:
    """
    Stateful emitter of nested Lua tables.

    Parameters:
    -----------
    device : TextIO
        Anything with a write(str) method (open file, io.StringIO, ...)

    Usage:
    ------
        writer = LuaTableWriter(stream)
        writer.write_start_document()
        writer.write_start_table()            # return {
        writer.write_key_and_value("width", 10)
        writer.write_start_table("data")
        writer.set_suppress_newlines(True)
        writer.write_value(1)
        writer.write_value(2)
        writer.write_end_table()
        writer.set_suppress_newlines(False)
        writer.write_end_table()
        writer.write_end_document()
    """

    def __init__(self, device: TextIO):
        self.device = device
        self._open_tables: List[bool] = []   # One "has entries" flag per table
        self._suppress_newlines = False
        self._newline_pending = False
        self._document_started = False
        self._root_written = False

    @property
    def depth(self) -> int:
        return len(self._open_tables)

    @property
    def suppress_newlines(self) -> bool:
        return self._suppress_newlines

    # -----------------------------------------------------------------
    # DOCUMENT
    # -----------------------------------------------------------------

    def write_start_document(self):
        if self._document_started:
            raise TableWriterError("Document already started")
        self._document_started = True

    def write_end_document(self):
        if self._open_tables:
            raise TableWriterError(
                f"Document ended with {len(self._open_tables)} table(s) still open"
            )
        self._write('\n')
        self._document_started = False

    # -----------------------------------------------------------------
    # TABLES
    # -----------------------------------------------------------------

    def write_start_table(self, key: Optional[str] = None):
        """
        Open a table.

        Without a key at depth 0 this is the returned root table
        ("return {"); without a key deeper down it is a positional element;
        with a key it is written as "key = {".
        """
        if not self._open_tables and key is None:
            if not self._document_started or self._root_written:
                raise TableWriterError("Root table must be the only table of the document")
            self._root_written = True
            self._write("return {")
        elif key is None:
            self._begin_entry()
            self._write("{")
        else:
            self._check_key(key)
            self._begin_entry()
            self._write(f"{key} = {{")
        self._open_tables.append(False)

    def write_quoted_start_table(self, key: str):
        """Open a table under a key that may not be a valid identifier."""
        self._begin_entry()
        self._write(f"[{quote(key)}] = {{")
        self._open_tables.append(False)

    def write_end_table(self):
        if not self._open_tables:
            raise TableWriterError("write_end_table() called with no open table")
        has_entries = self._open_tables.pop()
        if has_entries:
            self._separate()
        self._newline_pending = False
        self._write("}")
        if self._open_tables:
            self._write(",")
            self._open_tables[-1] = True

    # -----------------------------------------------------------------
    # ENTRIES
    # -----------------------------------------------------------------

    def write_key_and_value(self, key: str, value: Any):
        self._check_key(key)
        self._begin_entry()
        self._write(f"{key} = {format_value(value)},")
        self._open_tables[-1] = True

    def write_quoted_key_and_value(self, key: str, value: Any):
        self._begin_entry()
        self._write(f"[{quote(key)}] = {format_value(value)},")
        self._open_tables[-1] = True

    def write_value(self, value: Any):
        """Append a positional element to the current table."""
        self._begin_entry()
        self._write(f"{format_value(value)},")
        self._open_tables[-1] = True

    def write_color(self, key: str, color: Color):
        """
        Write a color as an inline table: { r, g, b } or { r, g, b, a }.

        The alpha channel is only written when the color is not opaque.
        """
        self.write_start_table(key)
        previous = self._suppress_newlines
        self._suppress_newlines = True
        self.write_value(color.red)
        self.write_value(color.green)
        self.write_value(color.blue)
        if color.alpha != 255:
            self.write_value(color.alpha)
        self.write_end_table()
        self._suppress_newlines = previous

    # -----------------------------------------------------------------
    # FORMATTING MODES
    # -----------------------------------------------------------------

    def set_suppress_newlines(self, suppress: bool):
        """Keep the following entries on the current line."""
        self._suppress_newlines = suppress

    def prepare_new_line(self):
        """Force a line break before the next token, even when suppressed."""
        self._newline_pending = True

    # -----------------------------------------------------------------
    # INTERNALS
    # -----------------------------------------------------------------

    def _begin_entry(self):
        if not self._open_tables:
            raise TableWriterError("Entries must be written inside a table")
        self._separate()

    def _separate(self):
        # The indentation always matches the number of open tables, so this
        # must run after popping when closing a table.
        if self._newline_pending or not self._suppress_newlines:
            self._write('\n' + INDENT * len(self._open_tables))
        else:
            self._write(' ')
        self._newline_pending = False

    def _check_key(self, key: str):
        if not is_identifier(key):
            raise TableWriterError(f"{key!r} is not a valid bare Lua key")

    def _write(self, text: str):
        self.device.write(text)
