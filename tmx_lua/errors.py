"""
Exception hierarchy for the TMX to Lua exporter.

Only ExportError is meant to be handled by callers: it reports a failure to
produce the output file. TableWriterError and GidMapperError mean that the
traversal or the map graph is broken and should not be caught.
"""


class TmxLuaError(Exception):
    """Base class for every error raised by this package."""


class ExportError(TmxLuaError):
    """The destination file could not be written or committed."""


class TmxLoadError(TmxLuaError):
    """A TMX/TSX file is malformed or uses an unsupported feature."""


class TableWriterError(TmxLuaError):
    """Unbalanced or misplaced table writer calls."""


class GidMapperError(TmxLuaError):
    """A tile reference points to a tileset that was never registered."""
