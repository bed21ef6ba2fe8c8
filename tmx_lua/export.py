"""
Entry points for writing a map to a .lua file.

write_lua_map() never leaves a half-written file behind: the table is
rendered into a temporary file next to the destination, which replaces the
destination only once everything has been written and flushed.
"""

import io
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional, Union

from .errors import ExportError
from .lua.options import ExportOptions
from .lua.serializer import MapSerializer
from .model import TiledMap

logger = logging.getLogger(__name__)

NAME_FILTER = "Lua files (*.lua)"
FILE_EXTENSION = ".lua"
DEFAULT_FILE_MODE = 0o644


def supports_file(file_name: Union[str, Path]) -> bool:
    return Path(file_name).suffix.lower() == FILE_EXTENSION


def render_lua_map(tiled_map: TiledMap, map_dir: Union[str, Path] = ".",
                   options: Optional[ExportOptions] = None) -> str:
    """
    Return the Lua source for a map, without touching the filesystem.

    map_dir is the directory the file references are made relative to.
    """
    buffer = io.StringIO()
    MapSerializer(map_dir, options).serialize(tiled_map, buffer)
    return buffer.getvalue()


def write_lua_map(tiled_map: TiledMap, file_name: Union[str, Path],
                  options: Optional[ExportOptions] = None):
    """
    Write a map to file_name.

    Raises:
    -------
    ExportError : The file could not be created, written or committed.
        An existing file at file_name is left untouched.

    TableWriterError and GidMapperError are not caught: they mean the map
    (or the traversal) is inconsistent, and nothing was committed either.
    """
    file_name = Path(file_name)
    map_dir = file_name.parent
    serializer = MapSerializer(os.path.abspath(map_dir), options)

    try:
        handle, temp_name = tempfile.mkstemp(
            prefix=f".{file_name.name}.", suffix=".tmp", dir=map_dir)
    except OSError as e:
        raise ExportError(f"Could not open file for writing: {e.strerror or e}") from e

    committed = False
    try:
        try:
            with os.fdopen(handle, "w", encoding="utf-8", newline="\n") as f:
                serializer.serialize(tiled_map, f)
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            raise ExportError(f"Could not write {file_name}: {e.strerror or e}") from e

        try:
            # mkstemp creates the file readable by its owner only
            if file_name.exists():
                shutil.copymode(file_name, temp_name)
            else:
                os.chmod(temp_name, DEFAULT_FILE_MODE)
            os.replace(temp_name, file_name)
        except OSError as e:
            raise ExportError(f"Could not save {file_name}: {e.strerror or e}") from e
        committed = True
    finally:
        if not committed:
            try:
                os.unlink(temp_name)
            except OSError:
                logger.warning("Could not remove temporary file %s", temp_name)

    logger.info("Wrote %s", file_name)
