"""Write raw attribute values to files (``--dump-attr``)."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .codec import fetch_attribute
from .config import AttributeExport
from .constants import cka_name
from .errors import TokenError
from .logging_config import StructuredLogger
from .provider import TokenProvider

logger = StructuredLogger("export")

ExportCallback = Callable[[Path, int, str], None]


def export_attribute(
    provider: TokenProvider,
    session: int,
    slot: int,
    obj: int,
    export: AttributeExport,
    on_write: Optional[ExportCallback] = None,
) -> Optional[Path]:
    """
    Fetch one attribute and write it to the expanded template path.

    Returns the path written, or None when the value could not be read or
    the file could not be written.
    """
    name = cka_name(export.attribute)
    try:
        value = fetch_attribute(provider, session, obj, export.attribute)
    except TokenError as e:
        logger.warning("Attribute export failed", object=obj, attribute=name, rv=e.name)
        return None
    if value is None:
        logger.warning("Attribute unavailable, nothing exported", object=obj, attribute=name)
        return None

    path = export.path_for(obj, slot)
    try:
        path.write_bytes(value)
    except OSError as e:
        logger.warning("Could not write attribute", object=obj, attribute=name, path=str(path), error=str(e))
        return None

    if on_write is not None:
        on_write(path, len(value), f"{export.attribute:x} ({name})")
    logger.info("Exported attribute", object=obj, attribute=name, path=str(path), length=len(value))
    return path


def export_attributes(
    provider: TokenProvider,
    session: int,
    slot: int,
    exports: Sequence[AttributeExport],
    default_objects: Sequence[int],
    on_write: Optional[ExportCallback] = None,
) -> List[Path]:
    """
    Run every export; one without an object goes to each of ``default_objects``.
    """
    written = []
    for export in exports:
        targets = [export.object] if export.object is not None else list(default_objects)
        for obj in targets:
            path = export_attribute(provider, session, slot, obj, export, on_write)
            if path is not None:
                written.append(path)
    return written
