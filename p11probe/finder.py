"""Object search: C_FindObjectsInit / C_FindObjects / C_FindObjectsFinal."""

from __future__ import annotations

from typing import Iterable, Iterator, List, Tuple, Union

from .constants import CKR_OK, ckr_name
from .errors import OperationError, check_rv
from .logging_config import StructuredLogger
from .provider import TokenProvider
from .utils import pack_ulong

logger = StructuredLogger("finder")

DEFAULT_BATCH_SIZE = 10

TemplateValue = Union[bool, int, bytes, str]


def encode_template(pairs: Iterable[Tuple[int, TemplateValue]]) -> List[Tuple[int, bytes]]:
    """
    Turn ``(attribute, value)`` pairs into raw search template entries.

    ``bool`` becomes a CK_BBOOL, ``int`` a CK_ULONG, ``str`` is UTF-8.
    """
    template = []
    for attribute, value in pairs:
        if isinstance(value, bool):
            raw = b"\x01" if value else b"\x00"
        elif isinstance(value, int):
            raw = pack_ulong(value)
        elif isinstance(value, str):
            raw = value.encode("utf-8")
        else:
            raw = bytes(value)
        template.append((attribute, raw))
    return template


def find_objects(
    provider: TokenProvider,
    session: int,
    template: Iterable[Tuple[int, TemplateValue]] = (),
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> Iterator[int]:
    """
    Yield the handles of all objects matching ``template``.

    The search is started lazily on the first ``next()``. C_FindObjectsFinal
    is issued exactly once for every successful init, also when a batch
    fails or the caller closes the generator early. The generator cannot be
    restarted; search again for a fresh pass.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be positive")

    encoded = encode_template(template)
    check_rv(provider.find_objects_init(session, encoded), "C_FindObjectsInit", OperationError)

    try:
        while True:
            rv, batch = provider.find_objects(session, batch_size)
            check_rv(rv, "C_FindObjects", OperationError)
            logger.debug("Found objects", count=len(batch))
            if not batch:
                break
            yield from batch
    finally:
        rv = provider.find_objects_final(session)
        if rv != CKR_OK:
            logger.warning("Error finalizing Finding Objects", rv=ckr_name(rv))


def collect_objects(
    provider: TokenProvider,
    session: int,
    template: Iterable[Tuple[int, TemplateValue]] = (),
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> List[int]:
    return list(find_objects(provider, session, template, batch_size))
