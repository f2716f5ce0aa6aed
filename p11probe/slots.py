"""Slot and mechanism discovery."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from .constants import CKR_BUFFER_TOO_SMALL, CKR_OK, ckr_name
from .errors import NoSlotsError, OperationError
from .logging_config import StructuredLogger
from .provider import MechanismInfo, SlotInfo, TokenInfo, TokenProvider

logger = StructuredLogger("slots")

# how often a fill call may report CKR_BUFFER_TOO_SMALL before giving up
MAX_LIST_RETRIES = 3


def _two_call_list(fetch: Callable[[Optional[int]], Tuple[int, int, List[int]]], operation: str) -> List[int]:
    rv, count, _ = fetch(None)
    if rv != CKR_OK:
        raise OperationError(rv, operation)

    for _ in range(MAX_LIST_RETRIES):
        if count == 0:
            return []
        rv, count, items = fetch(count)
        if rv == CKR_BUFFER_TOO_SMALL:
            logger.debug("List grew between calls", operation=operation, count=count)
            continue
        if rv != CKR_OK:
            raise OperationError(rv, f"Second call to {operation}")
        return items[:count]
    raise OperationError(CKR_BUFFER_TOO_SMALL, operation)


def list_slots(provider: TokenProvider, token_present: bool = True) -> List[int]:
    """Slot IDs, only those holding a token unless ``token_present`` is False."""
    return _two_call_list(lambda capacity: provider.get_slot_list(token_present, capacity), "C_GetSlotList")


def list_mechanisms(provider: TokenProvider, slot: int) -> Optional[List[int]]:
    if not provider.supports("C_GetMechanismList"):
        logger.warning("C_GetMechanismList not supported by the module")
        return None
    return _two_call_list(lambda capacity: provider.get_mechanism_list(slot, capacity), "C_GetMechanismList")


@dataclass(frozen=True)
class MechanismEntry:
    mechanism: int
    info: Optional[MechanismInfo]


def describe_mechanisms(provider: TokenProvider, slot: int, mechanisms: Sequence[int]) -> List[MechanismEntry]:
    """Attach C_GetMechanismInfo to each mechanism; a failed lookup leaves info empty."""
    supported = provider.supports("C_GetMechanismInfo")
    if not supported:
        logger.warning("C_GetMechanismInfo not supported by the module")

    entries = []
    for mech in mechanisms:
        info = None
        if supported:
            rv, info = provider.get_mechanism_info(slot, mech)
            if rv != CKR_OK:
                logger.warning("C_GetMechanismInfo failed", mechanism=mech, rv=ckr_name(rv))
                info = None
        entries.append(MechanismEntry(mech, info))
    return entries


def slot_info(provider: TokenProvider, slot: int) -> Optional[SlotInfo]:
    if not provider.supports("C_GetSlotInfo"):
        return None
    rv, info = provider.get_slot_info(slot)
    if rv != CKR_OK:
        logger.warning("C_GetSlotInfo failed", slot=slot, rv=ckr_name(rv))
        return None
    return info


def token_info(provider: TokenProvider, slot: int) -> Optional[TokenInfo]:
    if not provider.supports("C_GetTokenInfo"):
        logger.warning("C_GetTokenInfo not supported by the module")
        return None
    rv, info = provider.get_token_info(slot)
    if rv != CKR_OK:
        logger.warning("C_GetTokenInfo failed", slot=slot, rv=ckr_name(rv))
        return None
    return info


def select_slot(provider: TokenProvider, slots: Sequence[int], requested: Optional[int] = None) -> int:
    """
    The requested slot, or the first listed one.

    Modules without C_GetSlotInfo give us no way to check a slot, so the first
    one is taken on trust.
    """
    if not slots:
        raise NoSlotsError("No slots found")
    if requested is not None:
        if requested not in slots:
            logger.warning("Requested slot is not in the slot list", slot=requested)
        return requested
    if not provider.supports("C_GetSlotInfo"):
        logger.warning("C_GetSlotInfo is not available, assuming first slot is valid", slot=slots[0])
    return slots[0]
