"""
Human readable output on a rich Console, and the canonical JSON inventory.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import rfc8785  # JCS canonicalization
from rich.console import Console
from rich.table import Table
from rich.text import Text

from .constants import (
    MECHANISM_FLAGS,
    SESSION_FLAGS,
    SLOT_FLAGS,
    TOKEN_FLAGS,
    ckm_name,
    cko_name,
)
from .provider import LibraryInfo, SessionInfo, SlotInfo, TokenInfo
from .session import Inspection, ObjectReport, SearchPass
from .signing import SignatureResult, VerificationResult
from .slots import MechanismEntry
from .utils import render_flags

_SESSION_STATES = {
    0: "Read-only public session",
    1: "Read-only user functions",
    2: "Read/write public session",
    3: "Read/write user functions",
    4: "Read/write SO functions",
}


class ConsoleReporter:
    """Prints each stage of a probe run as it happens."""

    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console or Console(highlight=False)

    def _line(self, text: str) -> None:
        # token supplied strings may contain brackets
        self.console.print(text, markup=False)

    def _fields(self, title: str, rows: Sequence[tuple]) -> None:
        # token supplied strings are never markup
        table = Table(title=Text(title), show_header=False, title_justify="left")
        table.add_column("Field", style="bold")
        table.add_column("Value")
        for name, value in rows:
            table.add_row(name, Text(str(value)))
        self.console.print(table)

    def library(self, info: LibraryInfo) -> None:
        self._fields("Library", [
            ("Cryptoki version", info.cryptoki_version),
            ("Manufacturer", info.manufacturer_id),
            ("Flags", f"{info.flags:#x}"),
            ("Library description", info.library_description),
            ("Library version", info.library_version),
        ])

    def slots(self, slots: Sequence[int]) -> None:
        self._line(f"Slots: {', '.join(str(s) for s in slots)}")

    def slot(self, slot: int, info: SlotInfo) -> None:
        self._fields(f"Slot {slot}", [
            ("Description", info.slot_description),
            ("Manufacturer", info.manufacturer_id),
            ("Flags", render_flags(SLOT_FLAGS, info.flags)),
            ("Hardware version", info.hardware_version),
            ("Firmware version", info.firmware_version),
        ])

    def token(self, info: TokenInfo) -> None:
        self._fields("Token", [
            ("Label", info.label),
            ("Manufacturer", info.manufacturer_id),
            ("Model", info.model),
            ("Serial number", info.serial_number),
            ("Flags", render_flags(TOKEN_FLAGS, info.flags)),
            ("Sessions", f"{info.session_count}/{info.max_session_count}"),
            ("R/W sessions", f"{info.rw_session_count}/{info.max_rw_session_count}"),
            ("PIN length", f"{info.min_pin_len}-{info.max_pin_len}"),
            ("Public memory", f"{info.free_public_memory}/{info.total_public_memory}"),
            ("Private memory", f"{info.free_private_memory}/{info.total_private_memory}"),
            ("Hardware version", info.hardware_version),
            ("Firmware version", info.firmware_version),
            ("UTC time", info.utc_time),
        ])

    def mechanisms(self, entries: Sequence[MechanismEntry]) -> None:
        table = Table(title=f"Mechanisms ({len(entries)})", title_justify="left")
        table.add_column("Mechanism")
        table.add_column("Key size")
        table.add_column("Flags")
        for entry in entries:
            if entry.info is None:
                table.add_row(Text(ckm_name(entry.mechanism)), "-", "-")
            else:
                table.add_row(
                    Text(ckm_name(entry.mechanism)),
                    f"{entry.info.min_key_size}-{entry.info.max_key_size}",
                    Text(render_flags(MECHANISM_FLAGS, entry.info.flags)),
                )
        self.console.print(table)

    def session(self, info: SessionInfo) -> None:
        self._fields("Session", [
            ("Slot", info.slot_id),
            ("State", _SESSION_STATES.get(info.state, f"Unknown state: {info.state}")),
            ("Flags", render_flags(SESSION_FLAGS, info.flags)),
            ("Device error", f"{info.device_error:#x}"),
        ])

    def search(self, search: SearchPass) -> None:
        self.console.rule(Text(search.name), align="left")

    def object(self, index: int, report: ObjectReport) -> None:
        self._line(f"Object {index} (handle {report.handle})")
        for result in report.attributes:
            self._line(f"  {result.render()}")

    def exported(self, path: Path, size: int, attribute: str) -> None:
        self._line(f'Writing {size} bytes to "{path}" for attribute {attribute}')

    def signature(self, result: SignatureResult) -> None:
        self._line(f"Signature: {result.signature_hex}")
        if result.verified is None:
            self._line("Verification skipped: not supported by the module")
        elif result.verified:
            self._line(f"Signature verified with public key {result.public_key}")
        else:
            self._line(f"Signature did NOT verify with public key {result.public_key}")

    def verification(self, result: VerificationResult) -> None:
        if result.valid:
            self._line("Signature verified")
        else:
            self._line("Signature did NOT verify")


# ─────────────────────────────────────────────
# JSON inventory
# ─────────────────────────────────────────────

# I-JSON only allows integers up to 2**53 - 1
_MAX_JSON_INT = 2**53 - 1


def _json_value(value: Any) -> Any:
    if isinstance(value, int) and not 0 <= value <= _MAX_JSON_INT:
        return str(value)
    if isinstance(value, (int, str)) or value is None:
        return value
    return str(value)


def _info_dict(info: Any) -> Optional[Dict[str, Any]]:
    if info is None:
        return None
    return {name: _json_value(value) for name, value in vars(info).items()}


def _object_dict(report: ObjectReport) -> Dict[str, Any]:
    return {
        "handle": _json_value(report.handle),
        "search": report.search,
        "class": None if report.object_class is None else cko_name(report.object_class),
        "attributes": [
            {"label": r.handler.label, "status": r.status, "value": r.value}
            for r in report.attributes
        ],
    }


def build_report(
    library: Optional[LibraryInfo] = None,
    slot: Optional[int] = None,
    slot_info: Optional[SlotInfo] = None,
    token: Optional[TokenInfo] = None,
    mechanisms: Sequence[MechanismEntry] = (),
    inspection: Optional[Inspection] = None,
    signatures: Sequence[SignatureResult] = (),
    verification: Optional[VerificationResult] = None,
) -> Dict[str, Any]:
    signed: List[Dict[str, Any]] = [
        {
            "signature": s.signature_hex,
            "verified": s.verified,
            "reason": s.reason,
            "public_key": _json_value(s.public_key),
        }
        for s in signatures
    ]
    return {
        "library": _info_dict(library),
        "slot": _json_value(slot),
        "slot_info": _info_dict(slot_info),
        "token": _info_dict(token),
        "mechanisms": [ckm_name(entry.mechanism) for entry in mechanisms],
        "objects": [] if inspection is None else [_object_dict(r) for r in inspection.objects],
        "signatures": signed,
        "verification": None if verification is None else {
            "valid": verification.valid,
            "reason": verification.reason,
        },
    }


def canonical_report(report: Dict[str, Any]) -> bytes:
    """RFC 8785 bytes; identical tokens give identical files."""
    return rfc8785.dumps(report)


def write_report(path: Path, report: Dict[str, Any]) -> None:
    Path(path).write_bytes(canonical_report(report))
