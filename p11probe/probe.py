"""
One complete probe run against a loaded module.

initialize -> library info -> slots -> token -> mechanisms -> session ->
login -> inspection -> exports -> sign/verify -> logout -> close -> finalize
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .config import ProbeConfig
from .constants import CKR_CRYPTOKI_ALREADY_INITIALIZED, CKR_OK, ckr_name
from .errors import InitializationError, ProbeError
from .export import export_attributes
from .logging_config import StructuredLogger
from .pin import PinSource, PromptPinSource, StaticPinSource
from .provider import LibraryInfo, TokenProvider
from .report import ConsoleReporter, build_report, write_report
from .session import Inspection, SessionState, TokenSession, inspect_objects
from .signing import SignatureResult, VerificationResult, sign_and_verify, verify_files
from .slots import (
    describe_mechanisms,
    list_mechanisms,
    list_slots,
    select_slot,
    slot_info,
    token_info,
)

logger = StructuredLogger("probe")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INITIALIZE = 2
EXIT_MISMATCH = 3


@dataclass
class ProbeResult:
    exit_code: int = EXIT_OK
    slot: Optional[int] = None
    inspection: Optional[Inspection] = None
    signatures: List[SignatureResult] = field(default_factory=list)
    verification: Optional[VerificationResult] = None
    report: Dict[str, Any] = field(default_factory=dict)

    @property
    def mismatch(self) -> bool:
        if self.verification is not None and not self.verification.valid:
            return True
        return any(s.verified is False for s in self.signatures)


def exit_code_for(error: BaseException) -> int:
    if isinstance(error, InitializationError):
        return EXIT_INITIALIZE
    return EXIT_FAILURE


def default_pin_source(config: ProbeConfig) -> PinSource:
    if config.pin is not None:
        return StaticPinSource(config.pin.get_secret_value())
    return PromptPinSource()


def _library_info(provider: TokenProvider) -> Optional[LibraryInfo]:
    if not provider.supports("C_GetInfo"):
        logger.warning("C_GetInfo not supported by the module")
        return None
    rv, info = provider.get_info()
    if rv != CKR_OK:
        logger.warning("C_GetInfo failed", rv=ckr_name(rv))
        return None
    return info


def run_probe(
    provider: TokenProvider,
    config: ProbeConfig,
    reporter: Optional[ConsoleReporter] = None,
    pin_source: Optional[PinSource] = None,
) -> ProbeResult:
    """
    Drive the module through a full probe.

    Raises ProbeError subclasses for anything fatal. The session is closed and
    C_Finalize issued on every path once C_Initialize has succeeded.
    """
    reporter = reporter or ConsoleReporter()
    pin_source = pin_source or default_pin_source(config)

    rv = provider.initialize()
    if rv == CKR_CRYPTOKI_ALREADY_INITIALIZED:
        logger.warning("Module was already initialized")
    elif rv != CKR_OK:
        raise InitializationError(rv, "C_Initialize")

    try:
        return _probe(provider, config, reporter, pin_source)
    finally:
        rv = provider.finalize()
        if rv != CKR_OK:
            logger.warning("C_Finalize failed", rv=ckr_name(rv))


def _probe(
    provider: TokenProvider,
    config: ProbeConfig,
    reporter: ConsoleReporter,
    pin_source: PinSource,
) -> ProbeResult:
    result = ProbeResult()

    library = _library_info(provider)
    if library is not None:
        reporter.library(library)

    slots = list_slots(provider, token_present=config.require_token)
    reporter.slots(slots)
    slot = select_slot(provider, slots, config.slot)
    result.slot = slot

    sinfo = slot_info(provider, slot)
    if sinfo is not None:
        reporter.slot(slot, sinfo)
    tinfo = token_info(provider, slot)
    if tinfo is not None:
        reporter.token(tinfo)

    mechanisms = list_mechanisms(provider, slot)
    entries = describe_mechanisms(provider, slot, mechanisms) if mechanisms else []
    if mechanisms is not None:
        reporter.mechanisms(entries)

    with TokenSession.open(provider, slot) as session:
        info = session.info()
        if info is not None:
            reporter.session(info)

        if config.login:
            session.login(pin_source, tinfo)
        else:
            logger.info("Skipping C_Login")

        inspection = inspect_objects(
            session,
            object_class=config.object_class,
            selected_object=config.object,
            on_object=reporter.object,
            on_pass=reporter.search,
        )
        result.inspection = inspection

        if config.exports:
            export_attributes(
                provider,
                session.handle,
                slot,
                config.exports,
                inspection.handles("objects"),
                on_write=reporter.exported,
            )

        payload = config.sign_payload
        if payload is not None:
            key = config.object if config.object is not None else inspection.default_key
            if key is None:
                raise ProbeError("No private key found, can't sign")
            signature = sign_and_verify(provider, session.handle, key, payload, config.mechanism)
            reporter.signature(signature)
            result.signatures.append(signature)

        if config.verify_requested:
            key = config.object if config.object is not None else inspection.first_public_key
            if key is None:
                raise ProbeError("No public key found, can't verify")
            verification = verify_files(
                provider,
                session.handle,
                key,
                config.verify_data,
                config.verify_signature,
                config.mechanism,
            )
            reporter.verification(verification)
            result.verification = verification

        if session.state is SessionState.LOGGED_IN:
            session.logout()

    result.report = build_report(
        library=library,
        slot=slot,
        slot_info=sinfo,
        token=tinfo,
        mechanisms=entries,
        inspection=result.inspection,
        signatures=result.signatures,
        verification=result.verification,
    )
    if config.report is not None:
        write_report(config.report, result.report)
        logger.info("Report written", path=str(config.report))

    if result.mismatch:
        result.exit_code = EXIT_MISMATCH
    return result
