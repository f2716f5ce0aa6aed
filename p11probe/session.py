"""
Session lifecycle and the object inspection passes.

A TokenSession moves CLOSED -> OPEN -> LOGGED_IN and back. Inspection runs a
fixed list of searches over the open session and reads a class specific set
of attributes for every object found.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Iterable, List, Mapping, Optional, Tuple

from .codec import (
    ALLOWED_MECHANISMS_ATTR,
    APPLICATION_ATTR,
    CERT_TYPE_ATTR,
    CLASS_ATTR,
    ID_ATTR,
    ISSUER_ATTR,
    KEY_GEN_MECHANISM_ATTR,
    KEY_TYPE_ATTR,
    LABEL_ATTR,
    OBJECT_ID_ATTR,
    SUBJECT_ATTR,
    VALUE_ATTR,
    AttributeResult,
    HandlerTable,
    dump_attributes,
    ulong_value,
)
from .constants import (
    CKA_CERTIFICATE_TYPE,
    CKA_CLASS,
    CKC_X_509,
    CKF_PROTECTED_AUTHENTICATION_PATH,
    CKF_SERIAL_SESSION,
    CKO_CERTIFICATE,
    CKO_DATA,
    CKO_PRIVATE_KEY,
    CKO_PUBLIC_KEY,
    CKO_VENDOR_DEFINED,
    CKR_FUNCTION_CANCELED,
    CKR_OK,
    CKU_SO,
    CKU_USER,
    ckr_name,
)
from .errors import AuthenticationError, OperationError, PinSourceError
from .finder import TemplateValue, find_objects
from .logging_config import StructuredLogger
from .pin import PinSource
from .provider import SessionInfo, TokenInfo, TokenProvider
from .utils import zero_buffer

logger = StructuredLogger("session")


class SessionState(enum.Enum):
    CLOSED = "closed"
    OPEN = "open"
    LOGGED_IN = "logged_in"


class TokenSession:
    """
    An open PKCS#11 session on one slot.

    Use as a context manager; the session is closed on the way out whatever
    state it is in.
    """

    def __init__(self, provider: TokenProvider, slot: int) -> None:
        self.provider = provider
        self.slot = slot
        self.handle: Optional[int] = None
        self.state = SessionState.CLOSED

    @classmethod
    def open(cls, provider: TokenProvider, slot: int, flags: int = CKF_SERIAL_SESSION) -> "TokenSession":
        session = cls(provider, slot)
        rv, handle = provider.open_session(slot, flags)
        if rv != CKR_OK:
            raise OperationError(rv, "C_OpenSession")
        session.handle = handle
        session.state = SessionState.OPEN
        logger.debug("Session opened", slot=slot, session=handle)
        return session

    def __enter__(self) -> "TokenSession":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _require(self, *states: SessionState) -> None:
        if self.state not in states:
            raise RuntimeError(f"session is {self.state.value}")

    def info(self) -> Optional[SessionInfo]:
        self._require(SessionState.OPEN, SessionState.LOGGED_IN)
        if not self.provider.supports("C_GetSessionInfo"):
            logger.warning("C_GetSessionInfo not supported by the module")
            return None
        rv, info = self.provider.get_session_info(self.handle)
        if rv != CKR_OK:
            logger.warning("C_GetSessionInfo failed", rv=ckr_name(rv))
            return None
        return info

    def login(
        self,
        pin_source: PinSource,
        token_info: Optional[TokenInfo] = None,
        user_type: int = CKU_USER,
    ) -> None:
        """
        Authenticate the session.

        With a protected authentication path (PIN pad, biometrics) the PIN
        source is never asked and C_Login gets no PIN at all. A failed login
        closes the session before AuthenticationError is raised.
        """
        self._require(SessionState.OPEN)
        try:
            rv = self._submit_login(pin_source, token_info, user_type)
        except PinSourceError as e:
            self.close()
            raise AuthenticationError(CKR_FUNCTION_CANCELED, "C_Login", str(e)) from e

        if rv != CKR_OK:
            self.close()
            raise AuthenticationError(rv, "C_Login")

        self.state = SessionState.LOGGED_IN
        logger.info("Logged in", session=self.handle)

    def _submit_login(self, pin_source: PinSource, token_info: Optional[TokenInfo], user_type: int) -> int:
        if token_info is not None and token_info.flags & CKF_PROTECTED_AUTHENTICATION_PATH:
            logger.info("Protected authentication path found, not prompting PIN")
            return self.provider.login(self.handle, user_type, None)

        prompt = "Enter admin PIN" if user_type == CKU_SO else "Enter PIN"
        pin = pin_source.get_pin(prompt)
        try:
            return self.provider.login(self.handle, user_type, pin)
        finally:
            zero_buffer(pin)

    def logout(self) -> None:
        self._require(SessionState.LOGGED_IN)
        if not self.provider.supports("C_Logout"):
            logger.warning("C_Logout not supported by the module")
        else:
            rv = self.provider.logout(self.handle)
            if rv != CKR_OK:
                logger.warning("C_Logout failed", rv=ckr_name(rv))
        self.state = SessionState.OPEN

    def close(self) -> None:
        if self.state is SessionState.CLOSED:
            return
        rv = self.provider.close_session(self.handle)
        if rv != CKR_OK:
            logger.warning("C_CloseSession failed", rv=ckr_name(rv))
        logger.debug("Session closed", session=self.handle)
        self.handle = None
        self.state = SessionState.CLOSED


# ─────────────────────────────────────────────
# Inspection passes
# ─────────────────────────────────────────────

DATA_TABLE: HandlerTable = (APPLICATION_ATTR, OBJECT_ID_ATTR, VALUE_ATTR)
CERTIFICATE_TABLE: HandlerTable = (CERT_TYPE_ATTR, ID_ATTR, VALUE_ATTR, SUBJECT_ATTR, ISSUER_ATTR)
KEY_TABLE: HandlerTable = (ID_ATTR, KEY_TYPE_ATTR, KEY_GEN_MECHANISM_ATTR, ALLOWED_MECHANISMS_ATTR, SUBJECT_ATTR)

CLASS_TABLES: Mapping[int, HandlerTable] = MappingProxyType({
    CKO_DATA: DATA_TABLE,
    CKO_CERTIFICATE: CERTIFICATE_TABLE,
    CKO_PUBLIC_KEY: KEY_TABLE,
    CKO_PRIVATE_KEY: KEY_TABLE,
})


@dataclass(frozen=True)
class SearchPass:
    name: str
    template: Tuple[Tuple[int, TemplateValue], ...]
    lead: HandlerTable
    tables: Mapping[int, HandlerTable] = field(default_factory=lambda: MappingProxyType({}))


def general_pass(object_class: Optional[int] = None) -> SearchPass:
    template = () if object_class is None else ((CKA_CLASS, object_class),)
    return SearchPass("objects", template, (CLASS_ATTR, LABEL_ATTR), CLASS_TABLES)


X509_CERTIFICATES = SearchPass(
    "X.509 certificates",
    ((CKA_CLASS, CKO_CERTIFICATE), (CKA_CERTIFICATE_TYPE, CKC_X_509)),
    (CLASS_ATTR,),
    MappingProxyType({CKO_CERTIFICATE: (CERT_TYPE_ATTR, ID_ATTR, VALUE_ATTR)}),
)
PUBLIC_KEYS = SearchPass("public keys", ((CKA_CLASS, CKO_PUBLIC_KEY),), (CLASS_ATTR, ID_ATTR))
PRIVATE_KEYS = SearchPass("private keys", ((CKA_CLASS, CKO_PRIVATE_KEY),), (CLASS_ATTR, ID_ATTR))
VENDOR_OBJECTS = SearchPass(
    "vendor defined objects",
    ((CKA_CLASS, CKO_VENDOR_DEFINED),),
    (CLASS_ATTR,),
    MappingProxyType({CKO_VENDOR_DEFINED: DATA_TABLE}),
)

FIXED_PASSES = (X509_CERTIFICATES, PUBLIC_KEYS, PRIVATE_KEYS, VENDOR_OBJECTS)


@dataclass
class ObjectReport:
    handle: int
    search: str
    object_class: Optional[int]
    attributes: List[AttributeResult] = field(default_factory=list)


@dataclass
class Inspection:
    """Everything the passes saw, in the order they saw it."""

    objects: List[ObjectReport] = field(default_factory=list)
    default_key: Optional[int] = None
    first_public_key: Optional[int] = None

    def handles(self, search: str) -> List[int]:
        return [report.handle for report in self.objects if report.search == search]


ObjectCallback = Callable[[int, ObjectReport], None]


def inspect_object(provider: TokenProvider, session: int, obj: int, search: SearchPass) -> ObjectReport:
    results = dump_attributes(provider, session, obj, search.lead)
    cls = ulong_value(results, CKA_CLASS)
    # without a readable class there is nothing to dispatch on
    if cls is not None:
        results += dump_attributes(provider, session, obj, search.tables.get(cls, ()))
    return ObjectReport(obj, search.name, cls, results)


def run_pass(
    session: TokenSession,
    search: SearchPass,
    handles: Optional[Iterable[int]] = None,
    on_object: Optional[ObjectCallback] = None,
) -> List[ObjectReport]:
    """
    Inspect every object ``search`` finds, or the given ``handles`` instead.

    A failing search raises OperationError; attribute failures on a single
    object are recorded in its report.
    """
    provider, handle = session.provider, session.handle
    if handles is None:
        handles = find_objects(provider, handle, search.template)

    reports = []
    for index, obj in enumerate(handles):
        report = inspect_object(provider, handle, obj, search)
        reports.append(report)
        if on_object is not None:
            on_object(index, report)
    logger.debug("Pass done", search=search.name, objects=len(reports))
    return reports


def inspect_objects(
    session: TokenSession,
    object_class: Optional[int] = None,
    selected_object: Optional[int] = None,
    on_object: Optional[ObjectCallback] = None,
    on_pass: Optional[Callable[[SearchPass], None]] = None,
) -> Inspection:
    """
    Run the general pass and then the fixed passes.

    ``selected_object`` replaces the general search with that single handle.
    The first private key seen becomes ``default_key``.
    """
    session._require(SessionState.OPEN, SessionState.LOGGED_IN)
    inspection = Inspection()
    general = general_pass(object_class)
    passes: List[Tuple[SearchPass, Optional[List[int]]]] = [
        (general, None if selected_object is None else [selected_object])
    ]
    passes += [(search, None) for search in FIXED_PASSES]

    for search, handles in passes:
        if on_pass is not None:
            on_pass(search)
        reports = run_pass(session, search, handles, on_object)
        inspection.objects += reports
        if search is PRIVATE_KEYS and reports and inspection.default_key is None:
            inspection.default_key = reports[0].handle
        if search is PUBLIC_KEYS and reports and inspection.first_public_key is None:
            inspection.first_public_key = reports[0].handle
    return inspection
