"""
Attribute retrieval and decoding.

Attribute values come back from the token as opaque byte buffers; the
handler tables below say how each one should be read. Every fetch follows
the size-then-fill convention of C_GetAttributeValue.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional, Sequence, Tuple

from .constants import (
    CK_UNAVAILABLE_INFORMATION,
    CKA_ALLOWED_MECHANISMS,
    CKA_APPLICATION,
    CKA_CERTIFICATE_TYPE,
    CKA_CLASS,
    CKA_ID,
    CKA_ISSUER,
    CKA_KEY_GEN_MECHANISM,
    CKA_KEY_TYPE,
    CKA_LABEL,
    CKA_OBJECT_ID,
    CKA_SUBJECT,
    CKA_VALUE,
    CKC_WTLS,
    CKC_X_509,
    CKC_X_509_ATTR_CERT,
    CKK_AES,
    CKK_DES3,
    CKK_DH,
    CKK_DSA,
    CKK_EC,
    CKK_EC_EDWARDS,
    CKK_EC_MONTGOMERY,
    CKK_GENERIC_SECRET,
    CKK_RSA,
    CKR_OK,
    ULONG_SIZE,
    cko_name,
    ckm_name,
)
from .errors import AttributeLengthError, TokenError
from .logging_config import StructuredLogger
from .provider import TokenProvider
from .utils import stringify, to_hex, unpack_ulong, unpack_ulongs, zero_buffer

logger = StructuredLogger("codec")

Decoder = Callable[[bytes], str]

STATUS_OK = "ok"
STATUS_UNAVAILABLE = "unavailable"
STATUS_ERROR = "error"
STATUS_LENGTH_MISMATCH = "length_mismatch"


# ─────────────────────────────────────────────
# Decoders
# ─────────────────────────────────────────────

def _expect(data: bytes, width: int) -> None:
    if len(data) != width:
        raise AttributeLengthError(len(data), width)


def hexify(data: bytes) -> str:
    return to_hex(data)


def string(data: bytes) -> str:
    return stringify(data)


def length(data: bytes) -> str:
    return f"{len(data)} bytes"


def boolean(data: bytes) -> str:
    _expect(data, 1)
    return "True" if data[0] else "False"


def object_class(data: bytes) -> str:
    _expect(data, ULONG_SIZE)
    return cko_name(unpack_ulong(data))


_CERTIFICATE_TYPES = {
    CKC_X_509: "X.509 Certificate",
    CKC_WTLS: "WTLS Certificate",
    CKC_X_509_ATTR_CERT: "X.509 Attribute Certificate",
}


def certificate_type(data: bytes) -> str:
    _expect(data, ULONG_SIZE)
    value = unpack_ulong(data)
    return _CERTIFICATE_TYPES.get(value, f"Unknown certificate type: {value:#x}")


_KEY_TYPES = {
    CKK_RSA: "RSA Key",
    CKK_DSA: "DSA Key",
    CKK_DH: "DH Key",
    CKK_EC: "EC Key",
    CKK_GENERIC_SECRET: "Generic Secret Key",
    CKK_DES3: "DES3 Key",
    CKK_AES: "AES Key",
    CKK_EC_EDWARDS: "EdDSA Key",
    CKK_EC_MONTGOMERY: "Montgomery EC Key",
}


def key_type(data: bytes) -> str:
    _expect(data, ULONG_SIZE)
    value = unpack_ulong(data)
    return _KEY_TYPES.get(value, f"Unknown key type: {value:#x}")


def mechanism(data: bytes) -> str:
    _expect(data, ULONG_SIZE)
    return ckm_name(unpack_ulong(data))


def mechanism_list(data: bytes) -> str:
    if len(data) % ULONG_SIZE != 0:
        raise AttributeLengthError(len(data), ULONG_SIZE, multiple=True)
    return ", ".join(ckm_name(m) for m in unpack_ulongs(data))


# ─────────────────────────────────────────────
# Handler tables
# ─────────────────────────────────────────────

@dataclass(frozen=True)
class AttributeHandler:
    attribute: int
    label: str
    decode: Decoder


CLASS_ATTR = AttributeHandler(CKA_CLASS, "Object class", object_class)
LABEL_ATTR = AttributeHandler(CKA_LABEL, "Label", string)
ID_ATTR = AttributeHandler(CKA_ID, "Key Identifier", hexify)
CERT_TYPE_ATTR = AttributeHandler(CKA_CERTIFICATE_TYPE, "Certificate Type", certificate_type)
VALUE_ATTR = AttributeHandler(CKA_VALUE, "Object value", length)
APPLICATION_ATTR = AttributeHandler(CKA_APPLICATION, "Application Description", string)
OBJECT_ID_ATTR = AttributeHandler(CKA_OBJECT_ID, "Object ID", hexify)
KEY_GEN_MECHANISM_ATTR = AttributeHandler(CKA_KEY_GEN_MECHANISM, "Key Generation Mechanism", mechanism)
ALLOWED_MECHANISMS_ATTR = AttributeHandler(CKA_ALLOWED_MECHANISMS, "Allowed Mechanisms", mechanism_list)
SUBJECT_ATTR = AttributeHandler(CKA_SUBJECT, "Subject name", hexify)
ISSUER_ATTR = AttributeHandler(CKA_ISSUER, "Certificate issuer", hexify)
KEY_TYPE_ATTR = AttributeHandler(CKA_KEY_TYPE, "Key type", key_type)

HandlerTable = Tuple[AttributeHandler, ...]


# ─────────────────────────────────────────────
# Retrieval
# ─────────────────────────────────────────────

@dataclass(frozen=True)
class AttributeResult:
    handler: AttributeHandler
    status: str
    value: str
    raw: Optional[bytes] = None
    rv: int = CKR_OK

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK

    def render(self) -> str:
        return f"{self.handler.label}: {self.value}"


@contextmanager
def attribute_buffer(size: int) -> Iterator[bytearray]:
    """A zero-filled buffer that is wiped again however the block exits."""
    buffer = bytearray(size)
    try:
        yield buffer
    finally:
        zero_buffer(buffer)


def fetch_attribute(provider: TokenProvider, session: int, obj: int, attribute: int) -> Optional[bytes]:
    """
    Two-call C_GetAttributeValue. Returns None when the token reports the
    value as unavailable; raises TokenError on any other failure.
    """
    rv, size = provider.get_attribute_value(session, obj, attribute, None)
    if rv != CKR_OK:
        raise TokenError(rv, "C_GetAttributeValue")
    if size == CK_UNAVAILABLE_INFORMATION:
        return None

    with attribute_buffer(size) as buffer:
        rv, size = provider.get_attribute_value(session, obj, attribute, buffer)
        if rv != CKR_OK:
            raise TokenError(rv, "Second call to C_GetAttributeValue")
        if size == CK_UNAVAILABLE_INFORMATION:
            return None
        return bytes(buffer[:size])


def read_attribute(provider: TokenProvider, session: int, obj: int, handler: AttributeHandler) -> AttributeResult:
    try:
        raw = fetch_attribute(provider, session, obj, handler.attribute)
    except TokenError as e:
        logger.warning("Attribute read failed", object=obj, attribute=handler.label, rv=e.name)
        return AttributeResult(handler, STATUS_ERROR, f"{e.operation} returned {e.name}", rv=e.rv)

    if raw is None:
        return AttributeResult(handler, STATUS_UNAVAILABLE, "Information Unavailable")

    try:
        return AttributeResult(handler, STATUS_OK, handler.decode(raw), raw)
    except AttributeLengthError as e:
        logger.warning("Attribute length mismatch", object=obj, attribute=handler.label, got=e.got)
        return AttributeResult(handler, STATUS_LENGTH_MISMATCH, str(e), raw)


def dump_attributes(
    provider: TokenProvider, session: int, obj: int, handlers: Sequence[AttributeHandler]
) -> List[AttributeResult]:
    """Read every handler's attribute in order; one failure never stops the rest."""
    return [read_attribute(provider, session, obj, handler) for handler in handlers]


def ulong_value(results: Sequence[AttributeResult], attribute: int) -> Optional[int]:
    """The CK_ULONG read for ``attribute``, if it was read successfully."""
    for result in results:
        if result.handler.attribute == attribute and result.ok and result.raw is not None:
            return unpack_ulong(result.raw)
    return None
