"""
Signing with a token key and checking the result.

A signature made on the token is verified again with the public key that
shares the private key's CKA_ID. Externally supplied data/signature pairs
go through the same C_Verify path.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .codec import fetch_attribute
from .constants import (
    CKA_CLASS,
    CKA_ID,
    CKM_RSA_PKCS,
    CKO_PUBLIC_KEY,
    CKR_BUFFER_TOO_SMALL,
    CKR_FUNCTION_NOT_SUPPORTED,
    CKR_OK,
    CKR_SIGNATURE_INVALID,
    CKR_SIGNATURE_LEN_RANGE,
    ckm_name,
    ckr_name,
)
from .errors import KeyLookupError, OperationError, TokenError
from .finder import collect_objects
from .logging_config import StructuredLogger
from .provider import TokenProvider
from .utils import read_file, to_hex

logger = StructuredLogger("signing")

DEFAULT_MECHANISM = CKM_RSA_PKCS

REASON_OK = "ok"
REASON_SIGNATURE_INVALID = "signature_invalid"
REASON_VERIFY_NOT_SUPPORTED = "verify_not_supported"


@dataclass(frozen=True)
class VerificationResult:
    valid: bool
    reason: str


@dataclass(frozen=True)
class SignatureResult:
    signature: bytes
    verified: Optional[bool]
    reason: str
    public_key: Optional[int] = None

    @property
    def signature_hex(self) -> str:
        return to_hex(self.signature)


# ─────────────────────────────────────────────
# Primitives
# ─────────────────────────────────────────────

def sign(
    provider: TokenProvider,
    session: int,
    key: int,
    data: bytes,
    mechanism: int = DEFAULT_MECHANISM,
) -> bytes:
    """
    C_SignInit followed by the two-call C_Sign.

    The first C_Sign only asks for the signature length, so the operation is
    still active for the second one.
    """
    rv = provider.sign_init(session, mechanism, key)
    if rv != CKR_OK:
        raise OperationError(rv, "C_SignInit", ckm_name(mechanism))

    rv, size = provider.sign(session, data, None)
    if rv != CKR_OK:
        raise OperationError(rv, "C_Sign")

    buffer = bytearray(size)
    rv, size = provider.sign(session, data, buffer)
    if rv == CKR_BUFFER_TOO_SMALL:
        buffer = bytearray(size)
        rv, size = provider.sign(session, data, buffer)
    if rv != CKR_OK:
        raise OperationError(rv, "Second call to C_Sign")

    signature = bytes(buffer[:size])
    logger.info("Signed", key=key, mechanism=ckm_name(mechanism), length=len(signature))
    return signature


def verify_signature(
    provider: TokenProvider,
    session: int,
    key: int,
    data: bytes,
    signature: bytes,
    mechanism: int = DEFAULT_MECHANISM,
) -> VerificationResult:
    """
    A signature that does not match is a result, not an error. Anything else
    the token complains about raises OperationError.
    """
    rv = provider.verify_init(session, mechanism, key)
    if rv != CKR_OK:
        raise OperationError(rv, "C_VerifyInit", ckm_name(mechanism))

    rv = provider.verify(session, data, signature)
    if rv == CKR_OK:
        return VerificationResult(True, REASON_OK)
    if rv in (CKR_SIGNATURE_INVALID, CKR_SIGNATURE_LEN_RANGE):
        logger.warning("Signature does not match", key=key, rv=ckr_name(rv))
        return VerificationResult(False, REASON_SIGNATURE_INVALID)
    raise OperationError(rv, "C_Verify")


def can_verify(provider: TokenProvider) -> bool:
    return provider.supports("C_VerifyInit") and provider.supports("C_Verify")


# ─────────────────────────────────────────────
# Key lookup
# ─────────────────────────────────────────────

def find_public_key(provider: TokenProvider, session: int, key: int) -> int:
    """
    The one public key sharing ``key``'s CKA_ID.

    Raises KeyLookupError when there is none or more than one.
    """
    try:
        key_id = fetch_attribute(provider, session, key, CKA_ID)
    except TokenError as e:
        raise OperationError(e.rv, e.operation, "CKA_ID") from e
    if key_id is None:
        raise KeyLookupError(b"", 0)

    matches = collect_objects(provider, session, ((CKA_ID, key_id), (CKA_CLASS, CKO_PUBLIC_KEY)))
    if len(matches) != 1:
        raise KeyLookupError(key_id, len(matches))
    return matches[0]


# ─────────────────────────────────────────────
# Workflows
# ─────────────────────────────────────────────

def sign_and_verify(
    provider: TokenProvider,
    session: int,
    key: int,
    payload: bytes,
    mechanism: int = DEFAULT_MECHANISM,
) -> SignatureResult:
    """
    Sign ``payload`` with ``key``, then verify the signature with the public
    key that has the same CKA_ID.

    The counterpart key is looked up before any verify call, so a missing or
    ambiguous key never reaches C_VerifyInit.
    """
    signature = sign(provider, session, key, payload, mechanism)

    if not can_verify(provider):
        logger.warning("C_Verify not supported by the module, skipping verification")
        return SignatureResult(signature, None, REASON_VERIFY_NOT_SUPPORTED)

    public_key = find_public_key(provider, session, key)
    result = verify_signature(provider, session, public_key, payload, signature, mechanism)
    return SignatureResult(signature, result.valid, result.reason, public_key)


def verify_files(
    provider: TokenProvider,
    session: int,
    key: int,
    data_path: str | Path,
    signature_path: str | Path,
    mechanism: int = DEFAULT_MECHANISM,
) -> VerificationResult:
    """Check a detached signature file against a data file."""
    if not can_verify(provider):
        raise OperationError(CKR_FUNCTION_NOT_SUPPORTED, "C_Verify")
    data = read_file(data_path)
    signature = read_file(signature_path)
    logger.debug("Verifying", data=str(data_path), signature=str(signature_path), length=len(signature))
    return verify_signature(provider, session, key, data, signature, mechanism)
