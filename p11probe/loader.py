"""
ctypes binding to a PKCS#11 shared object.

The module is opened with ``ctypes.CDLL`` and every call goes through the
``CK_FUNCTION_LIST`` returned by ``C_GetFunctionList``, so functions the
module leaves NULL are reported as unsupported instead of failing the load.
"""

from __future__ import annotations

import ctypes
import sys
from ctypes import POINTER, byref, c_ubyte, c_ulong, c_void_p
from typing import List, Optional, Tuple

from .constants import CKR_FUNCTION_NOT_SUPPORTED, CKR_OK, ckr_name
from .errors import ProviderUnavailable
from .logging_config import StructuredLogger
from .provider import (
    LibraryInfo,
    MechanismInfo,
    SessionInfo,
    SlotInfo,
    Template,
    TokenInfo,
    TokenProvider,
    Version,
)
from .utils import stringify

logger = StructuredLogger("loader")

CK_ULONG = c_ulong
CK_RV = c_ulong
CK_BBOOL = c_ubyte


class _Structure(ctypes.Structure):
    # Cryptoki structures are byte packed on Windows
    if sys.platform == "win32":
        _pack_ = 1


class CK_VERSION(_Structure):
    _fields_ = [("major", c_ubyte), ("minor", c_ubyte)]


class CK_INFO(_Structure):
    _fields_ = [
        ("cryptokiVersion", CK_VERSION),
        ("manufacturerID", c_ubyte * 32),
        ("flags", CK_ULONG),
        ("libraryDescription", c_ubyte * 32),
        ("libraryVersion", CK_VERSION),
    ]


class CK_SLOT_INFO(_Structure):
    _fields_ = [
        ("slotDescription", c_ubyte * 64),
        ("manufacturerID", c_ubyte * 32),
        ("flags", CK_ULONG),
        ("hardwareVersion", CK_VERSION),
        ("firmwareVersion", CK_VERSION),
    ]


class CK_TOKEN_INFO(_Structure):
    _fields_ = [
        ("label", c_ubyte * 32),
        ("manufacturerID", c_ubyte * 32),
        ("model", c_ubyte * 16),
        ("serialNumber", c_ubyte * 16),
        ("flags", CK_ULONG),
        ("ulMaxSessionCount", CK_ULONG),
        ("ulSessionCount", CK_ULONG),
        ("ulMaxRwSessionCount", CK_ULONG),
        ("ulRwSessionCount", CK_ULONG),
        ("ulMaxPinLen", CK_ULONG),
        ("ulMinPinLen", CK_ULONG),
        ("ulTotalPublicMemory", CK_ULONG),
        ("ulFreePublicMemory", CK_ULONG),
        ("ulTotalPrivateMemory", CK_ULONG),
        ("ulFreePrivateMemory", CK_ULONG),
        ("hardwareVersion", CK_VERSION),
        ("firmwareVersion", CK_VERSION),
        ("utcTime", c_ubyte * 16),
    ]


class CK_SESSION_INFO(_Structure):
    _fields_ = [
        ("slotID", CK_ULONG),
        ("state", CK_ULONG),
        ("flags", CK_ULONG),
        ("ulDeviceError", CK_ULONG),
    ]


class CK_MECHANISM_INFO(_Structure):
    _fields_ = [
        ("ulMinKeySize", CK_ULONG),
        ("ulMaxKeySize", CK_ULONG),
        ("flags", CK_ULONG),
    ]


class CK_MECHANISM(_Structure):
    _fields_ = [
        ("mechanism", CK_ULONG),
        ("pParameter", c_void_p),
        ("ulParameterLen", CK_ULONG),
    ]


class CK_ATTRIBUTE(_Structure):
    _fields_ = [
        ("type", CK_ULONG),
        ("pValue", c_void_p),
        ("ulValueLen", CK_ULONG),
    ]


# Order matters: this is the C struct layout of CK_FUNCTION_LIST (v2.40).
_FUNCTION_LIST_ORDER = (
    "C_Initialize", "C_Finalize", "C_GetInfo", "C_GetFunctionList",
    "C_GetSlotList", "C_GetSlotInfo", "C_GetTokenInfo", "C_GetMechanismList",
    "C_GetMechanismInfo", "C_InitToken", "C_InitPIN", "C_SetPIN",
    "C_OpenSession", "C_CloseSession", "C_CloseAllSessions", "C_GetSessionInfo",
    "C_GetOperationState", "C_SetOperationState", "C_Login", "C_Logout",
    "C_CreateObject", "C_CopyObject", "C_DestroyObject", "C_GetObjectSize",
    "C_GetAttributeValue", "C_SetAttributeValue", "C_FindObjectsInit", "C_FindObjects",
    "C_FindObjectsFinal", "C_EncryptInit", "C_Encrypt", "C_EncryptUpdate",
    "C_EncryptFinal", "C_DecryptInit", "C_Decrypt", "C_DecryptUpdate",
    "C_DecryptFinal", "C_DigestInit", "C_Digest", "C_DigestUpdate",
    "C_DigestKey", "C_DigestFinal", "C_SignInit", "C_Sign",
    "C_SignUpdate", "C_SignFinal", "C_SignRecoverInit", "C_SignRecover",
    "C_VerifyInit", "C_Verify", "C_VerifyUpdate", "C_VerifyFinal",
    "C_VerifyRecoverInit", "C_VerifyRecover", "C_DigestEncryptUpdate", "C_DecryptDigestUpdate",
    "C_SignEncryptUpdate", "C_DecryptVerifyUpdate", "C_GenerateKey", "C_GenerateKeyPair",
    "C_WrapKey", "C_UnwrapKey", "C_DeriveKey", "C_SeedRandom",
    "C_GenerateRandom", "C_GetFunctionStatus", "C_CancelFunction", "C_WaitForSlotEvent",
)


class CK_FUNCTION_LIST(_Structure):
    _fields_ = [("version", CK_VERSION)] + [(name, c_void_p) for name in _FUNCTION_LIST_ORDER]


_PROTOTYPES = {
    "C_Initialize": ctypes.CFUNCTYPE(CK_RV, c_void_p),
    "C_Finalize": ctypes.CFUNCTYPE(CK_RV, c_void_p),
    "C_GetInfo": ctypes.CFUNCTYPE(CK_RV, POINTER(CK_INFO)),
    "C_GetSlotList": ctypes.CFUNCTYPE(CK_RV, CK_BBOOL, POINTER(CK_ULONG), POINTER(CK_ULONG)),
    "C_GetSlotInfo": ctypes.CFUNCTYPE(CK_RV, CK_ULONG, POINTER(CK_SLOT_INFO)),
    "C_GetTokenInfo": ctypes.CFUNCTYPE(CK_RV, CK_ULONG, POINTER(CK_TOKEN_INFO)),
    "C_GetMechanismList": ctypes.CFUNCTYPE(CK_RV, CK_ULONG, POINTER(CK_ULONG), POINTER(CK_ULONG)),
    "C_GetMechanismInfo": ctypes.CFUNCTYPE(CK_RV, CK_ULONG, CK_ULONG, POINTER(CK_MECHANISM_INFO)),
    "C_OpenSession": ctypes.CFUNCTYPE(CK_RV, CK_ULONG, CK_ULONG, c_void_p, c_void_p, POINTER(CK_ULONG)),
    "C_CloseSession": ctypes.CFUNCTYPE(CK_RV, CK_ULONG),
    "C_GetSessionInfo": ctypes.CFUNCTYPE(CK_RV, CK_ULONG, POINTER(CK_SESSION_INFO)),
    "C_Login": ctypes.CFUNCTYPE(CK_RV, CK_ULONG, CK_ULONG, POINTER(c_ubyte), CK_ULONG),
    "C_Logout": ctypes.CFUNCTYPE(CK_RV, CK_ULONG),
    "C_GetAttributeValue": ctypes.CFUNCTYPE(CK_RV, CK_ULONG, CK_ULONG, POINTER(CK_ATTRIBUTE), CK_ULONG),
    "C_FindObjectsInit": ctypes.CFUNCTYPE(CK_RV, CK_ULONG, POINTER(CK_ATTRIBUTE), CK_ULONG),
    "C_FindObjects": ctypes.CFUNCTYPE(CK_RV, CK_ULONG, POINTER(CK_ULONG), CK_ULONG, POINTER(CK_ULONG)),
    "C_FindObjectsFinal": ctypes.CFUNCTYPE(CK_RV, CK_ULONG),
    "C_SignInit": ctypes.CFUNCTYPE(CK_RV, CK_ULONG, POINTER(CK_MECHANISM), CK_ULONG),
    "C_Sign": ctypes.CFUNCTYPE(
        CK_RV, CK_ULONG, POINTER(c_ubyte), CK_ULONG, POINTER(c_ubyte), POINTER(CK_ULONG)
    ),
    "C_VerifyInit": ctypes.CFUNCTYPE(CK_RV, CK_ULONG, POINTER(CK_MECHANISM), CK_ULONG),
    "C_Verify": ctypes.CFUNCTYPE(
        CK_RV, CK_ULONG, POINTER(c_ubyte), CK_ULONG, POINTER(c_ubyte), CK_ULONG
    ),
}


def _version(v: CK_VERSION) -> Version:
    return Version(v.major, v.minor)


def _bytes_in(data: bytes):
    return (c_ubyte * len(data)).from_buffer_copy(bytes(data))


def _bytes_out(buffer: Optional[bytearray]):
    # shares memory with ``buffer`` so the caller can wipe it afterwards
    if not buffer:
        return None
    return (c_ubyte * len(buffer)).from_buffer(buffer)


class CtypesProvider(TokenProvider):
    """TokenProvider backed by a dynamically loaded PKCS#11 module."""

    def __init__(self, path: str) -> None:
        self.path = path
        try:
            self._lib = ctypes.CDLL(path)
        except OSError as e:
            raise ProviderUnavailable(f"Error loading PKCS11 library {path}: {e}") from e

        try:
            get_function_list = self._lib.C_GetFunctionList
        except AttributeError as e:
            raise ProviderUnavailable(f'Error finding "C_GetFunctionList" symbol in {path}') from e

        get_function_list.restype = CK_RV
        get_function_list.argtypes = [POINTER(POINTER(CK_FUNCTION_LIST))]
        function_list = POINTER(CK_FUNCTION_LIST)()
        rv = get_function_list(byref(function_list))
        if rv != CKR_OK or not function_list:
            raise ProviderUnavailable(f'Error calling "C_GetFunctionList" (rv = {ckr_name(rv)})')

        self._functions = function_list.contents
        self._bound = {}
        logger.debug("Loaded PKCS#11 module", path=path, version=str(_version(self._functions.version)))

    def _fn(self, name: str):
        if name not in self._bound:
            address = getattr(self._functions, name)
            self._bound[name] = _PROTOTYPES[name](address) if address else None
        return self._bound[name]

    def supports(self, name: str) -> bool:
        return self._fn(name) is not None

    def _call(self, name: str, *args) -> int:
        fn = self._fn(name)
        if fn is None:
            return CKR_FUNCTION_NOT_SUPPORTED
        return fn(*args)

    # ── library ──────────────────────────────

    def initialize(self) -> int:
        return self._call("C_Initialize", None)

    def finalize(self) -> int:
        return self._call("C_Finalize", None)

    def get_info(self) -> Tuple[int, Optional[LibraryInfo]]:
        info = CK_INFO()
        rv = self._call("C_GetInfo", byref(info))
        if rv != CKR_OK:
            return rv, None
        return rv, LibraryInfo(
            cryptoki_version=_version(info.cryptokiVersion),
            manufacturer_id=stringify(bytes(info.manufacturerID)),
            flags=info.flags,
            library_description=stringify(bytes(info.libraryDescription)),
            library_version=_version(info.libraryVersion),
        )

    # ── slots and tokens ─────────────────────

    def _ulong_list(self, name: str, first, capacity: Optional[int]) -> Tuple[int, int, List[int]]:
        count = CK_ULONG(capacity or 0)
        if capacity is None:
            rv = self._call(name, first, None, byref(count))
            return rv, count.value, []
        array = (CK_ULONG * max(capacity, 1))()
        rv = self._call(name, first, array, byref(count))
        if rv != CKR_OK:
            return rv, count.value, []
        return rv, count.value, list(array[: min(count.value, capacity)])

    def get_slot_list(self, token_present: bool, capacity: Optional[int]) -> Tuple[int, int, List[int]]:
        return self._ulong_list("C_GetSlotList", CK_BBOOL(1 if token_present else 0), capacity)

    def get_slot_info(self, slot: int) -> Tuple[int, Optional[SlotInfo]]:
        info = CK_SLOT_INFO()
        rv = self._call("C_GetSlotInfo", slot, byref(info))
        if rv != CKR_OK:
            return rv, None
        return rv, SlotInfo(
            slot_description=stringify(bytes(info.slotDescription)),
            manufacturer_id=stringify(bytes(info.manufacturerID)),
            flags=info.flags,
            hardware_version=_version(info.hardwareVersion),
            firmware_version=_version(info.firmwareVersion),
        )

    def get_token_info(self, slot: int) -> Tuple[int, Optional[TokenInfo]]:
        info = CK_TOKEN_INFO()
        rv = self._call("C_GetTokenInfo", slot, byref(info))
        if rv != CKR_OK:
            return rv, None
        return rv, TokenInfo(
            label=stringify(bytes(info.label)),
            manufacturer_id=stringify(bytes(info.manufacturerID)),
            model=stringify(bytes(info.model)),
            serial_number=stringify(bytes(info.serialNumber)),
            flags=info.flags,
            max_session_count=info.ulMaxSessionCount,
            session_count=info.ulSessionCount,
            max_rw_session_count=info.ulMaxRwSessionCount,
            rw_session_count=info.ulRwSessionCount,
            max_pin_len=info.ulMaxPinLen,
            min_pin_len=info.ulMinPinLen,
            total_public_memory=info.ulTotalPublicMemory,
            free_public_memory=info.ulFreePublicMemory,
            total_private_memory=info.ulTotalPrivateMemory,
            free_private_memory=info.ulFreePrivateMemory,
            hardware_version=_version(info.hardwareVersion),
            firmware_version=_version(info.firmwareVersion),
            utc_time=stringify(bytes(info.utcTime)),
        )

    def get_mechanism_list(self, slot: int, capacity: Optional[int]) -> Tuple[int, int, List[int]]:
        return self._ulong_list("C_GetMechanismList", slot, capacity)

    def get_mechanism_info(self, slot: int, mechanism: int) -> Tuple[int, Optional[MechanismInfo]]:
        info = CK_MECHANISM_INFO()
        rv = self._call("C_GetMechanismInfo", slot, mechanism, byref(info))
        if rv != CKR_OK:
            return rv, None
        return rv, MechanismInfo(info.ulMinKeySize, info.ulMaxKeySize, info.flags)

    # ── sessions ─────────────────────────────

    def open_session(self, slot: int, flags: int) -> Tuple[int, int]:
        handle = CK_ULONG(0)
        rv = self._call("C_OpenSession", slot, flags, None, None, byref(handle))
        return rv, handle.value

    def get_session_info(self, session: int) -> Tuple[int, Optional[SessionInfo]]:
        info = CK_SESSION_INFO()
        rv = self._call("C_GetSessionInfo", session, byref(info))
        if rv != CKR_OK:
            return rv, None
        return rv, SessionInfo(info.slotID, info.state, info.flags, info.ulDeviceError)

    def close_session(self, session: int) -> int:
        return self._call("C_CloseSession", session)

    def login(self, session: int, user_type: int, pin: Optional[bytearray]) -> int:
        if pin is None:
            return self._call("C_Login", session, user_type, None, 0)
        return self._call("C_Login", session, user_type, _bytes_out(pin), len(pin))

    def logout(self, session: int) -> int:
        return self._call("C_Logout", session)

    # ── objects ──────────────────────────────

    def get_attribute_value(
        self, session: int, obj: int, attribute: int, buffer: Optional[bytearray]
    ) -> Tuple[int, int]:
        template = CK_ATTRIBUTE(attribute, None, 0)
        out = _bytes_out(buffer)
        if out is not None:
            template.pValue = ctypes.addressof(out)
            template.ulValueLen = len(buffer)
        rv = self._call("C_GetAttributeValue", session, obj, byref(template), 1)
        return rv, template.ulValueLen

    def find_objects_init(self, session: int, template: Template) -> int:
        if not template:
            return self._call("C_FindObjectsInit", session, None, 0)
        values = [ctypes.create_string_buffer(bytes(value), max(len(value), 1)) for _, value in template]
        array = (CK_ATTRIBUTE * len(template))()
        for entry, (kind, value), buf in zip(array, template, values):
            entry.type = kind
            entry.pValue = ctypes.addressof(buf)
            entry.ulValueLen = len(value)
        return self._call("C_FindObjectsInit", session, array, len(template))

    def find_objects(self, session: int, max_count: int) -> Tuple[int, List[int]]:
        handles = (CK_ULONG * max_count)()
        count = CK_ULONG(0)
        rv = self._call("C_FindObjects", session, handles, max_count, byref(count))
        if rv != CKR_OK:
            return rv, []
        return rv, list(handles[: min(count.value, max_count)])

    def find_objects_final(self, session: int) -> int:
        return self._call("C_FindObjectsFinal", session)

    # ── sign / verify ────────────────────────

    def sign_init(self, session: int, mechanism: int, key: int) -> int:
        mech = CK_MECHANISM(mechanism, None, 0)
        return self._call("C_SignInit", session, byref(mech), key)

    def sign(self, session: int, data: bytes, buffer: Optional[bytearray]) -> Tuple[int, int]:
        length = CK_ULONG(len(buffer) if buffer else 0)
        rv = self._call("C_Sign", session, _bytes_in(data), len(data), _bytes_out(buffer), byref(length))
        return rv, length.value

    def verify_init(self, session: int, mechanism: int, key: int) -> int:
        mech = CK_MECHANISM(mechanism, None, 0)
        return self._call("C_VerifyInit", session, byref(mech), key)

    def verify(self, session: int, data: bytes, signature: bytes) -> int:
        return self._call(
            "C_Verify", session, _bytes_in(data), len(data), _bytes_in(signature), len(signature)
        )


def load_provider(path: str) -> TokenProvider:
    return CtypesProvider(path)
