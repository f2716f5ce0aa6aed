"""
An in-memory PKCS#11 token.

MemoryProvider implements the full TokenProvider table in Python with real
RSA keys, so the probe can be driven end to end without a shared object.
Every call is recorded in ``calls``; entries can be removed from the
function list (``missing``) or forced to return an error (``fail``).
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509.oid import NameOID

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
    CKA_MODULUS,
    CKA_MODULUS_BITS,
    CKA_OBJECT_ID,
    CKA_PRIVATE,
    CKA_PUBLIC_EXPONENT,
    CKA_SIGN,
    CKA_SUBJECT,
    CKA_TOKEN,
    CKA_VALUE,
    CKA_VERIFY,
    CKC_X_509,
    CKF_HW,
    CKF_LOGIN_REQUIRED,
    CKF_REMOVABLE_DEVICE,
    CKF_RW_SESSION,
    CKF_SERIAL_SESSION,
    CKF_SIGN,
    CKF_TOKEN_INITIALIZED,
    CKF_TOKEN_PRESENT,
    CKF_USER_PIN_INITIALIZED,
    CKF_VERIFY,
    CKF_PROTECTED_AUTHENTICATION_PATH,
    CKK_RSA,
    CKM_RSA_PKCS,
    CKM_RSA_PKCS_KEY_PAIR_GEN,
    CKM_SHA256_RSA_PKCS,
    CKO_CERTIFICATE,
    CKO_DATA,
    CKO_PRIVATE_KEY,
    CKO_PUBLIC_KEY,
    CKO_VENDOR_DEFINED,
    CKR_ARGUMENTS_BAD,
    CKR_ATTRIBUTE_TYPE_INVALID,
    CKR_BUFFER_TOO_SMALL,
    CKR_CRYPTOKI_ALREADY_INITIALIZED,
    CKR_CRYPTOKI_NOT_INITIALIZED,
    CKR_DATA_LEN_RANGE,
    CKR_FUNCTION_NOT_SUPPORTED,
    CKR_KEY_HANDLE_INVALID,
    CKR_KEY_TYPE_INCONSISTENT,
    CKR_MECHANISM_INVALID,
    CKR_OBJECT_HANDLE_INVALID,
    CKR_OK,
    CKR_OPERATION_ACTIVE,
    CKR_OPERATION_NOT_INITIALIZED,
    CKR_PIN_INCORRECT,
    CKR_SESSION_HANDLE_INVALID,
    CKR_SESSION_PARALLEL_NOT_SUPPORTED,
    CKR_SIGNATURE_INVALID,
    CKR_SIGNATURE_LEN_RANGE,
    CKR_SLOT_ID_INVALID,
    CKR_TOKEN_NOT_PRESENT,
    CKR_USER_ALREADY_LOGGED_IN,
    CKR_USER_NOT_LOGGED_IN,
    CKR_USER_TYPE_INVALID,
    CKS_RO_PUBLIC_SESSION,
    CKS_RO_USER_FUNCTIONS,
    CKS_RW_PUBLIC_SESSION,
    CKS_RW_USER_FUNCTIONS,
    CKU_SO,
    CKU_USER,
)
from .finder import encode_template
from .provider import (
    FUNCTION_NAMES,
    LibraryInfo,
    MechanismInfo,
    SessionInfo,
    SlotInfo,
    Template,
    TokenInfo,
    TokenProvider,
    Version,
)
from .utils import pack_ulong, pack_ulongs

SUPPORTED_MECHANISMS: Mapping[int, MechanismInfo] = {
    CKM_RSA_PKCS_KEY_PAIR_GEN: MechanismInfo(1024, 4096, CKF_HW),
    CKM_RSA_PKCS: MechanismInfo(1024, 4096, CKF_HW | CKF_SIGN | CKF_VERIFY),
    CKM_SHA256_RSA_PKCS: MechanismInfo(1024, 4096, CKF_HW | CKF_SIGN | CKF_VERIFY),
}

SIGNING_MECHANISMS = (CKM_RSA_PKCS, CKM_SHA256_RSA_PKCS)

# attribute value the token reports as CK_UNAVAILABLE_INFORMATION
UNAVAILABLE = None


@dataclass
class MemoryObject:
    handle: int
    attributes: Dict[int, Optional[bytes]]
    private: bool = False
    key: Any = None


@dataclass
class _Session:
    slot: int
    flags: int
    find: Optional[List[int]] = None
    sign: Optional[Tuple[int, MemoryObject]] = None
    verify: Optional[Tuple[int, MemoryObject]] = None


@dataclass
class Call:
    name: str
    args: Tuple[Any, ...] = field(default_factory=tuple)


def _pkcs1_type1(data: bytes, size: int) -> bytes:
    # EMSA-PKCS1-v1_5 block type 1 around data the caller already encoded
    return b"\x00\x01" + b"\xff" * (size - len(data) - 3) + b"\x00" + data


def _self_signed(key: rsa.RSAPrivateKey, common_name: str) -> x509.Certificate:
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(1)
        .not_valid_before(now)
        .not_valid_after(now + datetime.timedelta(days=365))
        .sign(key, hashes.SHA256())
    )


class MemoryProvider(TokenProvider):
    def __init__(
        self,
        slots: Sequence[int] = (0,),
        empty_slots: Sequence[int] = (),
        pin: str = "1234",
        token_flags: int = CKF_TOKEN_INITIALIZED | CKF_LOGIN_REQUIRED | CKF_USER_PIN_INITIALIZED,
        label: str = "Memory token",
        missing: Iterable[str] = (),
    ) -> None:
        self.token_slots = list(slots)
        self.empty_slots = list(empty_slots)
        self.pin = pin.encode("utf-8")
        self.token_flags = token_flags
        self.label = label
        self.mechanisms = dict(SUPPORTED_MECHANISMS)

        self.objects: Dict[int, MemoryObject] = {}
        self.missing: Set[str] = set(missing)
        self.fail: Dict[str, int] = {}
        self.calls: List[Call] = []
        self.login_calls: List[Optional[bytes]] = []
        self.pin_buffers: List[bytearray] = []

        self.initialized = False
        self.logged_in: Optional[int] = None
        self.sessions: Dict[int, _Session] = {}
        self._next_session = 1
        self._next_object = 1

    # ── bookkeeping ──────────────────────────

    def called(self, name: str) -> List[Call]:
        return [c for c in self.calls if c.name == name]

    def names(self) -> List[str]:
        return [c.name for c in self.calls]

    def _enter(self, name: str, *args) -> Optional[int]:
        """Record the call; return an rv when it must not go any further."""
        self.calls.append(Call(name, args))
        if name in self.missing:
            return CKR_FUNCTION_NOT_SUPPORTED
        if name in self.fail:
            return self.fail[name]
        if name != "C_Initialize" and not self.initialized:
            return CKR_CRYPTOKI_NOT_INITIALIZED
        return None

    def _session(self, handle: int) -> Optional[_Session]:
        return self.sessions.get(handle)

    def _visible(self, obj: MemoryObject) -> bool:
        return not obj.private or self.logged_in is not None

    def _object(self, handle: int) -> Optional[MemoryObject]:
        obj = self.objects.get(handle)
        if obj is None or not self._visible(obj):
            return None
        return obj

    @staticmethod
    def _listing(items: List[int], capacity: Optional[int]) -> Tuple[int, int, List[int]]:
        if capacity is None:
            return CKR_OK, len(items), []
        if capacity < len(items):
            return CKR_BUFFER_TOO_SMALL, len(items), []
        return CKR_OK, len(items), list(items)

    # ── objects on the token ─────────────────

    def add_object(
        self,
        attributes: Mapping[int, Any],
        private: bool = False,
        key: Any = None,
    ) -> int:
        """
        Store an object. Values are encoded like a search template; None
        marks the attribute as unavailable.
        """
        encoded: Dict[int, Optional[bytes]] = {}
        for attribute, value in attributes.items():
            if value is UNAVAILABLE:
                encoded[attribute] = None
            else:
                encoded[attribute] = encode_template([(attribute, value)])[0][1]
        handle = self._next_object
        self._next_object += 1
        self.objects[handle] = MemoryObject(handle, encoded, private, key)
        return handle

    def add_rsa_keypair(
        self,
        key_id: bytes,
        label: str = "RSA key",
        key_size: int = 2048,
        subject: Optional[x509.Name] = None,
    ) -> Tuple[int, int]:
        """Returns ``(private_handle, public_handle)``."""
        key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
        numbers = key.public_key().public_numbers()
        modulus = numbers.n.to_bytes((numbers.n.bit_length() + 7) // 8, "big")
        exponent = numbers.e.to_bytes((numbers.e.bit_length() + 7) // 8, "big")
        common = {
            CKA_KEY_TYPE: CKK_RSA,
            CKA_ID: key_id,
            CKA_LABEL: label,
            CKA_TOKEN: True,
            CKA_MODULUS: modulus,
            CKA_KEY_GEN_MECHANISM: CKM_RSA_PKCS_KEY_PAIR_GEN,
            CKA_ALLOWED_MECHANISMS: pack_ulongs(SIGNING_MECHANISMS),
        }
        if subject is not None:
            common[CKA_SUBJECT] = subject.public_bytes()
        private = self.add_object(
            {CKA_CLASS: CKO_PRIVATE_KEY, CKA_PRIVATE: True, CKA_SIGN: True, **common},
            private=True,
            key=key,
        )
        public = self.add_object(
            {
                CKA_CLASS: CKO_PUBLIC_KEY,
                CKA_PRIVATE: False,
                CKA_VERIFY: True,
                CKA_PUBLIC_EXPONENT: exponent,
                CKA_MODULUS_BITS: key_size,
                **common,
            },
            key=key.public_key(),
        )
        return private, public

    def add_public_key(self, key_id: bytes, public_key: rsa.RSAPublicKey, label: str = "RSA key") -> int:
        return self.add_object(
            {
                CKA_CLASS: CKO_PUBLIC_KEY,
                CKA_KEY_TYPE: CKK_RSA,
                CKA_ID: key_id,
                CKA_LABEL: label,
                CKA_VERIFY: True,
            },
            key=public_key,
        )

    def add_certificate(self, key_id: bytes, common_name: str, key: Optional[rsa.RSAPrivateKey] = None) -> int:
        key = key or rsa.generate_private_key(public_exponent=65537, key_size=1024)
        cert = _self_signed(key, common_name)
        return self.add_object({
            CKA_CLASS: CKO_CERTIFICATE,
            CKA_CERTIFICATE_TYPE: CKC_X_509,
            CKA_ID: key_id,
            CKA_LABEL: common_name,
            CKA_SUBJECT: cert.subject.public_bytes(),
            CKA_ISSUER: cert.issuer.public_bytes(),
            CKA_VALUE: cert.public_bytes(Encoding.DER),
        })

    def add_data_object(
        self,
        label: str,
        value: bytes,
        application: str = "p11probe",
        object_id: Optional[bytes] = None,
        object_class: int = CKO_DATA,
    ) -> int:
        attributes: Dict[int, Any] = {
            CKA_CLASS: object_class,
            CKA_LABEL: label,
            CKA_APPLICATION: application,
            CKA_VALUE: value,
        }
        if object_id is not None:
            attributes[CKA_OBJECT_ID] = object_id
        return self.add_object(attributes)

    def add_vendor_object(self, label: str, value: bytes) -> int:
        return self.add_data_object(label, value, object_class=CKO_VENDOR_DEFINED)

    # ── TokenProvider ────────────────────────

    def supports(self, name: str) -> bool:
        return name in FUNCTION_NAMES and name not in self.missing

    def initialize(self) -> int:
        rv = self._enter("C_Initialize")
        if rv is not None:
            return rv
        if self.initialized:
            return CKR_CRYPTOKI_ALREADY_INITIALIZED
        self.initialized = True
        return CKR_OK

    def finalize(self) -> int:
        rv = self._enter("C_Finalize")
        if rv is not None:
            return rv
        self.initialized = False
        self.sessions.clear()
        self.logged_in = None
        return CKR_OK

    def get_info(self) -> Tuple[int, Optional[LibraryInfo]]:
        rv = self._enter("C_GetInfo")
        if rv is not None:
            return rv, None
        return CKR_OK, LibraryInfo(Version(2, 40), "p11probe", 0, "In-memory token", Version(1, 0))

    def get_slot_list(self, token_present: bool, capacity: Optional[int]) -> Tuple[int, int, List[int]]:
        rv = self._enter("C_GetSlotList", token_present, capacity)
        if rv is not None:
            return rv, 0, []
        slots = list(self.token_slots)
        if not token_present:
            slots = sorted(slots + self.empty_slots)
        return self._listing(slots, capacity)

    def get_slot_info(self, slot: int) -> Tuple[int, Optional[SlotInfo]]:
        rv = self._enter("C_GetSlotInfo", slot)
        if rv is not None:
            return rv, None
        if slot not in self.token_slots and slot not in self.empty_slots:
            return CKR_SLOT_ID_INVALID, None
        flags = CKF_REMOVABLE_DEVICE | (CKF_TOKEN_PRESENT if slot in self.token_slots else 0)
        return CKR_OK, SlotInfo(f"Memory slot {slot}", "p11probe", flags, Version(1, 0), Version(1, 0))

    def get_token_info(self, slot: int) -> Tuple[int, Optional[TokenInfo]]:
        rv = self._enter("C_GetTokenInfo", slot)
        if rv is not None:
            return rv, None
        if slot not in self.token_slots:
            return CKR_TOKEN_NOT_PRESENT, None
        info = TokenInfo(
            label=self.label,
            manufacturer_id="p11probe",
            model="memory",
            serial_number=f"{slot:016d}",
            flags=self.token_flags,
            max_session_count=CK_UNAVAILABLE_INFORMATION,
            session_count=len(self.sessions),
            max_rw_session_count=CK_UNAVAILABLE_INFORMATION,
            rw_session_count=sum(1 for s in self.sessions.values() if s.flags & CKF_RW_SESSION),
            max_pin_len=63,
            min_pin_len=4,
            total_public_memory=CK_UNAVAILABLE_INFORMATION,
            free_public_memory=CK_UNAVAILABLE_INFORMATION,
            total_private_memory=CK_UNAVAILABLE_INFORMATION,
            free_private_memory=CK_UNAVAILABLE_INFORMATION,
            hardware_version=Version(1, 0),
            firmware_version=Version(1, 0),
            utc_time="",
        )
        return CKR_OK, info

    def get_mechanism_list(self, slot: int, capacity: Optional[int]) -> Tuple[int, int, List[int]]:
        rv = self._enter("C_GetMechanismList", slot, capacity)
        if rv is not None:
            return rv, 0, []
        if slot not in self.token_slots:
            return CKR_TOKEN_NOT_PRESENT, 0, []
        return self._listing(sorted(self.mechanisms), capacity)

    def get_mechanism_info(self, slot: int, mechanism: int) -> Tuple[int, Optional[MechanismInfo]]:
        rv = self._enter("C_GetMechanismInfo", slot, mechanism)
        if rv is not None:
            return rv, None
        if mechanism not in self.mechanisms:
            return CKR_MECHANISM_INVALID, None
        return CKR_OK, self.mechanisms[mechanism]

    def open_session(self, slot: int, flags: int) -> Tuple[int, int]:
        rv = self._enter("C_OpenSession", slot, flags)
        if rv is not None:
            return rv, 0
        if not flags & CKF_SERIAL_SESSION:
            return CKR_SESSION_PARALLEL_NOT_SUPPORTED, 0
        if slot not in self.token_slots:
            return CKR_TOKEN_NOT_PRESENT, 0
        handle = self._next_session
        self._next_session += 1
        self.sessions[handle] = _Session(slot, flags)
        return CKR_OK, handle

    def get_session_info(self, session: int) -> Tuple[int, Optional[SessionInfo]]:
        rv = self._enter("C_GetSessionInfo", session)
        if rv is not None:
            return rv, None
        state = self._session(session)
        if state is None:
            return CKR_SESSION_HANDLE_INVALID, None
        rw = bool(state.flags & CKF_RW_SESSION)
        if self.logged_in is not None:
            code = CKS_RW_USER_FUNCTIONS if rw else CKS_RO_USER_FUNCTIONS
        else:
            code = CKS_RW_PUBLIC_SESSION if rw else CKS_RO_PUBLIC_SESSION
        return CKR_OK, SessionInfo(state.slot, code, state.flags, 0)

    def close_session(self, session: int) -> int:
        rv = self._enter("C_CloseSession", session)
        if rv is not None:
            return rv
        if self.sessions.pop(session, None) is None:
            return CKR_SESSION_HANDLE_INVALID
        if not self.sessions:
            self.logged_in = None
        return CKR_OK

    def login(self, session: int, user_type: int, pin: Optional[bytearray]) -> int:
        self.login_calls.append(None if pin is None else bytes(pin))
        if pin is not None:
            self.pin_buffers.append(pin)
        rv = self._enter("C_Login", session, user_type)
        if rv is not None:
            return rv
        if self._session(session) is None:
            return CKR_SESSION_HANDLE_INVALID
        if user_type not in (CKU_SO, CKU_USER):
            return CKR_USER_TYPE_INVALID
        if self.logged_in is not None:
            return CKR_USER_ALREADY_LOGGED_IN
        if pin is None:
            if not self.token_flags & CKF_PROTECTED_AUTHENTICATION_PATH:
                return CKR_ARGUMENTS_BAD
        elif bytes(pin) != self.pin:
            return CKR_PIN_INCORRECT
        self.logged_in = user_type
        return CKR_OK

    def logout(self, session: int) -> int:
        rv = self._enter("C_Logout", session)
        if rv is not None:
            return rv
        if self._session(session) is None:
            return CKR_SESSION_HANDLE_INVALID
        if self.logged_in is None:
            return CKR_USER_NOT_LOGGED_IN
        self.logged_in = None
        return CKR_OK

    def get_attribute_value(
        self, session: int, obj: int, attribute: int, buffer: Optional[bytearray]
    ) -> Tuple[int, int]:
        rv = self._enter("C_GetAttributeValue", session, obj, attribute, None if buffer is None else len(buffer))
        if rv is not None:
            return rv, CK_UNAVAILABLE_INFORMATION
        if self._session(session) is None:
            return CKR_SESSION_HANDLE_INVALID, CK_UNAVAILABLE_INFORMATION
        target = self._object(obj)
        if target is None:
            return CKR_OBJECT_HANDLE_INVALID, CK_UNAVAILABLE_INFORMATION
        if attribute not in target.attributes:
            return CKR_ATTRIBUTE_TYPE_INVALID, CK_UNAVAILABLE_INFORMATION
        value = target.attributes[attribute]
        if value is None:
            return CKR_OK, CK_UNAVAILABLE_INFORMATION
        if buffer is None:
            return CKR_OK, len(value)
        if len(buffer) < len(value):
            return CKR_BUFFER_TOO_SMALL, len(value)
        buffer[: len(value)] = value
        return CKR_OK, len(value)

    def find_objects_init(self, session: int, template: Template) -> int:
        rv = self._enter("C_FindObjectsInit", session, tuple(template))
        if rv is not None:
            return rv
        state = self._session(session)
        if state is None:
            return CKR_SESSION_HANDLE_INVALID
        if state.find is not None:
            return CKR_OPERATION_ACTIVE
        state.find = [
            handle
            for handle, obj in sorted(self.objects.items())
            if self._visible(obj) and all(obj.attributes.get(kind) == value for kind, value in template)
        ]
        return CKR_OK

    def find_objects(self, session: int, max_count: int) -> Tuple[int, List[int]]:
        rv = self._enter("C_FindObjects", session, max_count)
        if rv is not None:
            return rv, []
        state = self._session(session)
        if state is None:
            return CKR_SESSION_HANDLE_INVALID, []
        if state.find is None:
            return CKR_OPERATION_NOT_INITIALIZED, []
        batch, state.find = state.find[:max_count], state.find[max_count:]
        return CKR_OK, batch

    def find_objects_final(self, session: int) -> int:
        rv = self._enter("C_FindObjectsFinal", session)
        if rv is not None:
            return rv
        state = self._session(session)
        if state is None:
            return CKR_SESSION_HANDLE_INVALID
        if state.find is None:
            return CKR_OPERATION_NOT_INITIALIZED
        state.find = None
        return CKR_OK

    def _key(self, handle: int, object_class: int) -> Tuple[int, Optional[MemoryObject]]:
        obj = self._object(handle)
        if obj is None or obj.key is None:
            return CKR_KEY_HANDLE_INVALID, None
        if obj.attributes.get(CKA_CLASS) != pack_ulong(object_class):
            return CKR_KEY_TYPE_INCONSISTENT, None
        return CKR_OK, obj

    def sign_init(self, session: int, mechanism: int, key: int) -> int:
        rv = self._enter("C_SignInit", session, mechanism, key)
        if rv is not None:
            return rv
        state = self._session(session)
        if state is None:
            return CKR_SESSION_HANDLE_INVALID
        if state.sign is not None:
            return CKR_OPERATION_ACTIVE
        if mechanism not in SIGNING_MECHANISMS:
            return CKR_MECHANISM_INVALID
        rv, obj = self._key(key, CKO_PRIVATE_KEY)
        if rv != CKR_OK:
            return rv
        state.sign = (mechanism, obj)
        return CKR_OK

    def sign(self, session: int, data: bytes, buffer: Optional[bytearray]) -> Tuple[int, int]:
        rv = self._enter("C_Sign", session, bytes(data), None if buffer is None else len(buffer))
        if rv is not None:
            return rv, 0
        state = self._session(session)
        if state is None:
            return CKR_SESSION_HANDLE_INVALID, 0
        if state.sign is None:
            return CKR_OPERATION_NOT_INITIALIZED, 0

        mechanism, obj = state.sign
        key: rsa.RSAPrivateKey = obj.key
        size = (key.key_size + 7) // 8
        if buffer is None:
            return CKR_OK, size
        if len(buffer) < size:
            return CKR_BUFFER_TOO_SMALL, size

        state.sign = None
        if mechanism == CKM_RSA_PKCS:
            if len(data) > size - 11:
                return CKR_DATA_LEN_RANGE, 0
            numbers = key.private_numbers()
            block = int.from_bytes(_pkcs1_type1(bytes(data), size), "big")
            signature = pow(block, numbers.d, numbers.public_numbers.n).to_bytes(size, "big")
        else:
            signature = key.sign(bytes(data), padding.PKCS1v15(), hashes.SHA256())
        buffer[:size] = signature
        return CKR_OK, size

    def verify_init(self, session: int, mechanism: int, key: int) -> int:
        rv = self._enter("C_VerifyInit", session, mechanism, key)
        if rv is not None:
            return rv
        state = self._session(session)
        if state is None:
            return CKR_SESSION_HANDLE_INVALID
        if state.verify is not None:
            return CKR_OPERATION_ACTIVE
        if mechanism not in SIGNING_MECHANISMS:
            return CKR_MECHANISM_INVALID
        rv, obj = self._key(key, CKO_PUBLIC_KEY)
        if rv != CKR_OK:
            return rv
        state.verify = (mechanism, obj)
        return CKR_OK

    def verify(self, session: int, data: bytes, signature: bytes) -> int:
        rv = self._enter("C_Verify", session, bytes(data), bytes(signature))
        if rv is not None:
            return rv
        state = self._session(session)
        if state is None:
            return CKR_SESSION_HANDLE_INVALID
        if state.verify is None:
            return CKR_OPERATION_NOT_INITIALIZED

        mechanism, obj = state.verify
        state.verify = None
        key: rsa.RSAPublicKey = obj.key
        size = (key.key_size + 7) // 8
        if len(signature) != size:
            return CKR_SIGNATURE_LEN_RANGE

        if mechanism == CKM_RSA_PKCS:
            if len(data) > size - 11:
                return CKR_DATA_LEN_RANGE
            numbers = key.public_numbers()
            block = pow(int.from_bytes(bytes(signature), "big"), numbers.e, numbers.n)
            if block.to_bytes(size, "big") != _pkcs1_type1(bytes(data), size):
                return CKR_SIGNATURE_INVALID
            return CKR_OK

        try:
            key.verify(bytes(signature), bytes(data), padding.PKCS1v15(), hashes.SHA256())
        except InvalidSignature:
            return CKR_SIGNATURE_INVALID
        return CKR_OK
