"""
The operation table p11probe drives.

Methods mirror the Cryptoki C functions closely: each returns the CK_RV
status code, plus whatever the C call would have written through its output
pointers. Two-call (size-then-fill) functions take ``None`` in place of the
output buffer for the sizing call.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

Template = Sequence[Tuple[int, bytes]]

FUNCTION_NAMES = (
    "C_Initialize",
    "C_Finalize",
    "C_GetInfo",
    "C_GetSlotList",
    "C_GetSlotInfo",
    "C_GetTokenInfo",
    "C_GetMechanismList",
    "C_GetMechanismInfo",
    "C_OpenSession",
    "C_CloseSession",
    "C_GetSessionInfo",
    "C_Login",
    "C_Logout",
    "C_GetAttributeValue",
    "C_FindObjectsInit",
    "C_FindObjects",
    "C_FindObjectsFinal",
    "C_SignInit",
    "C_Sign",
    "C_VerifyInit",
    "C_Verify",
)


@dataclass(frozen=True)
class Version:
    major: int
    minor: int

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}"


@dataclass(frozen=True)
class LibraryInfo:
    cryptoki_version: Version
    manufacturer_id: str
    flags: int
    library_description: str
    library_version: Version


@dataclass(frozen=True)
class SlotInfo:
    slot_description: str
    manufacturer_id: str
    flags: int
    hardware_version: Version
    firmware_version: Version


@dataclass(frozen=True)
class TokenInfo:
    label: str
    manufacturer_id: str
    model: str
    serial_number: str
    flags: int
    max_session_count: int
    session_count: int
    max_rw_session_count: int
    rw_session_count: int
    max_pin_len: int
    min_pin_len: int
    total_public_memory: int
    free_public_memory: int
    total_private_memory: int
    free_private_memory: int
    hardware_version: Version
    firmware_version: Version
    utc_time: str


@dataclass(frozen=True)
class MechanismInfo:
    min_key_size: int
    max_key_size: int
    flags: int


@dataclass(frozen=True)
class SessionInfo:
    slot_id: int
    state: int
    flags: int
    device_error: int


class TokenProvider(ABC):
    """A loaded PKCS#11 implementation."""

    @abstractmethod
    def supports(self, name: str) -> bool:
        """False when the module left this entry of its function list NULL."""

    @abstractmethod
    def initialize(self) -> int: ...

    @abstractmethod
    def finalize(self) -> int: ...

    @abstractmethod
    def get_info(self) -> Tuple[int, Optional[LibraryInfo]]: ...

    @abstractmethod
    def get_slot_list(self, token_present: bool, capacity: Optional[int]) -> Tuple[int, int, List[int]]:
        """
        With ``capacity=None`` only the count is returned. Otherwise up to
        ``capacity`` slot ids are returned, or CKR_BUFFER_TOO_SMALL together
        with the required count.
        """

    @abstractmethod
    def get_slot_info(self, slot: int) -> Tuple[int, Optional[SlotInfo]]: ...

    @abstractmethod
    def get_token_info(self, slot: int) -> Tuple[int, Optional[TokenInfo]]: ...

    @abstractmethod
    def get_mechanism_list(self, slot: int, capacity: Optional[int]) -> Tuple[int, int, List[int]]: ...

    @abstractmethod
    def get_mechanism_info(self, slot: int, mechanism: int) -> Tuple[int, Optional[MechanismInfo]]: ...

    @abstractmethod
    def open_session(self, slot: int, flags: int) -> Tuple[int, int]: ...

    @abstractmethod
    def get_session_info(self, session: int) -> Tuple[int, Optional[SessionInfo]]: ...

    @abstractmethod
    def close_session(self, session: int) -> int: ...

    @abstractmethod
    def login(self, session: int, user_type: int, pin: Optional[bytearray]) -> int:
        """``pin=None`` is a NULL PIN (protected authentication path)."""

    @abstractmethod
    def logout(self, session: int) -> int: ...

    @abstractmethod
    def get_attribute_value(
        self, session: int, obj: int, attribute: int, buffer: Optional[bytearray]
    ) -> Tuple[int, int]:
        """
        Returns ``(rv, length)``. ``buffer=None`` asks for the length only;
        the length may be CK_UNAVAILABLE_INFORMATION. A buffer that is too
        small yields CKR_BUFFER_TOO_SMALL.
        """

    @abstractmethod
    def find_objects_init(self, session: int, template: Template) -> int: ...

    @abstractmethod
    def find_objects(self, session: int, max_count: int) -> Tuple[int, List[int]]: ...

    @abstractmethod
    def find_objects_final(self, session: int) -> int: ...

    @abstractmethod
    def sign_init(self, session: int, mechanism: int, key: int) -> int: ...

    @abstractmethod
    def sign(self, session: int, data: bytes, buffer: Optional[bytearray]) -> Tuple[int, int]:
        """Same size-then-fill convention as get_attribute_value."""

    @abstractmethod
    def verify_init(self, session: int, mechanism: int, key: int) -> int: ...

    @abstractmethod
    def verify(self, session: int, data: bytes, signature: bytes) -> int: ...
