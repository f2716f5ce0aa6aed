"""
PKCS#11 (Cryptoki v2.40) codes used by p11probe.

Only the subset the probe reads, filters on or reports is listed. Name
tables and flag tables are built once at import time and are read-only.
"""

from __future__ import annotations

import ctypes
from types import MappingProxyType
from typing import Mapping, Tuple

# Width of CK_ULONG on this host; attribute buffers use native byte order.
ULONG_SIZE = ctypes.sizeof(ctypes.c_ulong)
CK_UNAVAILABLE_INFORMATION = (1 << (8 * ULONG_SIZE)) - 1
CK_INVALID_HANDLE = 0

# ─────────────────────────────────────────────
# Return values
# ─────────────────────────────────────────────

CKR_OK = 0x00
CKR_CANCEL = 0x01
CKR_HOST_MEMORY = 0x02
CKR_SLOT_ID_INVALID = 0x03
CKR_GENERAL_ERROR = 0x05
CKR_FUNCTION_FAILED = 0x06
CKR_ARGUMENTS_BAD = 0x07
CKR_NO_EVENT = 0x08
CKR_NEED_TO_CREATE_THREADS = 0x09
CKR_CANT_LOCK = 0x0A
CKR_ATTRIBUTE_READ_ONLY = 0x10
CKR_ATTRIBUTE_SENSITIVE = 0x11
CKR_ATTRIBUTE_TYPE_INVALID = 0x12
CKR_ATTRIBUTE_VALUE_INVALID = 0x13
CKR_DATA_INVALID = 0x20
CKR_DATA_LEN_RANGE = 0x21
CKR_DEVICE_ERROR = 0x30
CKR_DEVICE_MEMORY = 0x31
CKR_DEVICE_REMOVED = 0x32
CKR_FUNCTION_CANCELED = 0x50
CKR_FUNCTION_NOT_PARALLEL = 0x51
CKR_FUNCTION_NOT_SUPPORTED = 0x54
CKR_KEY_HANDLE_INVALID = 0x60
CKR_KEY_TYPE_INCONSISTENT = 0x63
CKR_KEY_FUNCTION_NOT_PERMITTED = 0x68
CKR_MECHANISM_INVALID = 0x70
CKR_MECHANISM_PARAM_INVALID = 0x71
CKR_OBJECT_HANDLE_INVALID = 0x82
CKR_OPERATION_ACTIVE = 0x90
CKR_OPERATION_NOT_INITIALIZED = 0x91
CKR_PIN_INCORRECT = 0xA0
CKR_PIN_INVALID = 0xA1
CKR_PIN_LEN_RANGE = 0xA2
CKR_PIN_EXPIRED = 0xA3
CKR_PIN_LOCKED = 0xA4
CKR_SESSION_CLOSED = 0xB0
CKR_SESSION_COUNT = 0xB1
CKR_SESSION_HANDLE_INVALID = 0xB3
CKR_SESSION_PARALLEL_NOT_SUPPORTED = 0xB4
CKR_SESSION_READ_ONLY = 0xB5
CKR_SIGNATURE_INVALID = 0xC0
CKR_SIGNATURE_LEN_RANGE = 0xC1
CKR_TEMPLATE_INCOMPLETE = 0xD0
CKR_TEMPLATE_INCONSISTENT = 0xD1
CKR_TOKEN_NOT_PRESENT = 0xE0
CKR_TOKEN_NOT_RECOGNIZED = 0xE1
CKR_USER_ALREADY_LOGGED_IN = 0x100
CKR_USER_NOT_LOGGED_IN = 0x101
CKR_USER_PIN_NOT_INITIALIZED = 0x102
CKR_USER_TYPE_INVALID = 0x103
CKR_BUFFER_TOO_SMALL = 0x150
CKR_CRYPTOKI_NOT_INITIALIZED = 0x190
CKR_CRYPTOKI_ALREADY_INITIALIZED = 0x191
CKR_VENDOR_DEFINED = 0x80000000

# ─────────────────────────────────────────────
# Object classes, certificate types, key types
# ─────────────────────────────────────────────

CKO_DATA = 0x00
CKO_CERTIFICATE = 0x01
CKO_PUBLIC_KEY = 0x02
CKO_PRIVATE_KEY = 0x03
CKO_SECRET_KEY = 0x04
CKO_HW_FEATURE = 0x05
CKO_DOMAIN_PARAMETERS = 0x06
CKO_MECHANISM = 0x07
CKO_OTP_KEY = 0x08
CKO_VENDOR_DEFINED = 0x80000000

CKC_X_509 = 0x00
CKC_X_509_ATTR_CERT = 0x01
CKC_WTLS = 0x02

CKK_RSA = 0x00
CKK_DSA = 0x01
CKK_DH = 0x02
CKK_EC = 0x03
CKK_X9_42_DH = 0x04
CKK_KEA = 0x05
CKK_GENERIC_SECRET = 0x10
CKK_DES = 0x13
CKK_DES2 = 0x14
CKK_DES3 = 0x15
CKK_AES = 0x1F
CKK_EC_EDWARDS = 0x40
CKK_EC_MONTGOMERY = 0x41

# ─────────────────────────────────────────────
# Attribute types
# ─────────────────────────────────────────────

CKF_ARRAY_ATTRIBUTE = 0x40000000

CKA_CLASS = 0x00
CKA_TOKEN = 0x01
CKA_PRIVATE = 0x02
CKA_LABEL = 0x03
CKA_APPLICATION = 0x10
CKA_VALUE = 0x11
CKA_OBJECT_ID = 0x12
CKA_CERTIFICATE_TYPE = 0x80
CKA_ISSUER = 0x81
CKA_SERIAL_NUMBER = 0x82
CKA_KEY_TYPE = 0x100
CKA_SUBJECT = 0x101
CKA_ID = 0x102
CKA_SENSITIVE = 0x103
CKA_ENCRYPT = 0x104
CKA_DECRYPT = 0x105
CKA_WRAP = 0x106
CKA_UNWRAP = 0x107
CKA_SIGN = 0x108
CKA_SIGN_RECOVER = 0x109
CKA_VERIFY = 0x10A
CKA_VERIFY_RECOVER = 0x10B
CKA_DERIVE = 0x10C
CKA_MODULUS = 0x120
CKA_MODULUS_BITS = 0x121
CKA_PUBLIC_EXPONENT = 0x122
CKA_PRIVATE_EXPONENT = 0x123
CKA_VALUE_LEN = 0x161
CKA_EXTRACTABLE = 0x162
CKA_LOCAL = 0x163
CKA_KEY_GEN_MECHANISM = 0x166
CKA_EC_PARAMS = 0x180
CKA_EC_POINT = 0x181
CKA_ALLOWED_MECHANISMS = CKF_ARRAY_ATTRIBUTE | 0x600
CKA_VENDOR_DEFINED = 0x80000000

# ─────────────────────────────────────────────
# Mechanisms
# ─────────────────────────────────────────────

CKM_RSA_PKCS_KEY_PAIR_GEN = 0x0000
CKM_RSA_PKCS = 0x0001
CKM_RSA_9796 = 0x0002
CKM_RSA_X_509 = 0x0003
CKM_MD5_RSA_PKCS = 0x0005
CKM_SHA1_RSA_PKCS = 0x0006
CKM_RSA_PKCS_OAEP = 0x0009
CKM_RSA_PKCS_PSS = 0x000D
CKM_SHA1_RSA_PKCS_PSS = 0x000E
CKM_DSA_KEY_PAIR_GEN = 0x0010
CKM_DSA = 0x0011
CKM_DSA_SHA1 = 0x0012
CKM_SHA256_RSA_PKCS = 0x0040
CKM_SHA384_RSA_PKCS = 0x0041
CKM_SHA512_RSA_PKCS = 0x0042
CKM_SHA256_RSA_PKCS_PSS = 0x0043
CKM_SHA384_RSA_PKCS_PSS = 0x0044
CKM_SHA512_RSA_PKCS_PSS = 0x0045
CKM_SHA224_RSA_PKCS = 0x0046
CKM_DES3_KEY_GEN = 0x0131
CKM_DES3_ECB = 0x0132
CKM_DES3_CBC = 0x0133
CKM_SHA_1 = 0x0220
CKM_SHA_1_HMAC = 0x0221
CKM_SHA256 = 0x0250
CKM_SHA256_HMAC = 0x0251
CKM_SHA384 = 0x0260
CKM_SHA512 = 0x0270
CKM_GENERIC_SECRET_KEY_GEN = 0x0350
CKM_EC_KEY_PAIR_GEN = 0x1040
CKM_ECDSA = 0x1041
CKM_ECDSA_SHA1 = 0x1042
CKM_ECDSA_SHA256 = 0x1044
CKM_ECDSA_SHA384 = 0x1045
CKM_ECDSA_SHA512 = 0x1046
CKM_ECDH1_DERIVE = 0x1050
CKM_EC_EDWARDS_KEY_PAIR_GEN = 0x1055
CKM_EDDSA = 0x1057
CKM_AES_KEY_GEN = 0x1080
CKM_AES_ECB = 0x1081
CKM_AES_CBC = 0x1082
CKM_AES_CBC_PAD = 0x1085
CKM_AES_GCM = 0x1087
CKM_VENDOR_DEFINED = 0x80000000

# ─────────────────────────────────────────────
# Users, session states, flags
# ─────────────────────────────────────────────

CKU_SO = 0
CKU_USER = 1

CKS_RO_PUBLIC_SESSION = 0
CKS_RO_USER_FUNCTIONS = 1
CKS_RW_PUBLIC_SESSION = 2
CKS_RW_USER_FUNCTIONS = 3
CKS_RW_SO_FUNCTIONS = 4

CKF_TOKEN_PRESENT = 0x00000001
CKF_REMOVABLE_DEVICE = 0x00000002
CKF_HW_SLOT = 0x00000004

CKF_RNG = 0x00000001
CKF_WRITE_PROTECTED = 0x00000002
CKF_LOGIN_REQUIRED = 0x00000004
CKF_USER_PIN_INITIALIZED = 0x00000008
CKF_RESTORE_KEY_NOT_NEEDED = 0x00000020
CKF_CLOCK_ON_TOKEN = 0x00000040
CKF_PROTECTED_AUTHENTICATION_PATH = 0x00000100
CKF_DUAL_CRYPTO_OPERATIONS = 0x00000200
CKF_TOKEN_INITIALIZED = 0x00000400
CKF_SECONDARY_AUTHENTICATION = 0x00000800
CKF_USER_PIN_COUNT_LOW = 0x00010000
CKF_USER_PIN_FINAL_TRY = 0x00020000
CKF_USER_PIN_LOCKED = 0x00040000
CKF_USER_PIN_TO_BE_CHANGED = 0x00080000
CKF_SO_PIN_COUNT_LOW = 0x00100000
CKF_SO_PIN_FINAL_TRY = 0x00200000
CKF_SO_PIN_LOCKED = 0x00400000
CKF_SO_PIN_TO_BE_CHANGED = 0x00800000

CKF_RW_SESSION = 0x00000002
CKF_SERIAL_SESSION = 0x00000004

CKF_HW = 0x00000001
CKF_ENCRYPT = 0x00000100
CKF_DECRYPT = 0x00000200
CKF_DIGEST = 0x00000400
CKF_SIGN = 0x00000800
CKF_SIGN_RECOVER = 0x00001000
CKF_VERIFY = 0x00002000
CKF_VERIFY_RECOVER = 0x00004000
CKF_GENERATE = 0x00008000
CKF_GENERATE_KEY_PAIR = 0x00010000
CKF_WRAP = 0x00020000
CKF_UNWRAP = 0x00040000
CKF_DERIVE = 0x00080000
CKF_EXTENSION = 0x80000000

FlagTable = Tuple[Tuple[str, int], ...]


def _flags(*names: str) -> FlagTable:
    return tuple((name, globals()[name]) for name in names)


SLOT_FLAGS: FlagTable = _flags(
    "CKF_TOKEN_PRESENT",
    "CKF_REMOVABLE_DEVICE",
    "CKF_HW_SLOT",
)

TOKEN_FLAGS: FlagTable = _flags(
    "CKF_RNG",
    "CKF_WRITE_PROTECTED",
    "CKF_LOGIN_REQUIRED",
    "CKF_USER_PIN_INITIALIZED",
    "CKF_RESTORE_KEY_NOT_NEEDED",
    "CKF_CLOCK_ON_TOKEN",
    "CKF_PROTECTED_AUTHENTICATION_PATH",
    "CKF_DUAL_CRYPTO_OPERATIONS",
    "CKF_TOKEN_INITIALIZED",
    "CKF_SECONDARY_AUTHENTICATION",
    "CKF_USER_PIN_COUNT_LOW",
    "CKF_USER_PIN_FINAL_TRY",
    "CKF_USER_PIN_LOCKED",
    "CKF_USER_PIN_TO_BE_CHANGED",
    "CKF_SO_PIN_COUNT_LOW",
    "CKF_SO_PIN_FINAL_TRY",
    "CKF_SO_PIN_LOCKED",
    "CKF_SO_PIN_TO_BE_CHANGED",
)

SESSION_FLAGS: FlagTable = _flags(
    "CKF_RW_SESSION",
    "CKF_SERIAL_SESSION",
)

MECHANISM_FLAGS: FlagTable = _flags(
    "CKF_HW",
    "CKF_ENCRYPT",
    "CKF_DECRYPT",
    "CKF_DIGEST",
    "CKF_SIGN",
    "CKF_SIGN_RECOVER",
    "CKF_VERIFY",
    "CKF_VERIFY_RECOVER",
    "CKF_GENERATE",
    "CKF_GENERATE_KEY_PAIR",
    "CKF_WRAP",
    "CKF_UNWRAP",
    "CKF_DERIVE",
    "CKF_EXTENSION",
)


# ─────────────────────────────────────────────
# Name lookups
# ─────────────────────────────────────────────

def _name_table(prefix: str) -> Mapping[int, str]:
    table = {}
    for name, value in list(globals().items()):
        if name.startswith(prefix) and isinstance(value, int):
            # first definition wins for aliased values
            table.setdefault(value, name)
    return MappingProxyType(table)


CKR_NAMES = _name_table("CKR_")
CKO_NAMES = _name_table("CKO_")
CKA_NAMES = _name_table("CKA_")
CKM_NAMES = _name_table("CKM_")


def ckr_name(rv: int) -> str:
    return CKR_NAMES.get(rv, f"{rv:#x}")


def cko_name(value: int) -> str:
    return CKO_NAMES.get(value, f"{value:#x}")


def cka_name(value: int) -> str:
    return CKA_NAMES.get(value, f"{value:#x}")


def ckm_name(value: int) -> str:
    return CKM_NAMES.get(value, f"{value:#x}")


def _parse_code(text: str, prefix: str, names: Mapping[int, str], kind: str) -> int:
    key = text.strip().upper()
    if not key.startswith(prefix):
        key = prefix + key
    for value, name in names.items():
        if name == key:
            return value
    try:
        return int(text, 0)
    except ValueError:
        raise ValueError(f"Unknown {kind}: {text}") from None


def parse_mechanism(text: str) -> int:
    """
    Accept ``CKM_SHA256_RSA_PKCS``, ``SHA256_RSA_PKCS`` or a number
    (decimal or ``0x`` prefixed).
    """
    return _parse_code(text, "CKM_", CKM_NAMES, "mechanism")


def parse_attribute(text: str) -> int:
    return _parse_code(text, "CKA_", CKA_NAMES, "attribute")


def parse_object_class(text: str) -> int:
    return _parse_code(text, "CKO_", CKO_NAMES, "object class")
