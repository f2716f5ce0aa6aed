"""
p11probe - PKCS#11 token probe

Loads a Cryptoki module, describes its slots and token, dumps every object
it can see and runs a sign/verify round-trip. All operations are local.
"""

__version__ = "0.1.0"

from .codec import (
    AttributeHandler,
    AttributeResult,
    dump_attributes,
    fetch_attribute,
    read_attribute,
)
from .errors import (
    AttributeLengthError,
    AuthenticationError,
    ConfigError,
    InitializationError,
    KeyLookupError,
    NoSlotsError,
    OperationError,
    PinSourceError,
    ProbeError,
    ProviderUnavailable,
    TokenError,
)
from .finder import collect_objects, find_objects
from .loader import load_provider
from .probe import run_probe
from .provider import TokenProvider
from .session import SessionState, TokenSession, inspect_objects
from .signing import (
    SignatureResult,
    VerificationResult,
    sign_and_verify,
    verify_signature,
)
from .utils import render_flags

__all__ = [
    "AttributeHandler",
    "AttributeResult",
    "dump_attributes",
    "fetch_attribute",
    "read_attribute",
    "AttributeLengthError",
    "AuthenticationError",
    "ConfigError",
    "InitializationError",
    "KeyLookupError",
    "NoSlotsError",
    "OperationError",
    "PinSourceError",
    "ProbeError",
    "ProviderUnavailable",
    "TokenError",
    "collect_objects",
    "find_objects",
    "load_provider",
    "run_probe",
    "TokenProvider",
    "SessionState",
    "TokenSession",
    "inspect_objects",
    "SignatureResult",
    "VerificationResult",
    "sign_and_verify",
    "verify_signature",
    "render_flags",
]
