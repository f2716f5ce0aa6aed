"""Exception hierarchy for p11probe."""

from __future__ import annotations

from typing import Type

from .constants import CKR_OK, ckr_name


class ProbeError(Exception):
    """Base class for everything p11probe raises on purpose."""


class ProviderUnavailable(ProbeError):
    """The PKCS#11 module could not be loaded or initialized."""


class ConfigError(ProbeError):
    pass


class NoSlotsError(ProbeError):
    pass


class PinSourceError(ProbeError):
    pass


class TokenError(ProbeError):
    """A Cryptoki call returned something other than CKR_OK."""

    def __init__(self, rv: int, operation: str, detail: str | None = None) -> None:
        self.rv = rv
        self.operation = operation
        self.detail = detail
        message = f"{operation} failed (rv = {ckr_name(rv)})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)

    @property
    def name(self) -> str:
        return ckr_name(self.rv)


class AuthenticationError(TokenError):
    pass


class OperationError(TokenError):
    pass


class InitializationError(TokenError):
    """C_Initialize refused to start the module."""


class KeyLookupError(ProbeError):
    """No verification key, or more than one, shares the signing key's CKA_ID."""

    def __init__(self, key_id: bytes, matches: int) -> None:
        self.key_id = key_id
        self.matches = matches
        if matches == 0:
            reason = "no public key"
        else:
            reason = f"ambiguous: {matches} public keys"
        super().__init__(f"{reason} with CKA_ID {key_id.hex() or '<empty>'}")


class AttributeLengthError(ProbeError, ValueError):
    def __init__(self, got: int, expected: int, multiple: bool = False) -> None:
        self.got = got
        self.expected = expected
        self.multiple = multiple
        wanted = f"a multiple of {expected}" if multiple else str(expected)
        super().__init__(f"Unexpected length (got {got}, expected {wanted})")


def check_rv(rv: int, operation: str, error: Type[TokenError] = TokenError) -> None:
    if rv != CKR_OK:
        raise error(rv, operation)
