"""Where the login PIN comes from."""

from __future__ import annotations

from typing import Protocol

import click
import typer

from .errors import PinSourceError


class PinSource(Protocol):
    def get_pin(self, prompt: str) -> bytearray:
        """Return a fresh buffer the caller owns and wipes."""


class StaticPinSource:
    """A PIN supplied up front (``--pin`` or ``P11PROBE_PIN``)."""

    def __init__(self, pin: str) -> None:
        self._pin = pin

    def get_pin(self, prompt: str) -> bytearray:
        return bytearray(self._pin.encode("utf-8"))


class PromptPinSource:
    """Ask on the terminal with echo turned off."""

    def __init__(self, max_length: int = 63) -> None:
        self.max_length = max_length

    def get_pin(self, prompt: str) -> bytearray:
        try:
            value = typer.prompt(prompt, hide_input=True, default="", show_default=False)
        except (click.Abort, EOFError) as e:
            raise PinSourceError("No PIN entered") from e
        pin = bytearray(value.encode("utf-8"))
        if len(pin) > self.max_length:
            pin[:] = bytes(len(pin))
            raise PinSourceError(f"PIN longer than {self.max_length} bytes")
        return pin
