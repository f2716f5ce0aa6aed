from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError, field_validator, model_validator

from .constants import CKM_RSA_PKCS, parse_attribute, parse_mechanism, parse_object_class
from .errors import ConfigError
from .logging_config import StructuredLogger

logger = StructuredLogger("config")


def _expand(template: str, obj: int, attribute: int, slot: int) -> str:
    out = []
    chars = iter(template)
    for ch in chars:
        if ch != "%":
            out.append(ch)
            continue
        item = next(chars, "")
        if item == "o":
            out.append(str(obj))
        elif item == "a":
            out.append(f"{attribute:x}")
        elif item == "s":
            out.append(str(slot))
        elif item == "%":
            out.append("%")
        elif item:
            raise ValueError(f"unknown template item %{item} in {template!r}")
        else:
            raise ValueError(f"template {template!r} ends with a lone %")
    return "".join(out)


class AttributeExport(BaseModel):
    """
    One ``--dump-attr ATTR[@OBJ]=TEMPLATE`` request.

    The template may contain ``%o`` (object handle), ``%a`` (attribute
    number, hex), ``%s`` (slot) and ``%%``.
    """

    model_config = ConfigDict(frozen=True)

    attribute: int = Field(..., ge=0)
    template: str = Field(..., min_length=1)
    object: Optional[int] = Field(None, ge=0)

    @field_validator("template")
    @classmethod
    def check_template(cls, v: str) -> str:
        _expand(v, 0, 0, 0)
        return v

    @classmethod
    def parse(cls, text: str) -> "AttributeExport":
        target, sep, template = text.partition("=")
        if not sep or not template:
            raise ValueError(f"expected ATTR[@OBJECT]=FILE, got {text!r}")
        attribute, _, obj = target.partition("@")
        return cls(
            attribute=parse_attribute(attribute),
            template=template,
            object=int(obj, 0) if obj else None,
        )

    def path_for(self, obj: int, slot: int) -> Path:
        return Path(_expand(self.template, obj, self.attribute, slot))


class ProbeConfig(BaseModel):
    module: str = Field(..., min_length=1)
    slot: Optional[int] = Field(None, ge=0)
    object_class: Optional[int] = Field(None, ge=0)
    object: Optional[int] = Field(None, ge=0)
    exports: List[AttributeExport] = Field(default_factory=list)
    login: bool = True
    pin: Optional[SecretStr] = None
    sign_text: Optional[str] = None
    sign_zeros: Optional[int] = Field(None, ge=0)
    verify_data: Optional[Path] = None
    verify_signature: Optional[Path] = None
    mechanism: int = CKM_RSA_PKCS
    require_token: bool = True
    report: Optional[Path] = None

    @field_validator("mechanism", mode="before")
    @classmethod
    def parse_mechanism_name(cls, v):
        if isinstance(v, str):
            return parse_mechanism(v)
        return v

    @field_validator("object_class", mode="before")
    @classmethod
    def parse_class_name(cls, v):
        if isinstance(v, str):
            return parse_object_class(v)
        return v

    @field_validator("exports", mode="before")
    @classmethod
    def parse_exports(cls, v):
        return [AttributeExport.parse(item) if isinstance(item, str) else item for item in v or []]

    @model_validator(mode="after")
    def check_combinations(self) -> "ProbeConfig":
        if (self.verify_data is None) != (self.verify_signature is None):
            raise ValueError("--verify-data and --verify-sig must be given together")
        if self.sign_text is not None and self.sign_zeros is not None:
            raise ValueError("--sign and --sign-zeros are mutually exclusive")
        return self

    @property
    def sign_payload(self) -> Optional[bytes]:
        if self.sign_text is not None:
            return self.sign_text.encode("utf-8")
        if self.sign_zeros is not None:
            return bytes(self.sign_zeros)
        return None

    @property
    def verify_requested(self) -> bool:
        return self.verify_data is not None


def build_config(**values) -> ProbeConfig:
    """Validate CLI values into a ProbeConfig; any problem becomes ConfigError."""
    try:
        config = ProbeConfig(**values)
    except (ValidationError, ValueError) as e:
        logger.error("Invalid options", error=str(e))
        raise ConfigError(str(e)) from e
    logger.debug("Configuration", module=config.module, slot=config.slot, mechanism=config.mechanism)
    return config
