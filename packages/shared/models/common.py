from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .enums import EvidenceQuality


LEGAL_DISCLAIMER = (
    "This system does not replace a medical expert. "
    "It is a decision-support tool for legal review only."
)


class CamelModel(BaseModel):
    """Base for records exchanged with the storage and presentation layers (camelCase on the wire)."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def coerce_optional_str(value: Any) -> Any:
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def coerce_optional_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return None


class ClaimSource(CamelModel):
    page: Optional[int] = None
    line_range: Optional[list[int]] = None
    snippet: Optional[str] = None

    @field_validator("page", mode="before")
    @classmethod
    def _page(cls, v: Any) -> Optional[int]:
        return coerce_optional_int(v)

    @field_validator("line_range", mode="before")
    @classmethod
    def _line_range(cls, v: Any) -> Optional[list[int]]:
        if not isinstance(v, (list, tuple)):
            return None
        values = [coerce_optional_int(x) for x in v]
        if len(values) != 2 or any(x is None for x in values):
            return None
        return values

    @field_validator("snippet", mode="before")
    @classmethod
    def _snippet(cls, v: Any) -> Any:
        return coerce_optional_str(v)


class Reliability(CamelModel):
    level: EvidenceQuality
    rationale: str = Field(min_length=1)
