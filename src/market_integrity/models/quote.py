"""Quote and resolution decision models."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Quote(BaseModel):
    """One source's reported value for a market."""

    model_config = ConfigDict(frozen=True)

    market_id: str
    value: float | str
    source: str
    confidence: float = Field(ge=0.0, le=1.0)
    observed_at: datetime
    healthy: bool = True

    @property
    def is_numeric(self) -> bool:
        return isinstance(self.value, float)


class ResolutionDecision(BaseModel):
    """Outcome of one resolution attempt: RETRY, or RESOLVED with a value.

    RESOLVED confidence is strictly positive but not capped at 1.0; a
    value above 1 means more sources agreed than the quorum required.
    """

    model_config = ConfigDict(frozen=True)

    status: Literal["RETRY", "RESOLVED"]
    value: float | str | None = None
    confidence: float | None = None

    @model_validator(mode="after")
    def _check_payload(self) -> ResolutionDecision:
        if self.status == "RESOLVED":
            if self.value is None:
                raise ValueError("RESOLVED decision requires a value")
            if self.confidence is None or self.confidence <= 0:
                raise ValueError("RESOLVED decision requires confidence > 0")
        elif self.value is not None or self.confidence is not None:
            raise ValueError("RETRY decision carries no value or confidence")
        return self

    @classmethod
    def retry(cls) -> ResolutionDecision:
        return cls(status="RETRY")

    @classmethod
    def resolved(cls, value: float | str, confidence: float) -> ResolutionDecision:
        return cls(status="RESOLVED", value=value, confidence=confidence)

    @property
    def is_resolved(self) -> bool:
        return self.status == "RESOLVED"
