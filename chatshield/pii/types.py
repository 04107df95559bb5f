"""Core PII types.

``Detection`` is the single currency passed between the detectors, the
merger, the stream orchestrator, the tag codec and the stores. Offsets are
half-open ``[start_offset, end_offset)`` character offsets into the untagged
message text.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

PiiType = Literal[
    "email",
    "phone",
    "ssn",
    "credit_card",
    "ip",
    "name",
    "address",
    "date_of_birth",
    "passport",
    "bank_account",
]

# Types with strict regex patterns (fixed lengths, format validation).
REGEX_PII_TYPES: tuple[str, ...] = ("email", "phone", "ssn", "credit_card", "ip")

KNOWN_PII_TYPES: frozenset[str] = frozenset(PiiType.__args__)

PII_TYPE_TO_PLACEHOLDER: dict[str, str] = {
    "email": "[EMAIL]",
    "phone": "[PHONE]",
    "ssn": "[SSN]",
    "credit_card": "[CREDIT_CARD]",
    "ip": "[IP]",
    "name": "[NAME]",
    "address": "[ADDRESS]",
    "date_of_birth": "[DATE_OF_BIRTH]",
    "passport": "[PASSPORT]",
    "bank_account": "[BANK_ACCOUNT]",
}


class Detection(BaseModel):
    """A single PII finding. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    pii_type: PiiType
    start_offset: int = Field(ge=0)
    end_offset: int
    placeholder: str
    confidence: float | None = Field(default=0.5, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def validate_span(self) -> "Detection":
        if self.end_offset <= self.start_offset:
            raise ValueError(
                f"end_offset ({self.end_offset}) must be greater than "
                f"start_offset ({self.start_offset})"
            )
        return self

    @classmethod
    def create(
        cls, pii_type: str, start: int, end: int, confidence: float | None = 0.5
    ) -> "Detection":
        """Build a detection with the standard placeholder for its type."""
        return cls(
            pii_type=pii_type,
            start_offset=start,
            end_offset=end,
            placeholder=PII_TYPE_TO_PLACEHOLDER[pii_type],
            confidence=confidence,
        )

    @property
    def length(self) -> int:
        return self.end_offset - self.start_offset

    def overlaps(self, other: "Detection") -> bool:
        return self.start_offset < other.end_offset and self.end_offset > other.start_offset

    def shifted(self, base_offset: int) -> "Detection":
        """Return a copy with both offsets moved by ``base_offset``."""
        return self.model_copy(
            update={
                "start_offset": self.start_offset + base_offset,
                "end_offset": self.end_offset + base_offset,
            }
        )


class DetectionResponse(BaseModel):
    """Outcome of one AI detector call. ``success=False`` never carries detections."""

    detections: list[Detection] = Field(default_factory=list)
    success: bool = True
    error: str | None = None


def spans_overlap(start: int, end: int, ranges: list[tuple[int, int]]) -> bool:
    """True if ``[start, end)`` intersects any of ``ranges``."""
    return any(start < e and end > s for s, e in ranges)
