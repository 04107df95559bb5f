"""Deterministic regex layer of PII detection, plus the detection merger.

The regex layer covers the formats that have strict structure (email,
NANP phone, SSN, card numbers, IPv4). It runs synchronously on every
batch before the AI detector is awaited, and its results always win over
AI findings that overlap them.

Patterns are scanned in a fixed order (email, phone, ssn, credit_card,
ip). A match that overlaps a span already claimed by an earlier pattern
is skipped, so the first pattern to find a span owns it.
"""

import logging
import re

from chatshield.pii.types import REGEX_PII_TYPES, Detection, spans_overlap

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Detection patterns (compiled once, scanned in this order)
# ---------------------------------------------------------------------------

_PATTERNS: list[tuple[str, re.Pattern]] = [
    # local@domain.tld, TLD of at least two letters
    ("email", re.compile(r"\b[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}\b")),
    # 10-digit NANP, optional +1, area code starts 2-9, optional parens
    (
        "phone",
        re.compile(
            r"(?<![\w+])(?:\+1[-.\s]?)?\(?[2-9]\d{2}\)?[-.\s]?\d{3}[-.\s]?\d{4}\b"
        ),
    ),
    # 3-2-4 with consistent optional dashes; area not 000, 666 or 9xx
    ("ssn", re.compile(r"\b(?!000|666|9\d{2})\d{3}(-?)\d{2}\1\d{4}\b")),
    # Visa 13/16, MasterCard 51-55, Amex 34/37, Discover 6011/65
    (
        "credit_card",
        re.compile(
            r"\b(?:4\d{12}(?:\d{3})?|5[1-5]\d{14}|3[47]\d{13}|6(?:011|5\d{2})\d{12})\b"
        ),
    ),
    # IPv4, each octet 0-255
    (
        "ip",
        re.compile(
            r"\b(?:(?:25[0-5]|2[0-4]\d|[01]?\d\d?)\.){3}(?:25[0-5]|2[0-4]\d|[01]?\d\d?)\b"
        ),
    ),
]


def detect_pii_regex(
    text: str, enabled_types: list[str] | tuple[str, ...] | None = None
) -> list[Detection]:
    """Find structured PII in ``text``.

    Args:
        text: Text to scan. Offsets are relative to this string.
        enabled_types: PII types to scan for. ``None`` scans every
            regex-capable type. Non-regex types are ignored here.

    Returns:
        Non-overlapping detections sorted by ``start_offset``, each with
        confidence 1.0.
    """
    if not text:
        return []

    enabled = set(REGEX_PII_TYPES if enabled_types is None else enabled_types)
    used: list[tuple[int, int]] = []
    detections: list[Detection] = []

    for pii_type, pattern in _PATTERNS:
        if pii_type not in enabled:
            continue
        for match in pattern.finditer(text):
            start, end = match.span()
            if end <= start or spans_overlap(start, end, used):
                continue
            used.append((start, end))
            detections.append(Detection.create(pii_type, start, end, confidence=1.0))

    detections.sort(key=lambda d: d.start_offset)
    return detections


def merge_detections(
    regex_detections: list[Detection], ai_detections: list[Detection]
) -> list[Detection]:
    """Combine regex and AI findings for the same text.

    Regex findings are kept verbatim. AI findings overlapping any regex
    finding are dropped; the remaining AI findings are taken in ascending
    start order and the first one wins among mutually overlapping AI spans.

    Returns:
        Non-overlapping detections sorted by ``start_offset``.
    """
    merged = list(regex_detections)
    for candidate in sorted(ai_detections, key=lambda d: d.start_offset):
        if any(candidate.overlaps(existing) for existing in merged):
            logger.debug(
                "Dropping overlapping AI detection type=%s start=%d end=%d",
                candidate.pii_type,
                candidate.start_offset,
                candidate.end_offset,
            )
            continue
        merged.append(candidate)

    merged.sort(key=lambda d: d.start_offset)
    return merged
