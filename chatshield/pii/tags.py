"""Inline PII tag codec.

In ``inline_tags`` persistence mode the assistant message is stored with
each detected span wrapped in a tag::

    Contact <pii type="email" id="5b0c..." confidence="1.00">a@b.co</pii> today

The whole message is HTML-escaped (``&``, ``<``, ``>``), so text from the
reply can never open or close a tag of its own. ``parse_tags`` strips the
tags back out, unescapes, and reports where each span sits in the plain
text. The codec applies to assistant messages only.
"""

import logging
import re
import uuid

from pydantic import BaseModel, Field

from chatshield.pii.types import Detection

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(
    r'<pii\s+type="([^"]+)"\s+id="([^"]+)"(?:\s+confidence="[^"]+")?>([^<]*)</pii>'
)
_OPEN_RE = re.compile(r"<pii\s+")
_CLOSE_TAG = "</pii>"


class MaskRegion(BaseModel):
    """A tagged span, located in the untagged text."""

    start_offset: int
    end_offset: int
    pii_type: str
    pii_id: str
    original_length: int


class ParsedContent(BaseModel):
    text: str
    mask_regions: list[MaskRegion] = Field(default_factory=list)


class TagValidation(BaseModel):
    valid: bool
    errors: list[str] = Field(default_factory=list)


def escape_html(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def unescape_html(text: str) -> str:
    return text.replace("&lt;", "<").replace("&gt;", ">").replace("&amp;", "&")


def _open_tag(detection: Detection) -> str:
    attrs = f'type="{detection.pii_type}" id="{uuid.uuid4()}"'
    if detection.confidence is not None:
        attrs += f' confidence="{detection.confidence:.2f}"'
    return f"<pii {attrs}>"


def insert_tags(content: str, detections: list[Detection]) -> str:
    """Wrap every detected span of ``content`` in a ``<pii>`` tag.

    All text, inside and outside the tags, is HTML-escaped, so markup in
    the reply itself (a literal ``<pii>`` included) never parses as a tag.
    Detections whose offsets do not fit ``content`` or that overlap an
    earlier span are logged and skipped.
    """
    parts: list[str] = []
    last_end = 0
    for detection in sorted(detections, key=lambda d: d.start_offset):
        if detection.end_offset > len(content) or detection.start_offset < last_end:
            logger.warning(
                "Skipping PII tag with invalid offsets type=%s start=%d end=%d len=%d",
                detection.pii_type,
                detection.start_offset,
                detection.end_offset,
                len(content),
            )
            continue
        parts.append(escape_html(content[last_end:detection.start_offset]))
        parts.append(_open_tag(detection))
        parts.append(escape_html(content[detection.start_offset:detection.end_offset]))
        parts.append(_CLOSE_TAG)
        last_end = detection.end_offset
    parts.append(escape_html(content[last_end:]))
    return "".join(parts)


def parse_tags(tagged: str) -> ParsedContent:
    """Strip ``<pii>`` tags, returning the plain text and the tagged regions."""
    parts: list[str] = []
    regions: list[MaskRegion] = []
    plain_length = 0
    last_end = 0

    for match in _TAG_RE.finditer(tagged):
        before = unescape_html(tagged[last_end:match.start()])
        parts.append(before)
        plain_length += len(before)

        pii_type, pii_id, escaped = match.groups()
        original = unescape_html(escaped)
        regions.append(
            MaskRegion(
                start_offset=plain_length,
                end_offset=plain_length + len(original),
                pii_type=pii_type,
                pii_id=pii_id,
                original_length=len(original),
            )
        )
        parts.append(original)
        plain_length += len(original)
        last_end = match.end()

    parts.append(unescape_html(tagged[last_end:]))
    return ParsedContent(text="".join(parts), mask_regions=regions)


def validate_tags(content: str) -> TagValidation:
    """Check that ``<pii>`` tags are balanced and not nested."""
    errors: list[str] = []

    open_count = len(_OPEN_RE.findall(content))
    close_count = content.count(_CLOSE_TAG)
    if open_count != close_count:
        errors.append(f"Mismatched PII tags: {open_count} open, {close_count} close")

    depth = 0
    position = 0
    while True:
        open_match = _OPEN_RE.search(content, position)
        close_index = content.find(_CLOSE_TAG, position)
        if open_match is None and close_index == -1:
            break
        if open_match is not None and (close_index == -1 or open_match.start() < close_index):
            if depth > 0:
                errors.append(f"Nested PII tags detected at position {open_match.start()}")
            depth += 1
            position = open_match.end()
        else:
            depth = max(0, depth - 1)
            position = close_index + len(_CLOSE_TAG)

    return TagValidation(valid=not errors, errors=errors)
