"""Length-preserving PII masking.

Masking replaces every character of a detected span with a mask character
so that offsets computed against the original text stay valid against the
masked text. The same function backs three paths:

- Retroactive masking on the client (via the ``mask_region`` wire view)
- Debug logging of scanned batches
- ``redact_for_log`` for any log line that would otherwise carry message text

``redact_for_log`` fails CLOSED: if masking errors, a placeholder is
returned instead of the original text.
"""

import logging

from chatshield.pii.regex_detector import detect_pii_regex
from chatshield.pii.types import Detection

logger = logging.getLogger(__name__)

DEFAULT_MASK_CHAR = "•"


def mask_pii(
    text: str, detections: list[Detection], mask_char: str = DEFAULT_MASK_CHAR
) -> str:
    """Replace each detected span with ``mask_char`` repeated.

    Spans are applied in descending start order. Spans that fall outside
    ``text`` are skipped.

    Args:
        text: Original (untagged) text.
        detections: Detections with offsets into ``text``.
        mask_char: Single replacement character.

    Returns:
        Masked text of the same length as ``text``.
    """
    if not text or not detections:
        return text

    chars = list(text)
    for detection in sorted(detections, key=lambda d: d.start_offset, reverse=True):
        if detection.end_offset > len(chars):
            logger.warning(
                "Skipping out-of-range mask start=%d end=%d len=%d",
                detection.start_offset,
                detection.end_offset,
                len(chars),
            )
            continue
        chars[detection.start_offset:detection.end_offset] = mask_char * detection.length
    return "".join(chars)


def mask_region(detection: Detection) -> dict:
    """Wire shape of one region the client must mask."""
    return {
        "startOffset": detection.start_offset,
        "endOffset": detection.end_offset,
        "piiType": detection.pii_type,
        "originalLength": detection.length,
    }


def redact_for_log(text: str) -> str:
    """Mask every regex-detectable PII value in ``text`` for logging.

    Args:
        text: Text that is about to reach a log line.

    Returns:
        Masked text, or ``"[PII_REDACTION_ERROR]"`` if masking failed.
    """
    if not text:
        return text

    try:
        return mask_pii(text, detect_pii_regex(text))
    except Exception:
        logger.warning("PII log redaction failed; returning placeholder", exc_info=True)
        return "[PII_REDACTION_ERROR]"
