"""Tests for length-preserving masking and log redaction."""

from unittest.mock import patch

from chatshield.pii.masking import mask_pii, mask_region, redact_for_log
from chatshield.pii.types import Detection


class TestMaskPii:
    """Test mask_pii."""

    def test_length_preserved(self):
        text = "Mail a@b.co now"
        masked = mask_pii(text, [Detection.create("email", 5, 11)])
        assert masked == "Mail •••••• now"
        assert len(masked) == len(text)

    def test_custom_mask_char(self):
        assert mask_pii("id 123", [Detection.create("ssn", 3, 6)], mask_char="*") == "id ***"

    def test_multiple_spans(self):
        masked = mask_pii("Ann and Ben", [Detection.create("name", 8, 11), Detection.create("name", 0, 3)])
        assert masked == "••• and •••"

    def test_out_of_range_skipped(self):
        assert mask_pii("tiny", [Detection.create("name", 2, 40)]) == "tiny"

    def test_empty_inputs(self):
        assert mask_pii("", [Detection.create("name", 0, 1)]) == ""
        assert mask_pii("text", []) == "text"


class TestMaskRegion:
    """Test the wire view of detections."""

    def test_camel_case_keys(self):
        assert mask_region(Detection.create("ip", 20, 31)) == {
            "startOffset": 20,
            "endOffset": 31,
            "piiType": "ip",
            "originalLength": 11,
        }


class TestRedactForLog:
    """Test redact_for_log."""

    def test_masks_regex_pii(self):
        redacted = redact_for_log("user a@b.co from 10.0.0.1")
        assert "a@b.co" not in redacted
        assert "10.0.0.1" not in redacted
        assert redacted.startswith("user ")

    def test_clean_text_unchanged(self):
        assert redact_for_log("nothing sensitive here") == "nothing sensitive here"

    def test_fails_closed(self):
        """An internal error returns the placeholder, never the input."""
        with patch("chatshield.pii.masking.detect_pii_regex", side_effect=RuntimeError("bad")):
            assert redact_for_log("secret a@b.co") == "[PII_REDACTION_ERROR]"
