"""Prompt templates for the AI PII detector.

Two templates using string.Template for safe substitution:
- DETECTION_SYSTEM_PROMPT: Role, enabled PII types and the output contract
- DETECTION_USER_PROMPT: Wraps the text under inspection

The detector asks for semantic findings only (type, value, confidence).
Offsets are resolved locally by searching the value in the scanned text,
so the model never has to count characters.
"""

from string import Template

# ---------------------------------------------------------------------------
# PII type descriptions shown to the model
# ---------------------------------------------------------------------------

PII_TYPE_DESCRIPTIONS: dict[str, str] = {
    "email": "Email addresses",
    "phone": "Phone numbers in any format",
    "ssn": "US Social Security numbers",
    "credit_card": "Payment card numbers",
    "ip": "IPv4 or IPv6 addresses",
    "name": "Full or partial names of real people (not brands, products or places)",
    "address": "Street addresses or other physical locations tied to a person",
    "date_of_birth": "Dates of birth",
    "passport": "Passport numbers",
    "bank_account": "Bank account or IBAN numbers",
}

DETECTION_SYSTEM_PROMPT = Template("""\
You are a precise PII (personally identifiable information) detector.

Find every occurrence of the following PII types in the text you are given:
$type_list

## Output contract
- Respond with a JSON array only. No prose, no explanations.
- Each item: {"piiType": "<one of: $type_names>", "value": "<exact text as it appears>", "confidence": <number between 0 and 1>}
- "value" must be copied character-for-character from the text.
- If the same value appears more than once, list it once per occurrence.
- If there is no PII, respond with [].
""")

DETECTION_USER_PROMPT = Template("""\
Detect PII in the text between the markers.

<<<TEXT
$text
TEXT>>>
""")


def build_system_prompt(pii_types: list[str]) -> str:
    """Render the detector system prompt for the enabled PII types."""
    type_list = "\n".join(
        f"- {pii_type}: {PII_TYPE_DESCRIPTIONS.get(pii_type, pii_type)}"
        for pii_type in pii_types
    )
    return DETECTION_SYSTEM_PROMPT.safe_substitute(
        type_list=type_list, type_names=", ".join(pii_types)
    )


def build_detection_prompt(text: str) -> str:
    return DETECTION_USER_PROMPT.safe_substitute(text=text)
