"""PII detection, masking, tagging and bookkeeping."""
