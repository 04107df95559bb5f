"""Chat service with streaming PII detection and retroactive masking."""
