"""Chat use cases: admission, streaming with PII masking, non-streaming send."""
