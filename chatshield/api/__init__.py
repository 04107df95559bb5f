"""HTTP surface: FastAPI app, middleware, request/response models."""
