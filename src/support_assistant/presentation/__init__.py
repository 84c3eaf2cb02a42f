"""Presentation layer: FastAPI routers and HTTP schemas."""
