"""Application package for the termbook study backend.

This package exposes the document store, tree helpers, services and
schemas used by the FastAPI application. It is intentionally
lightweight; individual modules contain the concrete implementations
and documentation.
"""
