"""Shared infrastructure: error types and structured logging."""
