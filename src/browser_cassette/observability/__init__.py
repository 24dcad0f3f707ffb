"""Observability module for per-run logging."""

from .logging import bind_capture_context, capture_logging, clear_capture_context, get_capture_logger

__all__ = [
    "bind_capture_context",
    "capture_logging",
    "clear_capture_context",
    "get_capture_logger",
]
