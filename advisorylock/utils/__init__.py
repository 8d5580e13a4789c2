"""Utility helpers for the advisory lock coordinator."""

from .logging_helpers import ContextLoggerAdapter, LOCK_CONTEXT_KEYS, enforce_context, ensure_logger
from .time_utils import now_utc

__all__ = ["ContextLoggerAdapter", "LOCK_CONTEXT_KEYS", "enforce_context", "ensure_logger", "now_utc"]
