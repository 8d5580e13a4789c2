"""Lock-aware logger adapters."""

from __future__ import annotations

import logging
from typing import Any, Mapping, MutableMapping, Optional, Tuple, Union

LoggerLike = Union[logging.Logger, logging.LoggerAdapter]

#: Present on every record emitted through :class:`ContextLoggerAdapter`,
#: ``None`` where they do not apply.
LOCK_CONTEXT_KEYS: Tuple[str, ...] = (
    "lock_id",
    "lock_key",
    "component",
    "event_type",
    "request_category",
)


class ContextLoggerAdapter(logging.LoggerAdapter):
    """Adapter carrying bound lock context; per-call ``extra`` wins on conflict."""

    def __init__(self, logger: logging.Logger, context: Optional[Mapping[str, Any]] = None):
        bound = dict.fromkeys(LOCK_CONTEXT_KEYS)
        bound.update(context or {})
        super().__init__(logger, bound)

    def process(self, msg: str, kwargs: MutableMapping[str, Any]):
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs

    def getChild(self, suffix: str) -> "ContextLoggerAdapter":  # noqa: N802 - mirror logging API
        return ContextLoggerAdapter(self.logger.getChild(suffix), self.extra)

    def bind(self, **context: Any) -> "ContextLoggerAdapter":
        return ContextLoggerAdapter(self.logger, {**self.extra, **context})

    def for_lock(self, lock_id: int, lock_key: Optional[str] = None) -> "ContextLoggerAdapter":
        """Adapter whose records all belong to one lock attempt."""

        return self.bind(lock_id=lock_id, lock_key=lock_key)


def enforce_context(
    logger: LoggerLike, default_ctx: Optional[Mapping[str, Any]] = None
) -> ContextLoggerAdapter:
    """Wrap ``logger`` so its records always carry :data:`LOCK_CONTEXT_KEYS`.

    Context already bound to an adapter is kept; ``default_ctx`` overrides it.
    """

    if isinstance(logger, logging.LoggerAdapter):
        context = dict(logger.extra or {})
        logger = logger.logger
    else:
        context = {}
    context.update(default_ctx or {})
    return ContextLoggerAdapter(logger, context)


def ensure_logger(logger: Optional[LoggerLike], name: str) -> ContextLoggerAdapter:
    """Return ``logger`` as a :class:`ContextLoggerAdapter`, or the module logger."""

    return enforce_context(logger if logger is not None else logging.getLogger(name))


__all__ = [
    "ContextLoggerAdapter",
    "LOCK_CONTEXT_KEYS",
    "LoggerLike",
    "enforce_context",
    "ensure_logger",
]
