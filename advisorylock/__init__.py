"""PostgreSQL advisory-lock coordination for jobs shared by many instances."""

from advisorylock.decorator import attach_lock_service, get_lock_service, lock_bindings, with_advisory_lock
from advisorylock.hashing import hash_key, resolve_lock_id
from advisorylock.registrar import AdvisoryLockRegistrar, RegisteredMethod
from advisorylock.registry import ComponentRegistry
from advisorylock.service import AdvisoryLockService, LockOutcome, LockResult

__all__ = [
    "AdvisoryLockRegistrar",
    "AdvisoryLockService",
    "ComponentRegistry",
    "LockOutcome",
    "LockResult",
    "RegisteredMethod",
    "attach_lock_service",
    "get_lock_service",
    "hash_key",
    "lock_bindings",
    "resolve_lock_id",
    "with_advisory_lock",
]
