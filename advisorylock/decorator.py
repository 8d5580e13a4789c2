"""Declarative advisory locking for coroutine methods.

Example::

    class OrderJobs:
        @with_advisory_lock("process-pending-orders")
        async def process_pending_orders(self) -> None:
            ...  # only one instance across the cluster runs this at a time

The decorator resolves the key to a lock id once, records the
``(class, method name) -> lock id`` binding when the class body is executed
and wraps the method.  At call time the wrapper looks for the lock service
linked to the receiving instance; without one it simply calls the method.
Decorators stacked on top should use ``functools.wraps`` so the lock id
stays visible to the startup registrar.
"""

from __future__ import annotations

import functools
import inspect
import types
import weakref
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from advisorylock.hashing import LockKey, resolve_lock_id

if TYPE_CHECKING:  # pragma: no cover - typing only
    from advisorylock.service import AdvisoryLockService


#: Instance attribute holding the link to the shared lock service.
LOCK_SERVICE_ATTR = "_advisory_lock_service"

#: Attribute exposing the resolved lock id on wrapped methods.
LOCK_ID_ATTR = "__advisory_lock_id__"


class LockBindingTable:
    """Registry of ``(owner type, method name) -> lock id`` bindings."""

    def __init__(self) -> None:
        self._bindings: "weakref.WeakKeyDictionary[type, Dict[str, int]]" = (
            weakref.WeakKeyDictionary()
        )

    def register(self, owner: type, name: str, lock_id: int) -> None:
        self._bindings.setdefault(owner, {})[name] = lock_id

    def get(self, owner: type, name: str) -> Optional[int]:
        """Return the binding declared directly on ``owner``."""

        declared = self._bindings.get(owner)
        if not declared:
            return None
        return declared.get(name)

    def lookup(self, owner: type, name: str) -> Optional[int]:
        """Return the binding for ``name`` following ``owner``'s MRO."""

        for klass in owner.__mro__:
            lock_id = self.get(klass, name)
            if lock_id is not None:
                return lock_id
        return None

    def bindings_for(self, owner: type) -> Dict[str, int]:
        merged: Dict[str, int] = {}
        for klass in reversed(owner.__mro__):
            merged.update(self._bindings.get(klass, {}))
        return merged

    def __contains__(self, owner: object) -> bool:
        return isinstance(owner, type) and bool(self.bindings_for(owner))


lock_bindings = LockBindingTable()


def attach_lock_service(instance: Any, service: "AdvisoryLockService") -> None:
    """Link ``instance`` to the shared lock service.

    The instance keeps the service alive: once linked, guarded methods never
    run without going through the lock.  Re-attaching replaces the link.
    """

    setattr(instance, LOCK_SERVICE_ATTR, service)


def get_lock_service(instance: Any) -> Optional["AdvisoryLockService"]:
    """Return the lock service linked to ``instance`` itself, if any."""

    try:
        link = vars(instance).get(LOCK_SERVICE_ATTR)
    except TypeError:
        # __slots__ instances keep the link in a slot instead of __dict__.
        link = getattr(instance, LOCK_SERVICE_ATTR, None)
    return link


class AdvisoryLockedMethod:
    """Descriptor produced by :func:`with_advisory_lock`."""

    def __init__(self, func: Callable[..., Any], lock_id: int, lock_key: LockKey) -> None:
        self.lock_id = lock_id
        self.lock_key = lock_key
        self.owner: Optional[type] = None
        self.name: Optional[str] = None
        self._wrapper = _build_wrapper(func, lock_id)
        functools.update_wrapper(self, func)
        # Outer decorators using functools.wraps copy this onto their wrapper.
        setattr(self, LOCK_ID_ATTR, lock_id)

    def __set_name__(self, owner: type, name: str) -> None:
        self.owner = owner
        self.name = name
        lock_bindings.register(owner, name, self.lock_id)

    def __get__(self, instance: Any, owner: Optional[type] = None) -> Any:
        if instance is None:
            return self._wrapper
        return types.MethodType(self._wrapper, instance)

    def __call__(self, instance: Any, *args: Any, **kwargs: Any) -> Any:
        """Call through when another decorator wraps this one."""

        return self._wrapper(instance, *args, **kwargs)

    def __repr__(self) -> str:
        return f"<AdvisoryLockedMethod {self.__qualname__} lock_id={self.lock_id}>"


def _build_wrapper(func: Callable[..., Any], lock_id: int) -> Callable[..., Any]:
    @functools.wraps(func)
    async def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
        service = get_lock_service(self)
        if service is None:
            return await func(self, *args, **kwargs)
        # Only coordination is guaranteed; the guarded result is not surfaced.
        await service.with_lock(lock_id, lambda: func(self, *args, **kwargs))
        return None

    setattr(wrapper, LOCK_ID_ATTR, lock_id)
    return wrapper


def with_advisory_lock(key: LockKey) -> Callable[[Callable[..., Any]], AdvisoryLockedMethod]:
    """Guard a coroutine method with a transaction-scoped advisory lock.

    Args:
        key: A string key (hashed to a lock id) or a numeric lock id.
    """

    lock_id = resolve_lock_id(key)

    def decorator(func: Callable[..., Any]) -> AdvisoryLockedMethod:
        if not inspect.iscoroutinefunction(func):
            raise TypeError(
                f"with_advisory_lock requires an async method, got {func!r}"
            )
        return AdvisoryLockedMethod(func, lock_id, key)

    return decorator


__all__ = [
    "AdvisoryLockedMethod",
    "LOCK_ID_ATTR",
    "LOCK_SERVICE_ATTR",
    "LockBindingTable",
    "attach_lock_service",
    "get_lock_service",
    "lock_bindings",
    "with_advisory_lock",
]
