"""Startup wiring of the shared lock service into component instances."""

from __future__ import annotations

import types
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, List, Mapping, Optional, Protocol, Tuple, Union

from advisorylock.decorator import LOCK_ID_ATTR, attach_lock_service, lock_bindings
from advisorylock.metrics import LOCK_REGISTRATIONS_TOTAL
from advisorylock.service import AdvisoryLockService
from advisorylock.utils.logging_helpers import LoggerLike, ensure_logger


class ComponentSource(Protocol):
    def items(self) -> Iterable[Tuple[str, Any]]:
        ...


_NON_COMPONENT_TYPES = (
    type,
    types.ModuleType,
    types.FunctionType,
    types.BuiltinFunctionType,
    types.MethodType,
    str,
    bytes,
    bytearray,
    int,
    float,
    complex,
    bool,
)


@dataclass(frozen=True)
class RegisteredMethod:
    component_name: str
    method_name: str
    lock_id: int


def _is_component(instance: Any) -> bool:
    return instance is not None and not isinstance(instance, _NON_COMPONENT_TYPES)


class AdvisoryLockRegistrar:
    """Scans live components once and links those with guarded methods.

    One guarded method is enough to link an instance: the link is per
    instance, while each method carries its own lock id.
    """

    def __init__(
        self,
        registry: Union[ComponentSource, Mapping[str, Any]],
        lock_service: AdvisoryLockService,
        *,
        logger: Optional[LoggerLike] = None,
    ) -> None:
        self._registry = registry
        self._lock_service = lock_service
        self._logger = ensure_logger(logger, __name__)
        self.registrations: List[RegisteredMethod] = []

    async def on_startup(self) -> List[RegisteredMethod]:
        return self.register_all()

    def register_all(self) -> List[RegisteredMethod]:
        registrations: List[RegisteredMethod] = []
        for name, instance in self._registry.items():
            if not _is_component(instance):
                continue
            registration = self._register_instance(name, instance)
            if registration is not None:
                registrations.append(registration)

        self.registrations = registrations
        self._logger.info(
            "Advisory lock registration completed",
            extra={
                "event_type": "advisory_lock_registration_complete",
                "registered_components": len(registrations),
            },
        )
        return registrations

    def _register_instance(self, name: str, instance: Any) -> Optional[RegisteredMethod]:
        for method_name, lock_id in self._iter_bound_methods(name, instance):
            try:
                attach_lock_service(instance, self._lock_service)
            except Exception as exc:
                self._logger.warning(
                    "Unable to link advisory lock service to %s: %s",
                    name,
                    exc,
                    extra={
                        "event_type": "advisory_lock_link_failed",
                        "component": name,
                        "method": method_name,
                        "error_type": type(exc).__name__,
                    },
                )
                return None

            LOCK_REGISTRATIONS_TOTAL.inc()
            self._logger.info(
                "Registered advisory lock on %s.%s (lock_id=%s)",
                name,
                method_name,
                lock_id,
                extra={
                    "event_type": "advisory_lock_registered",
                    "component": name,
                    "method": method_name,
                    "lock_id": lock_id,
                },
            )
            return RegisteredMethod(name, method_name, lock_id)
        return None

    def _iter_bound_methods(self, name: str, instance: Any) -> Iterator[Tuple[str, int]]:
        for klass in type(instance).__mro__:
            if klass is object:
                continue
            for method_name in list(vars(klass)):
                if method_name == "__init__":
                    continue
                try:
                    member = getattr(klass, method_name)
                    if not callable(member):
                        continue
                    lock_id = lock_bindings.get(klass, method_name)
                    if lock_id is None:
                        lock_id = getattr(member, LOCK_ID_ATTR, None)
                except Exception as exc:
                    self._logger.debug(
                        "Skipping member %s.%s during advisory lock scan: %s",
                        name,
                        method_name,
                        exc,
                        extra={
                            "event_type": "advisory_lock_member_inspection_failed",
                            "component": name,
                            "method": method_name,
                            "error_type": type(exc).__name__,
                        },
                    )
                    continue
                if isinstance(lock_id, int) and not isinstance(lock_id, bool):
                    yield method_name, lock_id


__all__ = ["AdvisoryLockRegistrar", "ComponentSource", "RegisteredMethod"]
