"""Service Registry for Dependency Injection.

Maps a capability (usually an abstract class, any hashable key works) to a
factory and a lifetime policy:

- ``SINGLETON``: built on first resolution, shared by every scope
- ``SCOPED``: built once per :class:`ServiceScope` (one per request)
- ``TRANSIENT``: built on every resolution

Factories receive the provider doing the resolution (the registry itself or
a scope), so they can pull in their own dependencies::

    services.add_scoped(UserLogicService, factory=lambda p: UserLogic(p.resolve(Clock)))
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Hashable, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from .errors import ConfigurationError

LOGGER = logging.getLogger(__name__)


class Lifetime(Enum):
    """How long a resolved instance lives."""

    TRANSIENT = "transient"
    SCOPED = "scoped"
    SINGLETON = "singleton"


class ServiceProvider(Protocol):
    def resolve(self, capability: Hashable) -> Any: ...


Factory = Callable[[ServiceProvider], Any]


@dataclass(frozen=True)
class ServiceRegistration:
    capability: Hashable
    factory: Factory
    lifetime: Lifetime


def _name(capability: Any) -> str:
    return getattr(capability, "__name__", str(capability))


class ServiceRegistry:
    """Explicit capability -> factory registry with lifetime policies."""

    def __init__(self):
        self._registrations: dict[Hashable, ServiceRegistration] = {}
        self._singletons: dict[Hashable, Any] = {}
        self._lock = threading.RLock()
        self._local = threading.local()
        self._frozen = False

    # Registration ---------------------------------------------------------
    def register(
        self,
        capability: Hashable,
        factory: Factory,
        lifetime: Lifetime = Lifetime.TRANSIENT,
    ) -> None:
        """Register ``factory`` as the provider for ``capability``."""
        if not callable(factory):
            raise ConfigurationError(f"Factory for {_name(capability)} is not callable")
        with self._lock:
            if self._frozen:
                raise ConfigurationError(
                    f"Cannot register {_name(capability)}: registry is frozen"
                )
            if capability in self._registrations:
                LOGGER.debug("Replacing registration for: %s", _name(capability))
            self._registrations[capability] = ServiceRegistration(capability, factory, lifetime)
            self._singletons.pop(capability, None)
            LOGGER.debug("Registered %s service: %s", lifetime.value, _name(capability))

    def _add(
        self,
        capability: Hashable,
        implementation: Callable[[], Any] | None,
        factory: Factory | None,
        lifetime: Lifetime,
    ) -> None:
        if factory is None:
            impl = implementation if implementation is not None else capability
            if not callable(impl):
                raise ConfigurationError(f"No factory or implementation for {_name(capability)}")

            def factory(_provider: ServiceProvider) -> Any:
                return impl()

        self.register(capability, factory, lifetime)

    def add_singleton(
        self,
        capability: Hashable,
        implementation: Callable[[], Any] | None = None,
        *,
        factory: Factory | None = None,
    ) -> None:
        self._add(capability, implementation, factory, Lifetime.SINGLETON)

    def add_scoped(
        self,
        capability: Hashable,
        implementation: Callable[[], Any] | None = None,
        *,
        factory: Factory | None = None,
    ) -> None:
        self._add(capability, implementation, factory, Lifetime.SCOPED)

    def add_transient(
        self,
        capability: Hashable,
        implementation: Callable[[], Any] | None = None,
        *,
        factory: Factory | None = None,
    ) -> None:
        self._add(capability, implementation, factory, Lifetime.TRANSIENT)

    def add_instance(self, capability: Hashable, instance: Any) -> None:
        """Register an already-built singleton."""
        self.register(capability, lambda _provider: instance, Lifetime.SINGLETON)
        with self._lock:
            self._singletons[capability] = instance

    def freeze(self) -> None:
        """Close registration; called once the host is built."""
        with self._lock:
            self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    # Inspection -----------------------------------------------------------
    def is_registered(self, capability: Hashable) -> bool:
        with self._lock:
            return capability in self._registrations

    def registration(self, capability: Hashable) -> ServiceRegistration:
        with self._lock:
            try:
                return self._registrations[capability]
            except KeyError:
                raise ConfigurationError(
                    f"Service not registered: {_name(capability)}"
                ) from None

    def list_services(self) -> dict[str, str]:
        """Registered capability names and their lifetimes."""
        with self._lock:
            return {_name(cap): reg.lifetime.value for cap, reg in self._registrations.items()}

    def validate(self, capabilities: Iterable[Hashable]) -> None:
        """Raise ConfigurationError naming every unregistered capability."""
        missing = [_name(cap) for cap in capabilities if not self.is_registered(cap)]
        if missing:
            raise ConfigurationError("Unregistered capabilities: " + ", ".join(missing))

    # Resolution -----------------------------------------------------------
    def create_scope(self) -> ServiceScope:
        return ServiceScope(self)

    def resolve(self, capability: Hashable, scope: ServiceScope | None = None) -> Any:
        """Resolve ``capability``; scoped services need ``scope``."""
        registration = self.registration(capability)
        if registration.lifetime is Lifetime.SINGLETON:
            return self._resolve_singleton(registration)
        if registration.lifetime is Lifetime.SCOPED:
            if scope is None:
                raise ConfigurationError(
                    f"Scoped service {_name(capability)} cannot be resolved outside a scope"
                )
            return scope._resolve_scoped(registration)
        return self._construct(registration, scope if scope is not None else self)

    def _resolve_singleton(self, registration: ServiceRegistration) -> Any:
        capability = registration.capability
        if capability in self._singletons:
            return self._singletons[capability]
        with self._lock:
            if capability not in self._singletons:
                # Singletons only see the root provider, never a request scope.
                self._singletons[capability] = self._construct(registration, self)
            return self._singletons[capability]

    def _construct(self, registration: ServiceRegistration, provider: ServiceProvider) -> Any:
        resolving = self._resolving_stack()
        capability = registration.capability
        if capability in resolving:
            chain = " -> ".join(_name(c) for c in [*resolving, capability])
            raise ConfigurationError(f"Circular dependency detected resolving service: {chain}")
        resolving.append(capability)
        try:
            instance = registration.factory(provider)
        finally:
            resolving.pop()
        LOGGER.debug("Resolved service: %s", _name(capability))
        return instance

    def _resolving_stack(self) -> list[Hashable]:
        stack = getattr(self._local, "stack", None)
        if stack is None:
            stack = self._local.stack = []
        return stack


class ServiceScope:
    """A resolution scope, normally one per request.

    Use as a context manager; on exit, scoped instances exposing ``close()``
    are closed in reverse creation order.
    """

    def __init__(self, registry: ServiceRegistry):
        self._registry = registry
        self._instances: dict[Hashable, Any] = {}
        self._closed = False

    @property
    def registry(self) -> ServiceRegistry:
        return self._registry

    def resolve(self, capability: Hashable) -> Any:
        if self._closed:
            raise ConfigurationError("Service scope is closed")
        return self._registry.resolve(capability, self)

    def _resolve_scoped(self, registration: ServiceRegistration) -> Any:
        capability = registration.capability
        if capability not in self._instances:
            self._instances[capability] = self._registry._construct(registration, self)
        return self._instances[capability]

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for capability, instance in reversed(list(self._instances.items())):
            closer = getattr(instance, "close", None)
            if callable(closer):
                try:
                    closer()
                except Exception:
                    LOGGER.exception("Error closing scoped service: %s", _name(capability))
        self._instances.clear()

    def __enter__(self) -> ServiceScope:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


__all__ = [
    "Lifetime",
    "ServiceProvider",
    "ServiceRegistration",
    "ServiceRegistry",
    "ServiceScope",
]
