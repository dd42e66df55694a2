"""Host assembly.

A :class:`Startup` groups the two configuration steps of an application::

    class MyStartup(Startup):
        def configure_services(self, services):
            services.add_scoped(UserLogicService, UserLogic)

        def configure(self, app, lifetime):
            app.use_stage(FirstMiddleware)
            app.run(endpoint)

    host = HostBuilder(environ=os.environ).use_startup(MyStartup).build()
    host.run()

``build()`` runs service registration, freezes the registry, builds and
validates the pipeline, so wiring mistakes surface before any request.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from typing import Any

from ..core.config import HostSettings, load_settings
from ..core.container import ServiceRegistry
from ..core.errors import ConfigurationError
from ..core.lifecycle import ApplicationLifetime
from ..core.logging import configure_root_logger, get_logger
from ..core.pipeline import PipelineBuilder
from .host import Host

LOGGER = get_logger(__name__)

ServicesHook = Callable[[ServiceRegistry, HostSettings], None]
ConfigureHook = Callable[[PipelineBuilder, ApplicationLifetime, HostSettings], None]


class Startup(ABC):
    """Application wiring: services first, then the pipeline."""

    def __init__(self, settings: HostSettings):
        self.settings = settings

    @abstractmethod
    def configure_services(self, services: ServiceRegistry) -> None:
        """Register capabilities."""

    @abstractmethod
    def configure(self, app: PipelineBuilder, lifetime: ApplicationLifetime) -> None:
        """Register stages and lifetime callbacks."""


class HostBuilder:
    """Collects configuration and produces a :class:`Host`."""

    def __init__(
        self,
        settings: HostSettings | None = None,
        overrides: Mapping[str, Any] | None = None,
        environ: Mapping[str, str] | None = None,
        configure_logging: bool = True,
    ):
        if settings is not None and (overrides or environ):
            raise ConfigurationError("Pass either settings or overrides/environ, not both")
        self._settings = settings
        self._overrides = overrides
        self._environ = environ if environ is not None else {}
        self._configure_logging = configure_logging
        self._service_hooks: list[ServicesHook] = []
        self._configure_hooks: list[ConfigureHook] = []
        self._built = False

    def configure_services(self, hook: ServicesHook) -> HostBuilder:
        self._service_hooks.append(hook)
        return self

    def configure(self, hook: ConfigureHook) -> HostBuilder:
        self._configure_hooks.append(hook)
        return self

    def use_startup(self, startup_cls: Callable[[HostSettings], Startup]) -> HostBuilder:
        """Use a :class:`Startup` subclass, instantiated with the settings at build."""
        holder: dict[str, Startup] = {}

        def services_hook(services: ServiceRegistry, settings: HostSettings) -> None:
            holder["startup"] = startup_cls(settings)
            holder["startup"].configure_services(services)

        def configure_hook(
            app: PipelineBuilder, lifetime: ApplicationLifetime, settings: HostSettings
        ) -> None:
            holder["startup"].configure(app, lifetime)

        self._service_hooks.append(services_hook)
        self._configure_hooks.append(configure_hook)
        return self

    def build(self) -> Host:
        if self._built:
            raise ConfigurationError("HostBuilder.build() may only be called once")
        self._built = True

        settings = self._settings or load_settings(self._overrides, self._environ)
        if self._configure_logging:
            configure_root_logger(settings.log_level, settings.log_format)

        lifetime = ApplicationLifetime()
        services = ServiceRegistry()
        services.add_instance(HostSettings, settings)
        services.add_instance(ApplicationLifetime, lifetime)
        for hook in self._service_hooks:
            hook(services, settings)
        services.freeze()

        app = PipelineBuilder(services)
        for hook in self._configure_hooks:
            hook(app, lifetime, settings)
        pipeline = app.build(show_error_details=settings.show_error_details)

        LOGGER.info(
            "Host built: %d stage(s), %d service(s), environment=%s",
            len(pipeline),
            len(services.list_services()),
            settings.environment,
        )
        return Host(settings, services, pipeline, lifetime)


__all__ = ["HostBuilder", "Startup"]
