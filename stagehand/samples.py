"""Sample application wiring every extension point.

- ``UserLogicService``/``UserLogic``: a scoped capability resolved per request
- ``FirstMiddleware``: a stage with before and after phases
- ``SampleStartup``: service registration, pipeline and lifetime callbacks

Run it with ``python -m stagehand serve``.
"""

from __future__ import annotations

import itertools
from abc import ABC, abstractmethod

from .core.container import ServiceRegistry
from .core.context import RequestContext
from .core.lifecycle import ApplicationLifetime, sleep_then
from .core.logging import get_logger
from .core.metrics import MetricsEndpointStage, RequestMetrics, RequestMetricsStage
from .core.pipeline import PipelineBuilder
from .core.stages import NextStage, Stage
from .hosting.builder import Startup

LOGGER = get_logger(__name__)

_instance_ids = itertools.count(1)


class UserLogicService(ABC):
    """Looks up user display names."""

    @abstractmethod
    def get_user_name(self, user_id: str) -> str: ...


class UserLogic(UserLogicService):
    def __init__(self):
        self.instance_id = next(_instance_ids)

    def get_user_name(self, user_id: str) -> str:
        return f"user-{user_id}" if user_id else "anonymous"


class FirstMiddleware(Stage):
    """Tags the response and logs around the rest of the pipeline."""

    requires = (UserLogicService,)

    async def __call__(self, context: RequestContext, next_stage: NextStage) -> None:
        logic = context.resolve(UserLogicService)
        context.items["user_logic_instance"] = logic.instance_id
        LOGGER.info("FirstMiddleware before: %s %s", context.method, context.path)
        await next_stage(context)
        context.response.headers["X-First-Middleware"] = str(logic.instance_id)
        LOGGER.info("FirstMiddleware after: status=%d", context.response.status)


async def user_endpoint(context: RequestContext) -> None:
    """Greets the user named by the ``X-User-Id`` header."""
    logic = context.resolve(UserLogicService)
    name = logic.get_user_name(context.headers.get("X-User-Id", ""))
    context.response.headers["Content-Type"] = "text/plain; charset=utf-8"
    context.response.write(f"Hello {name} from {context.path}\n")
    # Same scoped instance as FirstMiddleware saw.
    context.response.write(f"scope instance: {logic.instance_id}\n")


async def health_endpoint(context: RequestContext) -> None:
    context.response.write("Healthy")


class SampleStartup(Startup):
    """Wires the sample capabilities, stages and lifetime callbacks."""

    def configure_services(self, services: ServiceRegistry) -> None:
        services.add_scoped(UserLogicService, UserLogic)
        services.add_singleton(RequestMetrics)

    def configure(self, app: PipelineBuilder, lifetime: ApplicationLifetime) -> None:
        metrics = app.services.resolve(RequestMetrics)
        app.use(RequestMetricsStage(metrics))
        app.use(MetricsEndpointStage(metrics))
        app.map("/health", lambda branch: branch.run(health_endpoint))
        app.use_stage(FirstMiddleware)
        app.run(user_endpoint)

        lifetime.on_started(lambda: LOGGER.info("Application started"), name="log_started")
        lifetime.on_stopping(lambda: LOGGER.info("Application stopping"), name="log_stopping")
        lifetime.on_stopped(
            sleep_then(self.settings.stopped_delay, lambda: LOGGER.info("Application stopped")),
            name="log_stopped",
        )


__all__ = [
    "UserLogicService",
    "UserLogic",
    "FirstMiddleware",
    "SampleStartup",
    "user_endpoint",
    "health_endpoint",
]
