"""Pipeline builder and the composed request pipeline.

The builder records stages in order and composes them once, innermost
first, so the first registered stage becomes the outermost wrapper::

    builder = PipelineBuilder(services)
    builder.use(LoggingStage())
    builder.use_stage(AuthStage, realm="api")
    builder.run(endpoint)
    pipeline = builder.build()

    await pipeline.handle(context)
"""

from __future__ import annotations

import logging
import traceback
from collections.abc import Callable, Hashable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .context import RequestContext
from .errors import ConfigurationError, HandlerFault
from .stages import BranchStage, FunctionStage, NextStage, Stage, StageFunction, TerminalHandler

if TYPE_CHECKING:
    from .container import ServiceRegistry

LOGGER = logging.getLogger(__name__)

GENERIC_ERROR_BODY = "Internal Server Error"


async def not_found(context: RequestContext) -> None:
    """Default terminal sink: 404 unless an earlier stage already answered."""
    if not context.response.has_started:
        context.response.set_status(404)
        context.response.headers["Content-Type"] = "text/plain; charset=utf-8"
        context.response.write("Not Found")


@dataclass
class _StageFactory:
    factory: Callable[..., Any]
    args: tuple = ()
    kwargs: dict[str, Any] = field(default_factory=dict)


class _OnceNext:
    """The ``next_stage`` handed to one stage for one request."""

    __slots__ = ("_stage_name", "_downstream", "_called")

    def __init__(self, stage_name: str, downstream: NextStage):
        self._stage_name = stage_name
        self._downstream = downstream
        self._called = False

    async def __call__(self, context: RequestContext) -> None:
        if self._called:
            raise RuntimeError(
                f"Stage '{self._stage_name}' invoked the next stage more than once"
            )
        self._called = True
        await self._downstream(context)


def _link(stage: Stage, downstream: NextStage) -> NextStage:
    name = stage.name

    async def invoke(context: RequestContext) -> None:
        try:
            await stage(context, _OnceNext(name, downstream))
        except HandlerFault:
            raise
        except Exception as exc:
            raise HandlerFault(name, context.request_id) from exc

    return invoke


def _terminal(handler: TerminalHandler) -> NextStage:
    name = getattr(handler, "__name__", "terminal")

    async def invoke(context: RequestContext) -> None:
        try:
            await handler(context)
        except HandlerFault:
            raise
        except Exception as exc:
            raise HandlerFault(name, context.request_id) from exc

    return invoke


class Pipeline:
    """An immutable, composed chain of stages.

    Safe to share between concurrent requests: it holds no per-request
    state.
    """

    def __init__(
        self,
        stages: tuple[Stage, ...],
        terminal: TerminalHandler,
        show_error_details: bool = False,
    ):
        self._stages = stages
        self._terminal = terminal
        self._show_error_details = show_error_details
        entry = _terminal(terminal)
        for stage in reversed(stages):
            entry = _link(stage, entry)
        self._entry = entry

    @property
    def stages(self) -> tuple[Stage, ...]:
        return self._stages

    @property
    def show_error_details(self) -> bool:
        return self._show_error_details

    def __len__(self) -> int:
        return len(self._stages)

    async def __call__(self, context: RequestContext) -> None:
        """Run the chain without the error boundary; faults propagate."""
        await self._entry(context)

    async def handle(self, context: RequestContext) -> RequestContext:
        """Run the chain and convert a :class:`HandlerFault` into a 500."""
        try:
            await self._entry(context)
        except HandlerFault as fault:
            self._write_fault(context, fault)
        return context

    def _write_fault(self, context: RequestContext, fault: HandlerFault) -> None:
        cause = fault.__cause__ or fault
        LOGGER.error(
            "Request %s (%s %s) failed in stage %s",
            fault.request_id,
            context.method,
            context.path,
            fault.stage,
            exc_info=cause,
        )
        response = context.response
        response.clear()
        response.set_status(500)
        response.headers["Content-Type"] = "text/plain; charset=utf-8"
        if self._show_error_details:
            response.write(f"{fault}\n\n")
            lines = traceback.format_exception(type(cause), cause, cause.__traceback__)
            response.write("".join(lines))
        else:
            response.write(GENERIC_ERROR_BODY)

    def describe(self) -> list[str]:
        """Stage names in invocation order, terminal last."""
        names = [stage.name for stage in self._stages]
        names.append(getattr(self._terminal, "__name__", "terminal"))
        return names


class PipelineBuilder:
    """Collects stage registrations and builds a :class:`Pipeline` once."""

    def __init__(self, services: ServiceRegistry | None = None):
        self._services = services
        self._entries: list[Stage | _StageFactory | tuple[str, Callable[[PipelineBuilder], None]]] = []
        self._terminal: TerminalHandler | None = None
        self._built = False

    @property
    def services(self) -> ServiceRegistry | None:
        return self._services

    def _check_open(self) -> None:
        if self._built:
            raise ConfigurationError("Pipeline already built; registrations are closed")

    def use(self, stage: Stage) -> PipelineBuilder:
        """Append a stage instance."""
        self._check_open()
        if not isinstance(stage, Stage):
            raise ConfigurationError(f"{stage!r} is not a Stage")
        self._entries.append(stage)
        LOGGER.debug("Registered stage: %s", stage.name)
        return self

    def use_stage(self, factory: Callable[..., Any], *args: Any, **kwargs: Any) -> PipelineBuilder:
        """Append a stage constructed from ``factory(*args, **kwargs)`` at build time."""
        self._check_open()
        if not callable(factory):
            raise ConfigurationError(f"Stage factory {factory!r} is not callable")
        self._entries.append(_StageFactory(factory, args, kwargs))
        LOGGER.debug("Registered stage factory: %s", getattr(factory, "__name__", factory))
        return self

    def use_function(
        self,
        func: StageFunction,
        name: str | None = None,
        requires: tuple[Hashable, ...] = (),
    ) -> PipelineBuilder:
        """Append ``async def func(context, next_stage)`` as a stage."""
        return self.use(FunctionStage(func, name=name, requires=requires))

    def map(self, prefix: str, configure: Callable[[PipelineBuilder], None]) -> PipelineBuilder:
        """Branch requests under ``prefix`` into a sub-pipeline."""
        self._check_open()
        self._entries.append((prefix, configure))
        return self

    def run(self, handler: TerminalHandler) -> PipelineBuilder:
        """Set the terminal handler that ends the chain."""
        self._check_open()
        if self._terminal is not None:
            raise ConfigurationError("A terminal handler is already registered")
        self._terminal = handler
        return self

    def build(self, show_error_details: bool = False) -> Pipeline:
        """Instantiate stages, validate their capabilities and compose."""
        self._check_open()
        stages: list[Stage] = []
        for entry in self._entries:
            if isinstance(entry, Stage):
                stages.append(entry)
            elif isinstance(entry, _StageFactory):
                stages.append(self._instantiate(entry))
            else:
                prefix, configure = entry
                branch = PipelineBuilder(self._services)
                configure(branch)
                stages.append(BranchStage(prefix, branch.build(show_error_details)))

        self._validate(stages)
        self._built = True
        pipeline = Pipeline(tuple(stages), self._terminal or not_found, show_error_details)
        LOGGER.info("Built pipeline: %s", " -> ".join(pipeline.describe()))
        return pipeline

    def _instantiate(self, entry: _StageFactory) -> Stage:
        name = getattr(entry.factory, "__name__", repr(entry.factory))
        try:
            instance = entry.factory(*entry.args, **entry.kwargs)
        except ConfigurationError:
            raise
        except Exception as exc:
            raise ConfigurationError(f"Could not construct stage {name}: {exc}") from exc
        if not isinstance(instance, Stage):
            raise ConfigurationError(f"Factory {name} produced {instance!r}, which is not a Stage")
        return instance

    def _validate(self, stages: list[Stage]) -> None:
        missing: list[str] = []
        for stage in stages:
            for capability in stage.requires:
                if self._services is None or not self._services.is_registered(capability):
                    missing.append(f"{_capability_name(capability)} (required by {stage.name})")
        if missing:
            raise ConfigurationError("Unregistered capabilities: " + ", ".join(missing))


def _capability_name(capability: Any) -> str:
    return getattr(capability, "__name__", str(capability))


__all__ = ["Pipeline", "PipelineBuilder", "not_found", "GENERIC_ERROR_BODY"]
