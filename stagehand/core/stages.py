"""Pipeline stage contract.

A stage wraps the remainder of the pipeline::

    class Timing(Stage):
        async def __call__(self, context, next_stage):
            started = time.perf_counter()      # before-phase
            await next_stage(context)          # delegate (omit to short-circuit)
            context.response.headers["X-Elapsed"] = ...   # after-phase

Stages registered first wrap stages registered later, so before-phases run
in registration order and after-phases unwind in reverse.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Hashable
from typing import Any, ClassVar

from .context import RequestContext

NextStage = Callable[[RequestContext], Awaitable[None]]
TerminalHandler = Callable[[RequestContext], Awaitable[None]]
StageFunction = Callable[[RequestContext, NextStage], Awaitable[None]]


class Stage(ABC):
    """A single unit of the request pipeline."""

    # Capabilities this stage resolves per request; checked at build time.
    requires: ClassVar[tuple[Hashable, ...]] = ()

    @abstractmethod
    async def __call__(self, context: RequestContext, next_stage: NextStage) -> None:
        """Process ``context``; await ``next_stage(context)`` to delegate."""

    @property
    def name(self) -> str:
        return self.__class__.__name__

    def __repr__(self) -> str:
        return f"<{self.name}>"


class FunctionStage(Stage):
    """Adapts an ``async def fn(context, next_stage)`` into a stage."""

    def __init__(
        self,
        func: StageFunction,
        name: str | None = None,
        requires: tuple[Hashable, ...] = (),
    ):
        self._func = func
        self._name = name or getattr(func, "__name__", "function_stage")
        self.requires = tuple(requires)

    async def __call__(self, context: RequestContext, next_stage: NextStage) -> None:
        await self._func(context, next_stage)

    @property
    def name(self) -> str:
        return self._name


def stage(
    func: StageFunction | None = None,
    *,
    name: str | None = None,
    requires: tuple[Hashable, ...] = (),
) -> Any:
    """Decorator turning a coroutine function into a :class:`FunctionStage`.

    Usable bare (``@stage``) or with arguments (``@stage(name="auth")``).
    """

    def wrap(fn: StageFunction) -> FunctionStage:
        return FunctionStage(fn, name=name, requires=requires)

    if func is not None:
        return wrap(func)
    return wrap


class BranchStage(Stage):
    """Routes matching paths into a separately built sub-pipeline.

    Built by ``PipelineBuilder.map``; non-matching requests continue down
    the outer pipeline.
    """

    def __init__(self, prefix: str, branch: Callable[[RequestContext], Awaitable[None]]):
        self.prefix = "/" + prefix.strip("/")
        self._branch = branch

    def matches(self, path: str) -> bool:
        if self.prefix == "/":
            return True
        return path == self.prefix or path.startswith(self.prefix + "/")

    async def __call__(self, context: RequestContext, next_stage: NextStage) -> None:
        if not self.matches(context.path):
            await next_stage(context)
            return
        context.items.setdefault("stagehand.path_base", []).append(self.prefix)
        await self._branch(context)

    @property
    def name(self) -> str:
        return f"Map({self.prefix})"


__all__ = [
    "Stage",
    "FunctionStage",
    "BranchStage",
    "NextStage",
    "TerminalHandler",
    "StageFunction",
    "stage",
]
