"""stagehand: request pipeline, service registry and lifetime signals for WSGI hosts."""

from .core import (
    ApplicationLifetime,
    ApplicationState,
    ConfigurationError,
    FunctionStage,
    HandlerFault,
    HostSettings,
    LifecycleCallbackFault,
    LifecycleSignal,
    Lifetime,
    NextStage,
    Pipeline,
    PipelineBuilder,
    RequestContext,
    ServiceRegistry,
    ServiceScope,
    Stage,
    StagehandError,
    load_settings,
    stage,
)
from .hosting import Host, HostBuilder, Startup

__version__ = "0.1.0"

__all__ = [
    "ApplicationLifetime",
    "ApplicationState",
    "ConfigurationError",
    "FunctionStage",
    "HandlerFault",
    "Host",
    "HostBuilder",
    "HostSettings",
    "LifecycleCallbackFault",
    "LifecycleSignal",
    "Lifetime",
    "NextStage",
    "Pipeline",
    "PipelineBuilder",
    "RequestContext",
    "ServiceRegistry",
    "ServiceScope",
    "Stage",
    "StagehandError",
    "Startup",
    "load_settings",
    "stage",
]
