"""Core building blocks: request context, stages, pipeline, services, lifetime."""

from .config import ConfigurationManager, HostSettings, load_settings
from .container import Lifetime, ServiceRegistration, ServiceRegistry, ServiceScope
from .context import RequestContext, ResponseBuffer
from .errors import ConfigurationError, HandlerFault, LifecycleCallbackFault, StagehandError
from .lifecycle import ApplicationLifetime, ApplicationState, LifecycleSignal
from .pipeline import Pipeline, PipelineBuilder
from .stages import FunctionStage, NextStage, Stage, stage

__all__ = [
    # Request pipeline
    "RequestContext",
    "ResponseBuffer",
    "Stage",
    "FunctionStage",
    "NextStage",
    "stage",
    "Pipeline",
    "PipelineBuilder",
    # Services
    "Lifetime",
    "ServiceRegistration",
    "ServiceRegistry",
    "ServiceScope",
    # Lifetime
    "ApplicationLifetime",
    "ApplicationState",
    "LifecycleSignal",
    # Configuration
    "ConfigurationManager",
    "HostSettings",
    "load_settings",
    # Errors
    "StagehandError",
    "ConfigurationError",
    "HandlerFault",
    "LifecycleCallbackFault",
]
