"""Layered generation core — dependency scheduling and backend failover.

Public API
----------
Contracts (Pydantic models)::

    Artifact, DependencyGraph, CircularDependency, ScheduleResult,
    BackendFamily, RoutingStrategy, BackendConfig,
    Message, RequestEnvelope, ResponseEnvelope, Usage, ExecuteOptions,
    WireRequest, WireResponse,
    ArtifactOutcome, GenerationReport,

Rules::

    Category, classify, CATEGORY_PREREQUISITES,
    IntraCategoryRule, FoundationModuleRule,

Dependency graph & scheduling::

    DependencyGraphBuilder, LayerScheduler, plan,
    all_dependencies, describe,

Backends::

    Backend, BackendState, BackendRegistry  — health + selection
    BackendAdapter, resolve_model           — wire translation
    HttpTransport, close_client             — httpx dispatch

Execution::

    RequestExecutor, Orchestrator, UsageTracker,

Errors::

    LayerForgeError, BackendError,
    RateLimited, AuthenticationFailed, ServerError, ContentBlocked,
    NetworkOrTimeout, MalformedResponse, RequestRejected,
    NoBackendAvailable, AllBackendsExhausted,
    DuplicateArtifactError, TokenBudgetExceeded,
    CircularDependencyWarning,

Clock & pacing::

    Clock, SystemClock, ManualClock,
    ExponentialBackoff, ConcurrencyLimiter,
"""

from layerforge.adapter import BackendAdapter, resolve_model
from layerforge.backends import Backend, BackendRegistry, BackendState
from layerforge.backoff import ConcurrencyLimiter, ExponentialBackoff
from layerforge.clock import Clock, ManualClock, SystemClock
from layerforge.contracts import (
    Artifact,
    ArtifactOutcome,
    BackendConfig,
    BackendFamily,
    CircularDependency,
    DependencyGraph,
    ExecuteOptions,
    GenerationReport,
    Message,
    RequestEnvelope,
    ResponseEnvelope,
    RoutingStrategy,
    ScheduleResult,
    Usage,
    WireRequest,
    WireResponse,
)
from layerforge.errors import (
    AllBackendsExhausted,
    AuthenticationFailed,
    BackendError,
    CircularDependencyWarning,
    ContentBlocked,
    DuplicateArtifactError,
    LayerForgeError,
    MalformedResponse,
    NetworkOrTimeout,
    NoBackendAvailable,
    RateLimited,
    RequestRejected,
    ServerError,
    TokenBudgetExceeded,
)
from layerforge.executor import RequestExecutor
from layerforge.graph import DependencyGraphBuilder, all_dependencies, describe
from layerforge.orchestrator import Orchestrator
from layerforge.rules import (
    CATEGORY_PREREQUISITES,
    Category,
    FoundationModuleRule,
    IntraCategoryRule,
    classify,
)
from layerforge.scheduler import LayerScheduler, plan
from layerforge.transport import HttpTransport, close_client
from layerforge.usage import UsageTracker

__all__ = [
    # Contracts
    "Artifact",
    "DependencyGraph",
    "CircularDependency",
    "ScheduleResult",
    "BackendFamily",
    "RoutingStrategy",
    "BackendConfig",
    "Message",
    "RequestEnvelope",
    "ResponseEnvelope",
    "Usage",
    "ExecuteOptions",
    "WireRequest",
    "WireResponse",
    "ArtifactOutcome",
    "GenerationReport",
    # Rules
    "Category",
    "classify",
    "CATEGORY_PREREQUISITES",
    "IntraCategoryRule",
    "FoundationModuleRule",
    # Graph & scheduling
    "DependencyGraphBuilder",
    "LayerScheduler",
    "plan",
    "all_dependencies",
    "describe",
    # Backends
    "Backend",
    "BackendState",
    "BackendRegistry",
    "BackendAdapter",
    "resolve_model",
    "HttpTransport",
    "close_client",
    # Execution
    "RequestExecutor",
    "Orchestrator",
    "UsageTracker",
    # Errors
    "LayerForgeError",
    "BackendError",
    "RateLimited",
    "AuthenticationFailed",
    "ServerError",
    "ContentBlocked",
    "NetworkOrTimeout",
    "MalformedResponse",
    "RequestRejected",
    "NoBackendAvailable",
    "AllBackendsExhausted",
    "DuplicateArtifactError",
    "TokenBudgetExceeded",
    "CircularDependencyWarning",
    # Clock & pacing
    "Clock",
    "SystemClock",
    "ManualClock",
    "ExponentialBackoff",
    "ConcurrencyLimiter",
]
