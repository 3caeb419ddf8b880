"""Core data models for the self-healing locator engine."""

from .healing_models import (
    LocatorKind,
    ResolutionStrategy,
    ExecutionStrategy,
    CacheType,
    CircuitState,
    LocateOptions,
    LocateRequest,
    LocateResult,
    Position,
    ElementFingerprint,
    CachedSelector,
    PageSnapshot,
    AIAnalysisResult,
    CandidateSummary,
    CacheMetrics,
    HealthStatus,
    HealingConfiguration
)

__all__ = [
    "LocatorKind",
    "ResolutionStrategy",
    "ExecutionStrategy",
    "CacheType",
    "CircuitState",
    "LocateOptions",
    "LocateRequest",
    "LocateResult",
    "Position",
    "ElementFingerprint",
    "CachedSelector",
    "PageSnapshot",
    "AIAnalysisResult",
    "CandidateSummary",
    "CacheMetrics",
    "HealthStatus",
    "HealingConfiguration"
]
