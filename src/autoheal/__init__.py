"""
Self-healing element locator.

Resolves UI selectors and repairs them with AI analysis when they stop
matching, reusing previously healed selectors through a selector cache.
"""

from .core.exceptions import (
    AutoHealError,
    ElementNotFoundError,
    LocateTimeoutError,
    CircuitBreakerOpenError,
    AdapterError,
)
from .core.models import (
    ExecutionStrategy,
    HealingConfiguration,
    LocateOptions,
    LocateRequest,
    LocateResult,
    ResolutionStrategy,
)
from .services.healing_orchestrator import HealingOrchestrator

__version__ = "1.0.0"

__all__ = [
    "AutoHealError",
    "ElementNotFoundError",
    "LocateTimeoutError",
    "CircuitBreakerOpenError",
    "AdapterError",
    "ExecutionStrategy",
    "HealingConfiguration",
    "LocateOptions",
    "LocateRequest",
    "LocateResult",
    "ResolutionStrategy",
    "HealingOrchestrator",
]
