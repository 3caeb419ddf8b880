"""Exception hierarchy for the self-healing locator engine."""

from typing import Any, Dict, List, Optional


class AutoHealError(Exception):
    """Base error carrying the lookup that failed and the strategies tried."""

    def __init__(
        self,
        message: str,
        selector: Optional[str] = None,
        description: Optional[str] = None,
        attempted: Optional[List[str]] = None,
        cause: Optional[BaseException] = None
    ):
        super().__init__(message)
        self.message = message
        self.selector = selector
        self.description = description
        self.attempted = list(attempted or [])
        self.cause = cause

    def with_context(
        self,
        selector: Optional[str] = None,
        description: Optional[str] = None,
        attempted: Optional[List[str]] = None
    ) -> 'AutoHealError':
        """Fill in lookup context that was unknown where the error was raised."""
        if self.selector is None:
            self.selector = selector
        if self.description is None:
            self.description = description
        if attempted and not self.attempted:
            self.attempted = list(attempted)
        return self

    def __str__(self) -> str:
        parts = [self.message]
        if self.selector is not None:
            parts.append(f"selector={self.selector!r}")
        if self.description:
            parts.append(f"description={self.description!r}")
        if self.attempted:
            parts.append(f"attempted={' -> '.join(self.attempted)}")
        if self.cause is not None:
            parts.append(f"cause={type(self.cause).__name__}: {self.cause}")
        return " | ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for reporting."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "selector": self.selector,
            "description": self.description,
            "attempted": self.attempted,
            "cause": str(self.cause) if self.cause is not None else None
        }


class ElementNotFoundError(AutoHealError):
    """Every stage of the locate pipeline was exhausted."""
    pass


class LocateTimeoutError(AutoHealError):
    """The caller's deadline elapsed before the element was located."""
    pass


class CircuitBreakerOpenError(AutoHealError):
    """Healing is unavailable because the AI backend is considered unhealthy."""
    pass


class AmbiguousResultError(AutoHealError):
    """A healed locator matched more than one element."""
    pass


class AdapterError(AutoHealError):
    """The automation framework itself failed (crashed page, dead session)."""
    pass


class AIServiceError(AutoHealError):
    """An AI analysis call failed."""
    pass


class UnsupportedOperationError(AIServiceError):
    """The configured AI provider cannot perform the requested analysis."""
    pass


class ConfigurationError(AutoHealError):
    """Raised when configuration is invalid or cannot be loaded."""
    pass
