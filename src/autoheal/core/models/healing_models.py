"""Data models for the self-healing locator engine."""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, List, Optional, Any
from enum import Enum


class LocatorKind(Enum):
    """Kinds of selector a raw locator string can express."""
    ID = "id"
    NAME = "name"
    CSS = "css"
    XPATH = "xpath"
    CLASS_NAME = "class_name"
    TAG_NAME = "tag_name"
    LINK_TEXT = "link_text"
    PARTIAL_LINK_TEXT = "partial_link_text"
    ROLE = "role"
    TEXT = "text"


class ResolutionStrategy(Enum):
    """Pipeline stage that produced a located element."""
    ORIGINAL = "original"
    CACHED = "cached"
    DOM_ANALYSIS = "dom_analysis"
    VISUAL_ANALYSIS = "visual_analysis"


class ExecutionStrategy(Enum):
    """Policy for combining DOM and visual AI analysis."""
    DOM_ONLY = "dom_only"
    SEQUENTIAL = "sequential"
    SMART_SEQUENTIAL = "smart_sequential"
    PARALLEL = "parallel"
    VISUAL_FIRST = "visual_first"


class CacheType(Enum):
    """Selector cache backends."""
    MEMORY = "memory"
    FILE = "file"
    REDIS = "redis"


class CircuitState(Enum):
    """States of the AI service circuit breaker."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class LocateOptions:
    """Per-call options for a locate request."""
    enable_caching: bool = True
    timeout: Optional[float] = None  # seconds, None uses the configured default


@dataclass(frozen=True)
class LocateRequest:
    """Immutable description of a single element lookup."""
    original_selector: str
    locator_kind: LocatorKind
    description: str
    context: str = ""
    options: LocateOptions = field(default_factory=LocateOptions)

    @classmethod
    def create(
        cls,
        selector: str,
        description: str,
        context: str = "",
        options: Optional[LocateOptions] = None
    ) -> 'LocateRequest':
        """Build a request, detecting the locator kind from the raw selector."""
        from ..locator_utils import detect_locator_kind

        return cls(
            original_selector=selector,
            locator_kind=detect_locator_kind(selector),
            description=description or "",
            context=context or "",
            options=options or LocateOptions()
        )


@dataclass(frozen=True)
class LocateResult:
    """Outcome of a successful locate call, with provenance."""
    element: Any
    actual_selector: str
    strategy: ResolutionStrategy
    confidence: float
    reasoning: str
    execution_time: float
    from_cache: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert result to a dictionary for reporting (element handle excluded)."""
        return {
            "actual_selector": self.actual_selector,
            "strategy": self.strategy.value,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "execution_time": self.execution_time,
            "from_cache": self.from_cache
        }


@dataclass(frozen=True)
class Position:
    """Approximate on-page rectangle of an element."""
    x: int = 0
    y: int = 0
    width: int = 0
    height: int = 0


# Attributes stable enough to tell two elements apart
STABLE_ATTRIBUTES = ("id", "name", "data-testid", "aria-label")


@dataclass(frozen=True)
class ElementFingerprint:
    """Compact, stable descriptor of an element."""
    tag_name: str
    attributes: Dict[str, str] = field(default_factory=dict)
    text_content: str = ""
    position: Optional[Position] = None
    parent_container: str = ""
    sibling_tags: List[str] = field(default_factory=list)
    visual_hash: Optional[str] = None

    def is_same_element(self, other: 'ElementFingerprint') -> bool:
        """Check whether another fingerprint plausibly describes the same element.

        Tag names must agree, and every stable attribute present on both
        sides must carry the same value.
        """
        if self.tag_name.lower() != other.tag_name.lower():
            return False
        for attr in STABLE_ATTRIBUTES:
            mine = self.attributes.get(attr)
            theirs = other.attributes.get(attr)
            if mine and theirs and mine != theirs:
                return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        """Convert fingerprint to dictionary for storage."""
        return {
            "tag_name": self.tag_name,
            "attributes": dict(self.attributes),
            "text_content": self.text_content,
            "position": (
                {
                    "x": self.position.x,
                    "y": self.position.y,
                    "width": self.position.width,
                    "height": self.position.height
                }
                if self.position else None
            ),
            "parent_container": self.parent_container,
            "sibling_tags": list(self.sibling_tags),
            "visual_hash": self.visual_hash
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ElementFingerprint':
        """Create fingerprint from dictionary."""
        position = data.get("position")
        return cls(
            tag_name=data.get("tag_name", ""),
            attributes=dict(data.get("attributes") or {}),
            text_content=data.get("text_content", ""),
            position=Position(**position) if position else None,
            parent_container=data.get("parent_container", ""),
            sibling_tags=list(data.get("sibling_tags") or []),
            visual_hash=data.get("visual_hash")
        )


@dataclass
class CachedSelector:
    """A previously successful selector with its reuse history.

    Instances handed out by a cache are copies; mutating one never changes
    the stored record.
    """
    selector: str
    fingerprint: Optional[ElementFingerprint] = None
    success_count: int = 0
    failure_count: int = 0
    created_at: datetime = field(default_factory=datetime.now)
    last_used_at: datetime = field(default_factory=datetime.now)

    @property
    def current_success_rate(self) -> float:
        """Fraction of successful reuses, 1.0 for a fresh entry."""
        total = self.success_count + self.failure_count
        if total == 0:
            return 1.0
        return self.success_count / total

    def is_trusted(self, threshold: float = 0.7) -> bool:
        """Whether the entry is worth a live re-validation attempt."""
        return self.current_success_rate > threshold

    def copy(self) -> 'CachedSelector':
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        """Convert entry to dictionary for storage."""
        return {
            "selector": self.selector,
            "fingerprint": self.fingerprint.to_dict() if self.fingerprint else None,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "created_at": self.created_at.isoformat(),
            "last_used_at": self.last_used_at.isoformat()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CachedSelector':
        """Create entry from dictionary."""
        fingerprint = data.get("fingerprint")
        return cls(
            selector=data["selector"],
            fingerprint=ElementFingerprint.from_dict(fingerprint) if fingerprint else None,
            success_count=int(data.get("success_count", 0)),
            failure_count=int(data.get("failure_count", 0)),
            created_at=datetime.fromisoformat(data["created_at"]),
            last_used_at=datetime.fromisoformat(data["last_used_at"])
        )


@dataclass(frozen=True)
class PageSnapshot:
    """Representation of the current page handed to AI analysis."""
    html: str
    url: str = ""
    title: str = ""
    screenshot: Optional[bytes] = None


@dataclass(frozen=True)
class AIAnalysisResult:
    """Locator proposed by an AI analysis."""
    selector: str
    confidence: float = 0.0
    reasoning: str = ""
    alternatives: List[str] = field(default_factory=list)
    tokens_used: int = 0


@dataclass(frozen=True)
class CandidateSummary:
    """Compact description of one candidate element for disambiguation."""
    index: int
    tag_name: str
    text: str = ""
    attributes: Dict[str, str] = field(default_factory=dict)

    def describe(self) -> str:
        """Render the candidate as a prompt block (1-based numbering)."""
        lines = [
            f"Element {self.index + 1}:",
            f"  Tag: {self.tag_name}",
            f"  Text: {self.text or 'No visible text'}"
        ]
        for attr in ("id", "class", "name", "value", "aria-label", "data-testid"):
            lines.append(f"  {attr}: {self.attributes.get(attr, '')}")
        return "\n".join(lines)


@dataclass(frozen=True)
class CacheMetrics:
    """Observability counters of a selector cache."""
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    size: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "size": self.size,
            "hit_rate": self.hit_rate
        }


@dataclass(frozen=True)
class HealthStatus:
    """Health summary for monitoring systems."""
    overall: bool
    success_rate: float
    cache_hit_rate: float
    circuit_state: CircuitState

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall": self.overall,
            "success_rate": self.success_rate,
            "cache_hit_rate": self.cache_hit_rate,
            "circuit_state": self.circuit_state.value
        }


@dataclass(frozen=True)
class HealingConfiguration:
    """Immutable configuration for one locator engine instance."""
    execution_strategy: ExecutionStrategy = ExecutionStrategy.SMART_SEQUENTIAL

    # Cache trust and probing
    cache_trust_threshold: float = 0.7
    cache_probe_timeout: float = 5.0  # seconds
    verify_fingerprint: bool = True

    # Per-call timeouts
    validation_timeout: float = 5.0  # seconds
    disambiguation_timeout: float = 5.0  # seconds
    ai_timeout: float = 30.0  # seconds
    locate_timeout: float = 60.0  # seconds

    # AI resilience
    ai_max_retries: int = 3
    ai_retry_backoff: float = 1.0  # seconds, multiplied by attempt number
    max_concurrent_ai_calls: int = 4
    circuit_breaker_failure_threshold: int = 5
    circuit_breaker_open_timeout: float = 60.0  # seconds
    visual_analysis_enabled: bool = True
    max_html_chars: int = 120000

    # Cache backend
    cache_type: CacheType = CacheType.MEMORY
    cache_ttl_seconds: int = 86400
    cache_max_size: int = 10000
    cache_file_path: str = "data/autoheal_cache.json"
    redis_url: Optional[str] = None
    cache_key_version: str = "v1"

    # Worker pool for blocking adapter calls
    thread_pool_size: int = 8

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "execution_strategy": self.execution_strategy.value,
            "cache_trust_threshold": self.cache_trust_threshold,
            "cache_probe_timeout": self.cache_probe_timeout,
            "verify_fingerprint": self.verify_fingerprint,
            "validation_timeout": self.validation_timeout,
            "disambiguation_timeout": self.disambiguation_timeout,
            "ai_timeout": self.ai_timeout,
            "locate_timeout": self.locate_timeout,
            "ai_max_retries": self.ai_max_retries,
            "ai_retry_backoff": self.ai_retry_backoff,
            "max_concurrent_ai_calls": self.max_concurrent_ai_calls,
            "circuit_breaker_failure_threshold": self.circuit_breaker_failure_threshold,
            "circuit_breaker_open_timeout": self.circuit_breaker_open_timeout,
            "visual_analysis_enabled": self.visual_analysis_enabled,
            "max_html_chars": self.max_html_chars,
            "cache_type": self.cache_type.value,
            "cache_ttl_seconds": self.cache_ttl_seconds,
            "cache_max_size": self.cache_max_size,
            "cache_file_path": self.cache_file_path,
            "redis_url": self.redis_url,
            "cache_key_version": self.cache_key_version,
            "thread_pool_size": self.thread_pool_size
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HealingConfiguration':
        """Create configuration from dictionary."""
        data = data.copy()
        if "execution_strategy" in data:
            data["execution_strategy"] = ExecutionStrategy(data["execution_strategy"])
        if "cache_type" in data:
            data["cache_type"] = CacheType(data["cache_type"])
        return cls(**data)

    @classmethod
    def from_settings(cls, settings: Any) -> 'HealingConfiguration':
        """Create configuration from environment settings."""
        return cls(
            execution_strategy=ExecutionStrategy(settings.AUTOHEAL_EXECUTION_STRATEGY),
            cache_trust_threshold=settings.AUTOHEAL_CACHE_TRUST_THRESHOLD,
            ai_timeout=settings.AUTOHEAL_AI_TIMEOUT,
            locate_timeout=settings.AUTOHEAL_LOCATE_TIMEOUT,
            ai_max_retries=settings.AUTOHEAL_AI_MAX_RETRIES,
            circuit_breaker_failure_threshold=settings.AUTOHEAL_CIRCUIT_BREAKER_THRESHOLD,
            circuit_breaker_open_timeout=settings.AUTOHEAL_CIRCUIT_BREAKER_TIMEOUT,
            visual_analysis_enabled=settings.AUTOHEAL_VISUAL_ANALYSIS_ENABLED,
            cache_type=CacheType(settings.AUTOHEAL_CACHE_TYPE),
            cache_ttl_seconds=settings.AUTOHEAL_CACHE_TTL_SECONDS,
            cache_file_path=settings.AUTOHEAL_CACHE_FILE_PATH,
            redis_url=settings.AUTOHEAL_REDIS_URL,
            thread_pool_size=settings.AUTOHEAL_THREAD_POOL_SIZE
        )
