from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    # AI Configuration
    AUTOHEAL_AI_MODEL: str = Field(default="gemini/gemini-2.5-flash", description="LiteLLM model string used for DOM and visual analysis")
    AUTOHEAL_AI_API_KEY: str | None = None
    AUTOHEAL_AI_API_BASE: str | None = Field(default=None, description="Custom endpoint, e.g. a local Ollama server")
    AUTOHEAL_AI_TIMEOUT: float = Field(default=30.0, description="Timeout for a single AI call (in seconds)")
    AUTOHEAL_AI_MAX_RETRIES: int = Field(default=3, description="Attempts per AI call before it counts as failed")
    AUTOHEAL_VISUAL_ANALYSIS_ENABLED: bool = Field(default=True, description="Allow screenshot-based analysis")

    # Healing pipeline
    AUTOHEAL_EXECUTION_STRATEGY: str = Field(default="smart_sequential", description="dom_only, sequential, smart_sequential, parallel or visual_first")
    AUTOHEAL_LOCATE_TIMEOUT: float = Field(default=60.0, description="Overall deadline for one locate call (in seconds)")
    AUTOHEAL_CACHE_TRUST_THRESHOLD: float = Field(default=0.7, description="Success rate a cached selector must exceed to be tried")

    # Circuit breaker
    AUTOHEAL_CIRCUIT_BREAKER_THRESHOLD: int = Field(default=5, description="Consecutive AI failures before the breaker opens")
    AUTOHEAL_CIRCUIT_BREAKER_TIMEOUT: float = Field(default=60.0, description="Seconds the breaker stays open before a probe is allowed")

    # Cache
    AUTOHEAL_CACHE_TYPE: str = Field(default="memory", description="memory, file or redis")
    AUTOHEAL_CACHE_TTL_SECONDS: int = Field(default=86400, description="Idle time after which a cached selector expires")
    AUTOHEAL_CACHE_FILE_PATH: str = Field(default="data/autoheal_cache.json", description="Location of the file cache")
    AUTOHEAL_REDIS_URL: str | None = None

    # Runtime
    AUTOHEAL_THREAD_POOL_SIZE: int = Field(default=8, description="Worker threads for blocking browser calls")
    AUTOHEAL_CONFIG_PATH: str = Field(default="config/autoheal.yaml", description="Optional YAML configuration file")
    AUTOHEAL_LOG_LEVEL: str = "INFO"

    @field_validator('AUTOHEAL_EXECUTION_STRATEGY')
    @classmethod
    def validate_execution_strategy(cls, v):
        """Validate that the execution strategy is a known policy."""
        allowed = ['dom_only', 'sequential', 'smart_sequential', 'parallel', 'visual_first']
        if v.lower() not in allowed:
            raise ValueError(f"AUTOHEAL_EXECUTION_STRATEGY must be one of {allowed}, got '{v}'")
        return v.lower()

    @field_validator('AUTOHEAL_CACHE_TYPE')
    @classmethod
    def validate_cache_type(cls, v):
        """Validate that the cache type is 'memory', 'file' or 'redis'."""
        if v.lower() not in ['memory', 'file', 'redis']:
            raise ValueError(f"AUTOHEAL_CACHE_TYPE must be 'memory', 'file' or 'redis', got '{v}'")
        return v.lower()

    @field_validator('AUTOHEAL_CACHE_TRUST_THRESHOLD')
    @classmethod
    def validate_trust_threshold(cls, v):
        """Validate that the trust threshold is between 0 and 1."""
        if v < 0.0 or v > 1.0:
            raise ValueError(f"AUTOHEAL_CACHE_TRUST_THRESHOLD must be between 0.0 and 1.0, got {v}")
        return v

    @field_validator('AUTOHEAL_AI_MAX_RETRIES')
    @classmethod
    def validate_max_retries(cls, v):
        """Validate that AUTOHEAL_AI_MAX_RETRIES is between 1 and 10."""
        if v < 1 or v > 10:
            raise ValueError(f"AUTOHEAL_AI_MAX_RETRIES must be between 1 and 10, got {v}")
        return v

    @field_validator('AUTOHEAL_CIRCUIT_BREAKER_THRESHOLD', 'AUTOHEAL_THREAD_POOL_SIZE')
    @classmethod
    def validate_positive_int(cls, v):
        if v < 1:
            raise ValueError(f"value must be positive, got {v}")
        return v

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding='utf-8',
        extra='allow'  # Allow extra fields from .env file
    )


settings = Settings()
