"""Core modules for the self-healing locator engine."""

# Note: settings are imported explicitly from .config to avoid reading the environment on import
