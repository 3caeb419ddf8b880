"""Services of the self-healing locator engine."""
