"""Infrastructure layer: cache and monitoring."""
