"""Infrastructure layer: concrete adapters for external systems."""
