"""Domain layer: types and protocols shared across the service."""
