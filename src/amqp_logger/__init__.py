"""Forward RabbitMQ messages to structured logs with extracted labels."""

__version__ = "0.1.0"
