"""AMQP broker adapter built on aio-pika."""

from .client import AioPikaChannel, AioPikaClient, AioPikaConnection

__all__ = ["AioPikaChannel", "AioPikaClient", "AioPikaConnection"]
