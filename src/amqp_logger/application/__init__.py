"""Application layer: message consumption, labelling and service wiring."""

from .consumer import MessageConsumer
from .service import (
    ServiceComponents,
    create_components,
    run_service,
    start_service,
    stop_service,
)
from .transformer import MessageTransformer

__all__ = [
    "MessageConsumer",
    "MessageTransformer",
    "ServiceComponents",
    "create_components",
    "run_service",
    "start_service",
    "stop_service",
]
