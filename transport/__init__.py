from .base import (
    TransportConfig,
    build_transport_config,
    SubscriberBuffer,
    TriggerPublisher,
    TriggerSubscriber,
    BaseTransport,
    register_transport,
    create_transport,
)

__all__ = [
    "TransportConfig",
    "build_transport_config",
    "SubscriberBuffer",
    "TriggerPublisher",
    "TriggerSubscriber",
    "BaseTransport",
    "register_transport",
    "create_transport",
]
