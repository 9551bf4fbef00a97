"""Interfaces package for adapters.

Define interfaces para el cliente de protocolo y el servicio MQTT."""

from .base_service import (
    BaseService,
    ServiceStatus,
    MQTTServiceInterface
)
from .services import (
    ConnectionEventListener,
    ConnectionProvider,
    ProtocolClientInterface
)

__all__ = [
    "BaseService",
    "ServiceStatus",
    "MQTTServiceInterface",
    "ConnectionEventListener",
    "ConnectionProvider",
    "ProtocolClientInterface"
]
