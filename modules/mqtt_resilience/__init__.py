"""MQTT Resilience

Capa cliente resiliente para MQTT: una única conexión lógica con el
broker, reintentos con back-off para conexión y publicación, y
restauración de suscripciones tras cualquier pérdida de conexión.
"""

from modules.mqtt_resilience.errors import (
    ClientClosedError,
    MQTTClientError,
    NotConnectedError,
    ProtocolError,
    ReasonCode,
    RetryExhaustedError
)
from modules.mqtt_resilience.settings import (
    BackoffConfig,
    BackoffShape,
    ConnectOptions,
    MQTTSettings
)
from modules.mqtt_resilience.message import InboundMessage, MessageHandler
from modules.mqtt_resilience.backoff import (
    MQTTRetryPolicy,
    OperationType,
    RetryContext,
    RetryPolicy,
    compute_interval,
    is_retryable
)
from modules.mqtt_resilience.retry import RetryExecutor
from modules.mqtt_resilience.scheduler import SerialScheduler
from modules.mqtt_resilience.subscriptions import Subscription, SubscriptionRegistry
from modules.mqtt_resilience.connection import ConnectionManager, ConnectionState
from modules.mqtt_resilience.publisher import Publisher

__version__ = "1.0.0"
__all__ = [
    "BackoffConfig",
    "BackoffShape",
    "ClientClosedError",
    "ConnectOptions",
    "ConnectionManager",
    "ConnectionState",
    "InboundMessage",
    "MQTTClientError",
    "MQTTRetryPolicy",
    "MQTTSettings",
    "MessageHandler",
    "NotConnectedError",
    "OperationType",
    "ProtocolError",
    "Publisher",
    "ReasonCode",
    "RetryContext",
    "RetryExecutor",
    "RetryExhaustedError",
    "RetryPolicy",
    "SerialScheduler",
    "Subscription",
    "SubscriptionRegistry",
    "compute_interval",
    "is_retryable"
]
