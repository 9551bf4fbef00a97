"""Políticas de reintento con back-off.

Decide si una operación fallida debe reintentarse y cuánto esperar antes
del siguiente intento. El cálculo del intervalo es una función pura de
(intento, configuración), sin estado oculto.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from modules.mqtt_resilience.errors import ClientClosedError, ProtocolError
from modules.mqtt_resilience.settings import BackoffConfig, BackoffShape


logger = logging.getLogger(__name__)


class OperationType(Enum):
    """Clases de operación con configuración de reintento propia."""
    CONNECT = "connect"
    PUBLISH = "publish"

    @classmethod
    def from_name(cls, name: str) -> 'OperationType':
        """Obtiene el tipo a partir de su nombre (sin distinguir mayúsculas).

        Raises:
            ValueError: Si el nombre no corresponde a ningún tipo
        """
        for member in cls:
            if member.value == name.strip().lower():
                return member
        raise ValueError(f"Tipo de operación desconocido: {name}")

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class RetryContext:
    """Instantánea inmutable de un intento fallido."""
    attempt_count: int
    first_attempt_ts: float = field(default_factory=time.time)
    last_error: Optional[BaseException] = None
    context_tag: Any = None


def compute_interval(attempt: int, config: BackoffConfig) -> float:
    """Calcula la espera previa al siguiente intento.

    Args:
        attempt: Número de intento (empieza en 1)
        config: Configuración de back-off

    Returns:
        Espera en segundos, acotada a [0, max_interval]
    """
    attempt = max(attempt, 1)
    base = config.base_interval

    if config.shape == BackoffShape.LINEAR:
        interval = base * attempt
    elif config.shape == BackoffShape.EXPONENTIAL:
        try:
            interval = base * (config.multiplier ** (attempt - 1))
        except OverflowError:
            interval = config.max_interval
    else:
        interval = base

    return min(max(interval, 0.0), config.max_interval)


def is_retryable(error: Optional[BaseException]) -> bool:
    """True si el fallo es transitorio.

    Los errores de protocolo permanentes (credenciales, versión, client id,
    autorización, cliente mal formado) y las operaciones sobre un cliente
    detenido nunca se reintentan. Cualquier otro fallo sí.
    """
    if isinstance(error, ClientClosedError):
        return False
    if isinstance(error, ProtocolError):
        return error.retryable
    return True


class RetryPolicy(ABC):
    """Contrato de una política de reintentos."""

    @abstractmethod
    def can_retry(self, context: RetryContext) -> bool:
        """True si se puede realizar otro intento."""

    @abstractmethod
    def next_interval(self, context: RetryContext) -> float:
        """Espera en segundos antes del siguiente intento."""

    def before_retry(self, context: RetryContext) -> None:
        """Hook de diagnóstico previo a cada reintento."""


class MQTTRetryPolicy(RetryPolicy):
    """Política de reintentos para operaciones MQTT.

    Cada instancia pertenece a una clase de operación (conexión o
    publicación) y tiene su propia configuración de back-off.
    """

    def __init__(self, config: BackoffConfig, operation: OperationType):
        """Inicializa la política.

        Args:
            config: Configuración de back-off de la clase de operación
            operation: Clase de operación (para diagnóstico)
        """
        self.config = config
        self.operation = operation

    def can_retry(self, context: RetryContext) -> bool:
        if not self.config.enabled:
            return False

        if context.attempt_count >= self.config.max_attempts:
            logger.warning(
                f"Reintentos de {self.operation} agotados: "
                f"máximo {self.config.max_attempts} intentos"
            )
            return False

        if not is_retryable(context.last_error):
            logger.warning(f"Fallo no recuperable en {self.operation}: {context.last_error}")
            return False

        return True

    def next_interval(self, context: RetryContext) -> float:
        return compute_interval(context.attempt_count, self.config)

    def before_retry(self, context: RetryContext) -> None:
        logger.info(
            f"Reintento de {self.operation}: intento {context.attempt_count + 1}/"
            f"{self.config.max_attempts} en {self.next_interval(context):.2f}s"
        )

    def __repr__(self) -> str:
        return (
            f"MQTTRetryPolicy("
            f"operation={self.operation}, "
            f"shape={self.config.shape.value}, "
            f"max_attempts={self.config.max_attempts}"
            f")"
        )
