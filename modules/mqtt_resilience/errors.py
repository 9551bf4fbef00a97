"""Excepciones del cliente MQTT resiliente.

Define la taxonomía de errores usada por la política de reintentos:
errores de protocolo (transitorios o permanentes según su código),
agotamiento de reintentos y operaciones sobre un cliente ya cerrado.
"""

from enum import IntEnum
from typing import Any, Optional


class ReasonCode(IntEnum):
    """Códigos de motivo de fallo del protocolo MQTT."""
    CLIENT_ERROR = 0
    UNSUPPORTED_PROTOCOL_VERSION = 1
    INVALID_CLIENT_ID = 2
    BROKER_UNAVAILABLE = 3
    AUTHENTICATION_FAILED = 4
    NOT_AUTHORIZED = 5
    TIMEOUT = 100
    NOT_CONNECTED = 101
    CONNECTION_LOST = 102
    SUBSCRIBE_REJECTED = 103
    UNEXPECTED = 199


# Fallos que no se resuelven reintentando: cortan el ciclo en el primer intento
NON_RETRYABLE_REASONS = frozenset({
    ReasonCode.CLIENT_ERROR,
    ReasonCode.UNSUPPORTED_PROTOCOL_VERSION,
    ReasonCode.INVALID_CLIENT_ID,
    ReasonCode.AUTHENTICATION_FAILED,
    ReasonCode.NOT_AUTHORIZED,
})


class MQTTClientError(Exception):
    """Excepción base del cliente MQTT.

    Todas las excepciones del módulo heredan de esta clase.
    """

    def __init__(self, message: str, original_error: Optional[BaseException] = None):
        """Inicializa la excepción base.

        Args:
            message: Mensaje de error legible
            original_error: Excepción original que causó este error
        """
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def __str__(self) -> str:
        if self.original_error:
            return f"{self.message} (Causa: {self.original_error})"
        return self.message


class ProtocolError(MQTTClientError):
    """Fallo reportado por el cliente de protocolo MQTT.

    El código de motivo decide si el fallo es transitorio (se reintenta)
    o permanente (credenciales, versión de protocolo, client id...).
    """

    def __init__(
        self,
        reason_code: ReasonCode,
        message: Optional[str] = None,
        original_error: Optional[BaseException] = None
    ):
        super().__init__(message or f"Error de protocolo MQTT: {reason_code.name}", original_error)
        self.reason_code = reason_code

    @property
    def retryable(self) -> bool:
        """True si el fallo es transitorio."""
        return self.reason_code not in NON_RETRYABLE_REASONS


class NotConnectedError(ProtocolError):
    """La operación requiere una conexión activa con el broker."""

    def __init__(self, operation: str = "operación"):
        super().__init__(
            ReasonCode.NOT_CONNECTED,
            f"No se puede ejecutar {operation}: cliente MQTT no conectado"
        )
        self.operation = operation


class ClientClosedError(MQTTClientError):
    """Operación solicitada después de detener el cliente."""

    def __init__(self, operation: str = "operación"):
        super().__init__(f"No se puede ejecutar {operation}: el cliente MQTT está detenido")
        self.operation = operation


class RetryExhaustedError(MQTTClientError):
    """Se agotó el presupuesto de reintentos de una operación.

    Envuelve siempre el último fallo y el número de intentos realizados,
    de modo que el llamador pueda distinguir "me rendí tras N intentos"
    de la categoría del fallo original.
    """

    def __init__(
        self,
        attempts: int,
        last_error: Optional[BaseException] = None,
        context_tag: Any = None
    ):
        target = f" ({context_tag})" if context_tag is not None else ""
        super().__init__(
            f"Reintentos agotados tras {attempts} intentos{target}",
            last_error
        )
        self.attempts = attempts
        self.context_tag = context_tag

    @property
    def last_error(self) -> Optional[BaseException]:
        """Último fallo observado."""
        return self.original_error
