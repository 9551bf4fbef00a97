"""Configuración del cliente MQTT resiliente.

Modelos Pydantic para los parámetros de conexión y para las dos
configuraciones de back-off independientes (conexión y publicación).
"""

import os
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Optional
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


SUPPORTED_SCHEMES = {
    "tcp": (1883, False),
    "mqtt": (1883, False),
    "ssl": (8883, True),
    "tls": (8883, True),
    "mqtts": (8883, True),
}


class BackoffShape(str, Enum):
    """Forma de la función intento -> espera."""
    FIXED = "fixed"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


class BackoffConfig(BaseModel):
    """Parámetros de reintento de una clase de operación.

    Los intervalos se expresan en segundos.
    """

    model_config = ConfigDict(frozen=True)

    enabled: bool = Field(True, description="Si los reintentos están habilitados")
    max_attempts: int = Field(5, ge=1, description="Máximo número de intentos")
    base_interval: float = Field(5.0, ge=0, description="Intervalo base en segundos")
    max_interval: float = Field(30.0, ge=0, description="Intervalo máximo en segundos")
    multiplier: float = Field(1.5, gt=0, description="Multiplicador exponencial")
    shape: BackoffShape = Field(BackoffShape.EXPONENTIAL, description="Estrategia de back-off")

    @model_validator(mode="after")
    def validate_intervals(self):
        """El intervalo base no puede superar al máximo."""
        if self.base_interval > self.max_interval:
            raise ValueError(
                f"base_interval ({self.base_interval}) no puede superar "
                f"max_interval ({self.max_interval})"
            )
        return self


def default_connect_retry() -> BackoffConfig:
    return BackoffConfig(
        max_attempts=5,
        base_interval=5.0,
        max_interval=30.0,
        multiplier=1.5
    )


def default_publish_retry() -> BackoffConfig:
    return BackoffConfig(
        max_attempts=3,
        base_interval=1.0,
        max_interval=5.0,
        multiplier=1.2
    )


@dataclass(frozen=True)
class ConnectOptions:
    """Opciones inmutables entregadas al cliente de protocolo en connect()."""
    server_uri: str
    host: str
    port: int
    use_tls: bool
    client_id: str
    username: Optional[str] = None
    password: Optional[str] = None
    connect_timeout: float = 30.0
    keep_alive_interval: int = 60
    clean_session: bool = True
    automatic_reconnect: bool = True
    cert_path: Optional[str] = None
    key_path: Optional[str] = None
    ca_path: Optional[str] = None


class MQTTSettings(BaseModel):
    """Configuración completa del cliente MQTT resiliente."""

    server_uri: str = Field("tcp://localhost:1883", description="URI del broker")
    client_id: str = Field(
        default_factory=lambda: f"mqtt-client-{uuid.uuid4().hex[:8]}",
        min_length=1,
        description="Identificador de cliente MQTT"
    )
    username: Optional[str] = None
    password: Optional[str] = None

    connect_timeout: float = Field(30.0, gt=0, description="Timeout de conexión en segundos")
    keep_alive_interval: int = Field(60, ge=0, description="Keep-alive en segundos")
    clean_session: bool = True
    automatic_reconnect: bool = True

    # TLS mutuo (certificados de dispositivo)
    cert_path: Optional[str] = None
    key_path: Optional[str] = None
    ca_path: Optional[str] = None

    connect_retry: BackoffConfig = Field(default_factory=default_connect_retry)
    publish_retry: BackoffConfig = Field(default_factory=default_publish_retry)

    settle_delay: float = Field(2.0, ge=0, description="Espera tras reconectar antes de resuscribir")
    resubscribe_pacing: float = Field(0.01, ge=0, description="Pausa entre suscripciones al resincronizar")
    health_probe_enabled: bool = True
    health_probe_initial_delay: float = Field(10.0, ge=0)
    health_probe_interval: float = Field(5.0, gt=0)
    shutdown_grace_period: float = Field(5.0, ge=0)

    @field_validator("server_uri")
    @classmethod
    def validate_server_uri(cls, v):
        """Validar URI del broker.

        Args:
            v: URI a validar

        Returns:
            str: URI validada

        Raises:
            ValueError: Si el esquema no es soportado o falta el host
        """
        parts = urlsplit(v.strip())
        if parts.scheme not in SUPPORTED_SCHEMES:
            raise ValueError(
                f"Esquema no soportado '{parts.scheme}'. "
                f"Usar uno de: {', '.join(sorted(SUPPORTED_SCHEMES))}"
            )
        if not parts.hostname:
            raise ValueError("La URI del broker debe incluir un host")
        # Acceder al puerto valida que sea numérico y esté en rango
        parts.port
        return v.strip()

    @model_validator(mode="after")
    def validate_tls_files(self):
        """Certificado y clave privada van siempre juntos."""
        if bool(self.cert_path) != bool(self.key_path):
            raise ValueError("cert_path y key_path deben configurarse juntos")
        return self

    @property
    def host(self) -> str:
        return urlsplit(self.server_uri).hostname

    @property
    def port(self) -> int:
        parts = urlsplit(self.server_uri)
        return parts.port or SUPPORTED_SCHEMES[parts.scheme][0]

    @property
    def use_tls(self) -> bool:
        return SUPPORTED_SCHEMES[urlsplit(self.server_uri).scheme][1] or bool(self.cert_path)

    def connect_options(self) -> ConnectOptions:
        """Construye las opciones de conexión para el cliente de protocolo."""
        return ConnectOptions(
            server_uri=self.server_uri,
            host=self.host,
            port=self.port,
            use_tls=self.use_tls,
            client_id=self.client_id,
            username=self.username,
            password=self.password,
            connect_timeout=self.connect_timeout,
            keep_alive_interval=self.keep_alive_interval,
            clean_session=self.clean_session,
            automatic_reconnect=self.automatic_reconnect,
            cert_path=self.cert_path,
            key_path=self.key_path,
            ca_path=self.ca_path
        )

    @classmethod
    def from_env(cls, **overrides) -> 'MQTTSettings':
        """Crea la configuración desde variables de entorno.

        Variables reconocidas:
        - MQTT_SERVER_URI
        - MQTT_CLIENT_ID
        - MQTT_USERNAME / MQTT_PASSWORD
        - MQTT_CERT_PATH / MQTT_KEY_PATH / MQTT_CA_PATH
        - MQTT_CLEAN_SESSION / MQTT_AUTOMATIC_RECONNECT ("true"/"false")

        Args:
            **overrides: Valores que tienen prioridad sobre el entorno

        Returns:
            Configuración validada

        Raises:
            ValueError: Si alguna variable booleana tiene un valor inválido
        """
        values = {}
        for field_name in ("server_uri", "client_id", "username", "password",
                           "cert_path", "key_path", "ca_path"):
            value = os.getenv(f"MQTT_{field_name.upper()}")
            if value:
                values[field_name] = value

        invalid = []
        for field_name in ("clean_session", "automatic_reconnect"):
            var = f"MQTT_{field_name.upper()}"
            raw = os.getenv(var)
            if raw is None:
                continue
            lowered = raw.strip().lower()
            if lowered in ("1", "true", "yes", "on"):
                values[field_name] = True
            elif lowered in ("0", "false", "no", "off"):
                values[field_name] = False
            else:
                invalid.append(var)

        if invalid:
            raise ValueError(f"Variables de entorno con valor inválido: {invalid}")

        values.update(overrides)
        return cls(**values)
