"""Service interface definitions.

Define la capacidad externa de cliente de protocolo MQTT y el acceso de
solo lectura a la conexión que comparten el registro de suscripciones y
el publicador.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from modules.mqtt_resilience.message import MessageHandler
from modules.mqtt_resilience.settings import ConnectOptions


class ConnectionEventListener(ABC):
    """Receptor de eventos de conexión.

    El cliente de protocolo invoca estos métodos de forma asíncrona desde
    su propio hilo de entrega.
    """

    @abstractmethod
    def on_connect_complete(self, is_reconnect: bool, server_uri: str) -> None:
        """Conexión establecida (is_reconnect=True tras una pérdida)."""
        pass

    @abstractmethod
    def on_connection_lost(self, cause: Optional[BaseException]) -> None:
        """Conexión perdida."""
        pass


class ProtocolClientInterface(ABC):
    """Interface for the MQTT wire-protocol client."""

    @abstractmethod
    def set_event_listener(self, listener: ConnectionEventListener) -> None:
        """Registra el receptor de eventos de conexión."""
        pass

    @abstractmethod
    async def connect(self, options: ConnectOptions) -> bool:
        """Conecta al broker. Devuelve session_present."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Desconecta del broker."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Libera los recursos del cliente."""
        pass

    @abstractmethod
    async def publish(self, topic: str, payload: bytes, qos: int, retain: bool) -> Any:
        """Publica un mensaje."""
        pass

    @abstractmethod
    async def subscribe(self, topic: str, qos: int, handler: MessageHandler) -> Any:
        """Se suscribe a un filtro de tópico."""
        pass

    @abstractmethod
    async def unsubscribe(self, topic: str) -> Any:
        """Cancela la suscripción a un filtro de tópico."""
        pass

    @abstractmethod
    def is_connected(self) -> bool:
        """True si la sesión con el broker está activa."""
        pass


class ConnectionProvider(ABC):
    """Acceso a la conexión gestionada, sin poder cambiar su estado."""

    @property
    @abstractmethod
    def client(self) -> ProtocolClientInterface:
        """Cliente de protocolo activo."""
        pass

    @abstractmethod
    def is_connected(self) -> bool:
        """True si la conexión está establecida."""
        pass
