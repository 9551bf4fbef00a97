"""Base service interfaces for the MQTT client.

Define interfaces comunes para evitar dependencias circulares.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict, Optional, Set, Union
from enum import Enum

from modules.mqtt_resilience.message import MessageHandler

if TYPE_CHECKING:
    from modules.mqtt_resilience.subscriptions import Subscription


class ServiceStatus(Enum):
    """Estados posibles de un servicio."""
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


class BaseService(ABC):
    """Interfaz base para todos los servicios."""

    def __init__(self):
        self._status = ServiceStatus.STOPPED
        self._error_message: Optional[str] = None

    @property
    def status(self) -> ServiceStatus:
        """Estado actual del servicio."""
        return self._status

    @property
    def error_message(self) -> Optional[str]:
        """Mensaje de error si el servicio está en estado ERROR."""
        return self._error_message

    @property
    def is_running(self) -> bool:
        """True si el servicio está ejecutándose."""
        return self.status == ServiceStatus.RUNNING

    @abstractmethod
    async def initialize(self) -> None:
        """Inicializa el servicio."""
        pass

    @abstractmethod
    async def start(self) -> None:
        """Inicia el servicio."""
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Detiene el servicio."""
        pass

    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        """Verifica el estado de salud del servicio."""
        pass

    async def restart(self) -> None:
        """Reinicia el servicio."""
        await self.stop()
        await self.start()

    def _set_status(self, status: ServiceStatus, error_message: Optional[str] = None) -> None:
        """Establece el estado del servicio."""
        self._status = status
        self._error_message = error_message


class MQTTServiceInterface(BaseService):
    """Interfaz que el núcleo MQTT expone a la capa de despacho."""

    @abstractmethod
    async def register_subscription(self, topic: str, qos: int, handler: MessageHandler) -> None:
        """Registra una suscripción deseada."""
        pass

    @abstractmethod
    async def unregister_subscription(self, topic: str, qos: int) -> bool:
        """Elimina una suscripción deseada."""
        pass

    @abstractmethod
    async def publish(
        self,
        topic: str,
        payload: Union[bytes, str],
        qos: int = 1,
        retain: bool = False
    ) -> None:
        """Publica un mensaje con reintentos."""
        pass

    @abstractmethod
    def publish_async(
        self,
        topic: str,
        payload: Union[bytes, str],
        qos: int = 1,
        retain: bool = False
    ) -> asyncio.Task:
        """Publica en segundo plano y devuelve la tarea."""
        pass

    @abstractmethod
    def is_connected(self) -> bool:
        """True si hay conexión con el broker."""
        pass

    @abstractmethod
    def subscriptions(self) -> Set["Subscription"]:
        """Suscripciones deseadas registradas."""
        pass
