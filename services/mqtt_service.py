"""MQTT service para comunicación resiliente con brokers MQTT."""

import asyncio
import logging
from typing import Any, Dict, Optional, Set, Union

from adapters.interfaces.base_service import MQTTServiceInterface, ServiceStatus
from adapters.interfaces.services import ProtocolClientInterface
from modules.mqtt_resilience.connection import ConnectionManager
from modules.mqtt_resilience.message import MessageHandler
from modules.mqtt_resilience.publisher import Publisher
from modules.mqtt_resilience.retry import RetryExecutor
from modules.mqtt_resilience.settings import MQTTSettings
from modules.mqtt_resilience.subscriptions import Subscription, SubscriptionRegistry

logger = logging.getLogger(__name__)


class MQTTService(MQTTServiceInterface):
    """Servicio MQTT que compone conexión, suscripciones y publicación.

    Es el único punto de entrada para la capa de aplicación: el gestor de
    conexión es dueño del cliente de protocolo, el registro restaura las
    suscripciones tras cada reconexión y el publicador reintenta los
    envíos fallidos.
    """

    def __init__(
        self,
        settings: MQTTSettings,
        client: Optional[ProtocolClientInterface] = None,
        executor: Optional[RetryExecutor] = None
    ):
        """Inicializar el servicio MQTT.

        Args:
            settings: Configuración del cliente MQTT
            client: Cliente de protocolo (por defecto awscrt)
            executor: Ejecutor de reintentos compartido (opcional)
        """
        super().__init__()
        self.settings = settings

        if client is None:
            from infrastructure.aws_iot_adapter import AWSIoTProtocolClient
            client = AWSIoTProtocolClient()

        self._executor = executor or RetryExecutor()
        self.connection = ConnectionManager(settings, client, self._executor)
        self.registry = SubscriptionRegistry(self.connection, pacing=settings.resubscribe_pacing)
        self.connection.bind_registry(self.registry)
        self.publisher = Publisher(self.connection, settings.publish_retry, self._executor)

        logger.info(f"MQTTService inicializado: {settings.server_uri} ({settings.client_id})")

    @classmethod
    def from_env(cls, client: Optional[ProtocolClientInterface] = None, **overrides) -> 'MQTTService':
        """Crea el servicio leyendo la configuración de variables MQTT_*."""
        return cls(MQTTSettings.from_env(**overrides), client=client)

    @property
    def status(self) -> ServiceStatus:
        """Estado del servicio; vuelve a RUNNING si la reconexión en segundo plano tuvo éxito."""
        if self._status == ServiceStatus.ERROR and self.connection.is_connected():
            logger.info("Conexión MQTT restablecida, servicio en marcha")
            self._set_status(ServiceStatus.RUNNING)
        return self._status

    async def initialize(self) -> None:
        self._set_status(ServiceStatus.STOPPED)

    async def start(self) -> bool:
        """Inicia la conexión con el broker.

        Returns:
            True si la conexión inicial se completó. Si no, el servicio sigue
            en marcha y la reconexión queda programada en segundo plano.
        """
        self._set_status(ServiceStatus.STARTING)
        connected = await self.connection.start()

        if connected:
            self._set_status(ServiceStatus.RUNNING)
        else:
            error = self.connection.last_error
            self._set_status(ServiceStatus.ERROR, str(error) if error else None)
            logger.warning("Servicio MQTT iniciado sin conexión; reintentando en segundo plano")

        return connected

    async def stop(self) -> None:
        """Detiene publicaciones pendientes y cierra la conexión."""
        if self._status == ServiceStatus.STOPPED and self.connection.status()["stopping"]:
            return

        self._set_status(ServiceStatus.STOPPING)
        await self.publisher.cancel_pending(self.settings.shutdown_grace_period)
        await self.connection.shutdown()
        self._set_status(ServiceStatus.STOPPED)
        logger.info("Servicio MQTT detenido")

    async def health_check(self) -> Dict[str, Any]:
        status = self.connection.status()
        status.update({
            "service_status": self.status.value,
            "subscriptions": len(self.registry),
            "resyncing": self.registry.resyncing,
            "pending_publishes": self.publisher.pending,
            "last_publish_ts": self.publisher.last_publish_ts
        })
        return status

    async def register_subscription(self, topic: str, qos: int, handler: MessageHandler) -> None:
        await self.registry.register(topic, qos, handler)

    async def unregister_subscription(self, topic: str, qos: int) -> bool:
        return await self.registry.unregister(topic, qos)

    async def publish(
        self,
        topic: str,
        payload: Union[bytes, str],
        qos: int = 1,
        retain: bool = False
    ) -> None:
        await self.publisher.publish(topic, payload, qos, retain)

    async def publish_json(
        self,
        topic: str,
        data: Dict[str, Any],
        qos: int = 1,
        retain: bool = False
    ) -> None:
        await self.publisher.publish_json(topic, data, qos, retain)

    def publish_async(
        self,
        topic: str,
        payload: Union[bytes, str],
        qos: int = 1,
        retain: bool = False
    ) -> asyncio.Task:
        return self.publisher.publish_async(topic, payload, qos, retain)

    def is_connected(self) -> bool:
        return self.connection.is_connected()

    def subscriptions(self) -> Set[Subscription]:
        return self.registry.list()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    def __repr__(self) -> str:
        return (f"MQTTService(server_uri={self.settings.server_uri}, "
                f"status={self._status.value}, subscriptions={len(self.registry)})")
