"""Publicación MQTT con reintentos.

Cada publicación se ejecuta bajo la política de reintentos de
publicación: los fallos transitorios (incluida la falta de conexión) se
reintentan y el agotamiento se propaga al llamador.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Set, Union

from adapters.interfaces.services import ConnectionProvider
from modules.mqtt_resilience.backoff import MQTTRetryPolicy, OperationType
from modules.mqtt_resilience.errors import ClientClosedError, NotConnectedError, RetryExhaustedError
from modules.mqtt_resilience.retry import RetryExecutor
from modules.mqtt_resilience.settings import BackoffConfig


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PublishRequest:
    """Etiqueta de diagnóstico de una publicación."""
    topic: str
    size: int
    qos: int
    retain: bool

    def __str__(self) -> str:
        return f"{self.topic} ({self.size} bytes, QoS {self.qos})"


class Publisher:
    """Publicador resiliente sobre la conexión gestionada."""

    def __init__(
        self,
        connection: ConnectionProvider,
        retry_config: BackoffConfig,
        executor: Optional[RetryExecutor] = None
    ):
        """Inicializa el publicador.

        Args:
            connection: Proveedor de la conexión activa
            retry_config: Configuración de back-off de publicación
            executor: Ejecutor de reintentos (opcional)
        """
        self._connection = connection
        self._policy = MQTTRetryPolicy(retry_config, OperationType.PUBLISH)
        self._executor = executor or RetryExecutor()
        self._pending: Set[asyncio.Task] = set()
        self._closed = False
        self._last_publish_ts: Optional[float] = None

    @property
    def last_publish_ts(self) -> Optional[float]:
        return self._last_publish_ts

    @property
    def pending(self) -> int:
        """Publicaciones asíncronas en curso."""
        return len(self._pending)

    async def publish(
        self,
        topic: str,
        payload: Union[bytes, str],
        qos: int = 1,
        retain: bool = False
    ) -> None:
        """Publica un mensaje con reintentos.

        Args:
            topic: Tópico MQTT
            payload: Payload (str se codifica en UTF-8)
            qos: Nivel de QoS
            retain: Si el broker debe retener el mensaje

        Raises:
            RetryExhaustedError: Si se agotan los intentos
        """
        data = payload.encode("utf-8") if isinstance(payload, str) else bytes(payload)
        request = PublishRequest(topic, len(data), qos, retain)

        async def attempt():
            if self._closed:
                raise ClientClosedError("publish")
            if not self._connection.is_connected():
                raise NotConnectedError("publish")
            try:
                await self._connection.client.publish(topic, data, qos, retain)
            except Exception as e:
                logger.warning(f"Error publicando en {topic}, se reintentará si procede: {e}")
                raise

        try:
            await self._executor.execute(self._policy, attempt, context_tag=request)
        except RetryExhaustedError as e:
            logger.error(f"No se pudo publicar en {topic}: {e}")
            raise

        self._last_publish_ts = time.time()
        logger.debug(f"Mensaje publicado en {request}")

    async def publish_json(
        self,
        topic: str,
        data: Dict[str, Any],
        qos: int = 1,
        retain: bool = False
    ) -> None:
        """Serializa un diccionario como JSON y lo publica."""
        message = json.dumps(data, ensure_ascii=False)
        await self.publish(topic, message, qos, retain)

    def publish_async(
        self,
        topic: str,
        payload: Union[bytes, str],
        qos: int = 1,
        retain: bool = False
    ) -> asyncio.Task:
        """Publica en segundo plano.

        Returns:
            Tarea que completa cuando la publicación termina (o falla)

        Raises:
            ClientClosedError: Si el publicador está detenido
        """
        if self._closed:
            raise ClientClosedError("publish_async")

        task = asyncio.create_task(
            self.publish(topic, payload, qos, retain),
            name=f"mqtt-publish:{topic}"
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def cancel_pending(self, grace_period: float = 5.0):
        """Deja de aceptar publicaciones y cancela las que sigan en curso.

        Args:
            grace_period: Segundos de espera antes de cancelar
        """
        self._closed = True
        pending = list(self._pending)
        if not pending:
            return

        _, still_running = await asyncio.wait(pending, timeout=grace_period)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning(f"{len(still_running)} publicaciones canceladas al detener el cliente")
            await asyncio.gather(*still_running, return_exceptions=True)
