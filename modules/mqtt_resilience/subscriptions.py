"""Registro de suscripciones MQTT.

Guarda el conjunto deseado de suscripciones y lo reproduce sobre la
conexión activa tras cada reconexión. El registro es la única fuente de
verdad de "qué debe estar suscrito"; el estado en el broker converge
hacia él.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Set, Tuple

from adapters.interfaces.services import ConnectionProvider
from modules.mqtt_resilience.message import MessageHandler


logger = logging.getLogger(__name__)

VALID_QOS = (0, 1, 2)


@dataclass(frozen=True)
class Subscription:
    """Suscripción deseada, identificada por (tópico, QoS)."""
    topic: str
    qos: int
    handler: MessageHandler

    @property
    def key(self) -> Tuple[str, int]:
        return (self.topic, self.qos)


class SubscriptionRegistry:
    """Registro de suscripciones con resincronización idempotente.

    Características:
    - Clave (tópico, QoS): el mismo tópico con dos QoS son dos entradas
    - Suscripción inmediata si hay conexión y no hay resincronización en curso
    - Resincronización completa, espaciada y tolerante a fallos parciales
    """

    def __init__(self, connection: ConnectionProvider, pacing: float = 0.01):
        """Inicializa el registro.

        Args:
            connection: Proveedor de la conexión activa (solo lectura)
            pacing: Pausa en segundos entre suscripciones al resincronizar
        """
        self._connection = connection
        self._pacing = pacing
        self._entries: Dict[Tuple[str, int], Subscription] = {}
        self._resyncing = False

    @property
    def resyncing(self) -> bool:
        """True mientras hay una resincronización en curso."""
        return self._resyncing

    def __len__(self) -> int:
        return len(self._entries)

    def list(self) -> Set[Subscription]:
        """Devuelve el conjunto de suscripciones registradas."""
        return set(self._entries.values())

    async def register(self, topic: str, qos: int, handler: MessageHandler) -> None:
        """Registra una suscripción.

        Si la clave ya existía, la nueva entrada la reemplaza. Nunca falla
        por problemas de conectividad: la entrada queda registrada y se
        suscribirá en la próxima resincronización.

        Args:
            topic: Filtro de tópico
            qos: Nivel de QoS (0, 1 o 2)
            handler: Función que recibe los mensajes

        Raises:
            ValueError: Si el tópico, el QoS o el handler no son válidos
        """
        if not topic or not topic.strip():
            raise ValueError("El tópico no puede estar vacío")
        if qos not in VALID_QOS:
            raise ValueError(f"QoS inválido: {qos}. Debe ser 0, 1 o 2")
        if not callable(handler):
            raise ValueError("El handler debe ser invocable")

        subscription = Subscription(topic, qos, handler)
        self._entries[subscription.key] = subscription
        logger.debug(f"Suscripción registrada: {topic} (QoS {qos})")

        if self._connection.is_connected() and not self._resyncing:
            await self._subscribe(subscription)
        else:
            logger.debug(f"Suscripción a {topic} diferida hasta la próxima resincronización")

    async def unregister(self, topic: str, qos: int) -> bool:
        """Elimina una suscripción registrada.

        Los fallos al cancelar en el broker solo se registran en el log:
        el tópico ya no forma parte del estado deseado.

        Returns:
            True si la suscripción existía
        """
        removed = self._entries.pop((topic, qos), None)
        if removed is None:
            logger.debug(f"Suscripción no registrada: {topic} (QoS {qos})")
            return False

        if any(key[0] == topic for key in self._entries):
            # El broker cancela por tópico; otra QoS del mismo tópico sigue deseada
            logger.debug(f"{topic} sigue registrado con otro QoS, se mantiene en el broker")
            return True

        if self._connection.is_connected():
            try:
                await self._connection.client.unsubscribe(topic)
                logger.info(f"Desuscrito de {topic}")
            except Exception as e:
                logger.error(f"Error desuscribiéndose de {topic}: {e}")

        return True

    async def resubscribe_all(self) -> int:
        """Vuelve a suscribir todas las entradas registradas.

        Idempotente: repetirla produce las mismas suscripciones sin
        duplicar entradas. Un fallo en un tópico no aborta el resto.

        Returns:
            Número de suscripciones realizadas con éxito
        """
        if self._resyncing:
            logger.info("Resincronización ya en curso, se omite la nueva solicitud")
            return 0

        snapshot = list(self._entries.values())
        if not snapshot:
            logger.info("Sin suscripciones registradas que restaurar")
            return 0

        self._resyncing = True
        succeeded = 0
        try:
            logger.info(f"Resuscribiendo {len(snapshot)} tópicos tras la reconexión")

            for index, subscription in enumerate(snapshot):
                if index:
                    await asyncio.sleep(self._pacing)
                if await self._subscribe(subscription):
                    succeeded += 1

            logger.info(f"Resincronización completada: {succeeded}/{len(snapshot)} tópicos")
        finally:
            self._resyncing = False

        return succeeded

    async def _subscribe(self, subscription: Subscription) -> bool:
        try:
            await self._connection.client.subscribe(
                subscription.topic,
                subscription.qos,
                subscription.handler
            )
            logger.debug(f"Suscrito a {subscription.topic} (QoS {subscription.qos})")
            return True
        except Exception as e:
            logger.error(f"Error suscribiéndose a {subscription.topic}: {e}")
            return False

    def __repr__(self) -> str:
        return f"SubscriptionRegistry(entries={len(self._entries)}, resyncing={self._resyncing})"
