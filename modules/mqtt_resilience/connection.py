"""Gestor del ciclo de vida de la conexión MQTT.

Mantiene una única conexión lógica con el broker: conexión inicial con
reintentos, detección de pérdidas, reconexión programada con back-off y
resincronización de suscripciones tras cada reconexión.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Coroutine, Dict, Optional

from adapters.interfaces.services import (
    ConnectionEventListener,
    ConnectionProvider,
    ProtocolClientInterface
)
from modules.mqtt_resilience.backoff import MQTTRetryPolicy, OperationType, RetryContext
from modules.mqtt_resilience.errors import ClientClosedError, RetryExhaustedError
from modules.mqtt_resilience.retry import RetryExecutor
from modules.mqtt_resilience.scheduler import SerialScheduler
from modules.mqtt_resilience.settings import MQTTSettings
from modules.mqtt_resilience.subscriptions import SubscriptionRegistry


logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Estados de la conexión con el broker."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ConnectionManager(ConnectionProvider, ConnectionEventListener):
    """Dueño único de la conexión con el broker.

    Todas las transiciones de estado y las llamadas connect/disconnect al
    cliente de protocolo se serializan con un único asyncio.Lock. Los
    eventos del cliente llegan desde su propio hilo y se trasladan al
    bucle de eventos del gestor.
    """

    def __init__(
        self,
        settings: MQTTSettings,
        client: ProtocolClientInterface,
        executor: Optional[RetryExecutor] = None
    ):
        """Inicializa el gestor.

        Args:
            settings: Configuración del cliente
            client: Cliente de protocolo MQTT
            executor: Ejecutor de reintentos (opcional)
        """
        self.settings = settings
        self._client = client
        self._options = settings.connect_options()
        self._executor = executor or RetryExecutor()
        self._connect_policy = MQTTRetryPolicy(settings.connect_retry, OperationType.CONNECT)

        self._lock = asyncio.Lock()
        self._state = ConnectionState.DISCONNECTED
        self._scheduler = SerialScheduler("mqtt-reconnect")
        self._registry: Optional[SubscriptionRegistry] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        self._stopping = False
        self._ever_connected = False
        self._session_resync_scheduled = False
        self._last_probe_connected = False

        self._connect_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._probe_task: Optional[asyncio.Task] = None

        # Métricas de estado
        self._last_error: Optional[BaseException] = None
        self._last_connected_ts: Optional[float] = None
        self._last_lost_ts: Optional[float] = None
        self._reconnect_count = 0

        self._client.set_event_listener(self)

    def bind_registry(self, registry: SubscriptionRegistry) -> None:
        """Asocia el registro que se resincroniza tras cada reconexión."""
        self._registry = registry

    @property
    def client(self) -> ProtocolClientInterface:
        return self._client

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def last_error(self) -> Optional[BaseException]:
        return self._last_error

    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED and self._client.is_connected()

    async def start(self) -> bool:
        """Conexión inicial con reintentos.

        Nunca propaga el agotamiento de reintentos: lo registra, programa
        una reconexión diferida y devuelve False.

        Returns:
            True si la conexión quedó establecida
        """
        if self._stopping:
            raise ClientClosedError("start")

        self._loop = asyncio.get_running_loop()

        if self.settings.health_probe_enabled and self._probe_task is None:
            self._probe_task = asyncio.create_task(
                self._health_probe_loop(),
                name="mqtt-health-probe"
            )

        self._connect_task = asyncio.create_task(self._connect_with_retry(), name="mqtt-connect")
        try:
            return await self._connect_task
        except asyncio.CancelledError:
            if self._stopping:
                logger.info("Conexión inicial cancelada por el cierre del cliente")
                return False
            raise

    async def _connect_with_retry(self) -> bool:
        try:
            await self._executor.execute(
                self._connect_policy,
                self._connect_once,
                context_tag=self.settings.server_uri
            )
        except RetryExhaustedError as e:
            self._last_error = e
            if self._stopping:
                return False
            logger.error(f"No se pudo conectar a {self.settings.server_uri}: {e}")
            self._schedule_reconnect()
            return False

        if self._ever_connected:
            self._reconnect_count += 1
        self._ever_connected = True
        self._schedule_resync("conexión establecida")
        return True

    async def _connect_once(self):
        async with self._lock:
            if self._stopping:
                raise ClientClosedError("connect")

            if self._state == ConnectionState.CONNECTED and self._client.is_connected():
                return

            self._state = ConnectionState.CONNECTING
            logger.info(f"Conectando a {self.settings.server_uri}...")

            try:
                if not self._client.is_connected():
                    await self._client.connect(self._options)
            except BaseException:
                self._state = ConnectionState.DISCONNECTED
                raise

            self._mark_connected()
            logger.info(f"Conectado a {self.settings.server_uri}")

    def _mark_connected(self):
        self._state = ConnectionState.CONNECTED
        self._last_connected_ts = time.time()
        self._last_error = None

    def _schedule_reconnect(self):
        """Programa un único intento de reconexión con una serie de back-off nueva."""
        if self._stopping or not self.settings.automatic_reconnect:
            return

        current = asyncio.current_task()
        if (self._reconnect_task is not None and not self._reconnect_task.done()
                and self._reconnect_task is not current):
            logger.debug("Reconexión ya programada")
            return

        context = RetryContext(attempt_count=1, context_tag=self.settings.server_uri)
        delay = self._connect_policy.next_interval(context)

        logger.info(f"Reconexión programada en {delay:.2f}s")
        self._reconnect_task = self._scheduler.schedule(delay, self._reconnect, name="mqtt-reconnect")

    async def _reconnect(self):
        if self._stopping:
            return
        if self.is_connected():
            logger.debug("Conexión ya restablecida, se omite la reconexión")
            return
        await self._connect_with_retry()

    def _schedule_resync(self, reason: str, delay: Optional[float] = None):
        """Programa una resincronización, como mucho una por sesión."""
        if self._registry is None or self._stopping:
            return
        if self._session_resync_scheduled:
            logger.debug(f"Resincronización ya programada para esta sesión ({reason})")
            return

        self._session_resync_scheduled = True
        delay = self.settings.settle_delay if delay is None else delay
        logger.info(f"Resincronización de suscripciones en {delay:.2f}s ({reason})")
        self._scheduler.schedule(delay, self._resync, name="mqtt-resync")

    async def _resync(self):
        async with self._lock:
            connected = self.is_connected()

        if not connected:
            logger.warning("Conexión no disponible, resincronización pospuesta al próximo ciclo")
            return

        await self._registry.resubscribe_all()

    # Eventos del cliente de protocolo (llegan desde su hilo de entrega)

    def on_connect_complete(self, is_reconnect: bool, server_uri: str) -> None:
        self._dispatch(self.handle_connect_complete(is_reconnect, server_uri))

    def on_connection_lost(self, cause: Optional[BaseException]) -> None:
        self._dispatch(self.handle_connection_lost(cause))

    def _dispatch(self, coro: Coroutine):
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug("Evento de conexión ignorado: gestor no iniciado")
            coro.close()
            return
        future = asyncio.run_coroutine_threadsafe(coro, loop)
        future.add_done_callback(self._log_event_failure)

    @staticmethod
    def _log_event_failure(future):
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"Error procesando evento de conexión: {error!r}")

    async def handle_connect_complete(self, is_reconnect: bool, server_uri: str):
        """Procesa la confirmación de conexión del cliente de protocolo."""
        async with self._lock:
            if self._stopping:
                return
            was_connected = self._state == ConnectionState.CONNECTED
            self._mark_connected()

        if is_reconnect:
            logger.info(f"Reconectado a {server_uri}")
            if not was_connected:
                self._reconnect_count += 1
            self._ever_connected = True
            self._schedule_resync("evento de reconexión")
        else:
            logger.info(f"Conexión confirmada con {server_uri}")

    async def handle_connection_lost(self, cause: Optional[BaseException]):
        """Procesa la pérdida de conexión y programa la reconexión."""
        async with self._lock:
            if self._stopping:
                return
            self._state = ConnectionState.DISCONNECTED
            self._session_resync_scheduled = False
            self._last_lost_ts = time.time()
            if cause is not None:
                self._last_error = cause

        logger.warning(f"Conexión MQTT perdida: {cause}")
        self._schedule_reconnect()

    # Sonda de salud

    async def _health_probe_loop(self):
        await asyncio.sleep(self.settings.health_probe_initial_delay)
        while not self._stopping:
            try:
                await self.probe_once()
            except Exception as e:
                logger.error(f"Error en la sonda de conexión: {e}")
            await asyncio.sleep(self.settings.health_probe_interval)

    async def probe_once(self):
        """Detecta pérdidas y reconexiones que no llegaron por el canal de eventos."""
        current = self._client.is_connected()

        if not current and self._last_probe_connected:
            async with self._lock:
                if self._stopping:
                    return
                if self._state == ConnectionState.CONNECTED:
                    logger.warning("La sonda detectó una pérdida no notificada")
                    self._state = ConnectionState.DISCONNECTED
                    self._last_lost_ts = time.time()
                self._session_resync_scheduled = False
            self._schedule_reconnect()

        elif current and not self._last_probe_connected:
            async with self._lock:
                if self._stopping:
                    return
                if self._state != ConnectionState.CONNECTED:
                    logger.info("La sonda detectó una reconexión no notificada")
                    self._mark_connected()
            self._schedule_resync("sonda de conexión", delay=0.0)

        self._last_probe_connected = current

    async def shutdown(self):
        """Detiene el gestor y libera la conexión.

        Es seguro llamarlo aunque nunca se haya conectado, y más de una vez.
        """
        if self._stopping and self._scheduler.closed:
            return

        logger.info("Deteniendo gestor de conexión MQTT...")
        self._stopping = True

        if self._probe_task is not None:
            self._probe_task.cancel()
            await asyncio.gather(self._probe_task, return_exceptions=True)
            self._probe_task = None

        if self._connect_task is not None and not self._connect_task.done():
            self._connect_task.cancel()
            await asyncio.gather(self._connect_task, return_exceptions=True)

        await self._scheduler.shutdown(self.settings.shutdown_grace_period)

        async with self._lock:
            if self._client.is_connected():
                try:
                    await self._client.disconnect()
                    logger.info("Cliente MQTT desconectado")
                except Exception as e:
                    logger.error(f"Error desconectando cliente MQTT: {e}")
            try:
                await self._client.close()
            except Exception as e:
                logger.error(f"Error cerrando cliente MQTT: {e}")
            self._state = ConnectionState.DISCONNECTED

        logger.info("Gestor de conexión MQTT detenido")

    def status(self) -> Dict[str, Any]:
        """Obtiene el estado actual de la conexión.

        Returns:
            Diccionario con métricas de estado
        """
        return {
            "connection_status": self._state.value,
            "connected": self.is_connected(),
            "server_uri": self.settings.server_uri,
            "client_id": self.settings.client_id,
            "reconnect_count": self._reconnect_count,
            "last_connected_ts": self._last_connected_ts,
            "last_lost_ts": self._last_lost_ts,
            "last_error": str(self._last_error) if self._last_error else None,
            "stopping": self._stopping
        }

    def __repr__(self) -> str:
        return f"ConnectionManager(client_id={self.settings.client_id}, state={self._state.value})"
