"""AWS CRT adapter implementing the MQTT protocol client capability."""

import asyncio
import logging
import threading
from typing import Any, Callable, Dict, Optional

from awscrt import io, mqtt
from awscrt.exceptions import AwsCrtError
from awsiot import mqtt_connection_builder

from adapters.interfaces.services import ConnectionEventListener, ProtocolClientInterface
from modules.mqtt_resilience.errors import ProtocolError, ReasonCode
from modules.mqtt_resilience.message import InboundMessage, MessageHandler
from modules.mqtt_resilience.settings import ConnectOptions


logger = logging.getLogger(__name__)


CRT_ERROR_REASONS: Dict[str, ReasonCode] = {
    "AWS_ERROR_MQTT_UNSUPPORTED_PROTOCOL_LEVEL": ReasonCode.UNSUPPORTED_PROTOCOL_VERSION,
    "AWS_ERROR_MQTT_UNSUPPORTED_PROTOCOL_NAME": ReasonCode.UNSUPPORTED_PROTOCOL_VERSION,
    "AWS_ERROR_MQTT_INVALID_CREDENTIALS": ReasonCode.AUTHENTICATION_FAILED,
    "AWS_ERROR_MQTT_CLIENT_OPTIONS_VALIDATION": ReasonCode.CLIENT_ERROR,
    "AWS_ERROR_MQTT_NOT_CONNECTED": ReasonCode.NOT_CONNECTED,
    "AWS_ERROR_MQTT_TIMEOUT": ReasonCode.TIMEOUT,
    "AWS_ERROR_MQTT_UNEXPECTED_HANGUP": ReasonCode.CONNECTION_LOST,
    "AWS_ERROR_MQTT_CONNECTION_DESTROYED": ReasonCode.CONNECTION_LOST,
}

RETURN_CODE_REASONS: Dict[mqtt.ConnectReturnCode, ReasonCode] = {
    mqtt.ConnectReturnCode.UNACCEPTABLE_PROTOCOL_VERSION: ReasonCode.UNSUPPORTED_PROTOCOL_VERSION,
    mqtt.ConnectReturnCode.IDENTIFIER_REJECTED: ReasonCode.INVALID_CLIENT_ID,
    mqtt.ConnectReturnCode.SERVER_UNAVAILABLE: ReasonCode.BROKER_UNAVAILABLE,
    mqtt.ConnectReturnCode.BAD_USERNAME_OR_PASSWORD: ReasonCode.AUTHENTICATION_FAILED,
    mqtt.ConnectReturnCode.NOT_AUTHORIZED: ReasonCode.NOT_AUTHORIZED,
}


def translate_error(error: BaseException) -> ProtocolError:
    """Map an awscrt failure onto a ProtocolError reason code."""
    if isinstance(error, ProtocolError):
        return error

    if isinstance(error, AwsCrtError):
        reason = CRT_ERROR_REASONS.get(error.name, ReasonCode.UNEXPECTED)
    elif isinstance(error, asyncio.TimeoutError):
        reason = ReasonCode.TIMEOUT
    elif error.args and isinstance(error.args[0], mqtt.ConnectReturnCode):
        reason = RETURN_CODE_REASONS.get(error.args[0], ReasonCode.UNEXPECTED)
    else:
        reason = ReasonCode.UNEXPECTED

    return ProtocolError(reason, f"Error MQTT ({reason.name}): {error}", original_error=error)


class AWSIoTProtocolClient(ProtocolClientInterface):
    """MQTT 3.1.1 client backed by awscrt.

    Mutual TLS goes through awsiot's mtls_from_path builder when device
    certificates are configured; otherwise a plain or server-TLS
    connection with optional username/password is created.
    """

    def __init__(self):
        self._connection: Optional[mqtt.Connection] = None
        self._listener: Optional[ConnectionEventListener] = None
        self._options: Optional[ConnectOptions] = None
        self._connected = threading.Event()

    def set_event_listener(self, listener: ConnectionEventListener) -> None:
        self._listener = listener

    def _build_connection(self, options: ConnectOptions) -> mqtt.Connection:
        """Create the awscrt connection for the given options."""
        if options.cert_path:
            connection = mqtt_connection_builder.mtls_from_path(
                endpoint=options.host,
                port=options.port,
                cert_filepath=options.cert_path,
                pri_key_filepath=options.key_path,
                ca_filepath=options.ca_path,
                client_id=options.client_id,
                clean_session=options.clean_session,
                keep_alive_secs=options.keep_alive_interval,
                on_connection_interrupted=self._on_connection_interrupted,
                on_connection_resumed=self._on_connection_resumed
            )
        else:
            tls_ctx = None
            if options.use_tls:
                tls_options = io.TlsContextOptions()
                if options.ca_path:
                    tls_options.override_default_trust_store_from_path(None, options.ca_path)
                tls_ctx = io.ClientTlsContext(tls_options)

            connection = mqtt.Connection(
                client=mqtt.Client(None, tls_ctx),
                host_name=options.host,
                port=options.port,
                client_id=options.client_id,
                clean_session=options.clean_session,
                keep_alive_secs=options.keep_alive_interval,
                username=options.username,
                password=options.password,
                on_connection_interrupted=self._on_connection_interrupted,
                on_connection_resumed=self._on_connection_resumed
            )

        logger.info(f"MQTT connection created for client {options.client_id}")
        return connection

    async def connect(self, options: ConnectOptions) -> bool:
        if self._connection is None:
            self._connection = self._build_connection(options)
            self._options = options

        try:
            result = await asyncio.wait_for(
                asyncio.wrap_future(self._connection.connect()),
                timeout=options.connect_timeout
            )
        except AwsCrtError as e:
            if e.name != "AWS_ERROR_MQTT_ALREADY_CONNECTED":
                raise translate_error(e) from e
            logger.debug("MQTT connection already established")
            result = None
        except Exception as e:
            raise translate_error(e) from e

        self._connected.set()
        if self._listener:
            self._listener.on_connect_complete(False, options.server_uri)

        return bool(result.get("session_present")) if isinstance(result, dict) else False

    async def disconnect(self) -> None:
        if self._connection is None:
            return
        try:
            await asyncio.wrap_future(self._connection.disconnect())
        except Exception as e:
            raise translate_error(e) from e
        finally:
            self._connected.clear()

    async def close(self) -> None:
        self._connected.clear()
        self._connection = None

    async def publish(self, topic: str, payload: bytes, qos: int, retain: bool) -> Any:
        connection = self._require_connection()
        try:
            future, packet_id = connection.publish(
                topic=topic,
                payload=payload,
                qos=mqtt.QoS(qos),
                retain=retain
            )
            await asyncio.wrap_future(future)
        except Exception as e:
            raise translate_error(e) from e
        return packet_id

    async def subscribe(self, topic: str, qos: int, handler: MessageHandler) -> Any:
        connection = self._require_connection()
        try:
            future, packet_id = connection.subscribe(
                topic=topic,
                qos=mqtt.QoS(qos),
                callback=self._wrap_handler(handler)
            )
            result = await asyncio.wrap_future(future)
        except Exception as e:
            raise translate_error(e) from e

        if isinstance(result, dict) and result.get("qos") is None:
            raise ProtocolError(
                ReasonCode.SUBSCRIBE_REJECTED,
                f"El broker rechazó la suscripción a {topic}"
            )
        return packet_id

    async def unsubscribe(self, topic: str) -> Any:
        connection = self._require_connection()
        try:
            future, packet_id = connection.unsubscribe(topic)
            await asyncio.wrap_future(future)
        except Exception as e:
            raise translate_error(e) from e
        return packet_id

    def is_connected(self) -> bool:
        return self._connection is not None and self._connected.is_set()

    def _require_connection(self) -> mqtt.Connection:
        if self._connection is None:
            raise ProtocolError(ReasonCode.NOT_CONNECTED, "Conexión MQTT no creada")
        return self._connection

    @staticmethod
    def _wrap_handler(handler: MessageHandler) -> Callable:
        def on_message(topic, payload, dup, qos, retain, **kwargs):
            message = InboundMessage(
                topic=topic,
                payload=bytes(payload),
                qos=int(qos),
                retained=bool(retain),
                duplicate=bool(dup)
            )
            try:
                handler(message)
            except Exception as e:
                logger.error(f"Error in message handler for {topic}: {e}")
        return on_message

    def _on_connection_interrupted(self, connection, error, **kwargs):
        logger.warning(f"MQTT connection interrupted: {error}")
        self._connected.clear()
        if self._listener:
            self._listener.on_connection_lost(error)

    def _on_connection_resumed(self, connection, return_code, session_present, **kwargs):
        logger.info(f"MQTT connection resumed: {return_code} (session_present={session_present})")
        self._connected.set()
        if self._listener:
            uri = self._options.server_uri if self._options else ""
            self._listener.on_connect_complete(True, uri)

    def __repr__(self) -> str:
        client_id = self._options.client_id if self._options else None
        return f"AWSIoTProtocolClient(client_id={client_id}, connected={self.is_connected()})"
