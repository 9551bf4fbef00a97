"""Mensajes MQTT entrantes."""

import time
from dataclasses import dataclass, field
from typing import Callable


@dataclass(frozen=True)
class InboundMessage:
    """Mensaje recibido en un tópico suscrito.

    Es lo único que la capa de despacho recibe del núcleo: el payload
    se entrega crudo, sin interpretar.
    """
    topic: str
    payload: bytes
    qos: int = 0
    retained: bool = False
    duplicate: bool = False
    timestamp: float = field(default_factory=time.time)

    def payload_as_str(self, encoding: str = "utf-8") -> str:
        """Decodifica el payload como texto."""
        return self.payload.decode(encoding)


MessageHandler = Callable[[InboundMessage], None]
