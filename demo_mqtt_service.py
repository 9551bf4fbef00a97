#!/usr/bin/env python3
"""Demo del cliente MQTT resiliente

Publica telemetría simulada y escucha comandos mientras muestra el estado
de la conexión. Cortar la red durante la ejecución permite observar la
reconexión y la restauración de suscripciones.

Configuración por variables de entorno (MQTT_SERVER_URI, MQTT_CLIENT_ID,
MQTT_CERT_PATH, ...).
"""

import asyncio
import logging
import random
import time
from typing import Any, Dict

from rich.console import Console
from rich.table import Table

from modules.mqtt_resilience import InboundMessage, RetryExhaustedError
from services.mqtt_service import MQTTService

# Configurar logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

console = Console()


class MQTTDemo:
    """Demo del servicio MQTT."""

    def __init__(self):
        self.service = None
        self.running = False
        self.received = 0

    def on_command(self, message: InboundMessage):
        self.received += 1
        logger.info(f"Comando recibido en {message.topic}: {message.payload_as_str()}")

    async def simulate_telemetry(self):
        """Simula datos de telemetría."""
        topic = f"devices/{self.service.settings.client_id}/telemetry"
        while self.running:
            telemetry_data = {
                "temperature": round(random.uniform(20.0, 35.0), 2),
                "humidity": round(random.uniform(40.0, 80.0), 2),
                "uptime": int(time.time())
            }
            try:
                await self.service.publish_json(topic, telemetry_data)
                logger.info(f"Telemetría publicada: {telemetry_data}")
            except RetryExhaustedError as e:
                logger.warning(f"Telemetría descartada: {e}")

            await asyncio.sleep(10)

    async def monitor_status(self):
        """Muestra el estado del servicio periódicamente."""
        while self.running:
            self.show_status(await self.service.health_check())
            await asyncio.sleep(30)

    def show_status(self, status: Dict[str, Any]):
        """Muestra el estado del servicio en una tabla.

        Args:
            status: Estado del servicio
        """
        table = Table(title="Estado del cliente MQTT")
        table.add_column("Campo", style="cyan")
        table.add_column("Valor", style="green")

        for key in ("server_uri", "client_id", "connection_status", "reconnect_count",
                    "subscriptions", "pending_publishes", "last_error"):
            table.add_row(key, str(status.get(key)))

        last_publish = status.get("last_publish_ts")
        ago = f"hace {time.time() - last_publish:.1f}s" if last_publish else "nunca"
        table.add_row("última publicación", ago)
        table.add_row("comandos recibidos", str(self.received))

        console.print(table)

    async def run_demo(self, duration: int = 300):
        """Ejecuta el demo completo.

        Args:
            duration: Duración del demo en segundos
        """
        logger.info(f"Iniciando demo MQTT por {duration} segundos...")

        self.service = MQTTService.from_env()
        logger.info(f"Servicio creado: {self.service}")

        async with self.service:
            await self.service.register_subscription(
                f"devices/{self.service.settings.client_id}/commands/#", 1, self.on_command
            )

            if not self.service.is_connected():
                logger.warning("Sin conexión inicial; el servicio seguirá reintentando")

            self.running = True
            tasks = [
                asyncio.create_task(self.simulate_telemetry()),
                asyncio.create_task(self.monitor_status())
            ]

            try:
                await asyncio.sleep(duration)
            finally:
                self.running = False
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                self.show_status(await self.service.health_check())

        logger.info("Demo finalizado")


async def main():
    demo = MQTTDemo()
    try:
        await demo.run_demo(duration=300)
    except KeyboardInterrupt:
        logger.info("Demo interrumpido por el usuario")


if __name__ == "__main__":
    asyncio.run(main())
