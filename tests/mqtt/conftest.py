"""Fixtures compartidas para los tests MQTT."""

import pytest

from fakes import FakeProtocolClient, fast_backoff
from modules.mqtt_resilience.settings import MQTTSettings


@pytest.fixture
def fake_client():
    """Cliente de protocolo falso desconectado."""
    return FakeProtocolClient()


@pytest.fixture
def fast_settings():
    """Configuración con esperas cortas y sin sonda de salud."""
    return MQTTSettings(
        server_uri="tcp://broker.test:1883",
        client_id="test-client",
        connect_retry=fast_backoff(),
        publish_retry=fast_backoff(),
        settle_delay=0.05,
        resubscribe_pacing=0.0,
        health_probe_enabled=False,
        shutdown_grace_period=0.5
    )
