"""Tests para el registro de suscripciones."""

import asyncio

import pytest
from unittest.mock import Mock

from modules.mqtt_resilience.subscriptions import Subscription, SubscriptionRegistry
from fakes import FakeConnection, FakeProtocolClient


@pytest.fixture
def client():
    client = FakeProtocolClient()
    client.connected = True
    return client


@pytest.fixture
def connection(client):
    return FakeConnection(client, connected=False)


@pytest.fixture
def registry(connection):
    return SubscriptionRegistry(connection, pacing=0.0)


class TestRegister:
    """Tests para el registro de suscripciones."""

    @pytest.mark.asyncio
    async def test_register_while_disconnected_is_deferred(self, registry, client):
        """Test registro sin conexión: queda guardado sin suscribir."""
        await registry.register("sensors/temp", 1, Mock())

        assert len(registry) == 1
        assert client.subscribe_calls == []

    @pytest.mark.asyncio
    async def test_register_while_connected_subscribes(self, registry, connection, client):
        """Test registro con conexión: suscripción inmediata."""
        connection.connected = True

        await registry.register("sensors/temp", 1, Mock())

        assert client.subscribe_calls == [("sensors/temp", 1)]

    @pytest.mark.asyncio
    async def test_same_key_replaces_handler(self, registry):
        """Test la última escritura gana para la misma clave."""
        first, second = Mock(), Mock()

        await registry.register("sensors/temp", 1, first)
        await registry.register("sensors/temp", 1, second)

        assert registry.list() == {Subscription("sensors/temp", 1, second)}

    @pytest.mark.asyncio
    async def test_same_topic_different_qos_are_distinct(self, registry):
        """Test (tópico, QoS) como clave."""
        handler = Mock()

        await registry.register("sensors/temp", 0, handler)
        await registry.register("sensors/temp", 1, handler)

        assert len(registry) == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("topic,qos,handler", [
        ("", 1, Mock()),
        ("   ", 1, Mock()),
        ("sensors/temp", 3, Mock()),
        ("sensors/temp", -1, Mock()),
        ("sensors/temp", 1, "not-callable")
    ])
    async def test_invalid_registration(self, registry, topic, qos, handler):
        """Test validación de tópico, QoS y handler."""
        with pytest.raises(ValueError):
            await registry.register(topic, qos, handler)

        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_subscribe_failure_keeps_entry(self, registry, connection, client):
        """Test fallo al suscribir no pierde la entrada."""
        connection.connected = True
        client.fail_topics.add("sensors/temp")

        await registry.register("sensors/temp", 1, Mock())

        assert len(registry) == 1


class TestUnregister:
    """Tests para la baja de suscripciones."""

    @pytest.mark.asyncio
    async def test_unregister_existing(self, registry, connection, client):
        """Test baja con conexión activa."""
        await registry.register("sensors/temp", 1, Mock())
        connection.connected = True

        assert await registry.unregister("sensors/temp", 1) is True
        assert len(registry) == 0
        assert client.unsubscribe_calls == ["sensors/temp"]

    @pytest.mark.asyncio
    async def test_unregister_unknown(self, registry, client):
        """Test baja de una suscripción inexistente."""
        assert await registry.unregister("sensors/temp", 1) is False
        assert client.unsubscribe_calls == []

    @pytest.mark.asyncio
    async def test_unregister_keeps_topic_with_other_qos(self, registry, connection, client):
        """Test el tópico sigue en el broker si queda otro QoS registrado."""
        await registry.register("sensors/temp", 0, Mock())
        await registry.register("sensors/temp", 1, Mock())
        connection.connected = True

        assert await registry.unregister("sensors/temp", 0) is True
        assert client.unsubscribe_calls == []
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_unregister_while_disconnected(self, registry, client):
        """Test baja sin conexión: solo se elimina del registro."""
        await registry.register("sensors/temp", 1, Mock())

        assert await registry.unregister("sensors/temp", 1) is True
        assert client.unsubscribe_calls == []


class TestResubscribeAll:
    """Tests para la resincronización."""

    @pytest.mark.asyncio
    async def test_resubscribes_every_entry(self, registry, client):
        """Test N entradas producen N suscripciones."""
        for index in range(5):
            await registry.register(f"devices/{index}/cmd", 1, Mock())

        succeeded = await registry.resubscribe_all()

        assert succeeded == 5
        assert sorted(client.subscribed_topics()) == [f"devices/{i}/cmd" for i in range(5)]
        assert not registry.resyncing

    @pytest.mark.asyncio
    async def test_resubscribe_is_idempotent(self, registry, client):
        """Test repetir la resincronización no duplica entradas."""
        await registry.register("a", 0, Mock())
        await registry.register("b", 1, Mock())

        await registry.resubscribe_all()
        await registry.resubscribe_all()

        assert len(registry) == 2
        assert sorted(client.subscribe_calls) == [("a", 0), ("a", 0), ("b", 1), ("b", 1)]

    @pytest.mark.asyncio
    async def test_partial_failure_does_not_abort(self, registry, client):
        """Test un tópico fallido no detiene el resto."""
        for topic in ("a", "b", "c"):
            await registry.register(topic, 1, Mock())
        client.fail_topics.add("b")

        succeeded = await registry.resubscribe_all()

        assert succeeded == 2
        assert sorted(client.subscribed_topics()) == ["a", "b", "c"]
        assert len(registry) == 3

    @pytest.mark.asyncio
    async def test_empty_registry(self, registry, client):
        """Test resincronización sin entradas."""
        assert await registry.resubscribe_all() == 0
        assert client.subscribe_calls == []

    @pytest.mark.asyncio
    async def test_concurrent_resync_is_skipped(self, client):
        """Test una segunda resincronización concurrente no hace nada."""
        registry = SubscriptionRegistry(FakeConnection(client, connected=False), pacing=0.05)
        for topic in ("a", "b", "c"):
            await registry.register(topic, 1, Mock())

        first = asyncio.create_task(registry.resubscribe_all())
        await asyncio.sleep(0)
        assert registry.resyncing

        assert await registry.resubscribe_all() == 0
        assert await first == 3
        assert len(client.subscribe_calls) == 3

    @pytest.mark.asyncio
    async def test_register_during_resync_is_deferred(self, client):
        """Test registro durante la resincronización: se guarda sin suscribir."""
        connection = FakeConnection(client, connected=True)
        registry = SubscriptionRegistry(connection, pacing=0.05)
        await registry.register("a", 1, Mock())
        await registry.register("b", 1, Mock())
        client.subscribe_calls.clear()

        resync = asyncio.create_task(registry.resubscribe_all())
        await asyncio.sleep(0)
        await registry.register("late", 1, Mock())
        await resync

        assert "late" not in client.subscribed_topics()
        assert len(registry) == 3

        await registry.resubscribe_all()
        assert "late" in client.subscribed_topics()
