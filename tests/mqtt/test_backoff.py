"""Tests para políticas de reintento.

Pruebas unitarias del cálculo de intervalos y de la decisión de reintento.
"""

import pytest

from modules.mqtt_resilience.backoff import (
    MQTTRetryPolicy,
    OperationType,
    RetryContext,
    compute_interval,
    is_retryable
)
from modules.mqtt_resilience.errors import (
    ClientClosedError,
    NotConnectedError,
    ProtocolError,
    ReasonCode
)
from modules.mqtt_resilience.settings import BackoffConfig, BackoffShape


class TestComputeInterval:
    """Tests para el cálculo del intervalo."""

    def test_fixed_interval(self):
        """Test intervalo constante."""
        config = BackoffConfig(base_interval=0.1, max_interval=1.0, shape=BackoffShape.FIXED)

        assert [compute_interval(n, config) for n in (1, 2, 5)] == [0.1, 0.1, 0.1]

    def test_linear_interval(self):
        """Test intervalo lineal acotado."""
        config = BackoffConfig(base_interval=1.0, max_interval=3.5, shape=BackoffShape.LINEAR)

        assert [compute_interval(n, config) for n in (1, 2, 3, 4)] == [1.0, 2.0, 3.0, 3.5]

    def test_exponential_interval(self):
        """Test intervalo exponencial: 1, 2, 4, 8, 16 y tope en 30."""
        config = BackoffConfig(
            base_interval=1.0,
            max_interval=30.0,
            multiplier=2.0,
            shape=BackoffShape.EXPONENTIAL
        )

        intervals = [compute_interval(n, config) for n in range(1, 7)]

        assert intervals == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0]

    def test_exponential_overflow_capped(self):
        """Test que un exponente enorme no desborda."""
        config = BackoffConfig(base_interval=1.0, max_interval=30.0, multiplier=10.0)

        assert compute_interval(10_000, config) == 30.0

    def test_attempt_below_one_treated_as_first(self):
        """Test intento 0 equivale al primero."""
        config = BackoffConfig(base_interval=2.0, max_interval=30.0, multiplier=2.0)

        assert compute_interval(0, config) == 2.0

    def test_base_greater_than_max_rejected(self):
        """Test validación base <= max."""
        with pytest.raises(ValueError):
            BackoffConfig(base_interval=10.0, max_interval=1.0)


class TestIsRetryable:
    """Tests para la clasificación de errores."""

    @pytest.mark.parametrize("reason", [
        ReasonCode.CLIENT_ERROR,
        ReasonCode.UNSUPPORTED_PROTOCOL_VERSION,
        ReasonCode.INVALID_CLIENT_ID,
        ReasonCode.AUTHENTICATION_FAILED,
        ReasonCode.NOT_AUTHORIZED
    ])
    def test_permanent_reasons(self, reason):
        """Test motivos permanentes."""
        assert not is_retryable(ProtocolError(reason))

    @pytest.mark.parametrize("error", [
        ProtocolError(ReasonCode.BROKER_UNAVAILABLE),
        ProtocolError(ReasonCode.TIMEOUT),
        NotConnectedError("publish"),
        ConnectionResetError("reset"),
        None
    ])
    def test_transient_errors(self, error):
        """Test errores transitorios."""
        assert is_retryable(error)

    def test_client_closed_not_retryable(self):
        """Test cliente detenido."""
        assert not is_retryable(ClientClosedError("publish"))


class TestMQTTRetryPolicy:
    """Tests para la política de reintentos."""

    @pytest.fixture
    def policy(self):
        config = BackoffConfig(max_attempts=3, base_interval=1.0, max_interval=10.0, multiplier=2.0)
        return MQTTRetryPolicy(config, OperationType.CONNECT)

    def test_can_retry_below_limit(self, policy):
        """Test reintento permitido mientras quedan intentos."""
        context = RetryContext(attempt_count=2, last_error=ProtocolError(ReasonCode.TIMEOUT))

        assert policy.can_retry(context)

    def test_cannot_retry_at_limit(self, policy):
        """Test límite de intentos."""
        context = RetryContext(attempt_count=3, last_error=ProtocolError(ReasonCode.TIMEOUT))

        assert not policy.can_retry(context)

    def test_non_retryable_on_first_attempt(self, policy):
        """Test fallo permanente corta en el primer intento."""
        context = RetryContext(attempt_count=1, last_error=ProtocolError(ReasonCode.NOT_AUTHORIZED))

        assert not policy.can_retry(context)

    def test_disabled_config(self):
        """Test reintentos deshabilitados."""
        policy = MQTTRetryPolicy(BackoffConfig(enabled=False), OperationType.PUBLISH)

        assert not policy.can_retry(RetryContext(attempt_count=1))

    def test_next_interval(self, policy):
        """Test intervalo según intento."""
        assert policy.next_interval(RetryContext(attempt_count=1)) == 1.0
        assert policy.next_interval(RetryContext(attempt_count=3)) == 4.0

    def test_repr(self, policy):
        """Test representación."""
        assert "connect" in repr(policy)
        assert "exponential" in repr(policy)


class TestOperationType:
    """Tests para el tipo de operación."""

    def test_from_name(self):
        """Test búsqueda por nombre sin distinguir mayúsculas."""
        assert OperationType.from_name("CONNECT") is OperationType.CONNECT
        assert OperationType.from_name(" publish ") is OperationType.PUBLISH

    def test_from_name_unknown(self):
        """Test nombre desconocido."""
        with pytest.raises(ValueError, match="desconocido"):
            OperationType.from_name("subscribe")
