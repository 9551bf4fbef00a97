"""Ejecutor genérico de reintentos.

Conduce una operación asíncrona a través de una política de reintentos
usando tenacity, hasta que tiene éxito, falla de forma no recuperable o
agota sus intentos.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type

from modules.mqtt_resilience.backoff import RetryContext, RetryPolicy
from modules.mqtt_resilience.errors import RetryExhaustedError


logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryExecutor:
    """Ejecuta operaciones fallibles bajo una política de reintentos.

    El único error propio que produce es RetryExhaustedError. Una
    cancelación (asyncio.CancelledError) durante un intento o una espera
    nunca se reintenta: se propaga y termina la operación.
    """

    def __init__(self, sleep: Optional[Callable[[float], Awaitable[None]]] = None):
        """Inicializa el ejecutor.

        Args:
            sleep: Función de espera asíncrona (por defecto asyncio.sleep)
        """
        self._sleep = sleep or asyncio.sleep

    async def execute(
        self,
        policy: RetryPolicy,
        operation: Callable[[], Awaitable[T]],
        context_tag: Any = None
    ) -> T:
        """Ejecuta la operación con reintentos.

        Args:
            policy: Política que decide reintentos y esperas
            operation: Corrutina sin argumentos a ejecutar
            context_tag: Etiqueta opaca para diagnóstico (tópico, servidor...)

        Returns:
            Resultado de la operación

        Raises:
            RetryExhaustedError: Si la política no permite más intentos
            asyncio.CancelledError: Si la operación o la espera se cancelan
        """
        first_attempt_ts = time.time()

        def build_context(retry_state: RetryCallState) -> RetryContext:
            return RetryContext(
                attempt_count=retry_state.attempt_number,
                first_attempt_ts=first_attempt_ts,
                last_error=retry_state.outcome.exception(),
                context_tag=context_tag
            )

        def stop(retry_state: RetryCallState) -> bool:
            return not policy.can_retry(build_context(retry_state))

        def wait(retry_state: RetryCallState) -> float:
            return policy.next_interval(build_context(retry_state))

        def before_sleep(retry_state: RetryCallState) -> None:
            policy.before_retry(build_context(retry_state))

        def on_exhausted(retry_state: RetryCallState):
            last_error = retry_state.outcome.exception()
            logger.error(
                f"Operación fallida tras {retry_state.attempt_number} intentos"
                f" [{context_tag}]: {last_error}"
            )
            raise RetryExhaustedError(
                attempts=retry_state.attempt_number,
                last_error=last_error,
                context_tag=context_tag
            ) from last_error

        retrying = AsyncRetrying(
            retry=retry_if_exception_type(Exception),
            stop=stop,
            wait=wait,
            before_sleep=before_sleep,
            retry_error_callback=on_exhausted,
            sleep=self._sleep
        )
        return await retrying(operation)

