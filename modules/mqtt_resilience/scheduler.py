"""Planificador de un solo trabajador.

Ejecuta trabajos diferidos (reconexiones, esperas de estabilización antes
de resuscribir) de uno en uno: los temporizadores corren en paralelo pero
los trabajos nunca se solapan.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set


logger = logging.getLogger(__name__)


class SerialScheduler:
    """Planificador asíncrono con un único trabajador."""

    def __init__(self, name: str = "scheduler"):
        self.name = name
        self._worker_lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()
        self._running: Set[asyncio.Task] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Trabajos programados que aún no han terminado."""
        return len(self._tasks)

    def schedule(
        self,
        delay: float,
        job: Callable[[], Awaitable[None]],
        name: Optional[str] = None
    ) -> Optional[asyncio.Task]:
        """Programa un trabajo tras una espera.

        Args:
            delay: Espera en segundos antes de ejecutar
            job: Corrutina sin argumentos
            name: Nombre de la tarea (diagnóstico)

        Returns:
            La tarea creada, o None si el planificador está detenido
        """
        if self._closed:
            logger.debug(f"[{self.name}] Planificador detenido, trabajo {name} descartado")
            return None

        task = asyncio.get_running_loop().create_task(
            self._run(max(delay, 0.0), job, name),
            name=name
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, delay: float, job: Callable[[], Awaitable[None]], name: Optional[str]):
        await asyncio.sleep(delay)

        async with self._worker_lock:
            task = asyncio.current_task()
            self._running.add(task)
            try:
                await job()
            except Exception as e:
                logger.exception(f"[{self.name}] Error en trabajo {name}: {e}")
            finally:
                self._running.discard(task)

    async def shutdown(self, grace_period: float = 5.0):
        """Detiene el planificador.

        Los trabajos aún en espera se cancelan de inmediato; los que están
        en ejecución disponen del periodo de gracia antes de cancelarse.

        Args:
            grace_period: Segundos de gracia para el trabajo en curso
        """
        self._closed = True

        for task in list(self._tasks):
            if task not in self._running:
                task.cancel()

        running = [task for task in self._tasks if task in self._running]
        if running:
            _, still_running = await asyncio.wait(running, timeout=grace_period)
            for task in still_running:
                logger.warning(f"[{self.name}] Trabajo {task.get_name()} cancelado tras periodo de gracia")
                task.cancel()

        remaining = list(self._tasks)
        if remaining:
            await asyncio.gather(*remaining, return_exceptions=True)

    def __repr__(self) -> str:
        return f"SerialScheduler(name={self.name}, pending={self.pending}, closed={self._closed})"
