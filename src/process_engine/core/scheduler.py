"""Cooperative polling loop that drives engine ticks."""
from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from ..exceptions import WorkflowEngineError
from .engine import TickResult, WorkflowEngine

logger = logging.getLogger(__name__)


class SimulationRunner:
    """Calls :meth:`WorkflowEngine.tick_all` every ``interval`` seconds.

    Rapid chains of automatic states advance one step per tick, which keeps
    them observable for a UI, and SLA deadlines are re-checked on each pass.
    """

    def __init__(self, engine: WorkflowEngine, interval: Optional[float] = None) -> None:
        self.engine = engine
        self.interval = interval if interval is not None else engine.settings.tick_interval
        self.ticks = 0
        self._task: Optional[asyncio.Task[None]] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Simulation runner started (interval={self.interval}s)")

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Simulation runner stopped")

    def run_once(self) -> List[TickResult]:
        self.ticks += 1
        return self.engine.tick_all()

    async def _loop(self) -> None:
        while self._running:
            try:
                self.run_once()
            except WorkflowEngineError as exc:
                logger.error(f"Tick failed: {exc}", exc_info=True)
            await asyncio.sleep(self.interval)
