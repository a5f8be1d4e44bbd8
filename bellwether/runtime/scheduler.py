"""Scheduler — one independent polling loop per monitor, plus restart supervision."""

from __future__ import annotations

import abc
import asyncio
import time
from types import TracebackType
from typing import Any

import structlog

from bellwether.core.config import MonitorConfig
from bellwether.core.types import MonitorStatus
from bellwether.probes.base import Probe
from bellwether.probes.exceptions import ProbeError, ProbeTimeoutError

logger = structlog.get_logger(__name__)


def entity_key(monitor_id: str, target: str) -> str:
    """State-store key for one monitor × target pair."""
    return f"{monitor_id}/{target}" if target else monitor_id


class SampleHandler(abc.ABC):
    """Receives everything a MonitorLoop observes."""

    @abc.abstractmethod
    async def on_sample(self, loop: MonitorLoop, key: str, snapshot: Any) -> None:
        """A probe returned a snapshot for *key*."""

    @abc.abstractmethod
    async def on_error(self, loop: MonitorLoop, key: str, error: BaseException) -> None:
        """A probe failed (or timed out) for *key*."""

    async def on_targets(self, loop: MonitorLoop, keys: set[str]) -> None:
        """The probe reported its current watch list."""
        return None


class MonitorLoop:
    """Polls one probe on a fixed interval and forwards results to a handler.

    The first tick runs immediately. Every probe call is bounded by the
    probe timeout (falling back to the poll interval). A probe error is
    never fatal: it is forwarded to ``on_error`` and the loop carries on.

    Usage::

        loop = MonitorLoop(config, probe, handler)
        async with loop:
            await asyncio.sleep(60)
    """

    def __init__(
        self,
        config: MonitorConfig,
        probe: Probe,
        handler: SampleHandler,
        stop: asyncio.Event | None = None,
        probe_timeout_secs: float | None = None,
    ) -> None:
        self._config = config
        self._probe = probe
        self._handler = handler
        self._stop = stop or asyncio.Event()
        self._probe_timeout = (
            config.probe_timeout_secs or probe_timeout_secs or config.interval_secs
        )
        self._targets: list[str] = list(config.targets) or [""]
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._error_count = 0
        self._restarts = 0
        self._last_poll_time: float = 0.0

    @property
    def config(self) -> MonitorConfig:
        return self._config

    @property
    def monitor_id(self) -> str:
        return self._config.id

    @property
    def event_type(self) -> str:
        return self._config.resolved_event_type

    @property
    def probe(self) -> Probe:
        return self._probe

    @property
    def running(self) -> bool:
        return self._running

    @property
    def error_count(self) -> int:
        return self._error_count

    @property
    def restarts(self) -> int:
        return self._restarts

    @property
    def last_poll_time(self) -> float:
        return self._last_poll_time

    def note_restart(self) -> None:
        self._restarts += 1

    def status(self) -> MonitorStatus:
        return MonitorStatus(
            monitor_id=self.monitor_id,
            running=self._running,
            error_count=self._error_count,
            restarts=self._restarts,
            last_poll_time=self._last_poll_time or None,
        )

    # ── Lifecycle ───────────────────────────────────────────────

    async def start(self) -> None:
        """Start the background poll loop."""
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self.run(), name=f"monitor:{self.monitor_id}")
        logger.info(
            "monitor_started",
            monitor_id=self.monitor_id,
            interval_secs=self._config.interval_secs,
        )

    async def stop(self) -> None:
        """Stop the poll loop and release the probe."""
        self._stop.set()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.close()
        logger.info("monitor_stopped", monitor_id=self.monitor_id)

    async def close(self) -> None:
        try:
            await self._probe.close()
        except Exception:
            logger.exception("probe_close_error", monitor_id=self.monitor_id)

    async def run(self) -> None:
        """Tick until the stop signal is set.

        Unexpected exceptions escape so a supervisor can restart the loop.
        """
        self._running = True
        try:
            while not self._stop.is_set():
                await self.tick()
                try:
                    await asyncio.wait_for(
                        self._stop.wait(), timeout=self._config.interval_secs,
                    )
                except TimeoutError:
                    pass
        finally:
            self._running = False

    # ── Sampling ────────────────────────────────────────────────

    async def tick(self) -> None:
        """Sample every target once."""
        await self._refresh_targets()
        await asyncio.gather(*(self._sample_one(t) for t in self._targets))
        self._last_poll_time = time.time()

    async def _refresh_targets(self) -> None:
        try:
            discovered = await asyncio.wait_for(
                self._probe.targets(), timeout=self._probe_timeout,
            )
        except Exception:
            self._error_count += 1
            logger.exception("probe_targets_error", monitor_id=self.monitor_id)
            return
        if discovered is None:
            return
        self._targets = list(discovered) or [""]
        keys = {entity_key(self.monitor_id, t) for t in self._targets}
        await self._handler.on_targets(self, keys)

    async def _sample_one(self, target: str) -> None:
        key = entity_key(self.monitor_id, target)
        try:
            snapshot = await asyncio.wait_for(
                self._probe.sample(target), timeout=self._probe_timeout,
            )
        except TimeoutError:
            await self._record_error(
                key, ProbeTimeoutError(f"probe timed out after {self._probe_timeout}s"),
            )
            return
        except ProbeError as exc:
            await self._record_error(key, exc)
            return
        except Exception as exc:
            logger.exception("probe_unexpected_error", monitor_id=self.monitor_id, key=key)
            await self._record_error(key, exc)
            return

        try:
            await self._handler.on_sample(self, key, snapshot)
        except Exception:
            logger.exception("sample_handler_error", monitor_id=self.monitor_id, key=key)

    async def _record_error(self, key: str, error: BaseException) -> None:
        self._error_count += 1
        logger.warning(
            "probe_error",
            monitor_id=self.monitor_id,
            key=key,
            error=str(error) or type(error).__name__,
            error_count=self._error_count,
        )
        try:
            await self._handler.on_error(self, key, error)
        except Exception:
            logger.exception("sample_handler_error", monitor_id=self.monitor_id, key=key)

    async def __aenter__(self) -> MonitorLoop:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()


class Scheduler:
    """Runs every MonitorLoop under its own supervisor task.

    A loop that dies with an unexpected exception is restarted after a
    capped exponential backoff. Other loops are unaffected. Setting the
    shared stop event winds everything down.
    """

    def __init__(
        self,
        loops: list[MonitorLoop],
        stop: asyncio.Event | None = None,
        restart_backoff_secs: float = 1.0,
        max_backoff_secs: float = 60.0,
    ) -> None:
        self._loops = loops
        self._stop = stop or asyncio.Event()
        self._restart_backoff = restart_backoff_secs
        self._max_backoff = max_backoff_secs
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def loops(self) -> list[MonitorLoop]:
        return list(self._loops)

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    @property
    def stop_event(self) -> asyncio.Event:
        return self._stop

    def statuses(self) -> list[MonitorStatus]:
        return [loop.status() for loop in self._loops]

    async def start(self) -> None:
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(self._supervise(loop), name=f"supervise:{loop.monitor_id}")
            for loop in self._loops
        ]
        logger.info("scheduler_started", monitors=len(self._loops))

    async def stop(self, grace_secs: float = 5.0) -> None:
        """Signal every loop, wait up to *grace_secs*, then cancel stragglers."""
        self._stop.set()
        if self._tasks:
            _, pending = await asyncio.wait(self._tasks, timeout=grace_secs)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
            self._tasks = []
        for loop in self._loops:
            await loop.close()
        logger.info("scheduler_stopped")

    async def _supervise(self, loop: MonitorLoop) -> None:
        backoff = self._restart_backoff
        while not self._stop.is_set():
            try:
                await loop.run()
                return
            except Exception:
                loop.note_restart()
                logger.exception(
                    "monitor_crashed",
                    monitor_id=loop.monitor_id,
                    restarts=loop.restarts,
                    backoff_secs=backoff,
                )
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=backoff)
            except TimeoutError:
                pass
            backoff = min(backoff * 2, self._max_backoff)
