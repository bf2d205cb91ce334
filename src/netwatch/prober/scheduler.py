"""Periodic server-side health checks.

Every ``interval`` seconds the prober walks the device registry. Devices an
agent reported on recently are left alone; the rest are probed concurrently
and their verdicts applied through the device store. A tick that arrives while
the previous cycle is still running is skipped.
"""

import asyncio
import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from netwatch.prober.base import BaseProbe
from netwatch.registry.models import Device, DeviceStatus, ObservationSource
from netwatch.registry.store import DeviceStore, as_utc

logger = logging.getLogger(__name__)


class CheckResult(enum.StrEnum):
    fresh = "fresh"  # skipped by the staleness guard
    superseded = "superseded"  # observed by an agent while the probe was in flight
    failed = "failed"  # no verdict this cycle
    changed = "changed"
    unchanged = "unchanged"


@dataclass
class CycleReport:
    checked: int = 0
    fresh: int = 0
    failed: int = 0
    changed: int = 0
    superseded: int = 0
    overlapped: bool = False


def _utcnow() -> datetime:
    return datetime.now(UTC)


class HealthProber:
    """Runs probe cycles on a fixed interval."""

    def __init__(
        self,
        store: DeviceStore,
        probe: BaseProbe,
        simulation_flag: Callable[[], bool],
        interval: int = 10,
        freshness_window: int = 600,
        max_concurrent: int = 32,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.probe = probe
        self.interval = interval
        self.freshness_window = freshness_window
        self._simulation_flag = simulation_flag
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._clock = clock
        self._cycle_lock = asyncio.Lock()
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._cycle_task: asyncio.Task[CycleReport] | None = None

    async def start(self) -> None:
        logger.info(
            "Starting health prober (interval=%ds, freshness=%ds)",
            self.interval,
            self.freshness_window,
        )
        self._running = True
        self._task = asyncio.create_task(self._poll_loop())

    async def stop(self) -> None:
        logger.info("Stopping health prober")
        self._running = False
        for task in (self._task, self._cycle_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                if self._cycle_task is not None and not self._cycle_task.done():
                    logger.warning("Previous probe cycle still running, skipping tick")
                else:
                    simulation = self._simulation_flag()
                    self._cycle_task = asyncio.create_task(self.run_cycle(simulation))
                    self._cycle_task.add_done_callback(self._log_cycle_failure)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Health prober tick error")

            await asyncio.sleep(self.interval)

    @staticmethod
    def _log_cycle_failure(task: "asyncio.Task[CycleReport]") -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.error("Probe cycle failed", exc_info=task.exception())

    async def run_cycle(self, simulation: bool) -> CycleReport:
        """Check every device once.

        ``simulation`` is a snapshot of the flag for this whole cycle.
        """
        if self._cycle_lock.locked():
            logger.warning("Probe cycle already in progress, not starting another")
            return CycleReport(overlapped=True)

        async with self._cycle_lock:
            now = self._clock()
            devices = self.store.get_all()
            results = await asyncio.gather(
                *(self._check_device(device, simulation, now) for device in devices)
            )

        report = CycleReport(checked=len(results))
        for result in results:
            if result == CheckResult.fresh:
                report.fresh += 1
            elif result == CheckResult.failed:
                report.failed += 1
            elif result == CheckResult.changed:
                report.changed += 1
            elif result == CheckResult.superseded:
                report.superseded += 1
        logger.debug(
            "Probe cycle done: %d devices, %d fresh, %d failed, %d changed, %d superseded",
            report.checked,
            report.fresh,
            report.failed,
            report.changed,
            report.superseded,
        )
        return report

    def is_fresh(self, device: Device, simulation: bool, now: datetime) -> bool:
        """True when recent agent data should suppress probing this device."""
        last_seen = as_utc(device.last_seen)
        if last_seen is None or simulation:
            return False
        return (now - last_seen).total_seconds() < self.freshness_window

    async def _check_device(self, device: Device, simulation: bool, now: datetime) -> CheckResult:
        if self.is_fresh(device, simulation, now):
            return CheckResult.fresh

        try:
            if simulation:
                status = DeviceStatus.online
            else:
                async with self._semaphore:
                    reachable = await self.probe.is_reachable(device.address)
                status = DeviceStatus.online if reachable else DeviceStatus.offline

            # Latency is not measured on this path; only agents report it.
            outcome = await asyncio.to_thread(
                self.store.apply,
                device.id,  # type: ignore[arg-type]
                status,
                0,
                self._clock(),
                ObservationSource.prober,
                not_seen_since=None if simulation else now,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Failed to probe %s (%s): %s", device.address, device.name, e)
            return CheckResult.failed

        if outcome is not None and outcome.superseded:
            return CheckResult.superseded
        if outcome is not None and outcome.status_changed:
            return CheckResult.changed
        return CheckResult.unchanged
