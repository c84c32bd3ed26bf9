"""
Periodic certificate probing for webcert-check's monitoring mode.
"""

import asyncio
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Optional

from webcert_check.address import TargetAddress
from webcert_check.config import Config
from webcert_check.logger import get_logger, log_probe_failure, log_probe_success
from webcert_check.metrics import MetricsCollector
from webcert_check.probe import CertificateProbe, ProbeOutcome, ProbeSuccess


class ProbeMonitor:
    """
    Re-run the certificate probe on a fixed interval and publish the result.

    The blocking probe runs on a single worker thread. Scheduled and manual
    probes share one lock, so at most one probe is ever in flight.
    """

    def __init__(
        self,
        config: Config,
        target: TargetAddress,
        metrics: MetricsCollector,
        probe: Optional[CertificateProbe] = None,
    ):
        self.config = config
        self.target = target
        self.metrics = metrics
        self.probe = probe or CertificateProbe(verbose=config.verbose)
        self.logger = get_logger("monitor")

        self.last_outcome: Optional[ProbeOutcome] = None
        self.last_probe_time: Optional[float] = None

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="probe")
        self._probe_lock: Optional[asyncio.Lock] = None  # created lazily in async context

    async def start(self) -> None:
        """Start the periodic probing."""
        if self._running:
            self.logger.warning("Monitor is already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._probe_loop())
        self.logger.info(
            f"Started probing {self.target} - Interval: {self.config.probe_interval}"
        )

    async def stop(self) -> None:
        """Stop the periodic probing."""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        self._executor.shutdown(wait=True)
        self.logger.info("Monitor stopped")

    async def probe_once(self) -> ProbeOutcome:
        """
        Probe the target once and publish the outcome.

        Returns:
            The probe outcome
        """
        if self._probe_lock is None:
            self._probe_lock = asyncio.Lock()

        async with self._probe_lock:
            start_time = time.time()
            loop = asyncio.get_running_loop()
            outcome = await loop.run_in_executor(self._executor, self.probe.probe, self.target)
            duration = time.time() - start_time

            self.metrics.record_outcome(outcome, duration)
            self.last_outcome = outcome
            self.last_probe_time = time.time()

            if isinstance(outcome, ProbeSuccess):
                log_probe_success(
                    self.logger,
                    self.target.hostname,
                    outcome.expiry_date,
                    outcome.days_remaining,
                )
            else:
                log_probe_failure(
                    self.logger, str(self.target), outcome.kind.description, outcome.message
                )

            return outcome

    async def _probe_loop(self) -> None:
        """Main probing loop."""
        while self._running:
            try:
                await self.probe_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error(f"Error in probe loop: {e}")
            await asyncio.sleep(self.config.probe_interval_seconds)

    async def get_health_status(self) -> Dict[str, Any]:
        """Get monitor health status."""
        return {
            "probe_status": "running" if self._running else "stopped",
            "target": str(self.target),
            "probe_interval": self.config.probe_interval,
            "last_probe_time": self.last_probe_time,
            "last_outcome": self.last_outcome.to_dict() if self.last_outcome else None,
        }
