"""
Reconciler Tick Worker

Drives the video pipeline forward by running reconciler ticks on an adaptive
schedule: fast while jobs are in flight, slower when the ledger is idle, and
backed off after a failed tick.

Run as a separate process next to the API:
    python -m photobooth.workers.tick_worker

Overlapping workers are safe, only one of them wins each status transition.
"""

import asyncio
import logging
from typing import Optional

from photobooth.core.config import settings
from photobooth.services.ledger_client import LedgerClient
from photobooth.services.provider_client import ProviderClient
from photobooth.workers.reconciler import Reconciler, TickResult

logger = logging.getLogger(__name__)


def next_interval(result: Optional[TickResult]) -> float:
    """Seconds until the next tick. `None` means the last tick raised."""
    if result is None:
        return settings.TICK_ERROR_INTERVAL_SECONDS
    if result.active_count > 0 or result.advanced:
        return settings.TICK_ACTIVE_INTERVAL_SECONDS
    return settings.TICK_IDLE_INTERVAL_SECONDS


async def worker_loop(reconciler: Reconciler, max_ticks: Optional[int] = None):
    """Main worker loop - tick, sleep, repeat"""
    logger.info("[TICK] Worker started (max %d concurrent tasks)", reconciler.max_concurrent)

    ticks = 0
    while max_ticks is None or ticks < max_ticks:
        ticks += 1
        try:
            result = await reconciler.tick()
            report = result.report
            if result.advanced or report.rescued or report.errors:
                logger.info(
                    "[TICK] processed=%d started=%d rescued=%d errors=%d active=%d",
                    report.processed, report.started, report.rescued,
                    len(report.errors), result.active_count,
                )
        except Exception as e:
            logger.error("[TICK] Tick failed: %s", e)
            result = None

        if max_ticks is not None and ticks >= max_ticks:
            break
        await asyncio.sleep(next_interval(result))

    await reconciler.drain()


async def _main():
    ledger = LedgerClient()
    provider = ProviderClient()
    reconciler = Reconciler(ledger, provider)
    try:
        await worker_loop(reconciler)
    finally:
        await reconciler.drain()
        await ledger.aclose()
        await provider.aclose()


def run_worker():
    """Entry point for running the worker"""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        logger.info("[TICK] Worker stopped")


if __name__ == "__main__":
    run_worker()
