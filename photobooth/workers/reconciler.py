"""
Video task reconciler.

One `tick()` reads the whole ledger and advances every job it can:

1. polls each `processing` row's provider task; a finished task is moved to
   `uploading` with a compare-and-set and handed to the finalizer in the
   background, a failed one is marked `failed`;
2. starts as many `queued` rows as there are free provider slots;
3. hands `uploading` rows that have gone stale back to `processing`.

Overlapping ticks are safe: only the tick that wins the `processing -> uploading`
CAS triggers the finalizer. A failure on one row is logged and reported, it never
stops the others.
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Callable, Optional

from photobooth.core.config import settings
from photobooth.core.errors import PhotoboothError
from photobooth.schemas.video import LedgerRow
from photobooth.services.ledger_client import LedgerClient
from photobooth.services.lifecycle import VideoStatus
from photobooth.services.provider_client import (
    ProviderClient,
    ProviderTaskStatus,
    normalize_resolution,
    resolve_image_ref,
)

logger = logging.getLogger(__name__)


@dataclass
class TickReport:
    processed: int = 0
    started: int = 0
    rescued: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class TickResult:
    report: TickReport
    active_count: int

    @property
    def advanced(self) -> bool:
        return self.report.processed > 0 or self.report.started > 0


class Reconciler:
    def __init__(
        self,
        ledger: LedgerClient,
        provider: ProviderClient,
        max_concurrent: Optional[int] = None,
        stale_after_seconds: Optional[int] = None,
        now_ms: Optional[Callable[[], int]] = None,
    ):
        self.ledger = ledger
        self.provider = provider
        self.max_concurrent = settings.MAX_CONCURRENT if max_concurrent is None else max_concurrent
        self.stale_after_seconds = (
            settings.UPLOADING_STALE_AFTER_SECONDS if stale_after_seconds is None else stale_after_seconds
        )
        self._now_ms = now_ms or (lambda: int(time.time() * 1000))
        self._pending: set[asyncio.Task] = set()

    async def tick(self) -> TickResult:
        """Run one reconciliation pass. Raises only if the ledger cannot be listed."""
        rows = await self.ledger.list_rows()

        processing = [row for row in rows if row.video_status == VideoStatus.PROCESSING.value]
        queued = [row for row in rows if row.video_status == VideoStatus.QUEUED.value]
        uploading = [row for row in rows if row.video_status == VideoStatus.UPLOADING.value]

        report = TickReport()

        await asyncio.gather(*(
            self._isolated(row, report, self._advance_processing) for row in processing
        ))

        available_slots = self.max_concurrent - len(processing)
        if available_slots > 0 and queued:
            await asyncio.gather(*(
                self._isolated(row, report, self._start_queued) for row in queued[:available_slots]
            ))

        stale = [row for row in uploading if self._is_stale(row)]
        await asyncio.gather(*(
            self._isolated(row, report, self._rescue_stale_upload) for row in stale
        ))

        active_count = len(processing) + len(queued)
        if report.errors:
            logger.warning("[TICK] Finished with %d error(s): %s", len(report.errors), report.errors)
        return TickResult(report=report, active_count=active_count)

    async def _isolated(self, row: LedgerRow, report: TickReport, step) -> None:
        try:
            await step(row, report)
        except Exception as e:
            logger.error(
                "[TICK] %s failed for %s: %s", step.__name__.strip("_"), row.id, e,
                exc_info=not isinstance(e, PhotoboothError),
            )
            report.errors.append(f"{row.id}: {e}")

    async def _advance_processing(self, row: LedgerRow, report: TickReport) -> None:
        if not row.video_task_id:
            logger.warning("[TICK] %s is processing without a task handle, skipping", row.id)
            return

        result = await self.provider.poll_task(row.video_task_id)

        if result.status == ProviderTaskStatus.SUCCEEDED:
            if not result.asset_url:
                logger.warning("[TICK] %s succeeded without a video URL yet", row.id)
                return

            logger.info("[TICK] Attempting lock for %s", row.id)
            lock = await self.ledger.update_row(
                row.id,
                status=VideoStatus.UPLOADING.value,
                provider_url=result.asset_url,
                require_status=VideoStatus.PROCESSING.value,
            )
            if lock.ok:
                logger.info("[TICK] Lock acquired for %s, triggering finalize", row.id)
                self._trigger_finalize(row, result.asset_url)
                report.processed += 1
            elif lock.is_conflict:
                logger.debug("[TICK] %s already advanced (now %s), skipping duplicate upload", row.id, lock.current)
            else:
                report.errors.append(f"{row.id}: lock failed: {lock.error}")

        elif result.status == ProviderTaskStatus.FAILED:
            logger.info("[TICK] Provider reported %s for %s", result.raw_status, row.id)
            update = await self.ledger.update_row(row.id, status=VideoStatus.FAILED.value)
            if not update.ok:
                report.errors.append(f"{row.id}: fail update rejected: {update.error}")

    async def _start_queued(self, row: LedgerRow, report: TickReport) -> None:
        resolution = normalize_resolution(row.video_resolution)
        image_ref = resolve_image_ref(row.id, resolution, row.image_url)
        logger.info("[TICK] Starting task for %s at %s", row.id, resolution)

        # A start that fails leaves the row queued for the next tick
        task_id = await self.provider.start_task(
            model=row.video_model or settings.VIDEO_MODEL,
            prompt=row.video_prompt,
            image_ref=image_ref,
            resolution=resolution,
            duration=settings.VIDEO_DURATION_SECONDS,
        )

        update = await self.ledger.update_row(
            row.id,
            status=VideoStatus.PROCESSING.value,
            task_id=task_id,
            require_status=VideoStatus.QUEUED.value,
        )
        if update.ok:
            report.started += 1
        elif update.is_conflict:
            logger.warning("[TICK] %s left queued (now %s), task %s not recorded", row.id, update.current, task_id)
        else:
            report.errors.append(f"{row.id}: start recorded failed ({task_id}): {update.error}")

    def _is_stale(self, row: LedgerRow) -> bool:
        if not row.updated_at:
            return False
        return self._now_ms() - row.updated_at > self.stale_after_seconds * 1000

    async def _rescue_stale_upload(self, row: LedgerRow, report: TickReport) -> None:
        result = await self.ledger.update_row(
            row.id,
            status=VideoStatus.PROCESSING.value,
            require_status=VideoStatus.UPLOADING.value,
        )
        if result.ok:
            logger.warning("[TICK] %s was stuck uploading, handed back for re-poll", row.id)
            report.rescued += 1
        elif result.is_conflict:
            logger.debug("[TICK] %s left uploading before rescue (now %s)", row.id, result.current)
        else:
            report.errors.append(f"{row.id}: rescue failed: {result.error}")

    def _trigger_finalize(self, row: LedgerRow, video_url: str) -> None:
        task = asyncio.create_task(self._finalize(row.id, video_url, row.session_folder_id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _finalize(self, photo_id: str, video_url: str, session_folder_id: Optional[str]) -> None:
        try:
            result = await self.ledger.finalize_video_upload(photo_id, video_url, session_folder_id)
        except Exception as e:
            logger.error("[TICK] Finalize trigger failed for %s: %s", photo_id, e)
            return
        if result.ok:
            logger.info("[TICK] Finalize for %s: %s", photo_id, result.data.get("message", "ok"))
        else:
            logger.error("[TICK] Finalize rejected for %s: %s", photo_id, result.error)

    async def drain(self) -> None:
        """Wait for background finalizers still in flight."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
