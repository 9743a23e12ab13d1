"""
Copies a finished video from the provider into durable storage and lands the
ledger row in `done`.

Safe to invoke more than once for the same photo: a row that is already done
(or already has a stored file) is answered with "Already uploaded" and nothing
is written.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional
from uuid import uuid4

import httpx

from photobooth.core.config import settings
from photobooth.core.errors import ConflictError, UpstreamError, ValidationError
from photobooth.services.ledger_store import LedgerStore
from photobooth.services.lifecycle import VideoStatus
from photobooth.services.storage import S3Storage

logger = logging.getLogger(__name__)

ALREADY_UPLOADED = "Already uploaded"


@dataclass
class FinalizeResult:
    ok: bool
    message: str
    file_id: Optional[str] = None
    url: Optional[str] = None


class Finalizer:
    def __init__(
        self,
        store: LedgerStore,
        storage: S3Storage,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.store = store
        self.storage = storage
        self._http = http_client or httpx.AsyncClient(
            timeout=settings.DOWNLOAD_TIMEOUT_SECONDS,
            follow_redirects=True,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def finalize(
        self,
        photo_id: str,
        video_url: str,
        session_folder_id: Optional[str] = None,
    ) -> FinalizeResult:
        row = await asyncio.to_thread(self.store.get_row, photo_id)
        if row.video_status == VideoStatus.DONE.value or row.video_file_id:
            logger.info("[FINALIZE] %s already uploaded, skipping", photo_id)
            return FinalizeResult(True, ALREADY_UPLOADED, row.video_file_id)

        status = VideoStatus.parse(row.video_status)
        if status == VideoStatus.PROCESSING:
            # Called without the reconciler's lock: take it here
            await asyncio.to_thread(
                self.store.update_row,
                photo_id,
                {"video_status": VideoStatus.UPLOADING.value, "provider_url": video_url},
                VideoStatus.PROCESSING.value,
            )
        elif status != VideoStatus.UPLOADING:
            raise ValidationError(f"Cannot finalize video while {status.value}")

        try:
            data = await self._download(video_url)
            folder_id = await asyncio.to_thread(
                self.storage.resolve_folder, session_folder_id or row.session_folder_id,
            )
            stored = await asyncio.to_thread(
                self.storage.save, data, f"VID_{photo_id}_{uuid4().hex[:8]}.mp4", "video/mp4", folder_id,
            )
            await asyncio.to_thread(self.storage.grant_read, stored.file_id)
        except Exception as e:
            logger.error("[FINALIZE] Upload failed for %s: %s", photo_id, e)
            await self._mark_failed(photo_id)
            raise

        try:
            await asyncio.to_thread(
                self.store.update_row,
                photo_id,
                {"video_status": VideoStatus.DONE.value, "video_file_id": stored.file_id},
                VideoStatus.UPLOADING.value,
            )
        except ConflictError as e:
            # Someone else finished (or the row moved on); drop the copy we just made
            await self._discard(stored.file_id)
            if e.current == VideoStatus.DONE.value:
                logger.info("[FINALIZE] %s finished concurrently, discarded duplicate copy", photo_id)
                return FinalizeResult(True, ALREADY_UPLOADED)
            raise
        except Exception as e:
            logger.error("[FINALIZE] Could not record done for %s: %s", photo_id, e)
            await self._mark_failed(photo_id)
            raise

        logger.info("[FINALIZE] %s done -> %s", photo_id, stored.file_id)
        return FinalizeResult(True, "Video uploaded", stored.file_id, stored.url)

    async def _download(self, video_url: str) -> bytes:
        try:
            response = await self._http.get(video_url)
        except httpx.TransportError as e:
            raise UpstreamError(f"Video download failed: {e}") from e
        if response.status_code != 200:
            raise UpstreamError(f"Video download failed: HTTP {response.status_code}", response.status_code)
        return response.content

    async def _mark_failed(self, photo_id: str) -> None:
        try:
            await asyncio.to_thread(
                self.store.update_row,
                photo_id,
                {"video_status": VideoStatus.FAILED.value},
                VideoStatus.UPLOADING.value,
            )
        except Exception as e:
            # Row stays in `uploading`; the stale-upload sweep hands it back to `processing`
            logger.error("[FINALIZE] Could not mark %s failed, left in uploading: %s", photo_id, e)

    async def _discard(self, file_id: str) -> None:
        try:
            await asyncio.to_thread(self.storage.delete, file_id)
        except Exception as e:
            logger.warning("[FINALIZE] Could not delete duplicate %s: %s", file_id, e)
