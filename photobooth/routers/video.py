import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from photobooth.core.config import settings
from photobooth.core.deps import get_ledger_client, get_provider, get_reconciler, get_store
from photobooth.core.errors import DataIntegrityError, UpstreamError, ValidationError
from photobooth.core.guards import assert_video_model
from photobooth.schemas.video import (
    GenerateVideoRequest,
    GenerateVideoResponse,
    LedgerRow,
    TickReportSchema,
    TickResponse,
)
from photobooth.services.ledger_client import LedgerClient
from photobooth.services.ledger_store import LedgerStore
from photobooth.services.lifecycle import TASK_BEARING, VideoStatus
from photobooth.services.provider_client import ProviderClient, normalize_resolution, resolve_image_ref
from photobooth.workers.reconciler import Reconciler

router = APIRouter(prefix="/api/v1/video", tags=["video"])

logger = logging.getLogger(__name__)


def _as_data_uri(image_base64: str) -> str:
    if image_base64.startswith("data:"):
        return image_base64
    return f"data:image/jpeg;base64,{image_base64}"


async def _load_row(store: LedgerStore, photo_id: Optional[str]) -> Optional[LedgerRow]:
    if not photo_id:
        return None
    try:
        return await asyncio.to_thread(store.get_row, photo_id)
    except DataIntegrityError:
        logger.warning("Photo %s not in ledger, using thumbnail reference", photo_id)
        return None


def _image_ref_for(payload: GenerateVideoRequest, row: Optional[LedgerRow], resolution: str) -> str:
    if payload.image_base64:
        return _as_data_uri(payload.image_base64)
    if not payload.photo_id:
        raise ValidationError("photoId or imageBase64 is required")
    return resolve_image_ref(payload.photo_id, resolution, row.image_url if row else None)


@router.post("/generate", response_model=GenerateVideoResponse, response_model_exclude_none=True)
async def generate_video(
    payload: GenerateVideoRequest,
    store: LedgerStore = Depends(get_store),
    provider: ProviderClient = Depends(get_provider),
    ledger: LedgerClient = Depends(get_ledger_client),
):
    """
    Start a generation task right away, bypassing the queue.

    The provider task is the source of truth: once it has started the request
    succeeds, and a failed ledger write only comes back as `warning`.
    """
    model = payload.model or settings.VIDEO_MODEL
    row = await _load_row(store, payload.photo_id)
    if row and VideoStatus.parse(row.video_status) in TASK_BEARING:
        raise HTTPException(status_code=409, detail=f"Video already {row.video_status} for {row.id}")

    try:
        assert_video_model(model)
        resolution = normalize_resolution(payload.resolution)
        image_ref = _image_ref_for(payload, row, resolution)
        task_id = await provider.start_task(
            model=model,
            prompt=payload.prompt,
            image_ref=image_ref,
            resolution=resolution,
            duration=settings.VIDEO_DURATION_SECONDS,
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UpstreamError as e:
        raise HTTPException(status_code=400 if e.is_client_error else 502, detail=str(e))

    logger.info("Video task %s started for %s", task_id, payload.photo_id or "inline image")

    warning = None
    if payload.photo_id:
        try:
            result = await ledger.update_row(
                payload.photo_id,
                status=VideoStatus.PROCESSING.value,
                task_id=task_id,
                video_model=model,
                video_resolution=resolution,
                session_folder_id=payload.session_folder_id,
                # Only if nobody started or finished this row since it was read
                require_status=VideoStatus.parse(row.video_status).value if row else None,
                attempts=settings.LEDGER_REQUEST_RETRIES,
                wait_seconds=settings.LEDGER_REQUEST_RETRY_WAIT_SECONDS,
            )
            if not result.ok:
                warning = f"Ledger update failed: {result.error}"
        except UpstreamError as e:
            warning = f"Ledger update failed: {e}"
        if warning:
            logger.warning("Task %s started but not recorded for %s: %s", task_id, payload.photo_id, warning)

    return GenerateVideoResponse(task_id=task_id, resolution=resolution, warning=warning)


@router.get("/tick", response_model=TickResponse)
async def tick(reconciler: Reconciler = Depends(get_reconciler)):
    try:
        result = await reconciler.tick()
    except Exception as e:
        logger.error("[TICK] Tick aborted: %s", e)
        return JSONResponse(status_code=500, content={"error": str(e)})

    return TickResponse(
        report=TickReportSchema(**result.report.to_dict()),
        active_count=result.active_count,
    )
