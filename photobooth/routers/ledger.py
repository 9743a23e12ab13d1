"""
Ledger action endpoint.

Answers every request with HTTP 200 and an `{ok: bool, ...}` body; failures are
reported as `{ok: false, error}` so callers never have to parse HTTP errors.
"""

import asyncio
import base64
import binascii
import json
import logging
import re
from typing import Any, Optional
from uuid import uuid4

import pydantic
from fastapi import APIRouter, Depends, Query, Request

from photobooth.core.deps import get_finalizer, get_storage, get_store
from photobooth.core.errors import ConflictError, DataIntegrityError, UpstreamError, ValidationError
from photobooth.schemas.video import (
    LEDGER_ACTIONS,
    CreateSessionAction,
    FinalizeVideoUploadAction,
    QueueVideoAction,
    UpdateVideoStatusAction,
    UploadGeneratedAction,
    UploadGeneratedVideoAction,
    ledger_action_adapter,
)
from photobooth.services.finalizer import Finalizer
from photobooth.services.ledger_store import LedgerStore
from photobooth.services.storage import S3Storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/ledger", tags=["ledger"])

_DATA_URI = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<data>.*)$", re.DOTALL)

_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
    "video/mp4": "mp4",
    "video/webm": "webm",
    "video/quicktime": "mov",
}


def _fail(error: str, **extra) -> dict[str, Any]:
    return {"ok": False, "error": error, **extra}


def decode_upload(payload: str, mime_type: Optional[str], default_mime: str) -> tuple[bytes, str]:
    """Accepts raw base64 or a `data:<mime>;base64,` URI. Returns (bytes, mime type)."""
    match = _DATA_URI.match(payload.strip())
    if match:
        mime_type = match.group("mime")
        payload = match.group("data")
    try:
        data = base64.b64decode(payload, validate=False)
    except (binascii.Error, ValueError) as e:
        raise ValidationError("Invalid base64 payload") from e
    if not data:
        raise ValidationError("Empty upload")
    return data, (mime_type or default_mime).lower()


def _extension(mime_type: str, fallback: str) -> str:
    return _EXTENSIONS.get(mime_type, fallback)


@router.get("")
async def ledger_read(
    action: str = Query(""),
    event_id: Optional[str] = Query(None, alias="eventId"),
    since: Optional[int] = Query(None),
    store: LedgerStore = Depends(get_store),
):
    if action != "gallery":
        return _fail(f"Unknown action: {action}")

    try:
        rows = await asyncio.to_thread(store.list_rows, event_id, since)
    except Exception as e:
        logger.error("[LEDGER] Gallery read failed: %s", e)
        return _fail(str(e))

    next_cursor = max((row.updated_at for row in rows), default=since or 0)
    return {
        "ok": True,
        "items": [row.model_dump(by_alias=True) for row in rows],
        "nextCursor": next_cursor,
        "isDelta": bool(since),
    }


@router.post("")
async def ledger_write(
    request: Request,
    store: LedgerStore = Depends(get_store),
    storage: S3Storage = Depends(get_storage),
    finalizer: Finalizer = Depends(get_finalizer),
):
    try:
        body = json.loads(await request.body() or b"null")
    except (json.JSONDecodeError, UnicodeDecodeError):
        return _fail("Invalid JSON")
    if not isinstance(body, dict):
        return _fail("Invalid JSON")

    action_name = body.get("action")
    if action_name not in LEDGER_ACTIONS:
        return _fail(f"Unknown action: {action_name}")

    try:
        action = ledger_action_adapter.validate_python(body)
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"][1:]) or action_name
        return _fail(f"Invalid field {field}: {first['msg']}")

    try:
        if isinstance(action, QueueVideoAction):
            return await _queue_video(store, action)
        if isinstance(action, UpdateVideoStatusAction):
            return await _update_video_status(store, action)
        if isinstance(action, FinalizeVideoUploadAction):
            return await _finalize_video_upload(finalizer, action)
        if isinstance(action, CreateSessionAction):
            return await _create_session(storage)
        if isinstance(action, UploadGeneratedAction):
            return await _upload_generated(store, storage, action)
        if isinstance(action, UploadGeneratedVideoAction):
            return await _upload_generated_video(store, storage, action)
    except ConflictError as e:
        return _fail(str(e), current=e.current)
    except (DataIntegrityError, ValidationError, UpstreamError) as e:
        logger.warning("[LEDGER] %s rejected: %s", action_name, e)
        return _fail(str(e))
    except Exception as e:
        logger.exception("[LEDGER] %s failed", action_name)
        return _fail(str(e))

    return _fail(f"Unknown action: {action_name}")


async def _queue_video(store: LedgerStore, action: QueueVideoAction) -> dict:
    row = await asyncio.to_thread(
        store.queue_video, action.photo_id, action.prompt, action.resolution, action.model,
    )
    return {"ok": True, "status": row.video_status}


async def _update_video_status(store: LedgerStore, action: UpdateVideoStatusAction) -> dict:
    fields = {
        "video_status": action.status,
        "video_task_id": action.task_id,
        "provider_url": action.provider_url,
        "video_model": action.video_model,
        "video_resolution": action.video_resolution,
        "session_folder_id": action.session_folder_id,
    }
    fields = {key: value for key, value in fields.items() if value is not None}
    row = await asyncio.to_thread(store.update_row, action.photo_id, fields, action.require_status)
    return {"ok": True, "status": row.video_status}


async def _finalize_video_upload(finalizer: Finalizer, action: FinalizeVideoUploadAction) -> dict:
    result = await finalizer.finalize(action.photo_id, action.video_url, action.session_folder_id)
    return {"ok": result.ok, "message": result.message, "fileId": result.file_id, "url": result.url}


async def _create_session(storage: S3Storage) -> dict:
    folder_id = await asyncio.to_thread(storage.create_folder)
    return {"ok": True, "folderId": folder_id, "folderUrl": storage.folder_url(folder_id)}


async def _upload_generated(store: LedgerStore, storage: S3Storage, action: UploadGeneratedAction) -> dict:
    data, mime_type = decode_upload(action.image, action.mime_type, "image/png")
    photo_id = uuid4().hex
    folder_id = await asyncio.to_thread(storage.resolve_folder, action.session_folder_id)
    stored = await asyncio.to_thread(
        storage.save, data, f"IMG_{photo_id}.{_extension(mime_type, 'png')}", mime_type, folder_id,
    )
    # The provider fetches the photo by URL
    await asyncio.to_thread(storage.grant_read, stored.file_id)
    row = await asyncio.to_thread(
        store.create_row,
        image_url=stored.url,
        event_id=action.event_id,
        session_folder_id=action.session_folder_id,
        photo_id=photo_id,
    )
    return {"ok": True, "id": row.id, "url": stored.url}


async def _upload_generated_video(
    store: LedgerStore,
    storage: S3Storage,
    action: UploadGeneratedVideoAction,
) -> dict:
    data, mime_type = decode_upload(action.image, action.mime_type, "video/mp4")
    photo_id = uuid4().hex
    folder_id = await asyncio.to_thread(storage.resolve_folder, action.session_folder_id)
    stored = await asyncio.to_thread(
        storage.save, data, f"VID_{photo_id}.{_extension(mime_type, 'mp4')}", mime_type, folder_id,
    )
    await asyncio.to_thread(storage.grant_read, stored.file_id)
    row = await asyncio.to_thread(
        store.create_row,
        event_id=action.event_id,
        session_folder_id=action.session_folder_id,
        video_file_id=stored.file_id,
        photo_id=photo_id,
    )
    return {"ok": True, "id": row.id, "url": stored.url, "fileId": stored.file_id}
