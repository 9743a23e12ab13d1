"""
Row storage behind the ledger action protocol.

Reads go straight to the table. Every mutation runs inside the ledger's single
named lock, so one call is atomic with respect to every other call. Two calls
are not atomic as a pair: callers whose decision depends on a status they read
earlier must pass `require_status` and let the store compare-and-set.
"""

import logging
from contextlib import contextmanager
from typing import Any, Callable, ContextManager, Iterator, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from photobooth.core.database import SessionLocal
from photobooth.core.errors import ConflictError, DataIntegrityError, ValidationError
from photobooth.core.redis import ledger_lock
from photobooth.core.timezone import from_epoch_ms, get_utc_now
from photobooth.models.video_task import VideoTask
from photobooth.schemas.video import LedgerRow
from photobooth.services.lifecycle import CAS_ONLY, QUEUEABLE, TASK_BEARING, VideoStatus, apply_transition

logger = logging.getLogger(__name__)

PHOTO_NOT_FOUND = "Photo ID not found"

LIFECYCLE_FIELDS = (
    "video_status",
    "video_task_id",
    "provider_url",
    "video_file_id",
    "video_prompt",
    "video_resolution",
    "video_model",
    "session_folder_id",
)


def _snapshot(row: VideoTask) -> dict[str, Any]:
    return {field: getattr(row, field) for field in LIFECYCLE_FIELDS}


class LedgerStore:
    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        lock_factory: Callable[[], ContextManager] = ledger_lock,
    ):
        self._session_factory = session_factory
        self._lock_factory = lock_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        finally:
            db.close()

    @contextmanager
    def _critical(self) -> Iterator[Session]:
        with self._lock_factory():
            with self._session() as db:
                try:
                    yield db
                    db.commit()
                except Exception:
                    db.rollback()
                    raise

    def _load(self, db: Session, photo_id: str) -> VideoTask:
        row = db.get(VideoTask, photo_id)
        if row is None:
            raise DataIntegrityError(PHOTO_NOT_FOUND)
        return row

    def list_rows(self, event_id: Optional[str] = None, since: Optional[int] = None) -> list[LedgerRow]:
        """All rows in insertion order, optionally only those changed after `since` (epoch ms)."""
        with self._session() as db:
            query = db.query(VideoTask)
            if event_id:
                query = query.filter(VideoTask.event_id == event_id)
            if since:
                query = query.filter(VideoTask.updated_at > from_epoch_ms(since))
            rows = query.order_by(VideoTask.created_at, VideoTask.id).all()
            return [LedgerRow.model_validate(row) for row in rows]

    def get_row(self, photo_id: str) -> LedgerRow:
        with self._session() as db:
            return LedgerRow.model_validate(self._load(db, photo_id))

    def create_row(
        self,
        image_url: Optional[str] = None,
        event_id: Optional[str] = None,
        session_folder_id: Optional[str] = None,
        video_file_id: Optional[str] = None,
        photo_id: Optional[str] = None,
    ) -> LedgerRow:
        """
        Register a captured asset. Photos start `idle`; a video uploaded directly
        by the client is `done` from the start.
        """
        status = VideoStatus.DONE if video_file_id else VideoStatus.IDLE
        with self._critical() as db:
            row = VideoTask(
                id=photo_id or uuid4().hex,
                event_id=event_id,
                image_url=image_url,
                session_folder_id=session_folder_id,
                video_status=status.value,
                video_file_id=video_file_id,
            )
            db.add(row)
            db.flush()
            logger.info("[LEDGER] Registered %s (%s)", row.id, status.value)
            return LedgerRow.model_validate(row)

    def queue_video(
        self,
        photo_id: str,
        prompt: Optional[str] = None,
        resolution: Optional[str] = None,
        model: Optional[str] = None,
    ) -> LedgerRow:
        with self._critical() as db:
            row = self._load(db, photo_id)
            current = VideoStatus.parse(row.video_status)
            if current not in QUEUEABLE:
                raise ConflictError(current=current.value)

            merged = apply_transition(current, _snapshot(row), VideoStatus.QUEUED, {
                "video_prompt": prompt,
                "video_resolution": resolution,
                "video_model": model,
            })
            merged["provider_url"] = None
            self._write(row, merged)
            logger.info("[LEDGER] %s queued (was %s)", photo_id, current.value)
            return LedgerRow.model_validate(row)

    def update_row(
        self,
        photo_id: str,
        fields: dict[str, Any],
        require_status: Optional[str] = None,
    ) -> LedgerRow:
        """
        Apply `fields` to one row.

        With `require_status` this is a compare-and-set: the write lands only if the
        row's current status equals it, otherwise ConflictError carries the status
        that was found and nothing is mutated. Without it, `uploading -> processing`
        is refused the same way, and no write may replace a recorded task handle.
        """
        unknown = set(fields) - set(LIFECYCLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown ledger fields: {', '.join(sorted(unknown))}")

        with self._critical() as db:
            row = self._load(db, photo_id)
            current = VideoStatus.parse(row.video_status)

            if require_status is not None and current != VideoStatus.parse(require_status):
                logger.debug(
                    "[LEDGER] CAS miss for %s: required %s, found %s",
                    photo_id, require_status, current.value,
                )
                raise ConflictError(current=current.value)

            target = VideoStatus.parse(fields.get("video_status")) if fields.get("video_status") else current
            if require_status is None and (current, target) in CAS_ONLY:
                logger.warning("[LEDGER] Refused plain %s -> %s for %s", current.value, target.value, photo_id)
                raise ConflictError(current=current.value)

            task_id = fields.get("video_task_id")
            if task_id and row.video_task_id and task_id != row.video_task_id and target in TASK_BEARING:
                logger.warning(
                    "[LEDGER] Refused to replace task %s with %s for %s", row.video_task_id, task_id, photo_id,
                )
                raise ConflictError(current=current.value)

            updates = {key: value for key, value in fields.items() if key != "video_status"}
            merged = apply_transition(current, _snapshot(row), target, updates)
            self._write(row, merged)

            if target != current:
                logger.info("[LEDGER] %s: %s -> %s", photo_id, current.value, target.value)
            return LedgerRow.model_validate(row)

    def _write(self, row: VideoTask, values: dict[str, Any]) -> None:
        for key, value in values.items():
            setattr(row, key, value)
        row.updated_at = get_utc_now()
