"""
Video task lifecycle.

    idle ──queueVideo──▶ queued ──startTask──▶ processing ──CAS──▶ uploading ──finalize──▶ done
                                                   │                  │
                                                   └──────▶ failed ◀──┘

`failed` is left only by a manual re-queue. The synchronous generation path may
start a task straight from `idle`/`failed`, and the stale-upload sweep may hand an
`uploading` row back to `processing` so it is re-polled (compare-and-set only).
A task handle, once recorded, is never replaced in place.
"""

from enum import Enum
from typing import Any, Optional

from photobooth.core.errors import ValidationError


class VideoStatus(str, Enum):
    IDLE = "idle"
    QUEUED = "queued"
    PROCESSING = "processing"
    UPLOADING = "uploading"
    DONE = "done"
    FAILED = "failed"

    @classmethod
    def parse(cls, value: Optional[str]) -> "VideoStatus":
        """Absent or empty means no video has been requested."""
        if not value:
            return cls.IDLE
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValidationError(f"Invalid video status: {value}")


# States in which a provider task handle must be retained
TASK_BEARING = frozenset({VideoStatus.PROCESSING, VideoStatus.UPLOADING, VideoStatus.DONE})

# States queueVideo may be applied to
QUEUEABLE = frozenset({VideoStatus.IDLE, VideoStatus.FAILED, VideoStatus.QUEUED})

TRANSITIONS: dict[VideoStatus, frozenset[VideoStatus]] = {
    VideoStatus.IDLE: frozenset({VideoStatus.QUEUED, VideoStatus.PROCESSING}),
    VideoStatus.QUEUED: frozenset({VideoStatus.PROCESSING}),
    VideoStatus.PROCESSING: frozenset({VideoStatus.UPLOADING, VideoStatus.FAILED}),
    VideoStatus.UPLOADING: frozenset({VideoStatus.DONE, VideoStatus.FAILED, VideoStatus.PROCESSING}),
    VideoStatus.FAILED: frozenset({VideoStatus.QUEUED, VideoStatus.PROCESSING}),
    VideoStatus.DONE: frozenset(),
}

# Moves that undo progress: only a compare-and-set on the source status may make them
CAS_ONLY = frozenset({(VideoStatus.UPLOADING, VideoStatus.PROCESSING)})


def can_transition(current: VideoStatus, target: VideoStatus) -> bool:
    # Re-writing the current status is a plain field update
    if current == target:
        return True
    return target in TRANSITIONS[current]


def assert_transition(current: VideoStatus, target: VideoStatus) -> None:
    if not can_transition(current, target):
        raise ValidationError(f"Illegal transition {current.value} -> {target.value}")


def apply_transition(
    current: VideoStatus,
    row: dict[str, Any],
    target: VideoStatus,
    updates: dict[str, Any],
) -> dict[str, Any]:
    """
    Merge `updates` into `row` for a move from `current` to `target`.

    Returns the full set of lifecycle fields after the move, with the fields the
    target state must not carry cleared. Raises ValidationError when the move is
    illegal or the target state's required data is missing.
    """
    assert_transition(current, target)

    merged = dict(row)
    merged.update({key: value for key, value in updates.items() if value is not None})
    merged["video_status"] = target.value

    if target not in TASK_BEARING:
        merged["video_task_id"] = None
    if target != VideoStatus.DONE:
        merged["video_file_id"] = None

    check_invariants(merged)
    return merged


def check_invariants(row: dict[str, Any]) -> None:
    status = VideoStatus.parse(row.get("video_status"))
    task_id = row.get("video_task_id")
    file_id = row.get("video_file_id")

    if task_id and status not in TASK_BEARING:
        raise ValidationError(f"videoTaskId must not be set while {status.value}")
    if status in (VideoStatus.PROCESSING, VideoStatus.UPLOADING) and not task_id:
        raise ValidationError(f"videoTaskId is required to enter {status.value}")
    if status == VideoStatus.UPLOADING and not row.get("provider_url"):
        raise ValidationError("providerUrl is required to enter uploading")
    if bool(file_id) != (status == VideoStatus.DONE):
        raise ValidationError("videoFileId must be set exactly when the video is done")
