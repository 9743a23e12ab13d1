from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from photobooth.core.timezone import to_epoch_ms


class LedgerRow(BaseModel):
    """One ledger row as it travels over the wire (camelCase)."""

    id: str
    event_id: Optional[str] = Field(None, alias="eventId")
    image_url: Optional[str] = Field(None, alias="imageUrl")
    video_status: str = Field("idle", alias="videoStatus")
    video_task_id: Optional[str] = Field(None, alias="videoTaskId")
    provider_url: Optional[str] = Field(None, alias="providerUrl")
    video_file_id: Optional[str] = Field(None, alias="videoFileId")
    video_prompt: Optional[str] = Field(None, alias="videoPrompt")
    video_resolution: Optional[str] = Field(None, alias="videoResolution")
    video_model: Optional[str] = Field(None, alias="videoModel")
    session_folder_id: Optional[str] = Field(None, alias="sessionFolderId")
    updated_at: int = Field(0, alias="updatedAt")

    class Config:
        from_attributes = True
        populate_by_name = True

    @field_validator("video_status", mode="before")
    @classmethod
    def _status_default(cls, value):
        return value or "idle"

    @field_validator("updated_at", mode="before")
    @classmethod
    def _updated_at_ms(cls, value):
        if isinstance(value, datetime):
            return to_epoch_ms(value)
        return value or 0


class _LedgerAction(BaseModel):
    class Config:
        populate_by_name = True


class QueueVideoAction(_LedgerAction):
    action: Literal["queueVideo"]
    photo_id: str = Field(..., alias="photoId", min_length=1)
    prompt: Optional[str] = None
    resolution: Optional[str] = None
    model: Optional[str] = None


class UpdateVideoStatusAction(_LedgerAction):
    action: Literal["updateVideoStatus"]
    photo_id: str = Field(..., alias="photoId", min_length=1)
    status: Optional[str] = None
    task_id: Optional[str] = Field(None, alias="taskId")
    provider_url: Optional[str] = Field(None, alias="providerUrl")
    video_model: Optional[str] = Field(None, alias="videoModel")
    video_resolution: Optional[str] = Field(None, alias="videoResolution")
    session_folder_id: Optional[str] = Field(None, alias="sessionFolderId")
    require_status: Optional[str] = Field(None, alias="requireStatus")


class FinalizeVideoUploadAction(_LedgerAction):
    action: Literal["finalizeVideoUpload"]
    photo_id: str = Field(..., alias="photoId", min_length=1)
    video_url: str = Field(..., alias="videoUrl", min_length=1)
    session_folder_id: Optional[str] = Field(None, alias="sessionFolderId")


class CreateSessionAction(_LedgerAction):
    action: Literal["createSession"]


class UploadGeneratedAction(_LedgerAction):
    action: Literal["uploadGenerated"]
    image: str = Field(..., min_length=1)
    mime_type: Optional[str] = Field(None, alias="mimeType")
    event_id: Optional[str] = Field(None, alias="eventId")
    session_folder_id: Optional[str] = Field(None, alias="sessionFolderId")


class UploadGeneratedVideoAction(_LedgerAction):
    action: Literal["uploadGeneratedVideo"]
    image: str = Field(..., min_length=1)
    mime_type: str = Field("video/mp4", alias="mimeType")
    event_id: Optional[str] = Field(None, alias="eventId")
    session_folder_id: Optional[str] = Field(None, alias="sessionFolderId")


LedgerAction = Annotated[
    Union[
        QueueVideoAction,
        UpdateVideoStatusAction,
        FinalizeVideoUploadAction,
        CreateSessionAction,
        UploadGeneratedAction,
        UploadGeneratedVideoAction,
    ],
    Field(discriminator="action"),
]

ledger_action_adapter = TypeAdapter(LedgerAction)

LEDGER_ACTIONS = (
    "queueVideo",
    "updateVideoStatus",
    "finalizeVideoUpload",
    "createSession",
    "uploadGenerated",
    "uploadGeneratedVideo",
)


class GenerateVideoRequest(BaseModel):
    prompt: Optional[str] = None
    photo_id: Optional[str] = Field(None, alias="photoId")
    image_base64: Optional[str] = Field(None, alias="imageBase64")
    session_folder_id: Optional[str] = Field(None, alias="sessionFolderId")
    model: Optional[str] = None
    resolution: Optional[str] = None

    class Config:
        populate_by_name = True


class GenerateVideoResponse(BaseModel):
    ok: bool = True
    task_id: str = Field(..., alias="taskId")
    status: str = "processing"
    message: str = "Video generation started"
    resolution: str
    warning: Optional[str] = None

    class Config:
        populate_by_name = True


class TickReportSchema(BaseModel):
    processed: int
    started: int
    rescued: int
    errors: list[str]


class TickResponse(BaseModel):
    ok: bool = True
    report: TickReportSchema
    active_count: int = Field(..., alias="activeCount")

    class Config:
        populate_by_name = True
