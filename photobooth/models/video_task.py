from sqlalchemy import Column, String, Text, DateTime, Enum
from photobooth.core.database import Base
from photobooth.core.timezone import get_utc_now


class VideoTask(Base):
    """One ledger row per captured photo and its (at most one) active video job."""

    __tablename__ = "photos"

    id = Column(String(64), primary_key=True)
    event_id = Column(String(64), nullable=True, index=True)
    image_url = Column(Text, nullable=True)

    video_status = Column(Enum(
        "idle", "queued", "processing", "uploading", "done", "failed",
        name="video_status",
    ), default="idle", nullable=False)
    video_task_id = Column(String(128), nullable=True)
    provider_url = Column(Text, nullable=True)
    video_file_id = Column(String(256), nullable=True)

    video_prompt = Column(Text, nullable=True)
    video_resolution = Column(String(16), nullable=True)
    video_model = Column(String(128), nullable=True)
    session_folder_id = Column(String(128), nullable=True)

    created_at = Column(DateTime, default=get_utc_now, nullable=False)
    updated_at = Column(DateTime, default=get_utc_now, onupdate=get_utc_now, nullable=False, index=True)
