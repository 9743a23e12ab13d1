"""Shared test fixtures."""

import asyncio
import threading
from typing import Optional

import httpx
import pytest
from botocore.exceptions import ClientError
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from photobooth.core.database import Base
from photobooth.core.errors import ConflictError
from photobooth.models.video_task import VideoTask  # noqa: F401
from photobooth.services.finalizer import Finalizer
from photobooth.services.ledger_client import STATUS_MISMATCH, LedgerResult
from photobooth.services.ledger_store import LedgerStore
from photobooth.services.provider_client import PollResult, ProviderTaskStatus
from photobooth.services.storage import S3Storage

VIDEO_BYTES = b"\x00\x00\x00\x18ftypmp42fake-video"


class FakeS3Client:
    """Just enough of the boto3 S3 client for S3Storage"""

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.acls: dict[str, str] = {}

    def put_object(self, Bucket, Key, Body=b""):
        self.objects[Key] = Body

    def head_object(self, Bucket, Key):
        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "HeadObject")
        return {"ContentLength": len(self.objects[Key])}

    def upload_fileobj(self, Fileobj, Bucket, Key, ExtraArgs=None):
        self.objects[Key] = Fileobj.read()

    def put_object_acl(self, Bucket, Key, ACL):
        self.acls[Key] = ACL

    def delete_object(self, Bucket, Key):
        self.objects.pop(Key, None)

    def videos(self) -> list[str]:
        return [key for key in self.objects if key.rsplit("/", 1)[-1].startswith("VID_")]


class FakeProvider:
    """Provider double: scripted poll outcomes per task id, numbered task ids on start."""

    def __init__(self, polls: Optional[dict] = None, start_error: Optional[Exception] = None):
        self.polls = polls or {}
        self.start_error = start_error
        self.started: list[dict] = []
        self.polled: list[str] = []

    async def start_task(self, model, prompt, image_ref, resolution=None, duration=None):
        await asyncio.sleep(0)
        if self.start_error:
            raise self.start_error
        self.started.append({
            "model": model,
            "prompt": prompt,
            "image_ref": image_ref,
            "resolution": resolution,
        })
        return f"task-{len(self.started)}"

    async def poll_task(self, task_id):
        self.polled.append(task_id)
        await asyncio.sleep(0)
        outcome = self.polls.get(task_id, PollResult(status=ProviderTaskStatus.PROCESSING))
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class InProcessLedger:
    """LedgerClient double that talks to a LedgerStore directly."""

    def __init__(self, store: LedgerStore, finalizer: Optional[Finalizer] = None):
        self.store = store
        self.finalizer = finalizer
        self.finalize_calls: list[str] = []

    async def list_rows(self, event_id=None, since=None):
        return self.store.list_rows(event_id, since)

    async def update_row(
        self,
        photo_id,
        status=None,
        task_id=None,
        provider_url=None,
        require_status=None,
        video_model=None,
        video_resolution=None,
        session_folder_id=None,
        **_,
    ):
        fields = {
            "video_status": status,
            "video_task_id": task_id,
            "provider_url": provider_url,
            "video_model": video_model,
            "video_resolution": video_resolution,
            "session_folder_id": session_folder_id,
        }
        fields = {key: value for key, value in fields.items() if value is not None}
        try:
            row = self.store.update_row(photo_id, fields, require_status)
        except ConflictError as e:
            return LedgerResult(ok=False, error=STATUS_MISMATCH, current=e.current)
        return LedgerResult(ok=True, data={"status": row.video_status})

    async def finalize_video_upload(self, photo_id, video_url, session_folder_id=None):
        self.finalize_calls.append(photo_id)
        if self.finalizer is None:
            return LedgerResult(ok=True, data={"message": "recorded"})
        result = await self.finalizer.finalize(photo_id, video_url, session_folder_id)
        return LedgerResult(ok=result.ok, data={"message": result.message})


@pytest.fixture()
def store(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    lock = threading.Lock()
    yield LedgerStore(
        session_factory=sessionmaker(autocommit=False, autoflush=False, bind=engine),
        lock_factory=lambda: lock,
    )
    engine.dispose()


@pytest.fixture()
def s3_client():
    return FakeS3Client()


@pytest.fixture()
def storage(s3_client):
    return S3Storage(client=s3_client)


@pytest.fixture()
def video_server():
    """MockTransport serving VIDEO_BYTES for any GET; records requested URLs."""
    requests: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(str(request.url))
        return httpx.Response(200, content=VIDEO_BYTES)

    return requests, httpx.MockTransport(handler)


@pytest.fixture()
def finalizer(store, storage, video_server):
    _, transport = video_server
    return Finalizer(store, storage, http_client=httpx.AsyncClient(transport=transport))


def make_processing_row(store: LedgerStore, photo_id: str, task_id: str = "t1", **create_kwargs):
    store.create_row(photo_id=photo_id, image_url=f"https://img.example/{photo_id}.png", **create_kwargs)
    return store.update_row(photo_id, {"video_status": "processing", "video_task_id": task_id})


def make_uploading_row(store: LedgerStore, photo_id: str, task_id: str = "t1", url: str = "https://cdn.example/v.mp4"):
    make_processing_row(store, photo_id, task_id)
    return store.update_row(
        photo_id,
        {"video_status": "uploading", "provider_url": url},
        require_status="processing",
    )
