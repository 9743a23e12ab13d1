"""
Durable asset storage.

A "folder" is an S3 key prefix `folders/<folder_id>/` that exists once its marker
object has been written. Files are addressed by their full key, which doubles as
the ledger's `videoFileId`.
"""

import io
import logging
from dataclasses import dataclass
from typing import Optional
from uuid import uuid4

from botocore.exceptions import ClientError

from photobooth.core.config import settings
from photobooth.core.s3 import get_s3_client, public_url, upload_fileobj_to_s3

logger = logging.getLogger(__name__)

FOLDER_ROOT = "folders"
ROOT_FOLDER_ID = ""


@dataclass
class StoredFile:
    file_id: str
    url: str


def folder_prefix(folder_id: str) -> str:
    if not folder_id:
        return f"{FOLDER_ROOT}/"
    return f"{FOLDER_ROOT}/{folder_id}/"


class S3Storage:
    """Folders and files on the configured S3 bucket."""

    def __init__(self, client=None):
        self._client = client
        self.bucket = settings.AWS_S3_BUCKET

    @property
    def client(self):
        if self._client is None:
            self._client = get_s3_client()
        return self._client

    def create_folder(self, name_hint: str = "session") -> str:
        folder_id = f"{name_hint}-{uuid4().hex[:12]}"
        self.client.put_object(Bucket=self.bucket, Key=folder_prefix(folder_id), Body=b"")
        logger.info("[STORAGE] Created folder %s", folder_id)
        return folder_id

    def folder_exists(self, folder_id: str) -> bool:
        if not folder_id:
            return False
        try:
            self.client.head_object(Bucket=self.bucket, Key=folder_prefix(folder_id))
            return True
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("404", "NoSuchKey", "NotFound"):
                return False
            raise

    def folder_url(self, folder_id: str) -> str:
        return public_url(folder_prefix(folder_id))

    def resolve_folder(self, preferred: Optional[str]) -> str:
        """Session folder, then the configured default folder, then the root."""
        for candidate in (preferred, settings.DEFAULT_FOLDER_ID):
            if candidate and self.folder_exists(candidate):
                return candidate
            if candidate:
                logger.warning("[STORAGE] Folder %s not found, falling back", candidate)
        return ROOT_FOLDER_ID

    def save(self, data: bytes, filename: str, content_type: str, folder_id: str = ROOT_FOLDER_ID) -> StoredFile:
        key = folder_prefix(folder_id) + filename
        url = upload_fileobj_to_s3(io.BytesIO(data), key, content_type, client=self.client)
        return StoredFile(file_id=key, url=url)

    def grant_read(self, file_id: str) -> None:
        self.client.put_object_acl(Bucket=self.bucket, Key=file_id, ACL="public-read")

    def delete(self, file_id: str) -> None:
        self.client.delete_object(Bucket=self.bucket, Key=file_id)
