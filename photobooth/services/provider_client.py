"""
BytePlus ARK (Seedance) video generation client.

Starts image-to-video tasks and polls them. The task envelope the provider
returns is not uniform, so every response passes through `parse_task_id` /
`parse_poll_response`, which only accept the shapes listed below:

    start:  {"id": ...}                      | {"Result": {"id": ...}}
    poll:   {"status": ..., <url>}           | {"Result": {...}} | {"data": {...}}
    url:    content.video_url | output.video_url | video_url
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import httpx

from photobooth.core.config import settings
from photobooth.core.errors import UpstreamError
from photobooth.core.guards import assert_video_model, sanitize_log

logger = logging.getLogger(__name__)

ALLOWED_RESOLUTIONS = ("480p", "720p")
DEFAULT_RESOLUTION = "480p"

_SUCCEEDED = {"succeeded", "success"}
_FAILED = {"failed", "error"}


class ProviderTaskStatus(str, Enum):
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class PollResult:
    status: ProviderTaskStatus
    asset_url: Optional[str] = None
    raw_status: str = ""


def normalize_resolution(value: Optional[str]) -> str:
    """Anything but 480p/720p is coerced to 480p; it never reaches the provider."""
    resolution = (value or DEFAULT_RESOLUTION).strip().lower()
    if resolution not in ALLOWED_RESOLUTIONS:
        logger.warning("[PROVIDER] Invalid resolution %s, defaulting to %s", value, DEFAULT_RESOLUTION)
        return DEFAULT_RESOLUTION
    return resolution


def build_prompt(prompt: Optional[str], resolution: str, duration: int) -> str:
    base = (prompt or "").strip() or settings.DEFAULT_VIDEO_PROMPT
    return f"{base} --rs {resolution} --dur {duration}"


def thumbnail_size(resolution: str) -> str:
    return "w720" if resolution == "720p" else "w480"


def resolve_image_ref(photo_id: str, resolution: str, image_url: Optional[str] = None) -> str:
    """Stored image URL if the ledger has one, otherwise a thumbnail sized for the resolution."""
    if image_url:
        return image_url
    return settings.IMAGE_REF_TEMPLATE.format(photo_id=photo_id, size=thumbnail_size(resolution))


def parse_task_id(data: Any) -> Optional[str]:
    if not isinstance(data, dict):
        return None
    result = data.get("Result")
    task_id = data.get("id") or (result.get("id") if isinstance(result, dict) else None)
    return str(task_id) if task_id else None


def parse_poll_response(data: Any) -> PollResult:
    envelope: dict = {}
    if isinstance(data, dict):
        for candidate in (data.get("Result"), data.get("data"), data):
            if isinstance(candidate, dict):
                envelope = candidate
                break

    raw_status = str(envelope.get("status") or "processing").strip().lower()
    if raw_status in _SUCCEEDED:
        status = ProviderTaskStatus.SUCCEEDED
    elif raw_status in _FAILED:
        status = ProviderTaskStatus.FAILED
    else:
        status = ProviderTaskStatus.PROCESSING

    asset_url = None
    for container in (envelope.get("content"), envelope.get("output"), envelope):
        if isinstance(container, dict) and container.get("video_url"):
            asset_url = container["video_url"]
            break

    return PollResult(status=status, asset_url=asset_url, raw_status=raw_status)


class ProviderClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or settings.provider_base_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.PROVIDER_API_KEY
        self._http = http_client or httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS)

        if not self.api_key:
            logger.warning("[PROVIDER] PROVIDER_API_KEY is not set")

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> dict:
        try:
            response = await self._http.request(method, url, headers=self._headers, **kwargs)
        except httpx.TimeoutException as e:
            raise UpstreamError(f"Upstream timeout: {e}") from e
        except httpx.TransportError as e:
            raise UpstreamError(f"Upstream unreachable: {e}") from e

        if response.status_code >= 400:
            detail = response.text[:500]
            logger.error("[PROVIDER] Error %s: %s", response.status_code, detail)
            raise UpstreamError(f"Upstream Error ({response.status_code}): {detail}", response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError("Upstream returned a non-JSON body", response.status_code) from e

    async def start_task(
        self,
        model: str,
        prompt: Optional[str],
        image_ref: Optional[str],
        resolution: Optional[str] = None,
        duration: Optional[int] = None,
    ) -> str:
        """Start a generation task and return its handle. Never retried: a retry could start it twice."""
        assert_video_model(model)
        resolution = normalize_resolution(resolution)
        duration = duration or settings.VIDEO_DURATION_SECONDS
        text = build_prompt(prompt, resolution, duration)

        content: list[dict[str, Any]] = [{"type": "text", "text": text}]
        if image_ref:
            content.append({"type": "image_url", "image_url": {"url": image_ref}})

        body = {
            "model": model,
            "content": content,
            "parameters": {"duration": duration, "resolution": resolution, "audio": False},
        }
        logger.info("[PROVIDER] Starting task model=%s resolution=%s prompt=%s",
                    model, resolution, sanitize_log(text))

        data = await self._request("POST", f"{self.base_url}/contents/generations/tasks", json=body)
        task_id = parse_task_id(data)
        if not task_id:
            raise UpstreamError("No Task ID returned from upstream")
        return task_id

    async def poll_task(self, task_id: str) -> PollResult:
        data = await self._request("GET", f"{self.base_url}/contents/generations/tasks/{task_id}")
        return parse_poll_response(data)
