"""
HTTP client for the ledger action protocol.

Every request carries an `action` discriminator and answers `{ok: bool, ...}`.
Transport failures and 5xx answers are retried a bounded number of times;
`{ok: false}` answers are domain results and are returned, not raised.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
)

from photobooth.core.config import settings
from photobooth.core.errors import UpstreamError
from photobooth.schemas.video import LedgerRow

logger = logging.getLogger(__name__)

STATUS_MISMATCH = "Status mismatch"


@dataclass
class LedgerResult:
    ok: bool
    error: Optional[str] = None
    current: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def is_conflict(self) -> bool:
        return not self.ok and self.error == STATUS_MISMATCH

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "LedgerResult":
        return cls(
            ok=bool(payload.get("ok")),
            error=payload.get("error"),
            current=payload.get("current"),
            data=payload,
        )


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, UpstreamError):
        return exc.is_retryable
    return False


class LedgerClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        attempts: Optional[int] = None,
        wait_seconds: Optional[float] = None,
    ):
        self.base_url = base_url or settings.LEDGER_BASE_URL
        self._http = http_client or httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS)
        self.attempts = attempts or settings.LEDGER_TICK_RETRIES
        self.wait_seconds = settings.LEDGER_TICK_RETRY_WAIT_SECONDS if wait_seconds is None else wait_seconds

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _send(
        self,
        method: str,
        attempts: Optional[int] = None,
        wait_seconds: Optional[float] = None,
        timeout: Optional[float] = None,
        **kwargs,
    ) -> dict[str, Any]:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts or self.attempts),
            wait=wait_fixed(self.wait_seconds if wait_seconds is None else wait_seconds),
            retry=retry_if_exception(_is_retryable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        if timeout is not None:
            kwargs["timeout"] = timeout

        try:
            async for attempt in retrying:
                with attempt:
                    response = await self._http.request(method, self.base_url, **kwargs)
                    if response.status_code >= 400:
                        raise UpstreamError(f"Ledger status: {response.status_code}", response.status_code)
                    try:
                        payload = response.json()
                    except ValueError as e:
                        raise UpstreamError("Invalid response from ledger (Not JSON)", response.status_code) from e
                    if not isinstance(payload, dict):
                        raise UpstreamError("Invalid response from ledger (Not an object)", response.status_code)
                    return payload
        except httpx.TransportError as e:
            raise UpstreamError(f"Ledger unreachable: {e}") from e

    async def _post(self, payload: dict[str, Any], **kwargs) -> LedgerResult:
        body = {key: value for key, value in payload.items() if value is not None}
        return LedgerResult.from_payload(await self._send("POST", json=body, **kwargs))

    async def list_rows(self, event_id: Optional[str] = None, since: Optional[int] = None) -> list[LedgerRow]:
        """Read every row; no server-side filtering beyond the optional event/since sync cursor."""
        params: dict[str, Any] = {"action": "gallery", "t": int(time.time() * 1000)}
        if event_id:
            params["eventId"] = event_id
        if since:
            params["since"] = since

        payload = await self._send("GET", params=params)
        if not payload.get("ok", True):
            raise UpstreamError(f"Failed to fetch gallery: {payload.get('error')}")
        return [LedgerRow.model_validate(item) for item in payload.get("items") or []]

    async def update_row(
        self,
        photo_id: str,
        status: Optional[str] = None,
        task_id: Optional[str] = None,
        provider_url: Optional[str] = None,
        require_status: Optional[str] = None,
        video_model: Optional[str] = None,
        video_resolution: Optional[str] = None,
        session_folder_id: Optional[str] = None,
        attempts: Optional[int] = None,
        wait_seconds: Optional[float] = None,
    ) -> LedgerResult:
        """Unconditional update, or compare-and-set when `require_status` is given."""
        return await self._post({
            "action": "updateVideoStatus",
            "photoId": photo_id,
            "status": status,
            "taskId": task_id,
            "providerUrl": provider_url,
            "requireStatus": require_status,
            "videoModel": video_model,
            "videoResolution": video_resolution,
            "sessionFolderId": session_folder_id,
        }, attempts=attempts, wait_seconds=wait_seconds)

    async def queue_video(
        self,
        photo_id: str,
        prompt: Optional[str] = None,
        resolution: Optional[str] = None,
        model: Optional[str] = None,
    ) -> LedgerResult:
        return await self._post({
            "action": "queueVideo",
            "photoId": photo_id,
            "prompt": prompt,
            "resolution": resolution,
            "model": model,
        })

    async def finalize_video_upload(
        self,
        photo_id: str,
        video_url: str,
        session_folder_id: Optional[str] = None,
    ) -> LedgerResult:
        # Single attempt: the ledger downloads and stores the asset inside this call
        return await self._post({
            "action": "finalizeVideoUpload",
            "photoId": photo_id,
            "videoUrl": video_url,
            "sessionFolderId": session_folder_id,
        }, attempts=1, timeout=settings.DOWNLOAD_TIMEOUT_SECONDS + settings.HTTP_TIMEOUT_SECONDS)
