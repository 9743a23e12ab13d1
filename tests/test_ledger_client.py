"""Tests for the ledger HTTP client: bounded retries and the `ok` protocol."""

import asyncio
import json

import httpx
import pytest

from photobooth.core.errors import UpstreamError
from photobooth.services.ledger_client import LedgerClient


def _client(handler, attempts=2):
    return LedgerClient(
        base_url="http://ledger.test/api/v1/ledger",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        attempts=attempts,
        wait_seconds=0,
    )


class TestRetries:
    def test_server_error_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(503, text="busy")
            return httpx.Response(200, json={"ok": True})

        result = asyncio.run(_client(handler).update_row("p1", status="failed"))
        assert result.ok
        assert len(calls) == 2

    def test_transport_error_exhausts_attempts(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(UpstreamError, match="Ledger unreachable"):
            asyncio.run(_client(handler, attempts=3).update_row("p1", status="failed"))
        assert len(calls) == 3

    def test_client_error_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(404, text="no route")

        with pytest.raises(UpstreamError) as exc:
            asyncio.run(_client(handler).update_row("p1", status="failed"))
        assert exc.value.status_code == 404
        assert len(calls) == 1

    def test_non_json_body(self):
        def handler(request):
            return httpx.Response(200, text="<html>login</html>")

        with pytest.raises(UpstreamError, match="Not JSON"):
            asyncio.run(_client(handler, attempts=1).update_row("p1", status="failed"))

    def test_finalize_is_sent_once(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(502)

        with pytest.raises(UpstreamError):
            asyncio.run(_client(handler, attempts=3).finalize_video_upload("p1", "https://v/1.mp4"))
        assert len(calls) == 1


class TestProtocol:
    def test_compare_and_set_request(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"ok": True})

        asyncio.run(_client(handler).update_row(
            "p1", status="uploading", provider_url="https://v/1.mp4", require_status="processing",
        ))
        assert seen["body"] == {
            "action": "updateVideoStatus",
            "photoId": "p1",
            "status": "uploading",
            "providerUrl": "https://v/1.mp4",
            "requireStatus": "processing",
        }

    def test_status_mismatch_is_a_result(self):
        def handler(request):
            return httpx.Response(200, json={"ok": False, "error": "Status mismatch", "current": "uploading"})

        result = asyncio.run(_client(handler).update_row("p1", status="uploading", require_status="processing"))
        assert not result.ok
        assert result.is_conflict
        assert result.current == "uploading"

    def test_other_failures_are_not_conflicts(self):
        def handler(request):
            return httpx.Response(200, json={"ok": False, "error": "Photo ID not found"})

        result = asyncio.run(_client(handler).queue_video("missing"))
        assert not result.ok
        assert not result.is_conflict

    def test_list_rows(self):
        seen = {}

        def handler(request):
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"ok": True, "items": [
                {"id": "a", "videoStatus": "processing", "videoTaskId": "t1", "updatedAt": 10},
                {"id": "b", "videoStatus": "", "updatedAt": 11},
            ]})

        rows = asyncio.run(_client(handler).list_rows())
        assert seen["params"]["action"] == "gallery"
        assert [(row.id, row.video_status) for row in rows] == [("a", "processing"), ("b", "idle")]
        assert rows[0].video_task_id == "t1"

    def test_list_rows_failure(self):
        def handler(request):
            return httpx.Response(200, json={"ok": False, "error": "Sheet locked"})

        with pytest.raises(UpstreamError, match="Sheet locked"):
            asyncio.run(_client(handler).list_rows())
