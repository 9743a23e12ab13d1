"""Tests for the ledger row store and its compare-and-set update."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from conftest import make_processing_row, make_uploading_row
from photobooth.core.errors import ConflictError, DataIntegrityError, ValidationError
from photobooth.services.ledger_store import PHOTO_NOT_FOUND


class TestCreate:
    def test_photo_starts_idle(self, store):
        row = store.create_row(photo_id="p1", image_url="https://img.example/p1.png", event_id="ev1")
        assert row.video_status == "idle"
        assert row.event_id == "ev1"
        assert row.updated_at > 0

    def test_direct_video_upload_is_done(self, store):
        row = store.create_row(photo_id="v1", video_file_id="folders/VID_v1.mp4")
        assert row.video_status == "done"
        assert row.video_file_id == "folders/VID_v1.mp4"

    def test_generated_id(self, store):
        row = store.create_row()
        assert len(row.id) == 32


class TestCompareAndSet:
    def test_matching_status_applies(self, store):
        make_processing_row(store, "p1")
        row = store.update_row(
            "p1", {"video_status": "uploading", "provider_url": "https://cdn/v.mp4"}, "processing",
        )
        assert row.video_status == "uploading"
        assert row.provider_url == "https://cdn/v.mp4"
        assert row.video_task_id == "t1"

    def test_mismatch_reports_current_and_leaves_row(self, store):
        make_uploading_row(store, "p1")
        before = store.get_row("p1")
        with pytest.raises(ConflictError) as exc:
            store.update_row("p1", {"video_status": "uploading", "provider_url": "other"}, "processing")
        assert exc.value.current == "uploading"
        assert str(exc.value) == "Status mismatch"
        assert store.get_row("p1") == before

    def test_exactly_one_of_five_concurrent_locks_wins(self, store):
        make_processing_row(store, "p1")

        def attempt(n):
            try:
                store.update_row(
                    "p1",
                    {"video_status": "uploading", "provider_url": f"https://cdn/{n}.mp4"},
                    "processing",
                )
                return True
            except ConflictError:
                return False

        with ThreadPoolExecutor(max_workers=5) as pool:
            results = list(pool.map(attempt, range(5)))

        assert results.count(True) == 1
        assert store.get_row("p1").video_status == "uploading"

    def test_unconditional_update(self, store):
        make_processing_row(store, "p1")
        row = store.update_row("p1", {"video_status": "failed"})
        assert row.video_status == "failed"
        assert row.video_task_id is None


class TestForwardOnly:
    def test_plain_write_cannot_reopen_upload(self, store):
        make_uploading_row(store, "p1", "t1")
        with pytest.raises(ConflictError) as exc:
            store.update_row("p1", {"video_status": "processing", "video_task_id": "t-new"})
        assert exc.value.current == "uploading"
        row = store.get_row("p1")
        assert row.video_status == "uploading"
        assert row.video_task_id == "t1"

    def test_reopen_upload_with_compare_and_set(self, store):
        make_uploading_row(store, "p1", "t1")
        row = store.update_row("p1", {"video_status": "processing"}, "uploading")
        assert row.video_status == "processing"
        assert row.video_task_id == "t1"

    @pytest.mark.parametrize("require", [None, "processing"])
    def test_task_handle_is_not_replaced(self, store, require):
        make_processing_row(store, "p2", "t1")
        with pytest.raises(ConflictError) as exc:
            store.update_row("p2", {"video_status": "processing", "video_task_id": "t-second"}, require)
        assert exc.value.current == "processing"
        assert store.get_row("p2").video_task_id == "t1"

    def test_same_handle_rewrite_allowed(self, store):
        make_processing_row(store, "p1", "t1")
        row = store.update_row("p1", {"video_task_id": "t1", "video_model": "seedance-1-0-lite"})
        assert row.video_task_id == "t1"
        assert row.video_model == "seedance-1-0-lite"

    def test_new_task_after_failure(self, store):
        make_processing_row(store, "p1", "t1")
        store.update_row("p1", {"video_status": "failed"})
        row = store.update_row("p1", {"video_status": "processing", "video_task_id": "t2"}, "failed")
        assert row.video_task_id == "t2"


class TestValidation:
    def test_missing_row(self, store):
        with pytest.raises(DataIntegrityError, match=PHOTO_NOT_FOUND):
            store.update_row("nope", {"video_status": "failed"})
        with pytest.raises(DataIntegrityError):
            store.get_row("nope")

    def test_unknown_field(self, store):
        store.create_row(photo_id="p1")
        with pytest.raises(ValidationError):
            store.update_row("p1", {"likes": 3})

    def test_illegal_transition(self, store):
        store.create_row(photo_id="p1")
        with pytest.raises(ValidationError):
            store.update_row("p1", {"video_status": "done", "video_file_id": "x"})
        assert store.get_row("p1").video_status == "idle"

    def test_done_is_final(self, store):
        store.create_row(photo_id="v1", video_file_id="folders/VID_v1.mp4")
        with pytest.raises(ValidationError):
            store.update_row("v1", {"video_status": "failed"})


class TestQueueVideo:
    def test_queue_stores_parameters(self, store):
        store.create_row(photo_id="p1")
        row = store.queue_video("p1", prompt="slow zoom", resolution="720p", model="seedance-1-0-lite")
        assert row.video_status == "queued"
        assert row.video_prompt == "slow zoom"
        assert row.video_resolution == "720p"
        assert row.video_model == "seedance-1-0-lite"

    def test_requeue_after_failure(self, store):
        make_processing_row(store, "p1")
        store.update_row("p1", {"video_status": "failed"})
        assert store.queue_video("p1").video_status == "queued"

    def test_requeue_refreshes_parameters(self, store):
        store.create_row(photo_id="p1")
        store.queue_video("p1", prompt="wave", resolution="480p")
        row = store.queue_video("p1", prompt="spin", resolution="720p")
        assert row.video_status == "queued"
        assert row.video_prompt == "spin"
        assert row.video_resolution == "720p"

    @pytest.mark.parametrize("make_row, status", [
        (make_processing_row, "processing"),
        (make_uploading_row, "uploading"),
    ])
    def test_active_rows_rejected(self, store, make_row, status):
        make_row(store, "p1")
        with pytest.raises(ConflictError) as exc:
            store.queue_video("p1")
        assert exc.value.current == status

    def test_done_rejected(self, store):
        store.create_row(photo_id="v1", video_file_id="folders/VID_v1.mp4")
        with pytest.raises(ConflictError):
            store.queue_video("v1")


class TestListRows:
    def test_insertion_order_and_event_filter(self, store):
        store.create_row(photo_id="a", event_id="ev1")
        store.create_row(photo_id="b", event_id="ev2")
        store.create_row(photo_id="c", event_id="ev1")
        assert [row.id for row in store.list_rows()] == ["a", "b", "c"]
        assert [row.id for row in store.list_rows(event_id="ev1")] == ["a", "c"]

    def test_since_cursor_excludes_seen_rows(self, store):
        store.create_row(photo_id="a")
        cursor = max(row.updated_at for row in store.list_rows())
        assert store.list_rows(since=cursor) == []
