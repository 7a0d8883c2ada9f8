from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from reelqueue.db.models import ScheduledUpload
from reelqueue.errors import NotFoundError, StorageError, ValidationError
from reelqueue.services.uploads import (
    MAX_CAPTION_LENGTH,
    STALE_PUBLISHING_MESSAGE,
    UploadRepository,
    UploadStatus,
)


def test_create_starts_pending(repo, clock):
    upload_id = repo.create(
        media_url="https://cdn.example.com/a.mp4",
        media_path="instagram/a.mp4",
        caption="  hello  ",
        scheduled_for=clock() + timedelta(hours=1),
    )

    upload = repo.get(upload_id)
    assert upload.status == UploadStatus.PENDING
    assert upload.published_at is None
    assert upload.error_message is None
    assert upload.caption == "hello"
    assert upload.created_at == clock()
    assert upload.scheduled_for == clock() + timedelta(hours=1)


def test_create_assigns_unique_ids(make_upload):
    ids = {make_upload(name=f"v{i}") for i in range(5)}
    assert len(ids) == 5


def test_blank_caption_is_stored_as_none(repo, make_upload):
    upload_id = make_upload(caption="   ")
    assert repo.get(upload_id).caption is None


def test_schedule_grace_window(repo, make_upload):
    # one second ahead and 30s behind are both accepted
    make_upload(offset=timedelta(seconds=1), name="ahead")
    make_upload(offset=timedelta(seconds=-30), name="grace")

    with pytest.raises(ValidationError) as exc:
        make_upload(offset=timedelta(seconds=-61), name="late")
    assert "future" in str(exc.value)
    assert len(repo.list()) == 2


def test_caption_length_limit(make_upload):
    make_upload(caption="x" * MAX_CAPTION_LENGTH)
    with pytest.raises(ValidationError) as exc:
        make_upload(caption="x" * (MAX_CAPTION_LENGTH + 1))
    assert "Caption" in str(exc.value)


def test_unconfigured_repository(clock):
    repo = UploadRepository(None, clock=clock)

    assert repo.list() == []
    assert repo.next_due() is None
    with pytest.raises(StorageError):
        repo.create(
            media_url="https://cdn.example.com/a.mp4",
            media_path="a.mp4",
            scheduled_for=clock() + timedelta(minutes=5),
        )
    with pytest.raises(StorageError):
        repo.update_status("missing", status=UploadStatus.FAILED)


def test_backend_errors_become_storage_errors(clock):
    factory = MagicMock(side_effect=OperationalError("SELECT 1", {}, Exception("connection refused")))
    repo = UploadRepository(factory, clock=clock)

    with pytest.raises(StorageError):
        repo.next_due()


def test_list_orders_by_schedule(repo, make_upload):
    late = make_upload(offset=timedelta(hours=3), name="late")
    early = make_upload(offset=timedelta(hours=1), name="early")
    middle = make_upload(offset=timedelta(hours=2), name="middle")

    assert [u.id for u in repo.list()] == [early, middle, late]


def test_next_due_picks_earliest_pending_past_schedule(repo, clock, make_upload):
    make_upload(offset=timedelta(minutes=10), name="future")
    second = make_upload(offset=timedelta(seconds=-5), name="second")
    first = make_upload(offset=timedelta(seconds=-20), name="first")

    assert repo.next_due().id == first

    repo.update_status(first, status=UploadStatus.FAILED, error_message="boom")
    assert repo.next_due().id == second

    repo.update_status(second, status=UploadStatus.PUBLISHING)
    assert repo.next_due() is None

    clock.advance(minutes=11)
    due = repo.next_due()
    assert due.status == UploadStatus.PENDING
    assert due.scheduled_for <= clock()


def test_update_status_touches_only_given_fields(repo, make_upload):
    upload_id = make_upload()
    repo.update_status(upload_id, status=UploadStatus.FAILED, error_message="boom")

    repo.update_status(upload_id, remote_container_id="c-1")
    upload = repo.get(upload_id)
    assert upload.status == UploadStatus.FAILED
    assert upload.error_message == "boom"
    assert upload.remote_container_id == "c-1"

    repo.update_status(upload_id, error_message=None)
    assert repo.get(upload_id).error_message is None


def test_update_status_empty_change_set_is_noop(repo, make_upload):
    upload_id = make_upload()
    before = repo.get(upload_id)
    repo.update_status(upload_id)
    assert repo.get(upload_id) == before


def test_update_status_errors(repo, make_upload):
    with pytest.raises(NotFoundError):
        repo.update_status("does-not-exist", status=UploadStatus.FAILED)

    upload_id = make_upload()
    with pytest.raises(ValueError):
        repo.update_status(upload_id, caption="rewritten")


def test_claim_is_conditional(repo, clock, make_upload):
    upload_id = make_upload()
    repo.update_status(upload_id, error_message="stale note")

    assert repo.claim(upload_id, [UploadStatus.PENDING]) is True
    assert repo.claim(upload_id, [UploadStatus.PENDING]) is False

    upload = repo.get(upload_id)
    assert upload.status == UploadStatus.PUBLISHING
    assert upload.error_message is None
    assert upload.publishing_started_at == clock()


def test_claim_unknown_id_returns_false(repo):
    assert repo.claim("nope", [UploadStatus.PENDING]) is False


def test_recover_stale_fails_old_publishing(repo, clock, make_upload):
    stuck = make_upload(name="stuck")
    repo.claim(stuck, [UploadStatus.PENDING])

    clock.advance(minutes=5)
    assert repo.recover_stale(timedelta(minutes=15)) == []

    fresh = make_upload(name="fresh")
    repo.claim(fresh, [UploadStatus.PENDING])

    clock.advance(minutes=11)
    assert repo.recover_stale(timedelta(minutes=15)) == [stuck]

    upload = repo.get(stuck)
    assert upload.status == UploadStatus.FAILED
    assert upload.error_message == STALE_PUBLISHING_MESSAGE
    assert repo.get(fresh).status == UploadStatus.PUBLISHING


def test_update_status_to_publishing_stamps_start(repo, clock, make_upload):
    upload_id = make_upload()
    repo.update_status(upload_id, status=UploadStatus.PUBLISHING)

    assert repo.get(upload_id).publishing_started_at == clock()

    clock.advance(days=1)
    assert repo.recover_stale(timedelta(minutes=15)) == [upload_id]
    assert repo.get(upload_id).status == UploadStatus.FAILED


def test_recover_stale_falls_back_to_updated_at(repo, session_factory, clock, make_upload):
    upload_id = make_upload()
    with session_factory() as session:
        session.execute(
            update(ScheduledUpload)
            .where(ScheduledUpload.id == upload_id)
            .values(
                status=UploadStatus.PUBLISHING.value,
                publishing_started_at=None,
                updated_at=clock() - timedelta(hours=2),
            )
        )
        session.commit()

    assert repo.recover_stale(timedelta(minutes=15)) == [upload_id]
    assert repo.get(upload_id).status == UploadStatus.FAILED


def test_delete(repo, make_upload):
    upload_id = make_upload()
    repo.delete(upload_id)

    with pytest.raises(NotFoundError):
        repo.get(upload_id)
    with pytest.raises(NotFoundError):
        repo.delete(upload_id)
