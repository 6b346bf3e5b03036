"""Tests for upload session tracking."""

from datetime import timedelta

import pytest
from django.core.exceptions import ValidationError
from django.utils import timezone

from server.apps.drive.exceptions import InvalidTransitionError, SessionClosedError
from server.apps.drive.logic.file_operations import initiate_upload
from server.apps.drive.logic.upload_sessions import (
    close_session,
    compute_part_sizes,
    expire_stale_sessions,
    get_upload_status,
    record_uploaded_part,
)
from server.apps.drive.models import (
    File,
    UploadPart,
    UploadSession,
    UploadSessionStatus,
)


@pytest.fixture
def small_parts(settings):
    """Shrink multipart settings so tests stay small."""
    settings.DRIVE_MULTIPART_THRESHOLD = 10
    settings.DRIVE_MULTIPART_PART_SIZE = 4
    settings.DRIVE_MULTIPART_MAX_PARTS = 100
    return settings


class TestComputePartSizes:
    """Tests for compute_part_sizes function."""

    def test_at_threshold_is_single_part(self):
        """Test sizes up to the threshold use one part."""
        assert compute_part_sizes(10, 10, 4, 100) == [10]
        assert compute_part_sizes(0, 10, 4, 100) == [0]

    def test_above_threshold_splits(self):
        """Test the last part receives the remainder."""
        assert compute_part_sizes(11, 10, 4, 100) == [4, 4, 3]

    def test_exact_multiple(self):
        """Test a size divisible by the part size has equal parts."""
        assert compute_part_sizes(12, 10, 4, 100) == [4, 4, 4]

    def test_capped_at_max_parts(self):
        """Test the last part absorbs everything past the cap."""
        sizes = compute_part_sizes(100, 10, 4, 3)

        assert sizes == [4, 4, 92]
        assert sum(sizes) == 100

    def test_invalid_configuration(self):
        """Test non-positive part size or count is rejected."""
        with pytest.raises(ValueError, match='must be positive'):
            compute_part_sizes(100, 10, 0, 3)


@pytest.mark.django_db
class TestOpenSession:
    """Tests for sessions opened through initiate_upload."""

    def test_single_part_plan(self, user, folder, mock_s3, small_parts):
        """Test a small upload gets one presigned PUT locator."""
        ticket = initiate_upload(user, folder.id, 'a.txt', 'text/plain', 10)

        session = UploadSession.objects.get(id=ticket.session_id)
        assert not session.is_multipart
        assert session.total_parts == 1
        assert ticket.plan.multipart is False
        assert len(ticket.plan.parts) == 1
        assert ticket.plan.parts[0].size_bytes == 10
        assert ticket.plan.storage_key in ticket.plan.parts[0].upload_url
        assert ticket.plan.storage_key == (
            f'{user.id}/{ticket.file_id}/{ticket.session_id}'
        )

    def test_multipart_plan(self, user, folder, mock_s3, small_parts):
        """Test a large upload registers a multipart upload."""
        ticket = initiate_upload(user, folder.id, 'big.bin', '', 11)

        session = UploadSession.objects.get(id=ticket.session_id)
        assert session.is_multipart
        assert session.total_parts == 3
        assert session.part_size == 4
        assert [part.size_bytes for part in ticket.plan.parts] == [4, 4, 3]
        assert [part.part_number for part in ticket.plan.parts] == [1, 2, 3]
        assert 'uploadId=' in ticket.plan.parts[0].upload_url

    def test_session_expiry_from_settings(self, user, folder, mock_s3, settings):
        """Test the session deadline follows DRIVE_UPLOAD_SESSION_TTL."""
        settings.DRIVE_UPLOAD_SESSION_TTL = 60
        before = timezone.now()

        ticket = initiate_upload(user, folder.id, 'a.txt', 'text/plain', 1)

        assert before + timedelta(seconds=60) <= ticket.expires_at
        assert ticket.expires_at <= timezone.now() + timedelta(seconds=60)


@pytest.mark.django_db
class TestRecordUploadedPart:
    """Tests for record_uploaded_part function."""

    @pytest.fixture
    def session_id(self, user, folder, mock_s3, small_parts):
        """Pending three-part session."""
        return initiate_upload(user, folder.id, 'big.bin', '', 11).session_id

    def test_parts_counted(self, session_id):
        """Test each confirmed part increments the counter."""
        record_uploaded_part(session_id, 1, 'etag-1', 4)
        session = record_uploaded_part(session_id, 2, 'etag-2', 4)

        assert session.uploaded_parts == 2
        assert not session.all_parts_uploaded()

    def test_same_part_twice_counted_once(self, session_id):
        """Test re-reporting a part replaces it without recounting."""
        record_uploaded_part(session_id, 1, 'etag-1', 4)
        session = record_uploaded_part(session_id, 1, 'etag-1b', 4)

        assert session.uploaded_parts == 1
        assert UploadPart.objects.get(session_id=session_id).etag == 'etag-1b'

    def test_part_number_out_of_range(self, session_id):
        """Test parts outside the plan are rejected."""
        with pytest.raises(ValidationError):
            record_uploaded_part(session_id, 4, 'etag', 4)

    def test_closed_session_rejected(self, session_id):
        """Test parts cannot be added after the session closed."""
        UploadSession.objects.filter(id=session_id).update(
            status=UploadSessionStatus.ABORTED,
        )

        with pytest.raises(SessionClosedError):
            record_uploaded_part(session_id, 1, 'etag', 4)

    def test_expired_session_rejected(self, session_id):
        """Test parts cannot be added once the deadline passed."""
        UploadSession.objects.filter(id=session_id).update(
            expires_at=timezone.now() - timedelta(seconds=1),
        )

        with pytest.raises(SessionClosedError) as exc_info:
            record_uploaded_part(session_id, 1, 'etag', 4)

        assert exc_info.value.status == UploadSessionStatus.EXPIRED

    def test_status_reports_progress(self, session_id):
        """Test progress is the share of confirmed parts."""
        record_uploaded_part(session_id, 1, 'etag-1', 4)

        status = get_upload_status(session_id)

        assert status.status == UploadSessionStatus.PENDING
        assert status.uploaded_parts == 1
        assert status.total_parts == 3
        assert status.progress == 33


@pytest.mark.django_db
class TestCloseSession:
    """Tests for close_session function."""

    def test_close_pending(self, user, folder, mock_s3):
        """Test a pending session can be closed once."""
        ticket = initiate_upload(user, folder.id, 'a.txt', 'text/plain', 1)
        session = UploadSession.objects.get(id=ticket.session_id)

        close_session(session, UploadSessionStatus.ABORTED)

        session.refresh_from_db()
        assert session.status == UploadSessionStatus.ABORTED

    def test_close_twice_rejected(self, user, folder, mock_s3):
        """Test a closed session cannot change status again."""
        ticket = initiate_upload(user, folder.id, 'a.txt', 'text/plain', 1)
        session = UploadSession.objects.get(id=ticket.session_id)
        close_session(session, UploadSessionStatus.ABORTED)

        with pytest.raises(InvalidTransitionError):
            close_session(session, UploadSessionStatus.COMPLETED)

    def test_stale_copy_loses_race(self, user, folder, mock_s3):
        """Test a second closer holding an old copy is rejected."""
        ticket = initiate_upload(user, folder.id, 'a.txt', 'text/plain', 1)
        first = UploadSession.objects.get(id=ticket.session_id)
        second = UploadSession.objects.get(id=ticket.session_id)
        close_session(first, UploadSessionStatus.COMPLETED)

        with pytest.raises(InvalidTransitionError):
            close_session(second, UploadSessionStatus.ABORTED)

        second.refresh_from_db()
        assert second.status == UploadSessionStatus.COMPLETED


@pytest.mark.django_db
class TestExpireStaleSessions:
    """Tests for expire_stale_sessions function."""

    def test_expires_past_deadline(self, user, folder, mock_s3, small_parts):
        """Test stale sessions expire and their files disappear."""
        ticket = initiate_upload(user, folder.id, 'big.bin', '', 11)

        expired = expire_stale_sessions(timezone.now() + timedelta(days=2))

        assert expired == 1
        session = UploadSession.objects.get(id=ticket.session_id)
        assert session.status == UploadSessionStatus.EXPIRED
        assert session.file is None
        assert not File.objects.filter(id=ticket.file_id).exists()

    def test_fresh_sessions_untouched(self, user, folder, mock_s3):
        """Test sessions inside their deadline stay pending."""
        ticket = initiate_upload(user, folder.id, 'a.txt', 'text/plain', 1)

        assert expire_stale_sessions() == 0
        session = UploadSession.objects.get(id=ticket.session_id)
        assert session.status == UploadSessionStatus.PENDING

    def test_rerun_is_idempotent(self, user, folder, mock_s3):
        """Test a second sweep finds nothing left to expire."""
        initiate_upload(user, folder.id, 'a.txt', 'text/plain', 1)
        later = timezone.now() + timedelta(days=2)
        expire_stale_sessions(later)

        assert expire_stale_sessions(later) == 0

    def test_staged_object_removed(self, user, folder, bucket):
        """Test an object staged before expiry is deleted."""
        ticket = initiate_upload(user, folder.id, 'a.txt', 'text/plain', 1)
        bucket.put_object(Key=ticket.plan.storage_key, Body=b'x')

        expire_stale_sessions(timezone.now() + timedelta(days=2))

        assert not list(bucket.objects.filter(Prefix=ticket.plan.storage_key))
