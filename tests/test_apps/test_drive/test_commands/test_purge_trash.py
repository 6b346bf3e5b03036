"""Tests for purge_trash management command."""

from datetime import timedelta
from io import StringIO

import pytest
from django.core.management import call_command
from django.utils import timezone

from server.apps.drive.logic.file_operations import initiate_upload
from server.apps.drive.logic.folder_operations import create_folder, delete_folder
from server.apps.drive.logic.trash_operations import trash_file
from server.apps.drive.models import (
    ArchivedFile,
    File,
    Folder,
    UploadSession,
    UploadSessionStatus,
)


def _expire_trash(archived):
    ArchivedFile.objects.filter(id=archived.id).update(
        expires_at=timezone.now() - timedelta(days=1),
    )


@pytest.mark.django_db
class TestPurgeTrashCommand:
    """Tests for purge_trash management command."""

    def test_purge_deletes_expired_files(self, make_file, bucket):
        """Test expired trash is deleted with its objects."""
        file_instance = make_file()
        archived = trash_file(file_instance.id)
        _expire_trash(archived)

        out = StringIO()
        call_command('purge_trash', stdout=out)

        assert not File.objects.filter(id=file_instance.id).exists()
        assert not list(bucket.objects.all())
        assert 'purged 1 files' in out.getvalue()

    def test_purge_preserves_recent_files(self, make_file):
        """Test trash inside the retention period stays."""
        archived = trash_file(make_file().id)

        out = StringIO()
        call_command('purge_trash', stdout=out)

        assert ArchivedFile.objects.filter(id=archived.id).exists()
        assert 'purged 0 files' in out.getvalue()

    def test_purge_expires_stale_uploads(self, user, folder, mock_s3):
        """Test pending sessions past their deadline are expired."""
        ticket = initiate_upload(user, folder.id, 'a.txt', 'text/plain', 1)
        UploadSession.objects.filter(id=ticket.session_id).update(
            expires_at=timezone.now() - timedelta(seconds=1),
        )

        out = StringIO()
        call_command('purge_trash', stdout=out)

        session = UploadSession.objects.get(id=ticket.session_id)
        assert session.status == UploadSessionStatus.EXPIRED
        assert 'Expired 1 upload sessions' in out.getvalue()

    def test_purge_deletes_old_folders(self, user, mock_s3):
        """Test folders trashed past retention are removed."""
        folder = create_folder(user, 'Old')
        delete_folder(folder.id)
        Folder.objects.filter(id=folder.id).update(
            trashed_at=timezone.now() - timedelta(days=31),
        )

        out = StringIO()
        call_command('purge_trash', stdout=out)

        assert not Folder.objects.filter(id=folder.id).exists()
        assert 'and 1 folders from trash' in out.getvalue()

    def test_batch_size_option(self, make_file):
        """Test --batch-size limits one pass."""
        for name in ('a.txt', 'b.txt'):
            _expire_trash(trash_file(make_file(name).id))

        out = StringIO()
        call_command('purge_trash', '--batch-size', '1', stdout=out)

        assert ArchivedFile.objects.count() == 1
        assert 'purged 1 files' in out.getvalue()

    def test_dry_run(self, make_file):
        """Test --dry-run lists candidates and deletes nothing."""
        file_instance = make_file('report.pdf')
        archived = trash_file(file_instance.id)
        _expire_trash(archived)

        out = StringIO()
        call_command('purge_trash', '--dry-run', stdout=out)

        output = out.getvalue()
        assert File.objects.filter(id=file_instance.id).exists()
        assert 'Would delete: /Documents/report.pdf (user: testuser' in output
        assert 'Would expire 0 upload sessions, purge 1 files' in output
