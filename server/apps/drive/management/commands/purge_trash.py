"""Management command running the trash and upload expiry sweep."""

import logging
import time
from datetime import timedelta
from typing import Any, final, override

from django.conf import settings
from django.core.management.base import BaseCommand
from django.utils import timezone

from server.apps.drive.logic.folder_operations import purge_trashed_folders
from server.apps.drive.logic.trash_operations import purge_expired_trash
from server.apps.drive.logic.upload_sessions import expire_stale_sessions
from server.apps.drive.models import (
    ArchivedFile,
    FileStatus,
    Folder,
    FolderStatus,
    UploadSession,
    UploadSessionStatus,
)

logger = logging.getLogger(__name__)


@final
class Command(BaseCommand):
    """Expire stale uploads and permanently delete expired trash."""

    help = 'Expire stale upload sessions and purge expired trash'

    @override
    def add_arguments(self, parser: Any) -> None:
        """Add command line arguments.

        Args:
            parser: Argument parser.
        """
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be purged without purging',
        )
        parser.add_argument(
            '--batch-size',
            type=int,
            default=None,
            help='Max trash items per pass (default: DRIVE_PURGE_BATCH_SIZE)',
        )
        parser.add_argument(
            '--loop',
            action='store_true',
            help='Keep sweeping every --interval seconds',
        )
        parser.add_argument(
            '--interval',
            type=int,
            default=None,
            help='Seconds between sweeps (default: DRIVE_SWEEP_INTERVAL)',
        )

    @override
    def handle(self, *args: Any, **options: Any) -> None:
        """Execute the sweep once, or forever with --loop.

        Args:
            args: Positional arguments (unused).
            options: Command options.
        """
        batch_size = options['batch_size'] or getattr(
            settings,
            'DRIVE_PURGE_BATCH_SIZE',
            100,
        )

        if options['dry_run']:
            self._report_candidates(batch_size)
            return

        if not options['loop']:
            self._sweep(batch_size)
            return

        interval = options['interval'] or getattr(
            settings,
            'DRIVE_SWEEP_INTERVAL',
            3600,
        )
        logger.info('Starting trash sweep loop every %d seconds', interval)
        while True:
            self._sweep(batch_size)
            time.sleep(interval)

    def _sweep(self, batch_size: int) -> None:
        now = timezone.now()
        expired = expire_stale_sessions(now)
        purged = purge_expired_trash(now, batch_size=batch_size)
        folders = purge_trashed_folders(now)

        self.stdout.write(
            self.style.SUCCESS(
                f'Expired {expired} upload sessions, purged {purged} files '
                f'and {folders} folders from trash',
            ),
        )

    def _report_candidates(self, batch_size: int) -> None:
        """List what a sweep would touch right now."""
        now = timezone.now()
        retention = getattr(settings, 'DRIVE_TRASH_RETENTION_DAYS', 30)

        sessions = UploadSession.objects.filter(
            status=UploadSessionStatus.PENDING,
            expires_at__lte=now,
        )
        for session in sessions:
            self.stdout.write(
                f'Would expire upload: {session.storage_key} '
                f'(expired: {session.expires_at})',
            )

        archived_files = ArchivedFile.objects.filter(
            expires_at__lte=now,
            file__status=FileStatus.TRASHED,
        ).select_related('owner').order_by('expires_at')[:batch_size]
        for archived in archived_files:
            self.stdout.write(
                f'Would delete: {archived.original_path} '
                f'(user: {archived.owner.username}, '
                f'expired: {archived.expires_at})',
            )

        folders = Folder.objects.filter(
            status=FolderStatus.TRASHED,
            trashed_at__lte=now - timedelta(days=retention),
        )
        for folder in folders:
            self.stdout.write(
                f'Would delete folder: {folder.name} (ID: {folder.id}, '
                f'trashed: {folder.trashed_at})',
            )

        self.stdout.write(
            self.style.SUCCESS(
                f'Would expire {sessions.count()} upload sessions, '
                f'purge {len(archived_files)} files '
                f'and up to {folders.count()} folders from trash',
            ),
        )
