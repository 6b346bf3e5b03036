"""Database models for drive app."""

import uuid
from datetime import datetime, timedelta
from typing import ClassVar, Final, final, override

from django.conf import settings
from django.db import models
from django.utils import timezone

from server.apps.drive.exceptions import InvalidTransitionError

# Constants for field max lengths
_NAME_MAX_LENGTH: Final = 255
_MIME_TYPE_MAX_LENGTH: Final = 255
_CHECKSUM_MAX_LENGTH: Final = 128
_VERSION_MARKER_MAX_LENGTH: Final = 255
_STORAGE_KEY_MAX_LENGTH: Final = 1024
_UPLOAD_ID_MAX_LENGTH: Final = 255
_ETAG_MAX_LENGTH: Final = 128
_ORIGINAL_PATH_MAX_LENGTH: Final = 4096
_STATUS_MAX_LENGTH: Final = 16

_PERCENT: Final = 100


class FolderStatus(models.TextChoices):
    """Lifecycle status of a folder."""

    ACTIVE = 'active', 'Active'
    TRASHED = 'trashed', 'Trashed'


class FileStatus(models.TextChoices):
    """Lifecycle status of a file.

    Aborted, expired and permanently deleted files have no status: their
    rows are removed.
    """

    UPLOADING = 'uploading', 'Uploading'
    ACTIVE = 'active', 'Active'
    TRASHED = 'trashed', 'Trashed'


class UploadSessionStatus(models.TextChoices):
    """Lifecycle status of an upload session."""

    PENDING = 'pending', 'Pending'
    COMPLETED = 'completed', 'Completed'
    ABORTED = 'aborted', 'Aborted'
    EXPIRED = 'expired', 'Expired'


FILE_TRANSITIONS: Final[dict[str, frozenset[str]]] = {
    FileStatus.UPLOADING: frozenset({FileStatus.ACTIVE}),
    FileStatus.ACTIVE: frozenset({FileStatus.TRASHED}),
    FileStatus.TRASHED: frozenset({FileStatus.ACTIVE}),
}

UPLOAD_SESSION_TRANSITIONS: Final[dict[str, frozenset[str]]] = {
    UploadSessionStatus.PENDING: frozenset({
        UploadSessionStatus.COMPLETED,
        UploadSessionStatus.ABORTED,
        UploadSessionStatus.EXPIRED,
    }),
    UploadSessionStatus.COMPLETED: frozenset(),
    UploadSessionStatus.ABORTED: frozenset(),
    UploadSessionStatus.EXPIRED: frozenset(),
}


def _check_transition(
    table: dict[str, frozenset[str]],
    current: str,
    target: str,
) -> None:
    if target not in table.get(current, frozenset()):
        raise InvalidTransitionError(current, target)


@final
class Folder(models.Model):
    """Folder in a user's drive.

    The parent pointer is kept for direct listings; every ancestry
    question is answered by ``AncestorPath`` rows instead of walking
    parents.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    name = models.CharField(max_length=_NAME_MAX_LENGTH)

    parent = models.ForeignKey(
        'self',
        on_delete=models.PROTECT,
        related_name='children',
        null=True,
        blank=True,
    )

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='folders',
        db_index=True,
    )

    depth = models.PositiveIntegerField(
        default=0,
        help_text='Distance from the owner root (0 for top-level folders)',
    )

    status = models.CharField(
        max_length=_STATUS_MAX_LENGTH,
        choices=FolderStatus.choices,
        default=FolderStatus.ACTIVE,
        db_index=True,
    )

    trashed_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    modified_at = models.DateTimeField(auto_now=True)

    class Meta:
        """Model metadata."""

        verbose_name = 'Folder'  # type: ignore[mutable-override]
        verbose_name_plural = 'Folders'  # type: ignore[mutable-override]
        ordering: ClassVar[list[str]] = ['name']

        indexes: ClassVar[list[models.Index]] = [
            models.Index(
                fields=['owner', 'parent', 'status'],
                name='folders_owner_parent_idx',
            ),
        ]

        constraints: ClassVar[list[models.BaseConstraint]] = [
            models.CheckConstraint(
                condition=(
                    models.Q(parent__isnull=True, depth=0)
                    | models.Q(parent__isnull=False, depth__gt=0)
                ),
                name='folders_depth_matches_parent',
            ),
        ]

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.name} ({self.id})'

    def is_root(self) -> bool:
        """Check whether the folder sits at the top of the owner tree."""
        return self.parent_id is None

    def is_active(self) -> bool:
        """Check whether the folder can receive children and files."""
        return self.status == FolderStatus.ACTIVE


@final
class AncestorPath(models.Model):
    """Closure row: ``ancestor`` is ``relative_depth`` edges above ``descendant``.

    Every folder owns one row per ancestor plus a self row at depth 0.
    Rows are written only by ``server.apps.drive.logic.ancestor_index``.
    """

    ancestor = models.ForeignKey(
        Folder,
        on_delete=models.CASCADE,
        related_name='descendant_paths',
    )

    descendant = models.ForeignKey(
        Folder,
        on_delete=models.CASCADE,
        related_name='ancestor_paths',
    )

    relative_depth = models.PositiveIntegerField()

    class Meta:
        """Model metadata."""

        verbose_name = 'Ancestor Path'  # type: ignore[mutable-override]
        verbose_name_plural = 'Ancestor Paths'  # type: ignore[mutable-override]

        indexes: ClassVar[list[models.Index]] = [
            models.Index(
                fields=['descendant', 'relative_depth'],
                name='paths_descendant_depth_idx',
            ),
            models.Index(
                fields=['ancestor', 'relative_depth'],
                name='paths_ancestor_depth_idx',
            ),
        ]

        constraints: ClassVar[list[models.BaseConstraint]] = [
            models.UniqueConstraint(
                fields=['ancestor', 'descendant'],
                name='paths_ancestor_descendant_unique',
            ),
            models.UniqueConstraint(
                fields=['descendant', 'relative_depth'],
                name='paths_descendant_depth_unique',
            ),
            # Self rows sit at depth 0 and only self rows do
            models.CheckConstraint(
                condition=(
                    models.Q(ancestor=models.F('descendant'), relative_depth=0)
                    | (
                        ~models.Q(ancestor=models.F('descendant'))
                        & models.Q(relative_depth__gt=0)
                    )
                ),
                name='paths_self_row_at_zero',
            ),
        ]

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.ancestor_id} -> {self.descendant_id} ({self.relative_depth})'


@final
class File(models.Model):
    """File placed in a folder, backed by one object per version."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    name = models.CharField(max_length=_NAME_MAX_LENGTH)

    mime_type = models.CharField(max_length=_MIME_TYPE_MAX_LENGTH)

    size_bytes = models.BigIntegerField(
        help_text='Declared size while uploading, size of current version after',
    )

    # Nullable so trashed files survive a folder purge
    folder = models.ForeignKey(
        Folder,
        on_delete=models.SET_NULL,
        related_name='files',
        null=True,
        blank=True,
    )

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='drive_files',
        db_index=True,
    )

    current_version = models.PositiveIntegerField(
        default=0,
        help_text='0 until the first upload completes',
    )

    status = models.CharField(
        max_length=_STATUS_MAX_LENGTH,
        choices=FileStatus.choices,
        default=FileStatus.UPLOADING,
        db_index=True,
    )

    created_at = models.DateTimeField(auto_now_add=True)
    modified_at = models.DateTimeField(auto_now=True)

    class Meta:
        """Model metadata."""

        verbose_name = 'File'  # type: ignore[mutable-override]
        verbose_name_plural = 'Files'  # type: ignore[mutable-override]
        ordering: ClassVar[list[str]] = ['name']

        indexes: ClassVar[list[models.Index]] = [
            models.Index(
                fields=['folder', 'status'],
                name='files_folder_status_idx',
            ),
        ]

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.name} ({self.status})'

    def can_transition_to(self, target: str) -> bool:
        """Check the transition table for a status change.

        Args:
            target: Requested status.

        Returns:
            True if the transition is allowed from the current status.
        """
        return target in FILE_TRANSITIONS.get(self.status, frozenset())

    def transition_to(self, target: str) -> None:
        """Change status in memory after checking the transition table.

        Args:
            target: Requested status.

        Raises:
            InvalidTransitionError: If the table forbids the change.
        """
        _check_transition(FILE_TRANSITIONS, self.status, target)
        self.status = target

    def is_active(self) -> bool:
        """Check whether the file is visible and downloadable."""
        return self.status == FileStatus.ACTIVE


@final
class FileVersion(models.Model):
    """Immutable record of one uploaded revision of a file."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    file = models.ForeignKey(
        File,
        on_delete=models.CASCADE,
        related_name='versions',
    )

    version_number = models.PositiveIntegerField()

    size_bytes = models.BigIntegerField()

    checksum = models.CharField(
        max_length=_CHECKSUM_MAX_LENGTH,
        help_text='Checksum reported by the object backend (etag)',
    )

    version_marker = models.CharField(
        max_length=_VERSION_MARKER_MAX_LENGTH,
        blank=True,
        default='',
        help_text='Object backend version identifier',
    )

    storage_key = models.CharField(max_length=_STORAGE_KEY_MAX_LENGTH)

    uploaded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name='+',
        null=True,
    )

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        """Model metadata."""

        verbose_name = 'File Version'  # type: ignore[mutable-override]
        verbose_name_plural = 'File Versions'  # type: ignore[mutable-override]
        ordering: ClassVar[list[str]] = ['-version_number']

        constraints: ClassVar[list[models.BaseConstraint]] = [
            models.UniqueConstraint(
                fields=['file', 'version_number'],
                name='versions_file_number_unique',
            ),
            models.CheckConstraint(
                condition=models.Q(version_number__gte=1),
                name='versions_number_positive',
            ),
        ]

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.file_id} v{self.version_number}'


@final
class ArchivedFile(models.Model):
    """Trash record for a file, kept until restore or purge."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    file = models.OneToOneField(
        File,
        on_delete=models.CASCADE,
        related_name='archive',
    )

    # Plain UUID so a folder purged later is detectable on restore
    original_folder_id = models.UUIDField()

    original_path = models.CharField(
        max_length=_ORIGINAL_PATH_MAX_LENGTH,
        help_text='Display path at trash time, e.g. /docs/report.pdf',
    )

    name = models.CharField(max_length=_NAME_MAX_LENGTH)

    mime_type = models.CharField(max_length=_MIME_TYPE_MAX_LENGTH)

    size_bytes = models.BigIntegerField()

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='archived_files',
        db_index=True,
    )

    archived_at = models.DateTimeField(default=timezone.now)

    expires_at = models.DateTimeField(db_index=True)

    class Meta:
        """Model metadata."""

        verbose_name = 'Archived File'  # type: ignore[mutable-override]
        verbose_name_plural = 'Archived Files'  # type: ignore[mutable-override]
        ordering: ClassVar[list[str]] = ['-archived_at']

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.original_path} (expires {self.expires_at:%Y-%m-%d})'

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check whether the retention window has passed."""
        return self.expires_at <= (now or timezone.now())

    def days_until_expiration(self, now: datetime | None = None) -> int:
        """Whole days left before purge (never negative)."""
        remaining = self.expires_at - (now or timezone.now())
        return max(0, remaining // timedelta(days=1))


@final
class UploadSession(models.Model):
    """Staged upload of one object, single or multipart."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Survives the file row on abort/expiry so late callbacks see the status
    file = models.ForeignKey(
        File,
        on_delete=models.SET_NULL,
        related_name='upload_sessions',
        null=True,
    )

    folder = models.ForeignKey(
        Folder,
        on_delete=models.SET_NULL,
        related_name='+',
        null=True,
    )

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='upload_sessions',
    )

    storage_key = models.CharField(
        max_length=_STORAGE_KEY_MAX_LENGTH,
        unique=True,
        help_text='Object key the upload is staged under',
    )

    multipart_upload_id = models.CharField(
        max_length=_UPLOAD_ID_MAX_LENGTH,
        blank=True,
        default='',
    )

    total_size = models.BigIntegerField()

    part_size = models.BigIntegerField()

    total_parts = models.PositiveIntegerField(default=1)

    uploaded_parts = models.PositiveIntegerField(default=0)

    status = models.CharField(
        max_length=_STATUS_MAX_LENGTH,
        choices=UploadSessionStatus.choices,
        default=UploadSessionStatus.PENDING,
        db_index=True,
    )

    created_at = models.DateTimeField(auto_now_add=True)
    modified_at = models.DateTimeField(auto_now=True)
    expires_at = models.DateTimeField(db_index=True)

    class Meta:
        """Model metadata."""

        verbose_name = 'Upload Session'  # type: ignore[mutable-override]
        verbose_name_plural = 'Upload Sessions'  # type: ignore[mutable-override]
        ordering: ClassVar[list[str]] = ['-created_at']

        indexes: ClassVar[list[models.Index]] = [
            models.Index(
                fields=['status', 'expires_at'],
                name='uploads_status_expiry_idx',
            ),
        ]

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.storage_key} ({self.status})'

    @property
    def is_multipart(self) -> bool:
        """Whether the backend tracks this upload as a multipart upload."""
        return bool(self.multipart_upload_id)

    def is_pending(self) -> bool:
        """Check whether the session is still open."""
        return self.status == UploadSessionStatus.PENDING

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check whether the session deadline has passed."""
        return self.expires_at <= (now or timezone.now())

    def all_parts_uploaded(self) -> bool:
        """Check whether every planned part has been confirmed."""
        return self.uploaded_parts >= self.total_parts

    def progress(self) -> int:
        """Upload progress in percent (0-100)."""
        if self.status == UploadSessionStatus.COMPLETED:
            return _PERCENT
        if self.total_parts == 0:
            return 0
        return min(_PERCENT, self.uploaded_parts * _PERCENT // self.total_parts)

    def transition_to(self, target: str) -> None:
        """Change status in memory after checking the transition table.

        Args:
            target: Requested status.

        Raises:
            InvalidTransitionError: If the session is already closed.
        """
        _check_transition(UPLOAD_SESSION_TRANSITIONS, self.status, target)
        self.status = target


@final
class UploadPart(models.Model):
    """Confirmed part of a multipart upload."""

    session = models.ForeignKey(
        UploadSession,
        on_delete=models.CASCADE,
        related_name='parts',
    )

    part_number = models.PositiveIntegerField()

    etag = models.CharField(max_length=_ETAG_MAX_LENGTH)

    size_bytes = models.BigIntegerField()

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        """Model metadata."""

        verbose_name = 'Upload Part'  # type: ignore[mutable-override]
        verbose_name_plural = 'Upload Parts'  # type: ignore[mutable-override]
        ordering: ClassVar[list[str]] = ['part_number']

        constraints: ClassVar[list[models.BaseConstraint]] = [
            models.UniqueConstraint(
                fields=['session', 'part_number'],
                name='parts_session_number_unique',
            ),
        ]

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.session_id} part {self.part_number}'
