"""Business logic for trash (soft delete) operations.

Trashing only records an ``ArchivedFile`` snapshot; backing objects are
deleted when the trash record is purged, and the rows go only after the
object backend confirmed every delete.
"""

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any
from uuid import UUID

from django.conf import settings
from django.core.files.storage import default_storage
from django.db import DatabaseError, transaction
from django.db.models import QuerySet
from django.utils import timezone

from server.apps.drive.exceptions import (
    ConflictError,
    ForbiddenError,
    NameConflictError,
    ObjectBackendError,
    RestoreTargetRequiredError,
)
from server.apps.drive.infrastructure.metadata import add_name_marker
from server.apps.drive.logic.file_operations import ensure_file_name_available
from server.apps.drive.logic.folder_operations import (
    get_folder_path,
    require_active_folder,
)
from server.apps.drive.models import (
    ArchivedFile,
    File,
    FileStatus,
    FileVersion,
    Folder,
)

if TYPE_CHECKING:
    from server.apps.drive.infrastructure.storage import ObjectStorage

# User type for Django's dynamic user model
_User = Any

logger = logging.getLogger(__name__)

_RESTORED_MARKER = ' (restored)'


def _get_storage() -> 'ObjectStorage':
    return default_storage  # type: ignore[return-value]


def _get_retention_days() -> int:
    return getattr(settings, 'DRIVE_TRASH_RETENTION_DAYS', 30)


def _get_batch_size() -> int:
    return getattr(settings, 'DRIVE_PURGE_BATCH_SIZE', 100)


def archive_file(file_instance: File, now: datetime | None = None) -> ArchivedFile:
    """Trash a row-locked active file and record its snapshot.

    Args:
        file_instance: File to trash, locked by the caller's transaction.
        now: Trash time, defaults to the current time.

    Returns:
        Created ArchivedFile instance.

    Raises:
        InvalidTransitionError: If the file is not active.
    """
    now = now or timezone.now()
    file_instance.transition_to(FileStatus.TRASHED)

    folder_path = get_folder_path(file_instance.folder_id)
    original_path = f'{folder_path}/{file_instance.name}'

    archived = ArchivedFile.objects.create(
        file=file_instance,
        original_folder_id=file_instance.folder_id,
        original_path=original_path,
        name=file_instance.name,
        mime_type=file_instance.mime_type,
        size_bytes=file_instance.size_bytes,
        owner_id=file_instance.owner_id,
        archived_at=now,
        expires_at=now + timedelta(days=_get_retention_days()),
    )
    file_instance.save(update_fields=['status', 'modified_at'])

    logger.info(
        'File moved to trash: %s (ID: %s, expires: %s)',
        original_path,
        file_instance.id,
        archived.expires_at,
    )
    return archived


def trash_file(file_id: UUID) -> ArchivedFile:
    """Move an active file to trash (soft delete).

    Backing objects are left alone until the trash record is purged.

    Args:
        file_id: ID of file to trash.

    Returns:
        Created ArchivedFile instance.

    Raises:
        File.DoesNotExist: If file not found.
        InvalidTransitionError: If the file is not active.
    """
    with transaction.atomic():
        file_instance = File.objects.select_for_update().get(id=file_id)
        return archive_file(file_instance)


def _pick_restore_name(folder_id: UUID, name: str) -> str:
    """Keep the name, or add a ' (restored)' suffix if a sibling took it.

    Raises:
        NameConflictError: If the suffixed name is taken as well.
    """
    try:
        ensure_file_name_available(folder_id, name)
    except NameConflictError:
        name = add_name_marker(name, _RESTORED_MARKER)
        ensure_file_name_available(folder_id, name)
        logger.info('Restore conflict, renamed to: %s', name)
    return name


def restore_file(
    archived_id: UUID,
    restore_folder_id: UUID | None = None,
) -> File:
    """Restore a file from trash.

    Args:
        archived_id: Trash record to restore.
        restore_folder_id: Folder to restore into. If None, the folder the
            file was trashed from.

    Returns:
        Restored File instance.

    Raises:
        ArchivedFile.DoesNotExist: If the trash record is gone.
        RestoreTargetRequiredError: If no folder was given and the
            original one is gone or trashed.
        Folder.DoesNotExist: If the given folder is missing.
        ForbiddenError: If the given folder belongs to someone else.
        ConflictError: If the given folder is trashed or the name and its
            restored variant are both taken.
    """
    with transaction.atomic():
        archived = ArchivedFile.objects.select_for_update().get(id=archived_id)
        file_instance = File.objects.select_for_update().get(id=archived.file_id)

        if restore_folder_id is None:
            folder = Folder.objects.select_for_update().filter(
                id=archived.original_folder_id,
            ).first()
            if folder is None or not folder.is_active():
                logger.warning(
                    'Original folder %s unavailable for restore of %s',
                    archived.original_folder_id,
                    archived_id,
                )
                raise RestoreTargetRequiredError(
                    archived_id,
                    archived.original_folder_id,
                )
        else:
            folder = Folder.objects.select_for_update().get(id=restore_folder_id)
            require_active_folder(folder)

        if folder.owner_id != file_instance.owner_id:
            raise ForbiddenError(f'Folder {folder.id} is not yours')
        file_instance.name = _pick_restore_name(folder.id, file_instance.name)

        file_instance.transition_to(FileStatus.ACTIVE)
        file_instance.folder = folder
        file_instance.save(update_fields=[
            'status',
            'folder',
            'name',
            'modified_at',
        ])
        archived.delete()

    logger.info(
        'File restored: %s -> %s (ID: %s)',
        archived.original_path,
        folder.id,
        file_instance.id,
    )
    return file_instance


def _purge_archived(archived_id: UUID) -> bool:
    """Delete backing objects, then rows, of one trashed file.

    The trash record is locked and the file status re-checked first, so a
    restore that got there earlier wins and nothing is deleted. Any
    object delete failure rolls the whole item back.

    Returns:
        True if the file was deleted, False if it was restored or gone.
    """
    with transaction.atomic():
        archived = ArchivedFile.objects.select_for_update().filter(
            id=archived_id,
        ).first()
        if archived is None:
            return False

        file_instance = File.objects.select_for_update().get(id=archived.file_id)
        if file_instance.status != FileStatus.TRASHED:
            logger.info('Skipping purge of restored file: %s', file_instance.id)
            return False

        storage = _get_storage()
        storage_keys = FileVersion.objects.filter(
            file=file_instance,
        ).values_list('storage_key', flat=True)
        for storage_key in storage_keys:
            storage.delete_object(storage_key)

        # Versions and the trash record go with the file
        file_instance.delete()

    logger.info(
        'File permanently deleted: %s (ID: %s, size: %d)',
        archived.original_path,
        file_instance.id,
        archived.size_bytes,
    )
    return True


def permanently_delete_file(archived_id: UUID, user: _User | None = None) -> None:
    """Permanently delete a file from trash.

    Removes every version's object from storage, then the rows.

    Args:
        archived_id: Trash record of the file.
        user: Caller; when given it must own the file.

    Raises:
        ArchivedFile.DoesNotExist: If the trash record is gone.
        ForbiddenError: If ``user`` does not own the file.
        ConflictError: If the file was restored meanwhile.
        ObjectBackendError: If a backing object could not be deleted.
    """
    archived = ArchivedFile.objects.get(id=archived_id)
    if user is not None and archived.owner_id != user.id:
        logger.warning(
            'User %s refused permanent delete of %s',
            user.id,
            archived_id,
        )
        raise ForbiddenError(f'Trash item {archived_id} is not yours')

    if not _purge_archived(archived_id):
        raise ConflictError(f'Trash item {archived_id} is no longer trashed')


def purge_expired_trash(
    now: datetime | None = None,
    batch_size: int | None = None,
) -> int:
    """Permanently delete trash records past their expiry.

    Items failing on the object backend are logged, passed over for the
    rest of the pass and left for the next sweep; items restored in the
    meantime are skipped. Candidates behind a failing item are still
    reached in the same pass.

    Args:
        now: Reference time, defaults to the current time.
        batch_size: Most items purged in this pass.

    Returns:
        Number of files purged.
    """
    now = now or timezone.now()
    batch_size = batch_size or _get_batch_size()

    candidates = ArchivedFile.objects.filter(
        expires_at__lte=now,
        file__status=FileStatus.TRASHED,
    ).order_by('expires_at')

    purged = 0
    failed = 0
    passed_over: list[UUID] = []
    while purged < batch_size:
        expired = list(
            candidates.exclude(
                id__in=passed_over,
            ).values_list('id', flat=True)[:batch_size - purged],
        )
        if not expired:
            break

        for archived_id in expired:
            try:
                if _purge_archived(archived_id):
                    purged += 1
                    continue
            except (ObjectBackendError, DatabaseError):
                logger.exception('Failed to purge file from trash: %s', archived_id)
                failed += 1
            passed_over.append(archived_id)

    logger.info('Purged %d files from trash, %d failed', purged, failed)
    return purged


def list_trash(user: _User) -> QuerySet[ArchivedFile]:
    """List all files in user's trash.

    Args:
        user: User whose trash to list.

    Returns:
        QuerySet of trash records, newest first.
    """
    return ArchivedFile.objects.filter(owner=user).order_by('-archived_at')


def empty_trash(user: _User) -> int:
    """Permanently delete all files in user's trash.

    Args:
        user: User whose trash to empty.

    Returns:
        Number of files deleted.
    """
    count = 0

    for archived in list(list_trash(user)):
        try:
            permanently_delete_file(archived.id, user=user)
            count += 1
        except ObjectBackendError:
            logger.exception(
                'Failed to permanently delete file: %s',
                archived.file_id,
            )
            raise

    logger.info(
        'Trash emptied for user %s: %d files deleted',
        user.username,
        count,
    )

    return count
