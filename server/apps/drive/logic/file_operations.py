"""Business logic for file operations.

A file is created in ``uploading`` state when an upload is initiated and
becomes visible only once the object backend reports the upload done.
"""

import dataclasses
import logging
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any

from django.conf import settings
from django.core.files.storage import default_storage
from django.db import transaction
from django.db.models import Max, QuerySet

from server.apps.drive.exceptions import (
    ConflictError,
    ForbiddenError,
    NameConflictError,
    UploadIncompleteError,
)
from server.apps.drive.infrastructure.metadata import (
    normalize_mime_type,
    validate_name,
    validate_size,
    validate_storage_key,
)
from server.apps.drive.logic.folder_operations import require_active_folder
from server.apps.drive.logic.upload_sessions import (
    StagingPlan,
    close_session,
    discard_session,
    ensure_session_open,
    open_session,
)
from server.apps.drive.models import (
    File,
    FileStatus,
    FileVersion,
    Folder,
    UploadSession,
    UploadSessionStatus,
)

if TYPE_CHECKING:
    from server.apps.drive.infrastructure.storage import ObjectStorage

# User type for Django's dynamic user model
_User = Any

logger = logging.getLogger(__name__)

_LIVE_FILE_STATUSES = (FileStatus.UPLOADING, FileStatus.ACTIVE)


@dataclasses.dataclass(frozen=True)
class UploadTicket:
    """What the client needs to push the bytes of a new file."""

    session_id: uuid.UUID
    file_id: uuid.UUID
    plan: StagingPlan
    expires_at: datetime


def _get_storage() -> 'ObjectStorage':
    """Get the configured default storage backend.

    Returns:
        ObjectStorage instance with proper S3 configuration.
    """
    return default_storage  # type: ignore[return-value]


def _get_max_upload_size() -> int:
    return getattr(settings, 'DRIVE_MAX_UPLOAD_SIZE', 5 * 1024 ** 4)


def ensure_file_name_available(
    folder_id: uuid.UUID,
    name: str,
    exclude_id: uuid.UUID | None = None,
) -> None:
    """Check that no uploading or active file in the folder uses ``name``.

    Args:
        folder_id: Folder the file goes to.
        name: Validated file name.
        exclude_id: File to ignore (the one being renamed or moved).

    Raises:
        NameConflictError: If a sibling file has the same name.
    """
    siblings = File.objects.filter(
        folder_id=folder_id,
        name=name,
        status__in=_LIVE_FILE_STATUSES,
    )
    if exclude_id is not None:
        siblings = siblings.exclude(id=exclude_id)
    if siblings.exists():
        raise NameConflictError(name)


def _require_active_file(file_instance: File) -> None:
    if not file_instance.is_active():
        raise ConflictError(f'File {file_instance.id} is {file_instance.status}')


def initiate_upload(
    owner: _User,
    folder_id: uuid.UUID,
    name: str,
    mime_type: str,
    size_bytes: int,
) -> UploadTicket:
    """Create an uploading file and the session its bytes are staged through.

    Args:
        owner: Uploading user.
        folder_id: Folder the file will live in.
        name: File name.
        mime_type: Declared MIME type, empty if unknown.
        size_bytes: Declared size in bytes.

    Returns:
        UploadTicket with the session ID and staging plan.

    Raises:
        ValidationError: If name, MIME type or size is invalid.
        Folder.DoesNotExist: If the folder is missing.
        ForbiddenError: If the folder belongs to someone else.
        ConflictError: If the folder is trashed or the name is taken.
        ObjectBackendError: If the backend refuses the upload.
    """
    name = validate_name(name, 'File name')
    mime_type = normalize_mime_type(mime_type)
    validate_size(size_bytes, _get_max_upload_size())

    with transaction.atomic():
        folder = Folder.objects.select_for_update().get(id=folder_id)
        if folder.owner_id != owner.id:
            raise ForbiddenError(f'Folder {folder_id} is not yours')
        require_active_folder(folder)
        ensure_file_name_available(folder.id, name)

        file_instance = File.objects.create(
            name=name,
            mime_type=mime_type,
            size_bytes=size_bytes,
            folder=folder,
            owner=owner,
        )
        session, plan = open_session(file_instance, owner, size_bytes)

    logger.info(
        'Upload initiated: %s (file: %s, session: %s)',
        name,
        file_instance.id,
        session.id,
    )
    return UploadTicket(
        session_id=session.id,
        file_id=file_instance.id,
        plan=plan,
        expires_at=session.expires_at,
    )


def complete_upload(
    storage_key: str,
    version_marker: str,
    size_bytes: int,
    checksum: str,
) -> File:
    """Turn a finished staged upload into a new file version.

    Re-delivery for a session that already completed returns the file
    unchanged.

    Args:
        storage_key: Object key the upload was staged under.
        version_marker: Backend version identifier of the object.
        size_bytes: Final object size reported by the backend.
        checksum: Object checksum (etag) reported by the backend.

    Returns:
        The active File instance.

    Raises:
        ValidationError: If the key or size is malformed.
        UploadSession.DoesNotExist: If no session uses the key.
        SessionClosedError: If the session was aborted or has expired.
        UploadIncompleteError: If a multipart session still misses parts.
    """
    validate_storage_key(storage_key)
    validate_size(size_bytes, _get_max_upload_size())

    with transaction.atomic():
        session = UploadSession.objects.select_for_update().get(
            storage_key=storage_key,
        )

        if session.status == UploadSessionStatus.COMPLETED:
            logger.info('Upload already completed: %s', storage_key)
            if session.file_id is None:
                logger.warning(
                    'File of completed upload was deleted: %s', storage_key,
                )
                raise File.DoesNotExist(
                    f'File of completed upload {storage_key} was deleted',
                )
            return File.objects.get(id=session.file_id)

        ensure_session_open(session)
        if session.is_multipart and not session.all_parts_uploaded():
            logger.warning(
                'Upload completion refused for %s: %d/%d parts',
                storage_key,
                session.uploaded_parts,
                session.total_parts,
            )
            raise UploadIncompleteError(
                session.uploaded_parts,
                session.total_parts,
            )

        file_instance = File.objects.select_for_update().get(id=session.file_id)
        latest = file_instance.versions.aggregate(
            latest=Max('version_number'),
        )['latest'] or 0

        version = FileVersion.objects.create(
            file=file_instance,
            version_number=latest + 1,
            size_bytes=size_bytes,
            checksum=checksum,
            version_marker=version_marker,
            storage_key=storage_key,
            uploaded_by_id=session.owner_id,
        )

        file_instance.transition_to(FileStatus.ACTIVE)
        file_instance.current_version = version.version_number
        file_instance.size_bytes = size_bytes
        file_instance.save(update_fields=[
            'status',
            'current_version',
            'size_bytes',
            'modified_at',
        ])
        close_session(session, UploadSessionStatus.COMPLETED)

    logger.info(
        'Upload completed: %s v%d (ID: %s, size: %d)',
        file_instance.name,
        version.version_number,
        file_instance.id,
        size_bytes,
    )
    return file_instance


def abort_upload(session_id: uuid.UUID) -> None:
    """Abort a pending upload and drop its never-visible file.

    Aborting a session that is already closed does nothing.

    Args:
        session_id: Upload session identifier.

    Raises:
        UploadSession.DoesNotExist: If the session is missing.
    """
    with transaction.atomic():
        session = UploadSession.objects.select_for_update(
            of=('self',),
        ).select_related('file').get(id=session_id)

        if not session.is_pending():
            logger.info(
                'Abort ignored for %s session: %s',
                session.status,
                session_id,
            )
            return

        discard_session(session, UploadSessionStatus.ABORTED)

    logger.info('Upload aborted: %s', session.storage_key)


def rename_file(file_id: uuid.UUID, new_name: str) -> File:
    """Rename an active file in place.

    Raises:
        ValidationError: If the name is invalid.
        File.DoesNotExist: If the file is missing.
        ConflictError: If the file is not active or the name is taken.
    """
    new_name = validate_name(new_name, 'File name')

    with transaction.atomic():
        file_instance = File.objects.select_for_update().get(id=file_id)
        _require_active_file(file_instance)
        if file_instance.name == new_name:
            return file_instance

        ensure_file_name_available(
            file_instance.folder_id,
            new_name,
            exclude_id=file_instance.id,
        )
        old_name = file_instance.name
        file_instance.name = new_name
        file_instance.save(update_fields=['name', 'modified_at'])

    logger.info('File renamed: %s -> %s (ID: %s)', old_name, new_name, file_id)
    return file_instance


def move_file(file_id: uuid.UUID, folder_id: uuid.UUID) -> File:
    """Move an active file to another folder of the same owner.

    Objects are addressed by key, not by path, so nothing moves in storage.

    Args:
        file_id: File to move.
        folder_id: Target folder.

    Returns:
        Updated File instance.

    Raises:
        File.DoesNotExist: If the file is missing.
        Folder.DoesNotExist: If the target folder is missing.
        ForbiddenError: If the target belongs to someone else.
        ConflictError: If the file is not active, the target is trashed
            or the name is taken there.
    """
    with transaction.atomic():
        file_instance = File.objects.select_for_update().get(id=file_id)
        _require_active_file(file_instance)
        if file_instance.folder_id == folder_id:
            return file_instance

        folder = Folder.objects.select_for_update().get(id=folder_id)
        if folder.owner_id != file_instance.owner_id:
            raise ForbiddenError(f'Folder {folder_id} is not yours')
        require_active_folder(folder)
        ensure_file_name_available(
            folder.id,
            file_instance.name,
            exclude_id=file_instance.id,
        )

        old_folder_id = file_instance.folder_id
        file_instance.folder = folder
        file_instance.save(update_fields=['folder', 'modified_at'])

    logger.info(
        'File moved: %s (ID: %s) %s -> %s',
        file_instance.name,
        file_id,
        old_folder_id,
        folder_id,
    )
    return file_instance


def list_file_versions(file_id: uuid.UUID) -> QuerySet[FileVersion]:
    """List every version of a file, newest first.

    Raises:
        File.DoesNotExist: If the file is missing.
    """
    file_instance = File.objects.get(id=file_id)
    return file_instance.versions.order_by('-version_number')


def get_download_url(
    file_id: uuid.UUID,
    version_number: int | None = None,
) -> str:
    """Get a time-limited download locator for a file version.

    Args:
        file_id: Active file to download.
        version_number: Version to fetch, the current one if None.

    Returns:
        Presigned URL.

    Raises:
        File.DoesNotExist: If the file is missing.
        FileVersion.DoesNotExist: If the version is missing.
        ConflictError: If the file is not active.
        ObjectBackendError: If signing fails.
    """
    file_instance = File.objects.get(id=file_id)
    _require_active_file(file_instance)

    version = file_instance.versions.get(
        version_number=version_number or file_instance.current_version,
    )
    return _get_storage().generate_download_url(
        version.storage_key,
        getattr(settings, 'DRIVE_DOWNLOAD_URL_TTL', 3600),
        filename=file_instance.name,
    )
