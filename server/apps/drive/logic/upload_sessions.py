"""Upload session tracking: staging plans, part progress and expiry."""

import dataclasses
import logging
import math
import uuid
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.files.storage import default_storage
from django.db import DatabaseError, transaction
from django.utils import timezone

from server.apps.drive.exceptions import (
    InvalidTransitionError,
    ObjectBackendError,
    SessionClosedError,
)
from server.apps.drive.infrastructure.metadata import build_storage_key
from server.apps.drive.models import (
    File,
    FileStatus,
    UploadPart,
    UploadSession,
    UploadSessionStatus,
)

if TYPE_CHECKING:
    from server.apps.drive.infrastructure.storage import ObjectStorage

# User type for Django's dynamic user model
_User = Any

logger = logging.getLogger(__name__)

_MIB = 1024 * 1024


@dataclasses.dataclass(frozen=True)
class StagingPart:
    """One part of a staging plan and its upload locator."""

    part_number: int
    size_bytes: int
    upload_url: str


@dataclasses.dataclass(frozen=True)
class StagingPlan:
    """Where and how the client uploads the bytes of one session."""

    storage_key: str
    multipart: bool
    part_size: int
    parts: tuple[StagingPart, ...]
    expires_at: datetime


@dataclasses.dataclass(frozen=True)
class UploadStatus:
    """Progress report for an upload session."""

    session_id: uuid.UUID
    status: str
    total_parts: int
    uploaded_parts: int
    progress: int
    expires_at: datetime


def _get_storage() -> 'ObjectStorage':
    """Get the configured default storage backend.

    Returns:
        ObjectStorage instance with proper S3 configuration.
    """
    return default_storage  # type: ignore[return-value]


def _session_ttl() -> int:
    return getattr(settings, 'DRIVE_UPLOAD_SESSION_TTL', 24 * 60 * 60)


def compute_part_sizes(
    size: int,
    threshold: int,
    part_size: int,
    max_parts: int,
) -> list[int]:
    """Split a declared upload size into staging parts.

    Args:
        size: Declared size in bytes.
        threshold: Largest size uploaded as a single part.
        part_size: Size of every multipart part except the last.
        max_parts: Most parts a multipart upload may have.

    Returns:
        Part sizes in upload order. A single element means single-part.
        Past ``max_parts`` the last part takes everything that is left.

    Raises:
        ValueError: If ``part_size`` or ``max_parts`` is not positive.
    """
    if part_size <= 0 or max_parts <= 0:
        raise ValueError('part_size and max_parts must be positive')

    if size <= threshold:
        return [size]

    count = min(math.ceil(size / part_size), max_parts)
    sizes = [part_size] * (count - 1)
    sizes.append(size - part_size * (count - 1))
    return sizes


def open_session(
    file_instance: File,
    owner: _User,
    size_bytes: int,
) -> tuple[UploadSession, StagingPlan]:
    """Create an upload session and its staging plan for a new file.

    Multipart uploads are registered with the backend first; if anything
    after that fails the backend upload is aborted again.

    Args:
        file_instance: File in ``uploading`` state the bytes belong to.
        owner: Uploading user.
        size_bytes: Declared size in bytes.

    Returns:
        Tuple of (session, staging plan).

    Raises:
        ObjectBackendError: If the backend refuses the upload or signing.
    """
    session_id = uuid.uuid4()
    storage_key = build_storage_key(owner.id, file_instance.id, session_id)
    sizes = compute_part_sizes(
        size_bytes,
        getattr(settings, 'DRIVE_MULTIPART_THRESHOLD', 5 * _MIB),
        getattr(settings, 'DRIVE_MULTIPART_PART_SIZE', 5 * _MIB),
        getattr(settings, 'DRIVE_MULTIPART_MAX_PARTS', 10000),
    )
    ttl = _session_ttl()
    expires_at = timezone.now() + timedelta(seconds=ttl)
    storage = _get_storage()

    upload_id = ''
    if len(sizes) > 1:
        upload_id = storage.create_multipart_upload(
            storage_key,
            file_instance.mime_type,
        )

    try:
        if upload_id:
            parts = tuple(
                StagingPart(
                    part_number,
                    part_size,
                    storage.generate_part_upload_url(
                        storage_key,
                        upload_id,
                        part_number,
                        ttl,
                    ),
                )
                for part_number, part_size in enumerate(sizes, start=1)
            )
        else:
            parts = (
                StagingPart(
                    1,
                    size_bytes,
                    storage.generate_upload_url(
                        storage_key,
                        ttl,
                        file_instance.mime_type,
                    ),
                ),
            )

        session = UploadSession.objects.create(
            id=session_id,
            file=file_instance,
            folder_id=file_instance.folder_id,
            owner=owner,
            storage_key=storage_key,
            multipart_upload_id=upload_id,
            total_size=size_bytes,
            part_size=sizes[0],
            total_parts=len(sizes),
            expires_at=expires_at,
        )
    except (ObjectBackendError, DatabaseError):
        if upload_id:
            _abort_backend_upload(storage_key, upload_id)
        raise

    logger.info(
        'Upload session opened: %s (%d parts, %d bytes)',
        storage_key,
        len(sizes),
        size_bytes,
    )
    return session, StagingPlan(
        storage_key=storage_key,
        multipart=bool(upload_id),
        part_size=sizes[0],
        parts=parts,
        expires_at=expires_at,
    )


def _abort_backend_upload(storage_key: str, upload_id: str) -> None:
    try:
        _get_storage().abort_multipart_upload(storage_key, upload_id)
    except ObjectBackendError:
        logger.exception('Failed to abort multipart upload (orphaned): %s', storage_key)


def ensure_session_open(session: UploadSession, now: datetime | None = None) -> None:
    """Raise SessionClosedError unless the session still accepts data."""
    if not session.is_pending():
        raise SessionClosedError(session.id, session.status)
    if session.is_expired(now):
        raise SessionClosedError(session.id, UploadSessionStatus.EXPIRED)


def record_uploaded_part(
    session_id: uuid.UUID,
    part_number: int,
    etag: str,
    size_bytes: int,
) -> UploadSession:
    """Record a part the backend confirmed for a multipart session.

    Reporting the same part number twice replaces its etag and size
    without counting it again.

    Args:
        session_id: Upload session identifier.
        part_number: 1-based part number.
        etag: Etag the backend returned for the part.
        size_bytes: Size of the part.

    Returns:
        Updated UploadSession instance.

    Raises:
        UploadSession.DoesNotExist: If the session is missing.
        SessionClosedError: If the session is no longer pending.
        ValidationError: If the part number is outside the plan.
    """
    with transaction.atomic():
        session = UploadSession.objects.select_for_update().get(id=session_id)
        ensure_session_open(session)

        if not 1 <= part_number <= session.total_parts:
            raise ValidationError(
                f'Part number {part_number} outside 1..{session.total_parts}',
            )

        _, created = UploadPart.objects.update_or_create(
            session=session,
            part_number=part_number,
            defaults={'etag': etag, 'size_bytes': size_bytes},
        )
        if created:
            session.uploaded_parts += 1
            session.save(update_fields=['uploaded_parts', 'modified_at'])

    logger.debug(
        'Part %d/%d recorded for %s',
        part_number,
        session.total_parts,
        session.storage_key,
    )
    return session


def get_upload_status(session_id: uuid.UUID) -> UploadStatus:
    """Report the progress of an upload session.

    Raises:
        UploadSession.DoesNotExist: If the session is missing.
    """
    session = UploadSession.objects.get(id=session_id)
    return UploadStatus(
        session_id=session.id,
        status=session.status,
        total_parts=session.total_parts,
        uploaded_parts=session.uploaded_parts,
        progress=session.progress(),
        expires_at=session.expires_at,
    )


def close_session(session: UploadSession, status: str) -> None:
    """Move a pending session to a terminal status.

    The update only applies while the stored row is still in the status
    the caller read, so two closers cannot both win.

    Args:
        session: Session to close, normally row-locked by the caller.
        status: Terminal status.

    Raises:
        InvalidTransitionError: If the session is not pending any more.
    """
    previous = session.status
    session.transition_to(status)
    updated = UploadSession.objects.filter(
        id=session.id,
        status=previous,
    ).update(status=status, modified_at=timezone.now())

    if not updated:
        session.refresh_from_db(fields=['status'])
        raise InvalidTransitionError(session.status, status)

    logger.info('Upload session %s: %s -> %s', session.storage_key, previous, status)


def cleanup_staged_objects(session: UploadSession) -> None:
    """Drop whatever the client already staged for a session (best effort).

    Args:
        session: Aborted or expired session.
    """
    storage = _get_storage()
    if session.is_multipart:
        _abort_backend_upload(session.storage_key, session.multipart_upload_id)
    try:
        storage.delete_object(session.storage_key)
    except ObjectBackendError:
        logger.exception(
            'Failed to delete staged object (orphaned): %s',
            session.storage_key,
        )


def discard_session(session: UploadSession, status: str) -> None:
    """Close a pending session without a version and drop its file.

    The session row stays as a tombstone so late completion callbacks
    can be answered; the never-visible file row is deleted.

    Args:
        session: Row-locked pending session.
        status: ``aborted`` or ``expired``.
    """
    close_session(session, status)
    cleanup_staged_objects(session)

    file_instance = session.file
    if file_instance is not None and file_instance.status == FileStatus.UPLOADING:
        file_instance.delete()
        logger.info(
            'Deleted never-completed file: %s (ID: %s)',
            file_instance.name,
            file_instance.id,
        )


def _expire_session(session_id: uuid.UUID, now: datetime) -> bool:
    with transaction.atomic():
        session = UploadSession.objects.select_for_update(of=('self',)).filter(
            id=session_id,
            status=UploadSessionStatus.PENDING,
            expires_at__lte=now,
        ).select_related('file').first()
        if session is None:
            return False
        discard_session(session, UploadSessionStatus.EXPIRED)
    return True


def expire_stale_sessions(now: datetime | None = None) -> int:
    """Expire pending sessions whose deadline has passed.

    Each session is handled in its own transaction; a failure is logged
    and left for the next sweep.

    Args:
        now: Reference time, defaults to the current time.

    Returns:
        Number of sessions expired.
    """
    now = now or timezone.now()
    stale = list(
        UploadSession.objects.filter(
            status=UploadSessionStatus.PENDING,
            expires_at__lte=now,
        ).values_list('id', flat=True),
    )

    expired = 0
    for session_id in stale:
        try:
            if _expire_session(session_id, now):
                expired += 1
        except DatabaseError:
            logger.exception('Failed to expire upload session: %s', session_id)

    if expired:
        logger.info('Expired %d stale upload sessions', expired)
    return expired
