"""Business logic for the folder tree.

Every mutation runs in a single ``transaction.atomic()`` block: the folder
row and its ancestor rows commit together or not at all.
"""

import logging
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from django.conf import settings
from django.db import DatabaseError, transaction
from django.db.models import QuerySet
from django.utils import timezone

from server.apps.drive.exceptions import (
    ConflictError,
    FolderNotEmptyError,
    ForbiddenError,
    NameConflictError,
)
from server.apps.drive.infrastructure.metadata import validate_name
from server.apps.drive.logic import ancestor_index
from server.apps.drive.logic.hierarchy import (
    MAX_FOLDER_DEPTH,
    calculate_new_depth,
    validate_depth_after_move,
    validate_move,
)
from server.apps.drive.models import (
    File,
    FileStatus,
    Folder,
    FolderStatus,
    UploadSession,
    UploadSessionStatus,
)

# User type for Django's dynamic user model
_User = Any

logger = logging.getLogger(__name__)

_LIVE_FILE_STATUSES = (FileStatus.UPLOADING, FileStatus.ACTIVE)


def _get_max_depth() -> int:
    return getattr(settings, 'DRIVE_MAX_FOLDER_DEPTH', MAX_FOLDER_DEPTH)


def _get_retention_days() -> int:
    return getattr(settings, 'DRIVE_TRASH_RETENTION_DAYS', 30)


def require_active_folder(folder: Folder) -> None:
    """Refuse to place anything inside a trashed folder.

    Args:
        folder: Target folder.

    Raises:
        ConflictError: If the folder is trashed.
    """
    if not folder.is_active():
        logger.warning('Refused placement into trashed folder %s', folder.id)
        raise ConflictError(f'Folder {folder.id} is trashed')


def ensure_folder_name_available(
    owner_id: int,
    parent_id: UUID | None,
    name: str,
    exclude_id: UUID | None = None,
) -> None:
    """Check that no non-trashed sibling folder already uses ``name``.

    Args:
        owner_id: Owner of the tree.
        parent_id: Parent folder, None for the owner root.
        name: Validated folder name.
        exclude_id: Folder to ignore (the one being renamed or moved).

    Raises:
        NameConflictError: If a sibling has the same name.
    """
    siblings = Folder.objects.filter(
        owner_id=owner_id,
        parent_id=parent_id,
        name=name,
    ).exclude(status=FolderStatus.TRASHED)
    if exclude_id is not None:
        siblings = siblings.exclude(id=exclude_id)
    if siblings.exists():
        raise NameConflictError(name)


def create_folder(
    owner: _User,
    name: str,
    parent_id: UUID | None = None,
) -> Folder:
    """Create a folder at the owner root or under ``parent_id``.

    Args:
        owner: Owner of the new folder.
        name: Folder name.
        parent_id: Parent folder, None for the owner root.

    Returns:
        Created Folder instance.

    Raises:
        ValidationError: If the name is invalid.
        Folder.DoesNotExist: If the parent does not exist.
        ForbiddenError: If the parent belongs to someone else.
        ConflictError: If the parent is trashed or the name is taken.
        MaxDepthExceededError: If the new folder would be too deep.
    """
    name = validate_name(name, 'Folder name')

    with transaction.atomic():
        parent = None
        parent_paths: list[ancestor_index.PathEntry] = []
        if parent_id is not None:
            parent = Folder.objects.select_for_update().get(id=parent_id)
            if parent.owner_id != owner.id:
                raise ForbiddenError(f'Folder {parent_id} is not yours')
            require_active_folder(parent)
            parent_paths = ancestor_index.verify_ancestor_paths(parent)

        folder = Folder(
            name=name,
            parent=parent,
            owner=owner,
            depth=calculate_new_depth(parent),
        )
        validate_depth_after_move(folder, folder.depth, 0, _get_max_depth())
        ensure_folder_name_available(owner.id, parent_id, name)

        folder.save()
        ancestor_index.insert_paths(
            ancestor_index.build_ancestor_paths(folder.id, parent_paths),
        )

    logger.info(
        'Folder created: %s (ID: %s, depth: %d)',
        folder.name,
        folder.id,
        folder.depth,
    )
    return folder


def _lock_folders(folder_ids: set[UUID]) -> dict[UUID, Folder]:
    """Row-lock folders in id order so overlapping moves cannot deadlock."""
    locked = Folder.objects.select_for_update().filter(
        id__in=folder_ids,
    ).order_by('id')
    return {folder.id: folder for folder in locked}


def _chains_to_lock(folder_id: UUID, new_parent_id: UUID | None) -> set[UUID]:
    wanted = {folder_id, *ancestor_index.get_ancestor_ids(folder_id)}
    if new_parent_id is not None:
        wanted.add(new_parent_id)
        wanted.update(ancestor_index.get_ancestor_ids(new_parent_id))
    return wanted


def _lock_move_targets(
    folder_id: UUID,
    new_parent_id: UUID | None,
) -> dict[UUID, Folder]:
    """Lock the moving folder with its own and its new parent's ancestor chains.

    Two moves whose subtrees nest always share a locked row: the inner
    folder's chain contains the outer folder. Both chains are read
    again after locking; if a concurrent move changed them in the
    meantime the new members are locked as well.
    """
    wanted = _chains_to_lock(folder_id, new_parent_id)

    locked: dict[UUID, Folder] = {}
    while True:
        newly_locked = _lock_folders(wanted - set(locked))
        if not newly_locked:
            break
        locked.update(newly_locked)
        wanted.update(_chains_to_lock(folder_id, new_parent_id))
    return locked


def move_folder(folder_id: UUID, new_parent_id: UUID | None = None) -> Folder:
    """Move a folder, with its whole subtree, under a new parent.

    The moving folder and the new parent's ancestor chain are locked
    before the closure rows are read, so two overlapping moves serialize
    and the second one validates against what the first committed.

    Args:
        folder_id: Folder to move.
        new_parent_id: New parent, None to move to the owner root.

    Returns:
        Updated Folder instance.

    Raises:
        Folder.DoesNotExist: If the folder or the new parent is missing.
        ForbiddenError: If the new parent belongs to another owner.
        ConflictError: If either folder is trashed or the name is taken.
        CircularMoveError: If the new parent lies inside the subtree.
        MaxDepthExceededError: If the subtree would end up too deep.
    """
    with transaction.atomic():
        locked = _lock_move_targets(folder_id, new_parent_id)
        folder = locked.get(folder_id)
        if folder is None:
            raise Folder.DoesNotExist(f'Folder {folder_id} does not exist')
        require_active_folder(folder)

        if folder.parent_id == new_parent_id:
            logger.debug('Folder %s already under %s', folder_id, new_parent_id)
            return folder

        new_parent = None
        if new_parent_id is not None:
            new_parent = locked.get(new_parent_id)
            if new_parent is None:
                raise Folder.DoesNotExist(
                    f'Folder {new_parent_id} does not exist',
                )
            if new_parent.owner_id != folder.owner_id:
                raise ForbiddenError(f'Folder {new_parent_id} is not yours')
            require_active_folder(new_parent)

        descendants = ancestor_index.get_descendants_with_depth(folder.id)
        validate_move(folder, new_parent_id, descendants.keys())

        new_depth = calculate_new_depth(new_parent)
        validate_depth_after_move(
            folder,
            new_depth,
            max(descendants.values(), default=0),
            _get_max_depth(),
        )
        ensure_folder_name_available(
            folder.owner_id,
            new_parent_id,
            folder.name,
            exclude_id=folder.id,
        )

        parent_paths = []
        if new_parent is not None:
            parent_paths = ancestor_index.verify_ancestor_paths(new_parent)

        delta = new_depth - folder.depth
        old_parent_id = folder.parent_id
        folder.parent = new_parent
        folder.depth = new_depth
        folder.save(update_fields=['parent', 'depth', 'modified_at'])

        shifted = 0
        if delta:
            shifted = ancestor_index.shift_subtree_depths(folder.id, delta)
        ancestor_index.move_subtree_paths(folder.id, parent_paths)

    logger.info(
        'Folder moved: %s (ID: %s) %s -> %s, %d descendants shifted by %d',
        folder.name,
        folder.id,
        old_parent_id,
        new_parent_id,
        shifted,
        delta,
    )
    return folder


def rename_folder(folder_id: UUID, new_name: str) -> Folder:
    """Rename a folder in place.

    Args:
        folder_id: Folder to rename.
        new_name: New folder name.

    Returns:
        Updated Folder instance.

    Raises:
        ValidationError: If the name is invalid.
        Folder.DoesNotExist: If the folder is missing.
        ConflictError: If the folder is trashed or a sibling has the name.
    """
    new_name = validate_name(new_name, 'Folder name')

    with transaction.atomic():
        folder = Folder.objects.select_for_update().get(id=folder_id)
        require_active_folder(folder)
        if folder.name == new_name:
            return folder

        ensure_folder_name_available(
            folder.owner_id,
            folder.parent_id,
            new_name,
            exclude_id=folder.id,
        )
        old_name = folder.name
        folder.name = new_name
        folder.save(update_fields=['name', 'modified_at'])

    logger.info('Folder renamed: %s -> %s (ID: %s)', old_name, new_name, folder_id)
    return folder


def delete_folder(folder_id: UUID, cascade: bool = False) -> int:
    """Move a folder to trash.

    Without ``cascade`` the folder must be empty: no uploading or active
    files and no non-trashed child folders directly beneath it. With
    ``cascade`` every active file in the subtree is trashed, pending
    uploads there are aborted and every subfolder is trashed too.

    Args:
        folder_id: Folder to trash.
        cascade: Trash the whole subtree instead of refusing.

    Returns:
        Number of folders trashed (0 if it was already trashed).

    Raises:
        Folder.DoesNotExist: If the folder is missing.
        FolderNotEmptyError: If not cascading and the folder has content.
    """
    from server.apps.drive.logic.file_operations import abort_upload
    from server.apps.drive.logic.trash_operations import archive_file

    now = timezone.now()

    with transaction.atomic():
        folder = Folder.objects.select_for_update().get(id=folder_id)
        if not folder.is_active():
            logger.info('Folder already in trash: %s', folder_id)
            return 0

        if not cascade:
            files = File.objects.filter(
                folder=folder,
                status__in=_LIVE_FILE_STATUSES,
            ).count()
            folders = folder.children.exclude(
                status=FolderStatus.TRASHED,
            ).count()
            if files or folders:
                logger.warning(
                    'Refused to trash non-empty folder %s (%d files, %d folders)',
                    folder_id,
                    files,
                    folders,
                )
                raise FolderNotEmptyError(folder_id, files, folders)
            subtree_ids = [folder.id]
        else:
            subtree_ids = [folder.id, *ancestor_index.get_descendant_ids(folder.id)]

            pending = UploadSession.objects.filter(
                folder_id__in=subtree_ids,
                status=UploadSessionStatus.PENDING,
            ).values_list('id', flat=True)
            for session_id in list(pending):
                abort_upload(session_id)

            active_files = File.objects.select_for_update().filter(
                folder_id__in=subtree_ids,
                status=FileStatus.ACTIVE,
            )
            for file_instance in active_files:
                archive_file(file_instance, now)

        trashed = Folder.objects.filter(
            id__in=subtree_ids,
            status=FolderStatus.ACTIVE,
        ).update(status=FolderStatus.TRASHED, trashed_at=now)

    logger.info(
        'Folder moved to trash: %s (ID: %s, %d folders)',
        folder.name,
        folder_id,
        trashed,
    )
    return trashed


def list_children(
    owner: _User,
    folder_id: UUID | None = None,
) -> tuple[QuerySet[Folder], QuerySet[File]]:
    """List the non-trashed folders and active files directly inside a folder.

    Args:
        owner: Owner of the tree.
        folder_id: Folder to list, None for the owner root.

    Returns:
        Tuple of (folders, files) querysets ordered by name.

    Raises:
        Folder.DoesNotExist: If the folder is missing, trashed or not owned.
    """
    if folder_id is not None:
        Folder.objects.get(
            id=folder_id,
            owner=owner,
            status=FolderStatus.ACTIVE,
        )

    folders = Folder.objects.filter(
        owner=owner,
        parent_id=folder_id,
        status=FolderStatus.ACTIVE,
    )
    if folder_id is None:
        files = File.objects.filter(
            owner=owner,
            folder__isnull=True,
            status=FileStatus.ACTIVE,
        )
    else:
        files = File.objects.filter(
            folder_id=folder_id,
            status=FileStatus.ACTIVE,
        )
    return folders, files


def get_ancestors(folder_id: UUID) -> list[Folder]:
    """Ancestors of a folder, root first, without the folder itself.

    Args:
        folder_id: Folder to look up.

    Returns:
        Folder instances from the owner root down to the parent.

    Raises:
        Folder.DoesNotExist: If the folder is missing.
        AncestorIndexCorruptionError: If the stored rows are inconsistent.
    """
    folder = Folder.objects.get(id=folder_id)
    ancestor_index.verify_ancestor_paths(folder)

    ancestor_ids = ancestor_index.get_ancestor_ids(folder_id)
    folders = Folder.objects.in_bulk(ancestor_ids)
    return [folders[ancestor_id] for ancestor_id in ancestor_ids]


def get_folder_path(folder_id: UUID) -> str:
    """Display path of a folder, e.g. '/docs/2024'."""
    folder = Folder.objects.get(id=folder_id)
    names = [ancestor.name for ancestor in get_ancestors(folder_id)]
    names.append(folder.name)
    return '/' + '/'.join(names)


def _purge_folder(folder_id: UUID, cutoff: datetime) -> bool:
    """Hard-delete one trashed folder if nothing still depends on it."""
    with transaction.atomic():
        folder = Folder.objects.select_for_update().filter(
            id=folder_id,
            status=FolderStatus.TRASHED,
            trashed_at__lte=cutoff,
        ).first()
        if folder is None:
            return False

        if folder.children.exists():
            logger.info('Skipping purge of folder %s: has child folders', folder_id)
            return False
        if File.objects.filter(folder=folder).exclude(
            status=FileStatus.TRASHED,
        ).exists():
            logger.info('Skipping purge of folder %s: has live files', folder_id)
            return False

        ancestor_index.delete_paths([folder.id])
        folder.delete()
    return True


def purge_trashed_folders(now: datetime | None = None) -> int:
    """Hard-delete folders that have been in trash past the retention period.

    Folders are handled deepest first so a parent can go in the same pass
    as its children. Trashed files that lived there keep their trash
    records; restoring them then needs an explicit target folder.

    Args:
        now: Reference time, defaults to the current time.

    Returns:
        Number of folders deleted.
    """
    now = now or timezone.now()
    cutoff = now - timedelta(days=_get_retention_days())

    candidates = list(
        Folder.objects.filter(
            status=FolderStatus.TRASHED,
            trashed_at__lte=cutoff,
        ).order_by('-depth').values_list('id', flat=True),
    )

    purged = 0
    for folder_id in candidates:
        try:
            if _purge_folder(folder_id, cutoff):
                purged += 1
        except DatabaseError:
            logger.exception('Failed to purge trashed folder: %s', folder_id)

    logger.info('Purged %d of %d trashed folders', purged, len(candidates))
    return purged
