"""Ancestor index (closure table) for the folder tree.

Every folder has one ``AncestorPath`` row per ancestor plus a self row at
relative depth 0, so ancestor and descendant lookups are single queries
instead of parent-pointer walks. This module is the only writer of those
rows; callers run it inside their own transaction.
"""

import logging
from collections.abc import Iterable
from typing import NamedTuple
from uuid import UUID

from django.db.models import F, Max, Q

from server.apps.drive.exceptions import AncestorIndexCorruptionError
from server.apps.drive.models import AncestorPath, Folder

logger = logging.getLogger(__name__)


class PathEntry(NamedTuple):
    """One closure row, detached from the ORM."""

    ancestor_id: UUID
    descendant_id: UUID
    relative_depth: int


def build_ancestor_paths(
    folder_id: UUID,
    parent_paths: Iterable[PathEntry],
) -> list[PathEntry]:
    """Build the complete ancestor set of a folder from its parent's set.

    Args:
        folder_id: Folder being placed.
        parent_paths: Complete ancestor set of the new parent (self row
            included), empty when the folder goes to the root.

    Returns:
        Self row followed by one row per ancestor of the parent,
        each one level further away.
    """
    paths = [PathEntry(folder_id, folder_id, 0)]
    paths.extend(
        PathEntry(path.ancestor_id, folder_id, path.relative_depth + 1)
        for path in parent_paths
    )
    return paths


def get_ancestor_paths(folder_id: UUID) -> list[PathEntry]:
    """Load the stored ancestor set of a folder, nearest first.

    Args:
        folder_id: Folder to look up.

    Returns:
        Rows with ``descendant_id == folder_id`` ordered by relative depth.
    """
    rows = AncestorPath.objects.filter(
        descendant_id=folder_id,
    ).order_by('relative_depth').values_list(
        'ancestor_id',
        'descendant_id',
        'relative_depth',
    )
    return [PathEntry(*row) for row in rows]


def get_ancestor_ids(folder_id: UUID) -> list[UUID]:
    """IDs of the proper ancestors of a folder, root first."""
    return list(
        AncestorPath.objects.filter(
            descendant_id=folder_id,
            relative_depth__gt=0,
        ).order_by('-relative_depth').values_list('ancestor_id', flat=True),
    )


def get_descendants_with_depth(folder_id: UUID) -> dict[UUID, int]:
    """Map every proper descendant of a folder to its relative depth."""
    rows = AncestorPath.objects.filter(
        ancestor_id=folder_id,
        relative_depth__gt=0,
    ).values_list('descendant_id', 'relative_depth')
    return dict(rows)


def shift_subtree_depths(folder_id: UUID, delta: int) -> int:
    """Add ``delta`` to the depth of every folder currently below ``folder_id``.

    The subtree is read from the closure rows in the same statement, so a
    folder that left the subtree after an earlier read is not shifted.

    Returns:
        Number of folders updated.
    """
    subtree = AncestorPath.objects.filter(
        ancestor_id=folder_id,
        relative_depth__gt=0,
    ).values('descendant_id')
    return Folder.objects.filter(id__in=subtree).update(
        depth=F('depth') + delta,
    )


def get_descendant_ids(folder_id: UUID) -> list[UUID]:
    """IDs of every folder below ``folder_id``."""
    return list(get_descendants_with_depth(folder_id))


def get_max_descendant_depth(folder_id: UUID) -> int:
    """Height of the subtree below a folder (0 for a leaf)."""
    deepest = AncestorPath.objects.filter(
        ancestor_id=folder_id,
    ).aggregate(deepest=Max('relative_depth'))['deepest']
    return deepest or 0


def insert_paths(paths: Iterable[PathEntry]) -> int:
    """Persist closure rows.

    Args:
        paths: Rows to insert.

    Returns:
        Number of rows inserted.
    """
    created = AncestorPath.objects.bulk_create([
        AncestorPath(
            ancestor_id=path.ancestor_id,
            descendant_id=path.descendant_id,
            relative_depth=path.relative_depth,
        )
        for path in paths
    ])
    return len(created)


def move_subtree_paths(
    folder_id: UUID,
    new_parent_paths: Iterable[PathEntry],
) -> int:
    """Rewrite the closure rows of a subtree after its root moved.

    Rows linking the subtree to its old ancestors are dropped and rebuilt
    from the new parent's chain, each descendant keeping its distance to
    ``folder_id``. Rows whose ancestor lies inside the subtree stay as
    they are.

    Args:
        folder_id: Root of the moving subtree.
        new_parent_paths: Complete ancestor set of the new parent,
            empty when moving to the root.

    Returns:
        Number of rows inserted.
    """
    subtree = get_descendants_with_depth(folder_id)
    subtree[folder_id] = 0
    subtree_ids = list(subtree)

    deleted, _ = AncestorPath.objects.filter(
        descendant_id__in=subtree_ids,
    ).exclude(
        ancestor_id__in=subtree_ids,
    ).delete()

    outer_paths = [
        path
        for path in build_ancestor_paths(folder_id, new_parent_paths)
        if path.relative_depth > 0
    ]
    inserted = insert_paths(
        PathEntry(
            path.ancestor_id,
            descendant_id,
            path.relative_depth + relative_depth,
        )
        for descendant_id, relative_depth in subtree.items()
        for path in outer_paths
    )

    logger.debug(
        'Rewrote ancestor rows for subtree %s: -%d +%d (%d folders)',
        folder_id,
        deleted,
        inserted,
        len(subtree_ids),
    )
    return inserted


def delete_paths(folder_ids: Iterable[UUID]) -> int:
    """Remove every closure row that mentions one of ``folder_ids``.

    Args:
        folder_ids: Folders about to be hard-deleted.

    Returns:
        Number of rows deleted.
    """
    ids = list(folder_ids)
    deleted, _ = AncestorPath.objects.filter(
        Q(descendant_id__in=ids) | Q(ancestor_id__in=ids),
    ).delete()
    return deleted


def verify_ancestor_paths(folder: Folder) -> list[PathEntry]:
    """Check a folder's stored ancestor set against its depth.

    Args:
        folder: Folder to check.

    Returns:
        The verified rows, nearest first.

    Raises:
        AncestorIndexCorruptionError: If the rows do not hold exactly one
            entry per depth ``0..folder.depth``, the self row is wrong, or
            the depth-1 row does not point at the parent.
    """
    paths = get_ancestor_paths(folder.id)
    depths = [path.relative_depth for path in paths]

    detail = ''
    if depths != list(range(folder.depth + 1)):
        detail = (
            f'expected depths 0..{folder.depth}, found {sorted(depths)}'
        )
    elif paths[0].ancestor_id != folder.id:
        detail = f'self row points at {paths[0].ancestor_id}'
    elif folder.parent_id is not None and paths[1].ancestor_id != folder.parent_id:
        detail = (
            f'depth-1 row points at {paths[1].ancestor_id}, '
            f'parent is {folder.parent_id}'
        )

    if detail:
        logger.error(
            'Ancestor index corruption for folder %s: %s',
            folder.id,
            detail,
        )
        raise AncestorIndexCorruptionError(folder.id, detail)

    return paths
