"""Structural rules for the folder tree.

Stateless checks only: callers read descendant IDs and subtree height
from the ancestor index and pass them in.
"""

import logging
from collections.abc import Collection
from typing import Final
from uuid import UUID

from server.apps.drive.exceptions import CircularMoveError, MaxDepthExceededError
from server.apps.drive.models import Folder

MAX_FOLDER_DEPTH: Final = 20

logger = logging.getLogger(__name__)


def calculate_new_depth(new_parent: Folder | None) -> int:
    """Depth a folder gets when placed under ``new_parent``.

    Args:
        new_parent: Parent folder, or None for the owner root.

    Returns:
        0 at the root, otherwise one more than the parent's depth.
    """
    if new_parent is None:
        return 0
    return new_parent.depth + 1


def validate_move(
    folder: Folder,
    new_parent_id: UUID | None,
    descendant_ids: Collection[UUID],
) -> None:
    """Reject moves that would make a folder its own ancestor.

    Args:
        folder: Folder being moved.
        new_parent_id: Requested parent, None for the root.
        descendant_ids: Every folder below ``folder``.

    Raises:
        CircularMoveError: If the new parent is the folder or lies below it.
    """
    if new_parent_id is None:
        return

    if new_parent_id == folder.id or new_parent_id in descendant_ids:
        logger.warning(
            'Rejected circular move of folder %s into %s',
            folder.id,
            new_parent_id,
        )
        raise CircularMoveError(folder.id, new_parent_id)


def validate_depth_after_move(
    folder: Folder,
    new_depth: int,
    max_descendant_depth: int,
    max_depth: int = MAX_FOLDER_DEPTH,
) -> None:
    """Reject mutations that push the deepest descendant past ``max_depth``.

    Args:
        folder: Folder being placed.
        new_depth: Depth the folder would get.
        max_descendant_depth: Greatest relative depth below the folder
            (0 for a leaf).
        max_depth: Depth limit; reaching it exactly is allowed.

    Raises:
        MaxDepthExceededError: If ``new_depth + max_descendant_depth``
            is greater than ``max_depth``.
    """
    if new_depth + max_descendant_depth > max_depth:
        logger.warning(
            'Rejected placement of folder %s at depth %d (subtree %d, max %d)',
            folder.id,
            new_depth,
            max_descendant_depth,
            max_depth,
        )
        raise MaxDepthExceededError(new_depth, max_descendant_depth, max_depth)
