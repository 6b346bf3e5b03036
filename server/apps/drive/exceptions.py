"""Exceptions for drive app.

Validation failures are raised as Django's ``ValidationError`` and missing
rows as the model's ``DoesNotExist``; everything else lives here.
"""

from uuid import UUID


class DriveError(Exception):
    """Base class for business errors raised by drive operations."""


class CircularMoveError(DriveError):
    """Raised when a folder would be moved into itself or its subtree."""

    def __init__(self, folder_id: UUID, new_parent_id: UUID) -> None:
        """Initialize CircularMoveError.

        Args:
            folder_id: Folder being moved.
            new_parent_id: Requested parent folder.
        """
        self.folder_id = folder_id
        self.new_parent_id = new_parent_id
        super().__init__(
            f'Cannot move folder {folder_id} into {new_parent_id}: '
            'target is the folder itself or one of its descendants',
        )


class MaxDepthExceededError(DriveError):
    """Raised when a create/move would push the tree past its depth limit."""

    def __init__(
        self,
        new_depth: int,
        subtree_height: int,
        max_depth: int,
    ) -> None:
        """Initialize MaxDepthExceededError.

        Args:
            new_depth: Depth the folder would have after the mutation.
            subtree_height: Deepest relative depth below the folder.
            max_depth: Configured depth limit.
        """
        self.new_depth = new_depth
        self.subtree_height = subtree_height
        self.max_depth = max_depth
        super().__init__(
            f'Folder depth limit exceeded: {new_depth} + {subtree_height} '
            f'> {max_depth}',
        )


class ConflictError(DriveError):
    """Raised when the current state forbids the requested mutation."""


class FolderNotEmptyError(ConflictError):
    """Raised when deleting a folder that still has visible children."""

    def __init__(self, folder_id: UUID, files: int, folders: int) -> None:
        """Initialize FolderNotEmptyError.

        Args:
            folder_id: Folder that was asked to be deleted.
            files: Number of live files directly beneath it.
            folders: Number of non-trashed child folders.
        """
        self.folder_id = folder_id
        self.files = files
        self.folders = folders
        super().__init__(
            f'Folder {folder_id} is not empty '
            f'({files} files, {folders} folders)',
        )


class NameConflictError(ConflictError):
    """Raised when a sibling with the same name already exists."""

    def __init__(self, name: str) -> None:
        """Initialize NameConflictError.

        Args:
            name: Conflicting name.
        """
        self.name = name
        super().__init__(f'An item named {name!r} already exists here')


class InvalidTransitionError(ConflictError):
    """Raised when a status change is not in the transition table."""

    def __init__(self, current: str, target: str) -> None:
        """Initialize InvalidTransitionError.

        Args:
            current: Current status value.
            target: Requested status value.
        """
        self.current = current
        self.target = target
        super().__init__(f'Invalid status transition: {current} -> {target}')


class UploadIncompleteError(ConflictError):
    """Raised when completing a multipart session with parts missing."""

    def __init__(self, uploaded_parts: int, total_parts: int) -> None:
        """Initialize UploadIncompleteError.

        Args:
            uploaded_parts: Parts confirmed so far.
            total_parts: Parts expected by the staging plan.
        """
        self.uploaded_parts = uploaded_parts
        self.total_parts = total_parts
        super().__init__(
            f'Upload incomplete: {uploaded_parts}/{total_parts} parts received',
        )


class RestoreTargetRequiredError(DriveError):
    """Raised when the original folder of a trashed file is unavailable."""

    def __init__(self, archived_id: UUID, original_folder_id: UUID) -> None:
        """Initialize RestoreTargetRequiredError.

        Args:
            archived_id: Trash record being restored.
            original_folder_id: Folder the file was trashed from.
        """
        self.archived_id = archived_id
        self.original_folder_id = original_folder_id
        super().__init__(
            f'Original folder {original_folder_id} is gone or trashed; '
            'a restore folder must be given',
        )


class SessionClosedError(DriveError):
    """Raised when completing an upload session that was aborted/expired."""

    def __init__(self, session_id: UUID, status: str) -> None:
        """Initialize SessionClosedError.

        Args:
            session_id: Upload session identifier.
            status: Status the session is in.
        """
        self.session_id = session_id
        self.status = status
        super().__init__(f'Upload session {session_id} is {status}')


class ForbiddenError(DriveError):
    """Raised when the caller does not own the target resource."""


class ObjectBackendError(Exception):
    """Raised when the object storage backend fails an operation."""

    transient = False

    def __init__(self, operation: str, key: str, reason: str) -> None:
        """Initialize ObjectBackendError.

        Args:
            operation: Backend operation that failed.
            key: Object key the operation targeted.
            reason: Backend error code or message.
        """
        self.operation = operation
        self.key = key
        self.reason = reason
        super().__init__(f'Object storage {operation} failed for {key}: {reason}')


class TransientObjectBackendError(ObjectBackendError):
    """Backend failure that may succeed on a later attempt."""

    transient = True


class PermanentObjectBackendError(ObjectBackendError):
    """Backend failure that will not go away by retrying."""


class AncestorIndexCorruptionError(Exception):
    """Raised when stored ancestor rows contradict a folder's depth.

    Not a business error: it signals corrupted tree data and must never
    be handled by repairing rows on the fly.
    """

    def __init__(self, folder_id: UUID, detail: str) -> None:
        """Initialize AncestorIndexCorruptionError.

        Args:
            folder_id: Folder whose ancestor rows are inconsistent.
            detail: What did not match.
        """
        self.folder_id = folder_id
        self.detail = detail
        super().__init__(f'Ancestor index corrupted for {folder_id}: {detail}')
