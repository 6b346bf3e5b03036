"""Metadata validation utilities for folders and files."""

import uuid
from pathlib import PurePosixPath
from typing import Final

from django.core.exceptions import ValidationError

NAME_MAX_LENGTH: Final = 255
_FORBIDDEN_NAME_CHARS: Final = frozenset('/\\:*?"<>|')
_RESERVED_NAMES: Final = frozenset({'.', '..'})
_STORAGE_KEY_PARTS: Final = 3
_DEFAULT_MIME_TYPE: Final = 'application/octet-stream'


def validate_name(name: str, kind: str = 'Name') -> str:
    """Validate and normalize a folder or file name.

    Args:
        name: Raw name from the caller.
        kind: Label used in error messages ('Folder name', 'File name').

    Returns:
        Name with surrounding whitespace removed.

    Raises:
        ValidationError: If the name is empty, reserved, too long or
            contains a path separator or other forbidden character.
    """
    trimmed = name.strip()

    if not trimmed:
        raise ValidationError(f'{kind} cannot be empty')

    if trimmed in _RESERVED_NAMES:
        raise ValidationError(f'{kind} {trimmed!r} is reserved')

    if len(trimmed) > NAME_MAX_LENGTH:
        raise ValidationError(
            f'{kind} is too long ({len(trimmed)} > {NAME_MAX_LENGTH})',
        )

    forbidden = _FORBIDDEN_NAME_CHARS.intersection(trimmed)
    if forbidden:
        raise ValidationError(
            f'{kind} contains forbidden characters: '
            + ' '.join(sorted(forbidden)),
        )

    return trimmed


def add_name_marker(name: str, marker: str) -> str:
    """Insert ``marker`` before the extension, shortening the stem to fit.

    Example: add_name_marker('report.pdf', ' (restored)') ->
    'report (restored).pdf'

    Args:
        name: Valid file or folder name.
        marker: Text to insert, e.g. ' (restored)'.

    Returns:
        Marked name no longer than NAME_MAX_LENGTH.
    """
    path = PurePosixPath(name)
    stem, suffix = path.stem, path.suffix
    room = NAME_MAX_LENGTH - len(marker) - len(suffix)
    if room < 1:
        stem, suffix = name, ''
        room = NAME_MAX_LENGTH - len(marker)
    return f'{stem[:room].rstrip()}{marker}{suffix}'


def normalize_mime_type(mime_type: str) -> str:
    """Validate a MIME type and lowercase it.

    Args:
        mime_type: MIME type such as 'Image/PNG'. Empty means unknown.

    Returns:
        Lowercase MIME type, 'application/octet-stream' if empty.

    Raises:
        ValidationError: If the value is not of the form 'type/subtype'.
    """
    trimmed = mime_type.strip().lower()
    if not trimmed:
        return _DEFAULT_MIME_TYPE

    main_type, sep, sub_type = trimmed.partition('/')
    if not sep or not main_type or not sub_type or '/' in sub_type:
        raise ValidationError(f'Invalid MIME type: {mime_type!r}')
    return trimmed


def validate_size(size_bytes: int, max_size: int) -> None:
    """Validate a declared upload size.

    Args:
        size_bytes: Size declared by the client.
        max_size: Largest accepted upload in bytes.

    Raises:
        ValidationError: If the size is negative or above the limit.
    """
    if size_bytes < 0:
        raise ValidationError('File size cannot be negative')
    if size_bytes > max_size:
        raise ValidationError(
            f'File size {size_bytes} exceeds the limit of {max_size} bytes',
        )


def build_storage_key(
    owner_id: int,
    file_id: uuid.UUID,
    session_id: uuid.UUID,
) -> str:
    """Build the object key an upload session stages its object under.

    Example: '42/5f0c.../9a1b...'

    Args:
        owner_id: Owner's user ID (keeps users isolated by prefix).
        file_id: File the upload belongs to.
        session_id: Upload session identifier.

    Returns:
        Object key.
    """
    return f'{owner_id}/{file_id}/{session_id}'


def validate_storage_key(storage_key: str) -> None:
    """Validate an object key reported back by the storage backend.

    Args:
        storage_key: Key in the '{owner_id}/{file_id}/{session_id}' form.

    Raises:
        ValidationError: If the key does not follow the staging layout.
    """
    if not storage_key:
        raise ValidationError('Storage key cannot be empty')

    path_parts = PurePosixPath(storage_key).parts
    if len(path_parts) != _STORAGE_KEY_PARTS:
        raise ValidationError(f'Malformed storage key: {storage_key!r}')

    owner_part, file_part, session_part = path_parts
    if not owner_part.isdigit():
        raise ValidationError('Storage key must start with user ID')

    try:
        uuid.UUID(file_part)
        uuid.UUID(session_part)
    except ValueError as error:
        raise ValidationError(
            f'Malformed storage key: {storage_key!r}',
        ) from error

