"""Tests for metadata utilities."""

import uuid

import pytest
from django.core.exceptions import ValidationError

from server.apps.drive.infrastructure.metadata import (
    NAME_MAX_LENGTH,
    add_name_marker,
    build_storage_key,
    normalize_mime_type,
    validate_name,
    validate_size,
    validate_storage_key,
)


def test_validate_name_strips_whitespace():
    """Test surrounding whitespace is removed."""
    assert validate_name('  report.pdf ') == 'report.pdf'


@pytest.mark.parametrize('name', [
    '',
    '   ',
    '.',
    '..',
    'a/b',
    'a\\b',
    'what?',
    'x' * 256,
])
def test_validate_name_rejects(name):
    """Test empty, reserved, oversized and unsafe names are refused."""
    with pytest.raises(ValidationError):
        validate_name(name)


def test_validate_name_uses_kind_in_message():
    """Test the label appears in the error."""
    with pytest.raises(ValidationError, match='Folder name cannot be empty'):
        validate_name('', kind='Folder name')


def test_validate_name_allows_unicode_and_dots():
    """Test ordinary names with dots and non-ASCII letters pass."""
    assert validate_name('Zdjęcia 2024.tar.gz') == 'Zdjęcia 2024.tar.gz'
    assert validate_name('.bashrc') == '.bashrc'


def test_add_name_marker():
    """Test the marker goes before the extension."""
    assert add_name_marker('report.pdf', ' (restored)') == 'report (restored).pdf'
    assert add_name_marker('notes', ' (restored)') == 'notes (restored)'


def test_add_name_marker_shortens_stem():
    """Test a long name is cut in the stem so the result stays valid."""
    marked = add_name_marker('x' * 251 + '.pdf', ' (restored)')

    assert len(marked) == NAME_MAX_LENGTH
    assert marked.endswith('x (restored).pdf')
    assert validate_name(marked) == marked


def test_add_name_marker_long_suffix():
    """Test an extension that leaves no room for the stem is cut as well."""
    marked = add_name_marker('a.' + 'y' * 253, ' (restored)')

    assert len(marked) == NAME_MAX_LENGTH
    assert marked.endswith(' (restored)')
    assert validate_name(marked) == marked


def test_normalize_mime_type():
    """Test MIME types are lowercased and defaulted."""
    assert normalize_mime_type('Image/PNG') == 'image/png'
    assert normalize_mime_type('') == 'application/octet-stream'


@pytest.mark.parametrize('mime_type', ['text', 'text/', '/plain', 'a/b/c'])
def test_normalize_mime_type_rejects(mime_type):
    """Test values that are not type/subtype are refused."""
    with pytest.raises(ValidationError):
        normalize_mime_type(mime_type)


def test_validate_size():
    """Test sizes between zero and the limit pass."""
    validate_size(0, 10)
    validate_size(10, 10)

    with pytest.raises(ValidationError):
        validate_size(-1, 10)
    with pytest.raises(ValidationError, match='exceeds the limit'):
        validate_size(11, 10)


def test_storage_key_layout():
    """Test keys are owner, file and session joined by slashes."""
    file_id = uuid.uuid4()
    session_id = uuid.uuid4()

    storage_key = build_storage_key(42, file_id, session_id)

    assert storage_key == f'42/{file_id}/{session_id}'
    validate_storage_key(storage_key)


@pytest.mark.parametrize('storage_key', [
    '',
    'file.txt',
    f'abc/{uuid.uuid4()}/{uuid.uuid4()}',
    f'1/not-a-uuid/{uuid.uuid4()}',
    f'1/{uuid.uuid4()}/{uuid.uuid4()}/extra',
])
def test_validate_storage_key_rejects(storage_key):
    """Test keys outside the staging layout are refused."""
    with pytest.raises(ValidationError):
        validate_storage_key(storage_key)
