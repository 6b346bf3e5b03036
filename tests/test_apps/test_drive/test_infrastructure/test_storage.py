"""Tests for the object storage backend."""

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError
from django.core.files.storage import default_storage

from server.apps.drive.exceptions import (
    PermanentObjectBackendError,
    TransientObjectBackendError,
)
from server.apps.drive.infrastructure.storage import ObjectStorage


class _FailingClient:
    """boto3 client stand-in whose calls all raise ``error``."""

    def __init__(self, error):
        self.error = error

    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise self.error

        return fail


def _client_error(code):
    return ClientError({'Error': {'Code': code, 'Message': code}}, 'Op')


@pytest.fixture
def failing_client(monkeypatch):
    """Install a client that raises the given error on every call."""

    def install(error):
        monkeypatch.setattr(
            ObjectStorage,
            'client',
            property(lambda self: _FailingClient(error)),
        )

    return install


def test_default_storage_is_object_storage():
    """Test the drive backend is the configured default storage."""
    assert isinstance(default_storage, ObjectStorage)


def test_delete_object(bucket):
    """Test an existing object is removed."""
    bucket.put_object(Key='1/a', Body=b'x')

    default_storage.delete_object('1/a')

    assert not list(bucket.objects.all())


def test_delete_absent_object(bucket):
    """Test deleting a missing key is not an error."""
    default_storage.delete_object('1/missing')


def test_multipart_lifecycle(bucket):
    """Test an upload can be created and aborted, and aborted again."""
    upload_id = default_storage.create_multipart_upload('1/big', 'video/mp4')

    assert upload_id
    default_storage.abort_multipart_upload('1/big', upload_id)
    default_storage.abort_multipart_upload('1/big', upload_id)


def test_upload_urls(bucket):
    """Test presigned upload locators point at the key."""
    url = default_storage.generate_upload_url('1/a', 60, 'text/plain')
    upload_id = default_storage.create_multipart_upload('1/b')
    part_url = default_storage.generate_part_upload_url('1/b', upload_id, 2, 60)

    assert '/1/a' in url
    assert 'Signature' in url or 'X-Amz-Signature' in url
    assert 'partNumber=2' in part_url
    assert f'uploadId={upload_id}' in part_url


def test_download_url_names_file(bucket):
    """Test the download locator asks the browser to save with the name."""
    url = default_storage.generate_download_url('1/a', 60, 'report.pdf')

    assert 'response-content-disposition' in url
    assert 'report.pdf' in url


@pytest.mark.parametrize('code', ['SlowDown', 'ServiceUnavailable', '503'])
def test_transient_errors(failing_client, code):
    """Test throttling and outages map to a transient error."""
    failing_client(_client_error(code))

    with pytest.raises(TransientObjectBackendError) as exc_info:
        default_storage.delete_object('1/a')

    assert exc_info.value.transient
    assert exc_info.value.reason == code


def test_connection_error_is_transient(failing_client):
    """Test a connection failure maps to a transient error."""
    failing_client(EndpointConnectionError(endpoint_url='http://minio:9000'))

    with pytest.raises(TransientObjectBackendError):
        default_storage.delete_object('1/a')


def test_permanent_errors(failing_client):
    """Test access errors map to a permanent error."""
    failing_client(_client_error('AccessDenied'))

    with pytest.raises(PermanentObjectBackendError) as exc_info:
        default_storage.create_multipart_upload('1/a')

    assert not exc_info.value.transient
    assert exc_info.value.operation == 'create_multipart'
    assert exc_info.value.key == '1/a'


def test_absent_upload_abort_is_fine(failing_client):
    """Test aborting an upload the backend forgot is not an error."""
    failing_client(_client_error('NoSuchUpload'))

    default_storage.abort_multipart_upload('1/a', 'upload-id')
