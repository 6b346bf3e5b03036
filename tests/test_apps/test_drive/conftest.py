"""Shared fixtures for drive app tests."""

import boto3
import pytest
from django.contrib.auth import get_user_model
from moto import mock_aws

from server.apps.drive.logic.file_operations import (
    complete_upload,
    initiate_upload,
)
from server.apps.drive.logic.folder_operations import create_folder

User = get_user_model()

_BUCKET = 'drive'


@pytest.fixture
def user(db):
    """Create test user.

    Returns:
        User instance for testing.
    """
    return User.objects.create_user(
        username='testuser',
        password='testpass123',
        email='test@example.com',
    )


@pytest.fixture
def other_user(db):
    """Create second test user for isolation tests.

    Returns:
        Second user instance.
    """
    return User.objects.create_user(
        username='otheruser',
        password='testpass123',
        email='other@example.com',
    )


@pytest.fixture
def mock_s3():
    """Mock S3 service with drive bucket.

    Yields:
        boto3 S3 resource with drive bucket created.
    """
    with mock_aws():
        conn = boto3.resource('s3', region_name='us-east-1')
        conn.create_bucket(Bucket=_BUCKET)
        yield conn


@pytest.fixture
def bucket(mock_s3):
    """The mocked drive bucket."""
    return mock_s3.Bucket(_BUCKET)


@pytest.fixture
def folder(user):
    """Top-level folder owned by ``user``."""
    return create_folder(user, 'Documents')


@pytest.fixture
def make_file(user, folder, bucket):
    """Factory uploading an active file, its object stored in the bucket.

    Returns:
        Callable ``(name='report.pdf', target=None, content=b'...') -> File``.
    """

    def factory(name='report.pdf', target=None, content=b'file content'):
        target = target or folder
        ticket = initiate_upload(
            target.owner,
            target.id,
            name,
            'application/pdf',
            len(content),
        )
        bucket.put_object(Key=ticket.plan.storage_key, Body=content)
        return complete_upload(
            ticket.plan.storage_key,
            'v1',
            len(content),
            'etag-' + name,
        )

    return factory
