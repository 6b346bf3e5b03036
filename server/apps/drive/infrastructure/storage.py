"""Object storage backend for staged uploads and version objects."""

import logging
from typing import Any, Final, final

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionError as BotoConnectionError,
    HTTPClientError,
)
from storages.backends.s3 import S3Storage

from server.apps.drive.exceptions import (
    ObjectBackendError,
    PermanentObjectBackendError,
    TransientObjectBackendError,
)

logger = logging.getLogger(__name__)

# Error codes S3-compatible backends use for retryable failures
_TRANSIENT_ERROR_CODES: Final = frozenset({
    'InternalError',
    'RequestTimeout',
    'RequestTimeTooSkewed',
    'ServiceUnavailable',
    'SlowDown',
    'Throttling',
    'ThrottlingException',
    '500',
    '502',
    '503',
    '504',
})

# Error codes meaning the object or upload is already gone
_ABSENT_ERROR_CODES: Final = frozenset({'NoSuchKey', 'NoSuchUpload', '404'})


def _error_code(error: ClientError) -> str:
    return str(error.response.get('Error', {}).get('Code', ''))


def _backend_error(
    operation: str,
    key: str,
    error: Exception,
) -> ObjectBackendError:
    """Map a botocore failure onto a transient or permanent backend error.

    Args:
        operation: Backend operation that failed.
        key: Object key involved.
        error: Original botocore exception.

    Returns:
        Backend error to raise in place of the botocore one.
    """
    if isinstance(error, ClientError):
        code = _error_code(error)
        if code in _TRANSIENT_ERROR_CODES:
            return TransientObjectBackendError(operation, key, code)
        return PermanentObjectBackendError(operation, key, code or str(error))
    if isinstance(error, (BotoConnectionError, HTTPClientError)):
        return TransientObjectBackendError(operation, key, str(error))
    return PermanentObjectBackendError(operation, key, str(error))


@final
class ObjectStorage(S3Storage):
    """S3 storage backend for drive objects.

    Extends django-storages S3Storage with:
    - Presigned single-part and multipart upload locators
    - Multipart upload lifecycle (create/abort)
    - Deletes that report failures instead of swallowing them
    """

    @property
    def client(self) -> Any:
        """Low-level boto3 client sharing the storage's connection."""
        return self.connection.meta.client

    def generate_upload_url(
        self,
        key: str,
        expires_in: int,
        content_type: str = '',
    ) -> str:
        """Create a presigned PUT locator for a single-part upload.

        Args:
            key: Object key to upload to.
            expires_in: Seconds the locator stays valid.
            content_type: Content type the client must send.

        Returns:
            Presigned URL.

        Raises:
            ObjectBackendError: If signing fails.
        """
        params = {'Bucket': self.bucket_name, 'Key': key}
        if content_type:
            params['ContentType'] = content_type
        try:
            return self.client.generate_presigned_url(
                'put_object',
                Params=params,
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as error:
            logger.exception('Failed to sign upload URL: %s', key)
            raise _backend_error('sign_upload', key, error) from error

    def create_multipart_upload(self, key: str, content_type: str = '') -> str:
        """Start a multipart upload on the backend.

        Args:
            key: Object key the parts will assemble into.
            content_type: Content type of the final object.

        Returns:
            Backend upload identifier.

        Raises:
            ObjectBackendError: If the backend refuses the upload.
        """
        params = {'Bucket': self.bucket_name, 'Key': key}
        if content_type:
            params['ContentType'] = content_type
        try:
            response = self.client.create_multipart_upload(**params)
        except (BotoCoreError, ClientError) as error:
            logger.exception('Failed to create multipart upload: %s', key)
            raise _backend_error('create_multipart', key, error) from error

        logger.info('Created multipart upload for %s', key)
        return response['UploadId']

    def generate_part_upload_url(
        self,
        key: str,
        upload_id: str,
        part_number: int,
        expires_in: int,
    ) -> str:
        """Create a presigned locator for one part of a multipart upload.

        Args:
            key: Object key of the multipart upload.
            upload_id: Backend upload identifier.
            part_number: 1-based part number.
            expires_in: Seconds the locator stays valid.

        Returns:
            Presigned URL.

        Raises:
            ObjectBackendError: If signing fails.
        """
        try:
            return self.client.generate_presigned_url(
                'upload_part',
                Params={
                    'Bucket': self.bucket_name,
                    'Key': key,
                    'UploadId': upload_id,
                    'PartNumber': part_number,
                },
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as error:
            logger.exception('Failed to sign part %d URL: %s', part_number, key)
            raise _backend_error('sign_part', key, error) from error

    def abort_multipart_upload(self, key: str, upload_id: str) -> None:
        """Abort a multipart upload and drop its staged parts.

        An upload the backend no longer knows about counts as aborted.

        Args:
            key: Object key of the multipart upload.
            upload_id: Backend upload identifier.

        Raises:
            ObjectBackendError: If the backend fails the abort.
        """
        try:
            self.client.abort_multipart_upload(
                Bucket=self.bucket_name,
                Key=key,
                UploadId=upload_id,
            )
        except ClientError as error:
            if _error_code(error) in _ABSENT_ERROR_CODES:
                logger.info('Multipart upload already gone: %s', key)
                return
            logger.exception('Failed to abort multipart upload: %s', key)
            raise _backend_error('abort_multipart', key, error) from error
        except BotoCoreError as error:
            logger.exception('Failed to abort multipart upload: %s', key)
            raise _backend_error('abort_multipart', key, error) from error

        logger.info('Aborted multipart upload for %s', key)

    def generate_download_url(
        self,
        key: str,
        expires_in: int,
        filename: str = '',
    ) -> str:
        """Create a presigned GET locator for an object.

        Args:
            key: Object key to read.
            expires_in: Seconds the locator stays valid.
            filename: Name offered to the browser when saving.

        Returns:
            Presigned URL.

        Raises:
            ObjectBackendError: If signing fails.
        """
        params = {'Bucket': self.bucket_name, 'Key': key}
        if filename:
            params['ResponseContentDisposition'] = (
                f'attachment; filename="{filename}"'
            )
        try:
            return self.client.generate_presigned_url(
                'get_object',
                Params=params,
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as error:
            logger.exception('Failed to sign download URL: %s', key)
            raise _backend_error('sign_download', key, error) from error

    def delete_object(self, key: str) -> None:
        """Delete an object, treating an absent key as deleted.

        Args:
            key: Object key to delete.

        Raises:
            ObjectBackendError: If the backend fails the delete.
        """
        try:
            logger.info('Deleting object from storage: %s', key)
            self.client.delete_object(Bucket=self.bucket_name, Key=key)
        except ClientError as error:
            if _error_code(error) in _ABSENT_ERROR_CODES:
                logger.warning('Object not found (already deleted?): %s', key)
                return
            logger.exception('Failed to delete object: %s', key)
            raise _backend_error('delete', key, error) from error
        except BotoCoreError as error:
            logger.exception('Failed to delete object: %s', key)
            raise _backend_error('delete', key, error) from error

        logger.info('Successfully deleted object: %s', key)
