"""S3-compatible object storage for doctor images, identification documents
and medical reports."""

import logging
import re
import uuid
from datetime import datetime

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from carepulse.core import config

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r'[^A-Za-z0-9._-]+')
MAX_FILENAME_LENGTH = 120


class StorageError(Exception):
    """Raised when the object storage backend rejects or fails a request."""


def get_storage_client():
    return boto3.client(
        's3',
        endpoint_url=config.S3_ENDPOINT_URL,
        region_name=config.S3_REGION,
        aws_access_key_id=config.S3_ACCESS_KEY_ID or None,
        aws_secret_access_key=config.S3_SECRET_ACCESS_KEY or None,
        config=Config(signature_version='s3v4'),
    )


def sanitize_filename(filename: str | None) -> str:
    name = (filename or '').replace('\\', '/').rsplit('/', 1)[-1]
    name = _UNSAFE_FILENAME_CHARS.sub('_', name).strip('._')
    if not name:
        name = 'file'
    return name[-MAX_FILENAME_LENGTH:]


def build_object_key(prefix: str, filename: str | None) -> str:
    return f'{prefix}/{uuid.uuid4().hex}_{sanitize_filename(filename)}'


def build_doctor_image_key(filename: str | None) -> str:
    timestamp = int(datetime.now().timestamp() * 1000)
    return build_object_key('doctors', f'doctor_{timestamp}_{sanitize_filename(filename)}')


def upload_file(content: bytes, key: str, content_type: str | None = None) -> str:
    extra = {'ContentType': content_type} if content_type else {}
    try:
        get_storage_client().put_object(Bucket=config.S3_BUCKET_NAME, Key=key, Body=content, **extra)
    except (BotoCoreError, ClientError) as exc:
        logger.error('Failed to upload object %s: %s', key, exc)
        raise StorageError(f'Failed to upload {key}') from exc

    logger.info('Uploaded object %s (%d bytes)', key, len(content))
    return key


def delete_file(key: str) -> None:
    try:
        get_storage_client().delete_object(Bucket=config.S3_BUCKET_NAME, Key=key)
    except (BotoCoreError, ClientError) as exc:
        logger.error('Failed to delete object %s: %s', key, exc)
        raise StorageError(f'Failed to delete {key}') from exc

    logger.info('Deleted object %s', key)


def generate_presigned_url(key: str, expiration: int | None = None) -> str:
    params = {'Bucket': config.S3_BUCKET_NAME, 'Key': key}
    if key.lower().endswith(('.pdf', '.png', '.jpg', '.jpeg', '.webp', '.gif')):
        params['ResponseContentDisposition'] = 'inline'

    try:
        return get_storage_client().generate_presigned_url(
            'get_object',
            Params=params,
            ExpiresIn=expiration or config.S3_PRESIGNED_URL_EXPIRATION,
        )
    except (BotoCoreError, ClientError) as exc:
        logger.error('Failed to generate presigned URL for %s: %s', key, exc)
        raise StorageError(f'Failed to sign {key}') from exc
