import dataclasses
from typing import Optional, Protocol

from botocore.exceptions import BotoCoreError, ClientError
from mypy_boto3_s3.client import S3Client

from imgvariant.typing import S3Key

DEFAULT_VARIANT_MAX_AGE = 365 * 24 * 60 * 60


@dataclasses.dataclass(frozen=True)
class ImageBlob:
  data: bytes
  content_type: str


class StoreError(Exception):

  def __init__(self, operation: str, key: str):
    super().__init__(f'{operation} failed: {key}')
    self.operation = operation
    self.key = key


class BlobStore(Protocol):
  # Absence is not an error; other failures raise StoreError.

  def exists(self, key: S3Key) -> bool:
    ...

  def get(self, key: S3Key) -> Optional[ImageBlob]:
    ...

  def put(self, key: S3Key, blob: ImageBlob) -> None:
    ...


def is_not_found_client_error(exception: ClientError) -> bool:
  if 'Error' not in exception.response:
    return False
  if 'Code' not in exception.response['Error']:
    return False
  return exception.response['Error']['Code'] in ['404', 'NoSuchKey', 'NotFound']


def variant_cache_control(max_age: int) -> str:
  return f'public, max-age={max_age}, immutable'


class S3BlobStore:

  def __init__(self, s3: S3Client, bucket: str, cache_control: str):
    self.s3 = s3
    self.bucket = bucket
    self.cache_control = cache_control

  def exists(self, key: S3Key) -> bool:
    try:
      self.s3.head_object(Bucket=self.bucket, Key=key)
    except ClientError as e:
      if is_not_found_client_error(e):
        return False
      raise StoreError('head_object', key) from e
    except BotoCoreError as e:
      raise StoreError('head_object', key) from e
    return True

  def get(self, key: S3Key) -> Optional[ImageBlob]:
    try:
      res = self.s3.get_object(Bucket=self.bucket, Key=key)
      data = b''.join(res['Body'].iter_chunks())
    except ClientError as e:
      if is_not_found_client_error(e):
        return None
      raise StoreError('get_object', key) from e
    except BotoCoreError as e:
      raise StoreError('get_object', key) from e

    return ImageBlob(data=data, content_type=res.get('ContentType', ''))

  def put(self, key: S3Key, blob: ImageBlob) -> None:
    try:
      self.s3.put_object(
          Bucket=self.bucket,
          Key=key,
          Body=blob.data,
          ContentType=blob.content_type,
          CacheControl=self.cache_control)
    except (ClientError, BotoCoreError) as e:
      raise StoreError('put_object', key) from e
