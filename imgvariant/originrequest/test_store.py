import io
from typing import Generator
from unittest.mock import MagicMock

import boto3
import pytest
from botocore.exceptions import ClientError, EndpointConnectionError
from botocore.response import StreamingBody
from botocore.stub import Stubber
from mypy_boto3_s3.client import S3Client

from imgvariant.typing import S3Key

from .store import (
    DEFAULT_VARIANT_MAX_AGE,
    ImageBlob,
    S3BlobStore,
    StoreError,
    is_not_found_client_error,
    variant_cache_control
)

BUCKET = 'original-bucket'
REGION = 'us-east-1'
KEY = S3Key('cats/a.jpg')
VARIANT_KEY = S3Key('resized/600/cats/a.jpg')
JPEG_MIME = 'image/jpeg'
CACHE_CONTROL = variant_cache_control(DEFAULT_VARIANT_MAX_AGE)


def client_error(code: str, operation: str) -> ClientError:
  return ClientError({'Error': {'Code': code, 'Message': code}}, operation)


@pytest.fixture
def s3() -> S3Client:
  return boto3.client(
      's3', region_name=REGION, aws_access_key_id='testing', aws_secret_access_key='testing')


@pytest.fixture
def stubber(s3: S3Client) -> Generator[Stubber, None, None]:
  with Stubber(s3) as stubber:
    yield stubber
    stubber.assert_no_pending_responses()


@pytest.fixture
def store(s3: S3Client) -> S3BlobStore:
  return S3BlobStore(s3, BUCKET, CACHE_CONTROL)


def test_cache_control() -> None:
  assert 'public, max-age=31536000, immutable' == CACHE_CONTROL


@pytest.mark.parametrize(
    'code,expected', [
        ('404', True),
        ('NoSuchKey', True),
        ('NotFound', True),
        ('403', False),
        ('AccessDenied', False),
    ])
def test_is_not_found_client_error(code: str, expected: bool) -> None:
  assert expected == is_not_found_client_error(client_error(code, 'HeadObject'))


def test_is_not_found_client_error_without_code() -> None:
  assert not is_not_found_client_error(ClientError({}, 'HeadObject'))


def test_exists(store: S3BlobStore, stubber: Stubber) -> None:
  stubber.add_response('head_object', {'ContentType': JPEG_MIME})
  assert store.exists(VARIANT_KEY)


def test_exists_absent(store: S3BlobStore, stubber: Stubber) -> None:
  stubber.add_client_error('head_object', service_error_code='404', http_status_code=404)
  assert not store.exists(VARIANT_KEY)


def test_exists_forbidden(store: S3BlobStore, stubber: Stubber) -> None:
  stubber.add_client_error('head_object', service_error_code='403', http_status_code=403)
  with pytest.raises(StoreError) as e:
    store.exists(VARIANT_KEY)
  assert 'head_object' == e.value.operation
  assert VARIANT_KEY == e.value.key
  assert isinstance(e.value.__cause__, ClientError)


def test_get(store: S3BlobStore, stubber: Stubber) -> None:
  data = b'\xff\xd8\xff\xe0 not really a jpeg'
  stubber.add_response(
      'get_object', {
          'Body': StreamingBody(io.BytesIO(data), len(data)),
          'ContentType': JPEG_MIME,
      })

  assert ImageBlob(data=data, content_type=JPEG_MIME) == store.get(KEY)


def test_get_absent(store: S3BlobStore, stubber: Stubber) -> None:
  stubber.add_client_error('get_object', service_error_code='NoSuchKey', http_status_code=404)
  assert store.get(KEY) is None


def test_get_failure(store: S3BlobStore, stubber: Stubber) -> None:
  stubber.add_client_error('get_object', service_error_code='InternalError', http_status_code=500)
  with pytest.raises(StoreError):
    store.get(KEY)


def test_put() -> None:
  s3 = MagicMock()
  store = S3BlobStore(s3, BUCKET, CACHE_CONTROL)

  store.put(VARIANT_KEY, ImageBlob(data=b'resized', content_type=JPEG_MIME))

  s3.put_object.assert_called_once_with(
      Bucket=BUCKET,
      Key=VARIANT_KEY,
      Body=b'resized',
      ContentType=JPEG_MIME,
      CacheControl=CACHE_CONTROL)


def test_put_failure() -> None:
  s3 = MagicMock()
  s3.put_object.side_effect = client_error('AccessDenied', 'PutObject')
  store = S3BlobStore(s3, BUCKET, CACHE_CONTROL)

  with pytest.raises(StoreError) as e:
    store.put(VARIANT_KEY, ImageBlob(data=b'resized', content_type=JPEG_MIME))
  assert 'put_object' == e.value.operation


def test_connection_failure() -> None:
  s3 = MagicMock()
  s3.head_object.side_effect = EndpointConnectionError(endpoint_url='https://s3.example.com')
  store = S3BlobStore(s3, BUCKET, CACHE_CONTROL)

  with pytest.raises(StoreError):
    store.exists(VARIANT_KEY)
