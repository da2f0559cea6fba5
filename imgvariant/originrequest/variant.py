import dataclasses
import logging
import time
from enum import Enum
from typing import Any, Optional
from urllib import parse

from imgvariant.originrequest.store import BlobStore
from imgvariant.originrequest.transform import Transformer
from imgvariant.typing import HttpPath, S3Key

VARIANT_KEY_PREFIX = 'resized/'


def strip_leading_separator(path: str) -> str:
  return path[1:] if path.startswith('/') else path


def key_from_path(path: HttpPath) -> S3Key:
  return S3Key(parse.unquote(strip_leading_separator(path)))


def path_from_key(key: S3Key) -> HttpPath:
  return HttpPath('/' + parse.quote(key))


def variant_key(path: str, size: int) -> S3Key:
  return S3Key(f'{VARIANT_KEY_PREFIX}{size}/{strip_leading_separator(path)}')


def is_variant_path(path: str) -> bool:
  return strip_leading_separator(path).startswith(VARIANT_KEY_PREFIX)


class Resolution(Enum):
  EXISTING = 0
  CREATED = 1
  UNAVAILABLE = 2


@dataclasses.dataclass(eq=True, frozen=True)
class ResolvedLocation:
  kind: Resolution
  key: Optional[S3Key] = None


UNAVAILABLE = ResolvedLocation(Resolution.UNAVAILABLE)


class VariantResolver:
  # No locking: concurrent misses may both put identical output.

  def __init__(
      self,
      log: logging.Logger,
      store: BlobStore,
      transformer: Transformer,
  ):
    self.log = log
    self.store = store
    self.transformer = transformer
    self.log_context: dict[str, Any] = {}

  def log_debug(self, message: str, dict: dict[str, Any]) -> None:
    self.log.debug({
        'message': message,
        **self.log_context,
        **dict,
    })

  def resolve(self, key: S3Key, size: int) -> ResolvedLocation:
    if is_variant_path(key):
      return ResolvedLocation(Resolution.EXISTING, key)

    vkey = variant_key(key, size)
    self.log_debug('variant key', {'key': vkey})

    if self.store.exists(vkey):
      return ResolvedLocation(Resolution.EXISTING, vkey)

    original = self.store.get(key)
    if original is None:
      self.log_debug('original not found', {'key': key})
      return UNAVAILABLE

    start_ns = time.time_ns()
    blob = self.transformer.resize(original.data, size)
    vips_us = (time.time_ns() - start_ns) // 1000

    self.store.put(vkey, blob)
    self.log_debug(
        'variant created', {
            'key': vkey,
            'content_type': blob.content_type,
            'img_size': len(blob.data),
            'vips_us': vips_us,
        })

    return ResolvedLocation(Resolution.CREATED, vkey)
