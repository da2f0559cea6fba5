import dataclasses
from typing import Protocol

from pyvips import Error as VipsError  # type: ignore
from pyvips import Image  # type: ignore

from imgvariant.originrequest.store import ImageBlob

QUALITY = 80

# JPEG has no alpha channel.
FLATTEN_COLOR = [230.0, 230.0, 230.0]

DEFAULT_CONTENT_TYPE = 'image/jpeg'

content_types = {
    'png': 'image/png',
    'webp': 'image/webp',
    'gif': 'image/gif',
}

save_suffixes = {
    'image/jpeg': '.jpg',
    'image/png': '.png',
    'image/webp': '.webp',
    'image/gif': '.gif',
}


class TransformError(Exception):

  def __init__(self, reason: str):
    super().__init__(reason)
    self.reason = reason


@dataclasses.dataclass(eq=True, frozen=True)
class Size:
  width: int
  height: int

  @classmethod
  def from_image(cls, image: Image) -> 'Size':
    return cls(image.get('width'), image.get('height'))


@dataclasses.dataclass(eq=True, frozen=True)
class SourceMetadata:
  width: int
  height: int
  format: str

  @property
  def size(self) -> Size:
    return Size(self.width, self.height)


class Transformer(Protocol):

  def resize(self, data: bytes, target_short_side: int) -> ImageBlob:
    ...


def content_type_for(format: str) -> str:
  return content_types.get(format, DEFAULT_CONTENT_TYPE)


def format_from_loader(loader: str) -> str:
  # e.g. 'jpegload_buffer' -> 'jpeg'
  return loader.split('load', 1)[0]


def round_div(a: int, b: int) -> int:
  # Half-up rounding of a / b for non-negative integers.
  return (2 * a + b) // (2 * b)


def calc_target_size(original: Size, target_short_side: int) -> Size:
  # Never enlarges.
  short_side = min(original.width, original.height)
  if short_side <= target_short_side:
    return original

  return Size(
      round_div(original.width * target_short_side, short_side),
      round_div(original.height * target_short_side, short_side))


class VipsTransformer:

  def read_metadata(self, data: bytes) -> SourceMetadata:
    try:
      image: Image = Image.new_from_buffer(data, '')
      size = Size.from_image(image)
      loader: str = image.get('vips-loader')
    except VipsError as e:
      raise TransformError('no-dimensions') from e

    if size.width <= 0 or size.height <= 0:
      raise TransformError('no-dimensions')

    return SourceMetadata(size.width, size.height, format_from_loader(loader))

  def resize(self, data: bytes, target_short_side: int) -> ImageBlob:
    meta = self.read_metadata(data)
    target = calc_target_size(meta.size, target_short_side)
    content_type = content_type_for(meta.format)
    suffix = save_suffixes[content_type]

    try:
      image: Image = Image.thumbnail_buffer(
          data, target.width, height=target.height, size='down', no_rotate=True)

      if suffix == '.jpg' and image.hasalpha():
        image = image.flatten(background=FLATTEN_COLOR)

      if suffix in ['.jpg', '.webp']:
        resized: bytes = image.write_to_buffer(suffix, Q=QUALITY)
      else:
        resized = image.write_to_buffer(suffix)
    except VipsError as e:
      raise TransformError(f'failed to resize: {e}') from e

    return ImageBlob(data=resized, content_type=content_type)
