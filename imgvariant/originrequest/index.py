import dataclasses
import datetime
import logging
import re
import sys
from logging import Logger
from typing import Any, Optional
from urllib import parse

import boto3
from botocore.exceptions import BotoCoreError
from pythonjsonlogger.jsonlogger import JsonFormatter

import imgvariant
from imgvariant.originrequest.store import (
    DEFAULT_VARIANT_MAX_AGE,
    BlobStore,
    S3BlobStore,
    variant_cache_control
)
from imgvariant.originrequest.transform import Transformer, VipsTransformer
from imgvariant.originrequest.variant import (
    Resolution,
    VariantResolver,
    is_variant_path,
    key_from_path,
    path_from_key
)
from imgvariant.typing import HttpPath, OriginRequestEvent, Request

SIZE_PARAM = 's'

DEFAULT_ALLOWED_SIZES = (300, 600, 1200)

size_token_re = re.compile(r'[0-9]+')
# Leading integer, trailing characters ignored: ' +600px' -> 600
size_param_re = re.compile(r'\s*([+-]?[0-9]+)')


class MyJsonFormatter(JsonFormatter):

  def __init__(self) -> None:
    super().__init__(json_ensure_ascii=False)

  def add_fields(self, log_record: Any, record: Any, message_dict: Any) -> None:
    log_record['_ts'] = datetime.datetime.now(datetime.UTC).strftime('%Y-%m-%dT%H:%M:%S.%fZ')

    if log_record.get('level'):
      log_record['level'] = log_record['level'].upper()
    else:
      log_record['level'] = record.levelname

    log_record['version'] = imgvariant.version

    super().add_fields(log_record, record, message_dict)


def init_logging() -> Logger:
  # https://stackoverflow.com/a/11548754/1160341
  logger = logging.getLogger()
  logger.setLevel(logging.DEBUG)
  for h in logger.handlers:
    logger.removeHandler(h)

  logging.getLogger('botocore').setLevel(logging.WARNING)
  logging.getLogger('urllib3').setLevel(logging.INFO)

  log = logging.getLogger(__name__)
  log_handler = logging.StreamHandler()
  log_handler.setFormatter(MyJsonFormatter())
  log_handler.setLevel(logging.DEBUG)
  log_handler.setStream(sys.stderr)
  log.addHandler(log_handler)
  log.propagate = False

  return log


logger = init_logging()


class InvalidConfig(Exception):
  pass


def get_header(req: Request, name: str) -> str:
  return req['origin']['s3']['customHeaders'][name][0]['value']


def get_header_or(req: Request, name: str, default: str = '') -> str:
  return (get_header(req, name) if name in req['origin']['s3']['customHeaders'] else default)


def parse_allowed_sizes(s: str) -> tuple[int, ...]:
  sizes = set()
  for token in s.split(','):
    token = token.strip()
    if size_token_re.fullmatch(token) is None or int(token) <= 0:
      raise InvalidConfig(f'invalid allowed size: "{token}"')
    sizes.add(int(token))
  return tuple(sorted(sizes))


def parse_max_age(s: str) -> int:
  max_age = int(s)
  if max_age <= 0:
    raise InvalidConfig(f'invalid max age: "{s}"')
  return max_age


@dataclasses.dataclass(eq=True, frozen=True)
class Config:
  region: str
  bucket: str
  allowed_sizes: tuple[int, ...] = DEFAULT_ALLOWED_SIZES
  variant_max_age: int = DEFAULT_VARIANT_MAX_AGE


@dataclasses.dataclass(eq=True, frozen=True)
class FieldUpdate:
  reason: str
  uri: Optional[str] = None


class SizePolicy:
  # normalize() returns None to serve the original; it never raises.

  def __init__(self, allowed_sizes: tuple[int, ...]):
    self.allowed_sizes = frozenset(allowed_sizes)

  @staticmethod
  def token_from_querystring(qs: dict[str, list[str]]) -> Optional[str]:
    if SIZE_PARAM not in qs:
      return None
    return qs[SIZE_PARAM][0]

  def normalize(self, token: Optional[str]) -> Optional[int]:
    if token is None:
      return None

    m = size_param_re.match(token)
    if m is None:
      return None

    size = int(m[1])
    if size not in self.allowed_sizes:
      return None

    return size


class RequestRewriter:
  instances: dict[Config, 'RequestRewriter'] = {}

  def __init__(
      self,
      log: logging.Logger,
      config: Config,
      store: BlobStore,
      transformer: Transformer,
  ):
    self.log = log
    self.config = config
    self.size_policy = SizePolicy(config.allowed_sizes)
    self.resolver = VariantResolver(log, store, transformer)
    self.log_context = {'path': '', 'qstr': ''}

  @classmethod
  def from_lambda(
      cls,
      log: Logger,
      req: Request,
  ) -> Optional['RequestRewriter']:
    try:
      region = get_header(req, 'x-env-region')
      bucket = req['origin']['s3']['domainName'].split('.', 1)[0]
      allowed_sizes = parse_allowed_sizes(
          get_header_or(req, 'x-env-allowed-sizes', ','.join(map(str, DEFAULT_ALLOWED_SIZES))))
      variant_max_age = parse_max_age(
          get_header_or(req, 'x-env-variant-max-age', str(DEFAULT_VARIANT_MAX_AGE)))
    except (KeyError, IndexError) as e:
      log.warning({
          'message': 'environment variable not found',
          'key': str(e),
      })
      return None
    except (InvalidConfig, ValueError) as e:
      log.warning({
          'message': 'invalid environment variable',
          'reason': str(e),
      })
      return None

    config = Config(
        region=region,
        bucket=bucket,
        allowed_sizes=allowed_sizes,
        variant_max_age=variant_max_age)

    if config not in cls.instances:
      try:
        s3 = boto3.client('s3', region_name=region)
      except BotoCoreError as e:
        log.warning({
            'message': 'failed to create s3 client',
            'reason': str(e),
        })
        return None
      cls.instances[config] = cls(
          log=log,
          config=config,
          store=S3BlobStore(s3, bucket, variant_cache_control(variant_max_age)),
          transformer=VipsTransformer())

    return cls.instances[config]

  def log_debug(self, message: str, dict: dict[str, Any]) -> None:
    self.log.debug({
        'message': message,
        **self.log_context,
        **dict,
    })

  def log_error(self, message: str, dict: dict[str, Any]) -> None:
    self.log.error({
        'message': message,
        **self.log_context,
        **dict,
    })

  def set_log_context(self, path: HttpPath, qstr: str) -> None:
    self.log_context = {'path': str(path), 'qstr': qstr}
    self.resolver.log_context = self.log_context

  def process(self, path: HttpPath, qs: dict[str, list[str]]) -> FieldUpdate:
    if is_variant_path(path):
      return FieldUpdate(reason='variant path')

    token = self.size_policy.token_from_querystring(qs)
    if token is None:
      return FieldUpdate(reason='no size')

    self.log_debug('requested size', {'size': token})
    size = self.size_policy.normalize(token)
    if size is None:
      self.log_debug('size not allowed', {'size': token})
      return FieldUpdate(reason='size not allowed')

    try:
      location = self.resolver.resolve(key_from_path(path), size)
    except Exception as e:
      self.log_error('error during resolve()', {'reason': str(e), 'error': type(e).__name__})
      return FieldUpdate(reason='error occurred')

    match location.kind:
      case Resolution.EXISTING:
        return FieldUpdate(reason='variant found', uri=path_from_key(location.key))
      case Resolution.CREATED:
        return FieldUpdate(reason='variant created', uri=path_from_key(location.key))
      case Resolution.UNAVAILABLE:
        return FieldUpdate(reason='no orig')
      case _:
        raise Exception('system error')

  def handle(self, path: HttpPath, qstr: str) -> HttpPath:
    result = self.process(path, parse.parse_qs(qstr))
    return path if result.uri is None else HttpPath(result.uri)

  def rewrite(self, req: Request) -> Request:
    path = req['uri']
    qstr = req['querystring']

    self.set_log_context(path, qstr)
    result = self.process(path, parse.parse_qs(qstr))

    if result.uri is not None:
      req['uri'] = HttpPath(result.uri)

    self.log_debug('done', {
        'uri': req['uri'],
        'reason': result.reason,
    })

    return req


def get_request(event: Optional[OriginRequestEvent]) -> Optional[Request]:
  if not event or not event.get('Records'):
    return None
  return event['Records'][0].get('cf', {}).get('request')


def lambda_main(event: Optional[OriginRequestEvent]) -> Optional[Request]:
  req = get_request(event)
  if req is None:
    return None

  rewriter = RequestRewriter.from_lambda(logger, req)
  if rewriter is None:
    return req

  return rewriter.rewrite(req)
