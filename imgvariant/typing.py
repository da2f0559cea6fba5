from typing import Literal, NewType, NotRequired, Optional, TypedDict

# Percent-encoded CloudFront URI, always with a leading slash.
HttpPath = NewType('HttpPath', str)
# Decoded S3 object key, never with a leading slash.
S3Key = NewType('S3Key', str)


class Header(TypedDict):
  key: NotRequired[str]
  value: str


class S3Origin(TypedDict):
  customHeaders: dict[str, list[Header]]
  domainName: str
  path: str
  authMethod: Literal['origin-access-identity', 'none']
  region: NotRequired[str]


class Origin(TypedDict):
  s3: NotRequired[S3Origin]


class Request(TypedDict):
  method: Literal['GET', 'HEAD', 'OPTIONS', 'TRACE', 'PUT', 'DELETE', 'POST', 'PATCH', 'CONNECT']
  uri: HttpPath
  querystring: str
  headers: dict[str, list[Header]]
  clientIp: str
  origin: Origin


class OriginRequestConfig(TypedDict):
  distributionDomainName: str
  distributionId: str
  eventType: Literal['origin-request']
  requestId: str


class OriginRequestRecord(TypedDict):
  config: OriginRequestConfig
  request: Optional[Request]


class OriginRequestRecordContainer(TypedDict):
  cf: OriginRequestRecord


class OriginRequestEvent(TypedDict):
  Records: list[OriginRequestRecordContainer]
