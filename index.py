from typing import Optional

from aws_lambda_powertools.utilities.typing import LambdaContext

from imgvariant.originrequest import index as originrequest
from imgvariant.typing import OriginRequestEvent, Request


def origin_request_lambda_handler(
    event: Optional[OriginRequestEvent],
    _: LambdaContext,
) -> Optional[Request]:
  # # For debugging
  # print('event:')
  # print(json.dumps(event))

  ret = originrequest.lambda_main(event)

  # # For debugging
  # print('return:')
  # print(json.dumps(ret))

  return ret
