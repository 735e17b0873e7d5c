"""
Errors of the K8s API, as seen by the tailer.

Only the HTTP-level failures of the API are converted here: they carry the
reasons as explained by the API server in its ``Status`` bodies (if any),
with the original ``aiohttp`` error chained as the cause.

The networking failures (disconnects, timeouts, TLS) are not converted:
they are escalated from ``aiohttp`` as is, and are retried or reported
by the callers in their own way.
"""
import collections.abc
import json
from typing import Dict, Optional, Type

import aiohttp
from typing_extensions import TypedDict


class StatusDetails(TypedDict, total=False):
    retryAfterSeconds: int


# Only the fields used by the tailer; see the "Status" kind of K8s API ("meta/v1").
class Status(TypedDict, total=False):
    kind: str
    code: int
    message: str
    details: StatusDetails


class APIError(Exception):
    """
    A failed API request, with the server's explanation if it has given one.

    The message is the server-provided one, or ``None`` if the response
    was not a ``Status`` object (e.g. an HTML page from a proxy).
    """

    def __init__(self, payload: Optional[Status], *, status: int) -> None:
        self.payload = payload
        self.status = status
        super().__init__(self.message, payload)

    @property
    def code(self) -> Optional[int]:
        return None if self.payload is None else self.payload.get('code')

    @property
    def message(self) -> Optional[str]:
        return None if self.payload is None else self.payload.get('message')

    @property
    def details(self) -> Optional[StatusDetails]:
        return None if self.payload is None else self.payload.get('details')


class APIClientError(APIError):
    """ Any 4xx error; the retry advices (for 429) are in the details. """


class APIServerError(APIError):
    """ Any 5xx error; usually temporary, so the requests are retried. """


class APIBadRequestError(APIClientError):
    pass  # e.g. the container is not started yet, so it has no logs.


class APIUnauthorizedError(APIClientError):
    pass


class APIForbiddenError(APIClientError):
    pass


class APINotFoundError(APIClientError):
    pass  # e.g. the pod is deleted while being tailed.


class APIConflictError(APIClientError):
    pass


ERRORS_BY_STATUS: Dict[int, Type[APIError]] = {
    400: APIBadRequestError,
    401: APIUnauthorizedError,
    403: APIForbiddenError,
    404: APINotFoundError,
    409: APIConflictError,
}


def get_error_class(status: int) -> Type[APIError]:
    if status in ERRORS_BY_STATUS:
        return ERRORS_BY_STATUS[status]
    elif status // 100 == 4:
        return APIClientError
    elif status // 100 == 5:
        return APIServerError
    else:
        return APIError


async def check_response(response: aiohttp.ClientResponse) -> None:
    """
    Raise the API error for a failed response; do nothing for a successful one.

    The response's body is consumed, so it cannot be read afterwards.
    """
    if response.status < 400:
        return

    status = await _read_status(response)
    cls = get_error_class(response.status)
    try:
        response.raise_for_status()
    except aiohttp.ClientResponseError as e:
        raise cls(status, status=response.status) from e


async def _read_status(response: aiohttp.ClientResponse) -> Optional[Status]:
    try:
        payload = await response.json()
    except (json.JSONDecodeError, aiohttp.ContentTypeError, aiohttp.ClientConnectionError):
        return None

    # Anything but a Status object can contain sensitive data, so it is not kept.
    if isinstance(payload, collections.abc.Mapping) and payload.get('kind') == 'Status':
        return payload  # type: ignore
    return None
