import datetime
import logging
from typing import AsyncIterator, Dict, Optional

import aiohttp

from ktail.clients import api
from ktail.structs import configuration
from ktail.utilities import aiotasks

logger = logging.getLogger(__name__)


async def stream_logs(
        *,
        settings: configuration.Settings,
        namespace: str,
        name: str,
        container: str,
        since_time: Optional[datetime.datetime] = None,
        since_seconds: Optional[int] = None,
        tail_lines: Optional[int] = None,
        stopper: Optional[aiotasks.Future] = None,
) -> AsyncIterator[bytes]:
    """
    Follow the log of a single container of a pod, line by line.

    Every line is prefixed with an RFC3339 timestamp by the server,
    so that the stream can be continued from the last seen line if reconnected.
    The stream ends when the server closes it (e.g. the container has exited),
    or when the stopper is done.
    """
    params: Dict[str, str] = {}
    params['container'] = container
    params['follow'] = 'true'
    params['timestamps'] = 'true'
    if since_time is not None:
        params['sinceTime'] = since_time.astimezone(datetime.timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')
    elif since_seconds is not None:
        params['sinceSeconds'] = str(since_seconds)
    if tail_lines is not None and since_time is None:
        params['tailLines'] = str(tail_lines)

    url = api.build_url(f'pods/{name}/log', namespace=namespace, params=params)
    async for line in api.stream_lines(
        url=url,
        logger=logger,
        settings=settings,
        stopper=stopper,
        timeout=aiohttp.ClientTimeout(
            total=None,
            sock_connect=settings.networking.connect_timeout,
        ),
    ):
        yield line
