"""
Watching and streaming the pods' watch-events.

This is the watch source of the controller: it lists the pods first,
then watches them from the list's resource version on, and repeats
the whole cycle when the stream is disconnected or the version is gone.

The listed pods are yielded as events with type ``None``, followed by
a bookmark, so that the consumer knows when the initial listing is over.
"""
import asyncio
import enum
import logging
from typing import AsyncIterator, Dict, Optional, Union, cast

import aiohttp

from ktail.clients import api, errors, fetching
from ktail.structs import bodies, configuration
from ktail.utilities import aiotasks

logger = logging.getLogger(__name__)

HTTP_TOO_MANY_REQUESTS_CODE = 429
DEFAULT_RETRY_DELAY_SECONDS = 1


class WatchingError(Exception):
    """
    Raised when an unexpected error happens in the watch-stream API.
    """


class Bookmark(enum.Enum):
    """ Special marks sent in the stream among raw events. """
    LISTED = enum.auto()  # the listing is over, now streaming.


async def infinite_watch(
        *,
        settings: configuration.Settings,
        namespace: Optional[str],
        stopper: Optional[aiotasks.Future] = None,
        _iterations: Optional[int] = None,  # used in tests/mocks/fixtures
) -> AsyncIterator[Union[Bookmark, bodies.RawEvent]]:
    """
    Stream the watch-events infinitely.

    This routine never ends gracefully unless stopped. If a watcher's stream
    fails, a new one is recreated, and the stream continues.
    It only exits with unrecoverable exceptions.
    """
    stopper = stopper if stopper is not None else asyncio.Future()
    where = f'in {namespace!r}' if namespace is not None else 'cluster-wide'
    logger.debug(f"Starting the watch-stream for pods {where}.")
    try:
        while (_iterations is None or _iterations > 0) and not stopper.done():
            _iterations = None if _iterations is None else _iterations - 1
            stream = continuous_watch(
                settings=settings,
                namespace=namespace,
                stopper=stopper,
            )
            try:
                async for raw_event in stream:
                    yield raw_event
            except errors.APIClientError as ex:
                if ex.status != HTTP_TOO_MANY_REQUESTS_CODE:
                    raise

                retry_after = ex.details.get("retryAfterSeconds") if ex.details else None
                retry_wait = retry_after or DEFAULT_RETRY_DELAY_SECONDS
                logger.warning(
                    f"Receiving `too many requests` error from server, will retry after "
                    f"{retry_wait} seconds. Error details: {ex}"
                )
                await asyncio.sleep(retry_wait)
            await asyncio.sleep(settings.watching.reconnect_backoff)
    finally:
        logger.debug(f"Stopping the watch-stream for pods {where}.")


async def continuous_watch(
        *,
        settings: configuration.Settings,
        namespace: Optional[str],
        stopper: aiotasks.Future,
) -> AsyncIterator[Union[Bookmark, bodies.RawEvent]]:

    # First, list the pods regularly, and get the list's resource version.
    # Simulate the events with type "None" event -- as if they are added.
    try:
        objs, resource_version = await fetching.list_pods(
            logger=logger,
            settings=settings,
            namespace=namespace,
        )
        for obj in objs:
            yield {'type': None, 'object': obj}

    except (aiohttp.ClientConnectionError, aiohttp.ClientPayloadError, asyncio.TimeoutError):
        return

    # Notify the consumer that the initial listing is over, even if there was nothing yielded.
    yield Bookmark.LISTED

    # Repeat through disconnects of the watch as long as the resource version is valid (no errors).
    # The individual watching API calls are disconnected by timeout even if the stream is fine.
    while not stopper.done():

        stream = watch_pods(
            settings=settings,
            namespace=namespace,
            since=resource_version,
            stopper=stopper,
        )
        async for raw_input in stream:
            raw_type = raw_input['type']
            raw_object = raw_input['object']

            # "410 Gone" is for the "resource version too old" error, we must restart watching.
            # The resource versions are lost by k8s after a few minutes (5 as per the official doc).
            if raw_type == 'ERROR' and cast(bodies.RawError, raw_object).get('code') == 410:
                where = f'in {namespace!r}' if namespace is not None else 'cluster-wide'
                logger.debug(f"Restarting the watch-stream for pods {where}.")
                return  # out of the regular stream, to the infinite stream.

            # Other watch errors should be fatal for the tool.
            if raw_type == 'ERROR':
                raise WatchingError(f"Error in the watch-stream: {raw_object}")

            # Ensure that the event is something we understand and can handle.
            if raw_type not in ['ADDED', 'MODIFIED', 'DELETED']:
                logger.warning(f"Ignoring an unsupported event type: {raw_input!r}")
                continue

            # Keep the latest seen resource version for continuation of the stream on disconnects.
            body = cast(bodies.RawBody, raw_object)
            resource_version = body.get('metadata', {}).get('resourceVersion', resource_version)

            yield cast(bodies.RawEvent, raw_input)


async def watch_pods(
        *,
        settings: configuration.Settings,
        namespace: Optional[str],
        since: Optional[str] = None,
        stopper: aiotasks.Future,
) -> AsyncIterator[bodies.RawInput]:
    """
    Watch the pods in one namespace, or cluster-wide if it is ``None``.
    """
    params: Dict[str, str] = {}
    params['watch'] = 'true'
    if since is not None:
        params['resourceVersion'] = since
    if settings.watching.server_timeout is not None:
        params['timeoutSeconds'] = str(settings.watching.server_timeout)

    connect_timeout = (
        settings.watching.connect_timeout if settings.watching.connect_timeout is not None else
        settings.networking.connect_timeout if settings.networking.connect_timeout is not None else
        settings.networking.request_timeout
    )

    # Stream the parsed events from the response until it is closed server-side,
    # or until it is closed client-side by the stopper's callbacks.
    try:
        async for raw_input in api.stream(
            url=api.build_url('pods', namespace=namespace, params=params),
            logger=logger,
            settings=settings,
            stopper=stopper,
            timeout=aiohttp.ClientTimeout(
                total=settings.watching.client_timeout,
                sock_connect=connect_timeout,
            ),
        ):
            yield raw_input

    except (aiohttp.ClientConnectionError, aiohttp.ClientPayloadError, asyncio.TimeoutError):
        pass
