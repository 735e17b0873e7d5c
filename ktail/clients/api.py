import asyncio
import collections.abc
import itertools
import json
import urllib.parse
from typing import Any, AsyncIterator, Mapping, Optional

import aiohttp

from ktail.clients import auth, errors
from ktail.structs import callbacks, configuration
from ktail.utilities import aiotasks


def build_url(
        path: str,
        *,
        namespace: Optional[str] = None,
        params: Optional[Mapping[str, str]] = None,
) -> str:
    """
    Build a URL of the core API (``/api/v1``) relative to the server root.

    E.g.: ``build_url('pods', namespace='ns', params={'watch': 'true'})``
    gives ``/api/v1/namespaces/ns/pods?watch=true``.
    """
    parts = ['/api/v1']
    if namespace is not None:
        parts.extend(['namespaces', urllib.parse.quote(namespace, safe='')])
    parts.append(path.strip('/'))
    url = '/'.join(parts)
    query = urllib.parse.urlencode(params, encoding='utf-8') if params else ''
    return url if not query else f'{url}?{query}'


@auth.authenticated
async def request(
        method: str,
        url: str,  # relative to the server/api root.
        *,
        settings: configuration.Settings,
        payload: Optional[object] = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[aiohttp.ClientTimeout] = None,
        context: Optional[auth.APIContext] = None,  # injected by the decorator
        logger: callbacks.Logger,
) -> aiohttp.ClientResponse:
    if context is None:  # for type-checking!
        raise RuntimeError("API instance is not injected by the decorator.")

    if '://' not in url:
        url = context.server.rstrip('/') + '/' + url.lstrip('/')

    if timeout is None:
        timeout = aiohttp.ClientTimeout(
            total=settings.networking.request_timeout,
            sock_connect=settings.networking.connect_timeout,
        )

    backoffs = settings.networking.error_backoffs
    backoffs = backoffs if isinstance(backoffs, collections.abc.Iterable) else [backoffs]
    count = len(backoffs) + 1 if isinstance(backoffs, collections.abc.Sized) else None
    backoff: Optional[float]
    for retry, backoff in enumerate(itertools.chain(backoffs, [None]), start=1):
        idx = f"#{retry}/{count}" if count is not None else f"#{retry}"
        what = f"{method.upper()} {url}"
        try:
            if retry > 1:
                logger.debug(f"Request attempt {idx}: {what}")

            response = await context.session.request(
                method=method,
                url=url,
                json=payload,
                headers=headers,
                timeout=timeout,
            )
            await errors.check_response(response)  # but do not parse it!

        except (aiohttp.ClientConnectionError, errors.APIServerError, asyncio.TimeoutError) as e:
            if backoff is None:  # i.e. the last or the only attempt.
                logger.error(f"Request attempt {idx} failed; escalating: {what} -> {e!r}")
                raise
            else:
                logger.error(f"Request attempt {idx} failed; will retry: {what} -> {e!r}")
                await asyncio.sleep(backoff)  # non-awakable! but still cancellable.
        else:
            if retry > 1:
                logger.debug(f"Request attempt {idx} succeeded: {what}")
            return response

    raise RuntimeError("Broken retryable routine.")  # impossible, but needed for type-checking.


async def get(
        url: str,  # relative to the server/api root.
        *,
        settings: configuration.Settings,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[aiohttp.ClientTimeout] = None,
        logger: callbacks.Logger,
) -> Any:
    response = await request(
        method='get',
        url=url,
        headers=headers,
        timeout=timeout,
        settings=settings,
        logger=logger,
    )
    async with response:
        return await response.json()


async def stream(
        url: str,  # relative to the server/api root.
        *,
        settings: configuration.Settings,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[aiohttp.ClientTimeout] = None,
        stopper: Optional[aiotasks.Future] = None,
        logger: callbacks.Logger,
) -> AsyncIterator[Any]:
    """
    Stream the JSON-lines of a response (e.g. the watch-events) parsed.
    """
    async for line in stream_lines(
        url=url,
        headers=headers,
        timeout=timeout,
        stopper=stopper,
        settings=settings,
        logger=logger,
    ):
        yield json.loads(line.decode('utf-8'))


async def stream_lines(
        url: str,  # relative to the server/api root.
        *,
        settings: configuration.Settings,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[aiohttp.ClientTimeout] = None,
        stopper: Optional[aiotasks.Future] = None,
        logger: callbacks.Logger,
) -> AsyncIterator[bytes]:
    """
    Stream the raw lines of a response until it is closed by either side.

    The stopper is a future which closes the response once it is done,
    thus interrupting the stream from the client side (e.g. when stopping).
    In that case, the closed connection is not an error.
    """
    response = await request(
        method='get',
        url=url,
        headers=headers,
        timeout=timeout,
        settings=settings,
        logger=logger,
    )
    response_close_callback = lambda _: response.close()  # to remove the positional arg.
    if stopper is not None:
        stopper.add_done_callback(response_close_callback)
    try:
        async with response:
            async for line in iter_lines(response.content):
                yield line
    except aiohttp.ClientConnectionError:
        if stopper is not None and stopper.done():
            pass
        else:
            raise
    finally:
        if stopper is not None:
            stopper.remove_done_callback(response_close_callback)


async def iter_lines(
        content: aiohttp.StreamReader,
        chunk_size: int = 1024 * 1024,
) -> AsyncIterator[bytes]:
    """
    Iterate line by line over the response's content.

    This is an equivalent of ``async for line in response.content``,
    except that aiohttp's line iteration fails if the accumulated buffer
    is above 128 KB, while some lines (pod bodies, log lines) can be longer.

    The empty lines are skipped. The line endings are not yielded.
    """
    buffer = b''
    async for data in content.iter_chunked(chunk_size):
        buffer += data
        del data

        start = 0
        index = buffer.find(b'\n', start)
        while index >= 0:
            line = buffer[start:index].rstrip(b'\r')
            if line:
                yield line
            del line
            start = index + 1
            index = buffer.find(b'\n', start)

        if start > 0:
            buffer = buffer[start:]

    if buffer:
        yield buffer
