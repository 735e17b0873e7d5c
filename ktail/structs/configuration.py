"""
All configuration flags, options, settings to fine-tune the tool.

All settings are grouped semantically just for convenience
(instead of a flat mega-object with all the values in it).

Some of the settings are flags, some are scalars, some are optional,
some are not (but all of them have reasonable defaults).
"""
import dataclasses
from typing import Iterable, Optional, Union


@dataclasses.dataclass
class NetworkingSettings:

    request_timeout: Optional[float] = 5 * 60  # == aiohttp.client.DEFAULT_TIMEOUT
    """
    A timeout for the API requests (except watching and log streaming).
    """

    connect_timeout: Optional[float] = None
    """
    A timeout for establishing the TCP connection for the API requests.
    """

    error_backoffs: Union[float, Iterable[float]] = (1, 1, 2, 3, 5, 8, 13, 21)
    """
    Backoffs (in seconds) between the retries of the failed API requests.

    Only the connection errors and HTTP 5xx are retried. Once the backoffs
    are exhausted, the last error is escalated to the caller.
    """


@dataclasses.dataclass
class WatchingSettings:

    server_timeout: Optional[float] = None
    """
    The maximum duration of one streaming request.
    If ``None``, then obey the server-side timeouts (they seem to be random).
    """

    client_timeout: Optional[float] = None
    """
    An HTTP/HTTPS session timeout to use in watch requests.
    """

    connect_timeout: Optional[float] = None
    """
    An HTTP/HTTPS connection timeout to use in watch requests.
    """

    reconnect_backoff: float = 0.1
    """
    How long should a pause be between watch requests (to prevent API flooding).
    """


@dataclasses.dataclass
class TailingSettings:

    since_seconds: Optional[int] = None
    """
    How far back to read the logs when a container is seen for the first time.
    If ``None``, the server decides (usually, from the container's start).
    """

    tail_lines: Optional[int] = None
    """
    How many last lines to read when a container is seen for the first time.
    If ``None``, all lines are read (within ``since_seconds``, if set).
    """

    reconnect_delay: float = 1.0
    """
    How long to wait before re-opening a log stream that was closed
    by the server while the tailer was not asked to stop
    (e.g. when the container restarts or is not started yet).
    """

    stop_timeout: Optional[float] = 5.0
    """
    How long to wait for the stopped tailers to exit when the tool is exiting.
    After that, the remaining tailers are cancelled.
    """


@dataclasses.dataclass
class Settings:
    networking: NetworkingSettings = dataclasses.field(default_factory=NetworkingSettings)
    watching: WatchingSettings = dataclasses.field(default_factory=WatchingSettings)
    tailing: TailingSettings = dataclasses.field(default_factory=TailingSettings)
