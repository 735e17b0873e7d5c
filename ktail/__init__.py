"""
The main ktail module for all the exported functions & classes.
"""
# isort: skip_file

# Unlike all other places, where we import other modules and refer
# the functions via the modules, this is the tool's top-level interface,
# as it is seen by the embedding apps. So, we export the individual names.

from ktail.utilities.versions import (
    version as __version__,
)
from ktail.structs.bodies import (
    RawEventType,
    RawEvent,
    RawBody,
    Pod,
    Container,
    parse_pod,
)
from ktail.structs.callbacks import (
    Logger,
    LogEvent,
)
from ktail.structs.configuration import (
    Settings,
    NetworkingSettings,
    WatchingSettings,
    TailingSettings,
)
from ktail.structs.credentials import (
    LoginError,
    ConnectionInfo,
)
from ktail.structs.selectors import (
    Selector,
    SelectorError,
    parse_selector,
)
from ktail.clients.errors import (
    APIError,
    APIClientError,
    APIServerError,
    APIUnauthorizedError,
    APIForbiddenError,
    APINotFoundError,
    APIConflictError,
)
from ktail.engines.loggers import (
    configure as configure_logging,
    LogFormat,
    ContainerLogger,
)
from ktail.engines.piggybacking import (
    login,
)
from ktail.engines.tailing import (
    ContainerTailer,
)
from ktail.reactor.registries import (
    ContainerKey,
    Registry,
)
from ktail.reactor.controller import (
    Controller,
)
from ktail.reactor.running import (
    run,
    tailer,
)

__all__ = [
    'RawEventType', 'RawEvent', 'RawBody',
    'Pod', 'Container', 'parse_pod',
    'Logger', 'LogEvent',
    'Settings', 'NetworkingSettings', 'WatchingSettings', 'TailingSettings',
    'LoginError', 'ConnectionInfo',
    'Selector', 'SelectorError', 'parse_selector',
    'APIError', 'APIClientError', 'APIServerError',
    'APIUnauthorizedError', 'APIForbiddenError', 'APINotFoundError', 'APIConflictError',
    'configure_logging', 'LogFormat', 'ContainerLogger',
    'login',
    'ContainerTailer',
    'ContainerKey', 'Registry',
    'Controller',
    'run', 'tailer',
]
