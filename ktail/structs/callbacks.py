"""
Callback signatures for typing.

The callbacks are supplied by the owner of the controller (e.g. the CLI)
and are invoked at the defined points of the tailers' lifecycle.
All of them are synchronous and must not block for long: there are
no timeouts around their invocation.
"""
import dataclasses
import datetime
import logging
from typing import Optional, Union

from typing_extensions import Protocol

from ktail.structs import bodies

# Only the built-in loggable classes are promised, so that both loggers & adapters fit.
Logger = Union[logging.Logger, logging.LoggerAdapter]


@dataclasses.dataclass(frozen=True)
class LogEvent:
    """ A single log line of a single container, as read by its tailer. """
    pod: bodies.Pod
    container: bodies.Container
    message: str
    timestamp: Optional[datetime.datetime] = None


class ContainerFilterFn(Protocol):
    def __call__(self, pod: bodies.Pod, container: bodies.Container) -> bool: ...


class ContainerEnterFn(Protocol):
    def __call__(self, pod: bodies.Pod, container: bodies.Container) -> None: ...


class ContainerExitFn(Protocol):
    def __call__(self, pod: bodies.Pod, container: bodies.Container) -> None: ...


class ContainerErrorFn(Protocol):
    def __call__(self, pod: bodies.Pod, container: bodies.Container, exc: BaseException) -> None: ...


class LogEventFn(Protocol):
    def __call__(self, event: LogEvent) -> None: ...


def accept_all(pod: bodies.Pod, container: bodies.Container) -> bool:
    return True


def ignore_container(pod: bodies.Pod, container: bodies.Container) -> None:
    pass


def ignore_error(pod: bodies.Pod, container: bodies.Container, exc: BaseException) -> None:
    pass


def ignore_event(event: LogEvent) -> None:
    pass
