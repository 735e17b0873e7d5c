"""
Tailers follow the logs of individual containers.

Every tailer is bound to one pod & one container for its whole life.
It is run as a separate asyncio task by the controller, and is stopped
by the controller when the container disappears (i.e. the pod is deleted).

The tailer survives the log stream disconnects, container restarts,
and the containers not started yet: it reconnects and continues
from the last seen line (by its server-side timestamp).
It exits on its own only if the pod is not found anymore,
or if an unexpected error happens; the latter is escalated.
"""
import asyncio
import datetime
from typing import Optional, Tuple

import aiohttp
import iso8601

from ktail.clients import errors, logs
from ktail.engines import loggers
from ktail.structs import bodies, callbacks, configuration
from ktail.utilities import aiotasks


class ContainerTailer:

    def __init__(
            self,
            *,
            settings: configuration.Settings,
            pod: bodies.Pod,
            container: bodies.Container,
            event_fn: callbacks.LogEventFn,
    ) -> None:
        super().__init__()
        self.settings = settings
        self.pod = pod
        self.container = container
        self.logger = loggers.ContainerLogger(pod=pod, container=container)
        self._event_fn = event_fn
        self._stopped = False
        self._stopper: Optional[aiotasks.Future] = None  # created when running (in the loop).
        self._last_seen: Optional[datetime.datetime] = None
        self._last_seen_count = 0  # lines delivered with exactly that timestamp.

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} of {self.pod}/{self.container.name}>"

    @property
    def stopped(self) -> bool:
        return self._stopped

    def stop(self) -> None:
        """
        Request the tailer to exit as soon as possible. Does not wait for that.

        It is safe to call it multiple times, before the tailer is started,
        or after it has exited on its own.
        """
        if not self._stopped:
            self._stopped = True
            self.logger.debug("Tailing is requested to stop.")
        if self._stopper is not None and not self._stopper.done():
            self._stopper.set_result(None)

    async def run(self) -> None:
        self._stopper = asyncio.get_running_loop().create_future()
        if self._stopped:
            self._stopper.set_result(None)

        self.logger.debug("Tailing is started.")
        while not self._stopped:
            try:
                await self._stream()
            except errors.APINotFoundError:
                self.logger.debug("The pod is gone. Tailing is finished.")
                return
            except errors.APIBadRequestError as e:
                # E.g.: "container is waiting to start", "container not found" (yet).
                self.logger.debug(f"The container is not ready for tailing: {e.message or e}")
            except (aiohttp.ClientPayloadError, aiohttp.ServerDisconnectedError) as e:
                if not self._stopped:
                    self.logger.debug(f"The log stream is disconnected: {e!r}")

            if not self._stopped:
                await aiotasks.wait([self._stopper], timeout=self.settings.tailing.reconnect_delay)

        self.logger.debug("Tailing is stopped.")

    async def _stream(self) -> None:
        # On reconnects, the server resends the lines since the start of the last seen second.
        # Skip those already delivered, but only until the first line beyond them.
        # The lines with equal timestamps are counted: the timestamps are cut to microseconds.
        resumed_at = self._last_seen
        skips = self._last_seen_count

        async for line in logs.stream_logs(
            settings=self.settings,
            namespace=self.pod.namespace,
            name=self.pod.name,
            container=self.container.name,
            since_time=self._last_seen,
            since_seconds=self.settings.tailing.since_seconds,
            tail_lines=self.settings.tailing.tail_lines,
            stopper=self._stopper,
        ):
            if self._stopped:
                break

            timestamp, message = parse_line(line)

            if resumed_at is not None and timestamp is not None:
                if timestamp < resumed_at:
                    continue
                if timestamp == resumed_at and skips > 0:
                    skips -= 1
                    continue
                resumed_at = None

            if timestamp is None:
                pass
            elif self._last_seen is None or timestamp > self._last_seen:
                self._last_seen = timestamp
                self._last_seen_count = 1
            elif timestamp == self._last_seen:
                self._last_seen_count += 1

            self._event_fn(callbacks.LogEvent(
                pod=self.pod,
                container=self.container,
                message=message,
                timestamp=timestamp,
            ))


def parse_line(line: bytes) -> Tuple[Optional[datetime.datetime], str]:
    """
    Split a raw log line into the server-side timestamp and the message.

    The lines without a recognisable timestamp are returned as is.
    """
    text = line.decode('utf-8', errors='replace')
    head, sep, tail = text.partition(' ')
    try:
        timestamp = iso8601.parse_date(head)
    except iso8601.ParseError:
        return None, text
    else:
        return timestamp, tail
