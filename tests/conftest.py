import asyncio
import dataclasses
import logging
import re
from typing import List, Optional
from unittest.mock import AsyncMock, Mock

import pytest
from aresponses import ResponsesMockServer

from ktail.clients.auth import APIContext, context_var
from ktail.reactor.controller import Controller
from ktail.structs.bodies import Container, Pod
from ktail.structs.configuration import Settings
from ktail.structs.credentials import ConnectionInfo
from ktail.structs.selectors import parse_selector


@pytest.fixture()
def settings():
    settings = Settings()
    settings.networking.error_backoffs = []
    settings.watching.reconnect_backoff = 0
    settings.tailing.reconnect_delay = 0
    settings.tailing.stop_timeout = 0.1
    return settings


@pytest.fixture()
def make_body():
    """ A factory of raw pod bodies, as they come from the K8s API. """
    def make_body_fn(name, *, namespace='ns', labels=None, containers=('c1',), uid=None):
        return {
            'kind': 'Pod',
            'apiVersion': 'v1',
            'metadata': {
                'namespace': namespace,
                'name': name,
                'uid': uid if uid is not None else f'uid-{name}',
                'labels': dict(labels or {}),
            },
            'spec': {
                'containers': [{'name': container, 'image': 'busybox'} for container in containers],
            },
        }
    return make_body_fn


@pytest.fixture()
def pod():
    return Pod(namespace='ns', name='pod1', uid='uid1', labels={'app': 'x'},
               containers=(Container(name='c1'), Container(name='c2')))


@pytest.fixture()
def container(pod):
    return pod.containers[0]


#
# A counting stub of a tailer: it runs until stopped, or fails/finishes as configured.
#
@dataclasses.dataclass(eq=False)
class StubWorker:
    settings: Settings
    pod: Pod
    container: Container
    event_fn: object
    fail_with: Optional[BaseException] = None
    finish: bool = False
    stuck: bool = False
    started: bool = False
    stop_calls: int = 0

    def __post_init__(self):
        self._stopped = asyncio.Event()

    async def run(self):
        self.started = True
        if self.fail_with is not None:
            raise self.fail_with
        if self.finish:
            return
        await self._stopped.wait()
        if self.stuck:
            await asyncio.Event().wait()

    def stop(self):
        self.stop_calls += 1
        self._stopped.set()


@dataclasses.dataclass()
class StubWorkerFactory:
    fail_with: Optional[BaseException] = None
    finish: bool = False
    stuck: bool = False
    workers: List[StubWorker] = dataclasses.field(default_factory=list)

    def __call__(self, *, settings, pod, container, event_fn):
        worker = StubWorker(settings=settings, pod=pod, container=container, event_fn=event_fn,
                            fail_with=self.fail_with, finish=self.finish, stuck=self.stuck)
        self.workers.append(worker)
        return worker


@pytest.fixture()
def worker_factory():
    return StubWorkerFactory()


@pytest.fixture()
def hooks():
    return Mock(
        filter_fn=Mock(return_value=True),
        event_fn=Mock(),
        enter_fn=Mock(),
        exit_fn=Mock(),
        error_fn=Mock(),
    )


@pytest.fixture()
async def controller(settings, hooks, worker_factory):
    controller = Controller(
        settings=settings,
        namespace='ns',
        selector=parse_selector('app=x'),
        filter_fn=hooks.filter_fn,
        event_fn=hooks.event_fn,
        enter_fn=hooks.enter_fn,
        exit_fn=hooks.exit_fn,
        error_fn=hooks.error_fn,
        worker_factory=worker_factory,
    )
    try:
        yield controller
    finally:
        await controller.close()


#
# Mocks for the API access. The API calls themselves are patched in the tests.
#
@pytest.fixture()
def hostname():
    return 'fake-host'


@pytest.fixture()
async def enforced_context(hostname):
    info = ConnectionInfo(server=f'https://{hostname}', token='fake-token')
    async with APIContext(info) as context:
        token = context_var.set(context)
        try:
            yield context
        finally:
            context_var.reset(token)


@pytest.fixture()
async def aresponses():
    """
    A fake K8s API server, to which all the API requests are routed.

    Overrides the plugin's fixture, so that it runs in the test's event loop.
    The responses are added per test; each is consumed once it is matched.
    """
    async with ResponsesMockServer() as server:
        yield server


# Note: Unused `enforced_context` is to ensure that the client wrappers have the credentials.
@pytest.fixture()
def resp_mocker(enforced_context, aresponses):
    """
    A factory of server-side callbacks for `aresponses` with mocking/spying.

    The returned mock should be passed to `aresponses.add` as a response.
    When called by the server, it calls the mock defined by the arguments
    (specifically, return_value or side_effect), and remembers the request,
    so that it can be asserted whether it was handled by that callback at all::

        def test_me(resp_mocker, aresponses, hostname):
            callback = resp_mocker(return_value=aiohttp.web.json_response({'a': 'b'}))
            aresponses.add(hostname, '/path', 'get', callback)
            do_something()
            assert callback.call_count == 1
    """
    def resp_maker(*args, **kwargs):
        actual_response = Mock(*args, **kwargs)

        async def resp_mock_effect(request):
            response = actual_response(request)
            if asyncio.iscoroutine(response):
                response = await response
            return response

        return AsyncMock(side_effect=resp_mock_effect)
    return resp_maker


#
# Helpers for the logging checks.
#
@pytest.fixture(autouse=True)
def _caplog_all_levels(caplog):
    caplog.set_level(0)


@pytest.fixture(autouse=True)
def _clean_logging():
    """ Undo the logging configuration made by the CLI or by `configure()`. """
    logger = logging.getLogger()
    handlers = logger.handlers[:]
    level = logger.level
    try:
        yield
    finally:
        logger.handlers[:] = handlers
        logger.setLevel(level)
        logging.getLogger('asyncio').propagate = True
        logging.getLogger('asyncio').handlers[:] = []


@pytest.fixture()
def assert_logs(caplog):
    """
    A function to assert the logs are present (by pattern).

    The listed message patterns MUST be present, in the order specified.
    Some other log messages can also be present, but they are ignored.
    """
    def assert_logs_fn(patterns, prohibited=[], strict=False):
        __traceback_hide__ = True
        remaining_patterns = list(patterns)
        for message in caplog.messages:
            # The expected pattern is at position 0.
            # Looking-ahead: if one of the following patterns matches, while the
            # 0th does not, then the log message is missing, and we fail the test.
            for idx, pattern in enumerate(remaining_patterns):
                m = re.search(pattern, message)
                if m:
                    if idx == 0:
                        remaining_patterns[:1] = []
                        break  # out of `remaining_patterns` cycle
                    else:
                        skipped_patterns = remaining_patterns[:idx]
                        raise AssertionError(f"Few patterns were skipped: {skipped_patterns!r}")
                elif strict:
                    raise AssertionError(f"Unexpected log message: {message!r}")

            # Check that the prohibited patterns do not appear in any message.
            for pattern in prohibited:
                m = re.search(pattern, message)
                if m:
                    raise AssertionError(f"Prohibited log pattern found: {message!r} ~ {pattern!r}")

        # If all patterns have been matched in order, we are done.
        # if some are left, but the messages are over, then we fail.
        if remaining_patterns:
            raise AssertionError(f"Few patterns were missed: {remaining_patterns!r}")

    return assert_logs_fn
