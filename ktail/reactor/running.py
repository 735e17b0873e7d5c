import asyncio
import logging
import signal
import threading
from typing import Optional

from ktail.clients import auth
from ktail.engines import piggybacking
from ktail.reactor import controller
from ktail.structs import callbacks, configuration, credentials, selectors
from ktail.utilities import aiotasks

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = 'default'


def run(
        *,
        debug: bool = False,
        settings: Optional[configuration.Settings] = None,
        namespace: Optional[str] = None,
        clusterwide: bool = False,
        selector: Optional[selectors.Selector] = None,
        context: Optional[str] = None,
        filter_fn: callbacks.ContainerFilterFn = callbacks.accept_all,
        event_fn: callbacks.LogEventFn = callbacks.ignore_event,
        enter_fn: callbacks.ContainerEnterFn = callbacks.ignore_container,
        exit_fn: callbacks.ContainerExitFn = callbacks.ignore_container,
        error_fn: callbacks.ContainerErrorFn = callbacks.ignore_error,
) -> None:
    """
    Run the whole tool synchronously, until stopped by a signal.
    """
    try:
        asyncio.run(tailer(
            settings=settings,
            namespace=namespace,
            clusterwide=clusterwide,
            selector=selector,
            context=context,
            filter_fn=filter_fn,
            event_fn=event_fn,
            enter_fn=enter_fn,
            exit_fn=exit_fn,
            error_fn=error_fn,
        ), debug=debug)
    except asyncio.CancelledError:
        pass


async def tailer(
        *,
        settings: Optional[configuration.Settings] = None,
        namespace: Optional[str] = None,
        clusterwide: bool = False,
        selector: Optional[selectors.Selector] = None,
        context: Optional[str] = None,
        info: Optional[credentials.ConnectionInfo] = None,
        filter_fn: callbacks.ContainerFilterFn = callbacks.accept_all,
        event_fn: callbacks.LogEventFn = callbacks.ignore_event,
        enter_fn: callbacks.ContainerEnterFn = callbacks.ignore_container,
        exit_fn: callbacks.ContainerExitFn = callbacks.ignore_container,
        error_fn: callbacks.ContainerErrorFn = callbacks.ignore_error,
        stop_flag: Optional[aiotasks.Future] = None,
) -> None:
    """
    Run the whole tool asynchronously.

    This function should be used to run the tailing in an asyncio event-loop
    if it is orchestrated explicitly and manually (e.g. embedded into an app).

    The controller and the stop-flag checker are the root tasks: once any of
    them exits, the other one is cancelled. The controller stops its tailers
    on its own when exiting.
    """
    settings = settings if settings is not None else configuration.Settings()
    info = info if info is not None else piggybacking.login(context=context)
    if namespace is None and not clusterwide:
        namespace = info.default_namespace or DEFAULT_NAMESPACE

    async with auth.APIContext(info) as api_context:
        auth.context_var.set(api_context)

        signal_flag: aiotasks.Future = asyncio.get_running_loop().create_future()
        the_controller = controller.Controller(
            settings=settings,
            namespace=namespace,
            selector=selector,
            filter_fn=filter_fn,
            event_fn=event_fn,
            enter_fn=enter_fn,
            exit_fn=exit_fn,
            error_fn=error_fn,
        )

        tasks = [
            aiotasks.create_guarded_task(
                name="stop-flag checker", finishable=True, logger=logger,
                coro=_stop_flag_checker(
                    signal_flag=signal_flag,
                    stop_flag=stop_flag)),
            aiotasks.create_guarded_task(
                name="controller", cancellable=True, logger=logger,
                coro=the_controller.run()),
        ]

        # Ensure that all guarded tasks got control for a moment to enter the guard.
        await asyncio.sleep(0)
        _install_signal_handlers(signal_flag)

        try:
            done, pending = await aiotasks.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            await aiotasks.stop(tasks, title="Root", logger=logger, cancelled=True, interval=10)
            raise
        cancelled, _ = await aiotasks.stop(pending, title="Root", logger=logger)

        # If succeeded or if cancellation is silenced, re-raise from failed tasks (if any).
        await aiotasks.reraise(done | cancelled)


def _install_signal_handlers(signal_flag: aiotasks.Future) -> None:
    """ On Ctrl+C or pod termination, stop the tool gracefully. """
    if threading.current_thread() is not threading.main_thread():
        logger.warning("OS signals are ignored: running not in the main thread.")
        return

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, _set_flag, signal_flag, signal.SIGINT)
        loop.add_signal_handler(signal.SIGTERM, _set_flag, signal_flag, signal.SIGTERM)
    except NotImplementedError:
        logger.warning("OS signals are ignored: can't add signal handler in Windows.")


def _set_flag(flag: aiotasks.Future, value: object) -> None:
    if not flag.done():
        flag.set_result(value)


async def _stop_flag_checker(
        signal_flag: aiotasks.Future,
        stop_flag: Optional[aiotasks.Future],
) -> None:
    """
    A top-level task for external stopping by setting a stop-flag. Once set,
    this task will exit, and thus all other top-level tasks will be cancelled.
    """
    flags = [signal_flag] if stop_flag is None else [signal_flag, stop_flag]
    try:
        done, pending = await asyncio.wait(flags, return_when=asyncio.FIRST_COMPLETED)
        future = done.pop()
        result = await future
    except asyncio.CancelledError:
        pass  # the tool is stopping for any other reason
    else:
        if result is None:
            logger.info("Stop-flag is raised. Tailing is stopping.")
        elif isinstance(result, signal.Signals):
            logger.info("Signal %s is received. Tailing is stopping.", result.name)
        else:
            logger.info("Stop-flag is set to %r. Tailing is stopping.", result)
