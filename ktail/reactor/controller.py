"""
The controller: from the pods' watch-events to the running tailers.

The controller consumes the watch-stream of pods in its scope (a namespace
or the whole cluster, narrowed by a label selector), and starts one tailer
per container of every interesting pod, and stops the tailers when the pods
are deleted. A pod is interesting if at least one of its containers passes
the filter; then, all of its containers are tailed, not only the passed ones.

The events are handled one at a time, in the order of arrival.
The tailers run in the background, each as a separate task, and are never
awaited by the controller except on its own exit. Their failures are reported
to the owner via the error hook, but they are neither restarted nor removed:
the entry stays in the registry until the pod's deletion is noticed.
Once the watch-stream is restarted with a new listing, the containers absent
in that listing are considered deleted, since their deletions were missed.

The hooks are called directly, without the lock being held.
The stop-requests to the tailers are sent under the lock, though,
so that no add-delete race can leave an unstopped tailer behind.
"""
import asyncio
import functools
import logging
from typing import Any, Dict, List, Optional, Union

from typing_extensions import Protocol

from ktail.clients import watching
from ktail.engines import loggers, tailing
from ktail.reactor import registries
from ktail.structs import bodies, callbacks, configuration, selectors
from ktail.utilities import aiotasks

logger = logging.getLogger(__name__)


class WorkerFactory(Protocol):
    def __call__(
            self,
            *,
            settings: configuration.Settings,
            pod: bodies.Pod,
            container: bodies.Container,
            event_fn: callbacks.LogEventFn,
    ) -> registries.Worker: ...


class Controller:

    def __init__(
            self,
            *,
            settings: Optional[configuration.Settings] = None,
            namespace: Optional[str] = None,
            selector: Optional[selectors.Selector] = None,
            filter_fn: callbacks.ContainerFilterFn = callbacks.accept_all,
            event_fn: callbacks.LogEventFn = callbacks.ignore_event,
            enter_fn: callbacks.ContainerEnterFn = callbacks.ignore_container,
            exit_fn: callbacks.ContainerExitFn = callbacks.ignore_container,
            error_fn: callbacks.ContainerErrorFn = callbacks.ignore_error,
            worker_factory: WorkerFactory = tailing.ContainerTailer,
    ) -> None:
        super().__init__()
        self.settings = settings if settings is not None else configuration.Settings()
        self.namespace = namespace
        self.selector = selector if selector is not None else selectors.Selector()
        self.registry = registries.Registry()
        self._filter_fn = filter_fn
        self._event_fn = event_fn
        self._enter_fn = enter_fn
        self._exit_fn = exit_fn
        self._error_fn = error_fn
        self._worker_factory = worker_factory
        self._closing = False
        self._listed: Dict[registries.ContainerKey, bodies.Pod] = {}

    def __repr__(self) -> str:
        where = repr(self.namespace) if self.namespace is not None else 'cluster-wide'
        return f'<{self.__class__.__name__} {where} selector={str(self.selector)!r}>'

    async def run(
            self,
            *,
            stopper: Optional[aiotasks.Future] = None,
    ) -> None:
        """
        Consume the pods' watch-stream until it ends or the task is cancelled.

        All the remaining tailers are stopped on exit, no matter why it is.
        """
        try:
            async for raw_event in watching.infinite_watch(
                settings=self.settings,
                namespace=self.namespace,
                stopper=stopper,
            ):
                await self.process_event(raw_event)
        finally:
            await self.close()

    async def process_event(
            self,
            raw_event: Union[watching.Bookmark, bodies.RawEvent],
    ) -> None:
        if isinstance(raw_event, watching.Bookmark):
            if raw_event is watching.Bookmark.LISTED:
                await self.on_pods_listed()
                logger.debug(f"Initial listing is processed: {len(self.registry)} containers.")
            return

        event_type = raw_event.get('type')
        raw_body = raw_event.get('object')
        if event_type is None:
            self._remember_listed(raw_body)
            await self.on_pod_added(raw_body)
        elif event_type == 'ADDED':
            await self.on_pod_added(raw_body)
        elif event_type == 'DELETED':
            await self.on_pod_deleted(raw_body)
        elif event_type == 'MODIFIED':
            # The watch-stream does not keep the old state, so there is none.
            await self.on_pod_updated(None, raw_body)
        else:
            logger.debug(f"Ignoring an unsupported event type: {event_type!r}")

    async def on_pod_added(self, raw_body: Any) -> None:
        pod = bodies.parse_pod(raw_body)
        if pod is not None:
            await self._add_pod(pod)

    async def on_pod_deleted(self, raw_body: Any) -> None:
        pod = bodies.parse_pod(raw_body)
        if pod is None:
            return

        # No selector or filter: whatever was started for this pod must be stopped.
        for container in pod.containers:
            await self.delete_container(pod, container)

    async def on_pod_updated(self, raw_old: Any, raw_new: Any) -> None:
        pass

    async def on_pods_listed(self) -> None:
        """
        Stop the tailers of the containers that are absent in the fresh listing.

        The pods deleted while the watch-stream was down (e.g. before it was
        restarted after "410 Gone") never get their deletion events. The pods
        re-created with the same name in that gap (e.g. by stateful sets) are
        detected by their uids: their old tailers are stopped, new ones started.
        """
        listed, self._listed = self._listed, {}
        recreated: List[bodies.Pod] = []
        for key in self.registry.keys():
            entry = self.registry.get(key)
            pod = listed.get(key)
            if entry is None or (pod is not None and _is_same_pod(pod, entry.pod)):
                continue

            entry = await self.registry.unregister(key)
            if entry is not None:
                logger.debug(f"Tailing of {key} is requested to stop: the pod is gone.")
                self._exit_fn(entry.pod, entry.container)
            if pod is not None and pod not in recreated:
                recreated.append(pod)

        for pod in recreated:
            await self._add_pod(pod)

    async def _add_pod(self, pod: bodies.Pod) -> None:
        if not self.selector.matches(pod.labels):
            return

        # The filter only decides if the pod is interesting at all.
        if not any(self._filter_fn(pod, container) for container in pod.containers):
            return

        for container in pod.containers:
            await self.add_container(pod, container)

    def _remember_listed(self, raw_body: Any) -> None:
        pod = bodies.parse_pod(raw_body)
        if pod is not None:
            for container in pod.containers:
                self._listed[registries.ContainerKey.from_pod(pod, container)] = pod

    async def add_container(self, pod: bodies.Pod, container: bodies.Container) -> None:
        self._enter_fn(pod, container)

        key = registries.ContainerKey.from_pod(pod, container)
        spawn = functools.partial(self._spawn, key=key, pod=pod, container=container)
        entry = await self.registry.register(key, spawn)
        if entry is not None:
            logger.debug(f"Tailing of {key} is started.")

    async def delete_container(self, pod: bodies.Pod, container: bodies.Container) -> None:
        key = registries.ContainerKey.from_pod(pod, container)
        entry = await self.registry.unregister(key)
        if entry is None:
            return

        logger.debug(f"Tailing of {key} is requested to stop.")
        self._exit_fn(pod, container)

    async def close(self) -> None:
        """
        Stop all the tailers and wait for them to exit. No hooks are called.

        The tailers that do not exit within the stop timeout are cancelled.
        """
        self._closing = True
        tailings = await self.registry.purge()
        tasks = [entry.task for entry in tailings]
        if tasks:
            logger.debug(f"Stopping {len(tasks)} tailers.")
        _, pending = await aiotasks.wait(tasks, timeout=self.settings.tailing.stop_timeout)
        await aiotasks.stop(pending, title="Tailer", logger=logger, quiet=True)

    def _spawn(
            self,
            *,
            key: registries.ContainerKey,
            pod: bodies.Pod,
            container: bodies.Container,
    ) -> registries.Tailing:
        worker = self._worker_factory(
            settings=self.settings,
            pod=pod,
            container=container,
            event_fn=self._event_fn,
        )
        task = asyncio.create_task(worker.run(), name=f"tailer of {key}")
        task.add_done_callback(functools.partial(self._tailing_done, pod, container))
        return registries.Tailing(pod=pod, container=container, worker=worker, task=task)

    def _tailing_done(
            self,
            pod: bodies.Pod,
            container: bodies.Container,
            task: aiotasks.Task,
    ) -> None:
        if task.cancelled():
            return

        exc = task.exception()
        if exc is None:
            return

        container_logger = loggers.ContainerLogger(pod=pod, container=container)
        container_logger.error(f"Tailing has failed: {exc!r}", exc_info=exc)
        if not self._closing:
            self._error_fn(pod, container, exc)


def _is_same_pod(pod1: bodies.Pod, pod2: bodies.Pod) -> bool:
    # Without uids (e.g. in synthetic events), the names are the only identity.
    return pod1.uid is None or pod2.uid is None or pod1.uid == pod2.uid
