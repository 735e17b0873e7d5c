"""
A registry of the running tailers, keyed by the containers' identities.

The registry is the single source of truth on which containers are tailed
at the moment. It holds at most one entry per container identity.

All read-modify-write sequences go through the registry's only lock,
and the lock is held for the duration of those sequences only:
never for the hooks, and never for the tailers' own execution.
"""
import asyncio
import dataclasses
from typing import Any, Callable, Collection, Dict, Iterator, NamedTuple, Optional

from typing_extensions import Protocol

from ktail.structs import bodies
from ktail.utilities import aiotasks


class ContainerKey(NamedTuple):
    """ The identity of a tailing target within the cluster. """
    namespace: str
    pod: str
    container: str

    def __str__(self) -> str:
        return f'{self.namespace}/{self.pod}/{self.container}'

    @classmethod
    def from_pod(cls, pod: bodies.Pod, container: bodies.Container) -> "ContainerKey":
        return cls(namespace=pod.namespace, pod=pod.name, container=container.name)


class Worker(Protocol):
    """ Anything that can tail a container: run until stopped, and be stopped. """

    async def run(self) -> Any: ...

    def stop(self) -> None: ...


@dataclasses.dataclass(frozen=True)
class Tailing:
    """ A registered worker with its task, as started for a pod & container. """
    pod: bodies.Pod
    container: bodies.Container
    worker: Worker
    task: aiotasks.Task


Spawner = Callable[[], Tailing]


class Registry:

    def __init__(self) -> None:
        super().__init__()
        self._lock = asyncio.Lock()
        self._entries: Dict[ContainerKey, Tailing] = {}

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__}: {sorted(str(key) for key in self._entries)!r}>'

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ContainerKey]:
        return iter(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def keys(self) -> Collection[ContainerKey]:
        return frozenset(self._entries)

    def get(self, key: ContainerKey) -> Optional[Tailing]:
        return self._entries.get(key)

    async def register(self, key: ContainerKey, spawn: Spawner) -> Optional[Tailing]:
        """
        Spawn and register a new tailing, unless one exists for this key.

        The spawner is called under the lock, so the entry is registered
        before any other registry operation can see the key as absent.
        Returns the new tailing, or ``None`` if the key was already registered.
        """
        async with self._lock:
            if key in self._entries:
                return None
            tailing = spawn()
            self._entries[key] = tailing
            return tailing

    async def unregister(self, key: ContainerKey) -> Optional[Tailing]:
        """
        Remove the tailing of this key and request its worker to stop.

        Returns the removed tailing, or ``None`` if the key was not registered.
        """
        async with self._lock:
            tailing = self._entries.pop(key, None)
            if tailing is not None:
                tailing.worker.stop()
            return tailing

    async def purge(self) -> Collection[Tailing]:
        """ Remove all tailings and request their workers to stop. """
        async with self._lock:
            tailings = list(self._entries.values())
            self._entries.clear()
            for tailing in tailings:
                tailing.worker.stop()
            return tailings
