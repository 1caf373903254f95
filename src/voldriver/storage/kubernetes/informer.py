"""Cached, continuously updated view of a kind of Kubernetes object."""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from aiojobs import Scheduler
from kubernetes_asyncio.client import ApiException
from safir.slack.blockkit import SlackException
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from ...exceptions import KubernetesError
from ...models.domain.kubernetes import KubernetesModel, WatchEventType
from .watcher import KubernetesWatcher, WatchEvent

__all__ = ["EventHandler", "KubernetesInformer"]

_RETRY_DELAY = timedelta(seconds=5)
"""How long to wait before relisting after a failed watch."""


@dataclass
class EventHandler[T]:
    """Callbacks for changes seen by an informer."""

    on_add: Callable[[T], Awaitable[object]]
    """Called with each newly seen object."""

    on_update: Callable[[T, T], Awaitable[object]]
    """Called with the previous and current versions of a changed object."""

    on_delete: Callable[[T], Awaitable[object]] | None = None
    """Called with the last known version of a deleted object."""


class KubernetesInformer[T: KubernetesModel]:
    """Maintain a local cache of Kubernetes objects and report changes.

    The informer lists all objects of one kind, then watches for changes,
    keeping a cache keyed by object UID. Every ``resync_period``, every
    cached object is redelivered to the update handlers as a backstop against
    missed watch events. If the watch fails, the informer relists and
    reconciles the cache before watching again.

    Handlers are called one at a time, in the order events are received, and
    are awaited before the next event is processed. Watch events, relists,
    and resyncs share a lock, so a resync never interleaves with a watch
    event. Handlers should therefore hand off any slow work to a background
    job.

    Parameters
    ----------
    list_method
        API list method that supports the watch API and is not restricted to
        a namespace.
    object_type
        Type of object being listed.
    kind
        Kubernetes kind of object, for logging and error reporting.
    resync_period
        How often to redeliver cached objects to the update handlers.
    reconnect_timeout
        How long a single watch request may run before being restarted.
    logger
        Logger to use.
    slack_client
        If given, watch failures are also reported to Slack.
    """

    def __init__(
        self,
        *,
        list_method: Callable[..., Awaitable[Any]],
        object_type: type[T],
        kind: str,
        resync_period: timedelta,
        reconnect_timeout: timedelta,
        logger: BoundLogger,
        slack_client: SlackWebhookClient | None = None,
    ) -> None:
        self._list = list_method
        self._type = object_type
        self._kind = kind
        self._resync_period = resync_period
        self._reconnect_timeout = reconnect_timeout
        self._logger = logger.bind(kind=kind)
        self._slack = slack_client

        self._cache: dict[str, T] = {}
        self._lock = asyncio.Lock()
        self._handlers: list[EventHandler[T]] = []
        self._resource_version: str | None = None
        self._scheduler: Scheduler | None = None
        self._watcher: KubernetesWatcher[T] | None = None

    def add_event_handler(self, handler: EventHandler[T]) -> None:
        """Register callbacks for changes.

        Handlers should be added before the informer is started, or they
        will miss the initial adds.
        """
        self._handlers.append(handler)

    def get(self, uid: str) -> T | None:
        """Return the cached object with the given UID, if any."""
        return self._cache.get(uid)

    def list(self) -> list[T]:
        """Return a snapshot of all cached objects."""
        return list(self._cache.values())

    async def start(self) -> None:
        """List all objects and start watching for changes.

        The initial list is complete, and the add handlers have been called
        for each listed object, by the time this method returns.

        Raises
        ------
        KubernetesError
            Raised if the initial list fails.
        """
        if self._scheduler:
            raise RuntimeError(f"{self._kind} informer already running")
        await self._relist()
        self._scheduler = Scheduler()
        await self._scheduler.spawn(self._watch_loop())
        await self._scheduler.spawn(self._resync_loop())
        self._logger.info("Started informer", count=len(self._cache))

    async def stop(self) -> None:
        """Stop watching. The cache is left as it was."""
        if not self._scheduler:
            return
        if self._watcher:
            self._watcher.stop()
        await self._scheduler.close()
        self._scheduler = None
        self._logger.info("Stopped informer")

    async def process(self, event: WatchEvent[T]) -> None:
        """Apply a watch event to the cache and call the handlers.

        An add of an object that is already cached is treated as an update,
        since watches restarted without a resource version replay the current
        state as adds.

        Parameters
        ----------
        event
            Event from the watch.
        """
        obj = event.object
        uid = obj.metadata.uid
        async with self._lock:
            if event.action == WatchEventType.DELETED:
                old = self._cache.pop(uid, None)
                await self._deleted(old or obj)
                return
            old = self._cache.get(uid)
            self._cache[uid] = obj
            if old is None:
                await self._added(obj)
            else:
                await self._updated(old, obj)

    async def resync(self) -> None:
        """Redeliver every cached object to the update handlers."""
        async with self._lock:
            self._logger.debug("Resyncing", count=len(self._cache))
            for obj in self.list():
                await self._updated(obj, obj)

    async def _added(self, obj: T) -> None:
        for handler in self._handlers:
            await self._dispatch(handler.on_add, obj)

    async def _updated(self, old: T, new: T) -> None:
        for handler in self._handlers:
            await self._dispatch(handler.on_update, old, new)

    async def _deleted(self, obj: T) -> None:
        for handler in self._handlers:
            if handler.on_delete:
                await self._dispatch(handler.on_delete, obj)

    async def _dispatch(
        self, callback: Callable[..., Awaitable[object]], *args: T
    ) -> None:
        try:
            await callback(*args)
        except Exception:
            msg = f"Uncaught exception in {self._kind} handler"
            self._logger.exception(msg)

    async def _relist(self) -> None:
        """List all objects and reconcile the cache against the result."""
        try:
            objects = await self._list()
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error listing objects", e, kind=self._kind
            ) from e
        async with self._lock:
            if objects.metadata:
                self._resource_version = objects.metadata.resource_version
            seen = set()
            for obj in objects.items:
                seen.add(obj.metadata.uid)
                old = self._cache.get(obj.metadata.uid)
                self._cache[obj.metadata.uid] = obj
                if old is None:
                    await self._added(obj)
                else:
                    await self._updated(old, obj)
            for uid in set(self._cache) - seen:
                await self._deleted(self._cache.pop(uid))

    async def _report(self, msg: str, exc: Exception) -> None:
        self._logger.exception(msg)
        if self._slack:
            if isinstance(exc, SlackException):
                await self._slack.post_exception(exc)
            else:
                await self._slack.post_uncaught_exception(exc)

    async def _resync_loop(self) -> None:
        while True:
            await asyncio.sleep(self._resync_period.total_seconds())
            await self.resync()

    async def _watch_loop(self) -> None:
        while True:
            self._watcher = KubernetesWatcher(
                method=self._list,
                object_type=self._type,
                kind=self._kind,
                resource_version=self._resource_version,
                reconnect_timeout=self._reconnect_timeout,
                logger=self._logger,
            )
            try:
                async for event in self._watcher.watch():
                    await self.process(event)
                return
            except Exception as e:
                await self._report("Watch failed, relisting", e)
            finally:
                if self._watcher.resource_version:
                    self._resource_version = self._watcher.resource_version
                await self._watcher.close()

            # Keep retrying the list until it works, so that the cache does
            # not stay stale after an API server outage.
            while True:
                await asyncio.sleep(_RETRY_DELAY.total_seconds())
                try:
                    await self._relist()
                    break
                except Exception as e:
                    await self._report("Relist failed", e)
