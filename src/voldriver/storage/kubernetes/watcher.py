"""Cluster-wide watch of one kind of Kubernetes object."""

from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Self

from kubernetes_asyncio.client import ApiException
from kubernetes_asyncio.watch import Watch
from structlog.stdlib import BoundLogger

from ...exceptions import KubernetesError
from ...models.domain.kubernetes import KubernetesModel, WatchEventType

__all__ = [
    "KubernetesWatcher",
    "WatchEvent",
]


@dataclass
class WatchEvent[T: KubernetesModel]:
    """One change reported by a watch, already decoded."""

    action: WatchEventType
    """Whether the object was added, modified, or deleted."""

    object: T
    """Object after the change, or its last state if it was deleted."""

    @classmethod
    def from_event(cls, event: dict[str, Any], object_type: type[T]) -> Self:
        """Decode an event as delivered by ``kubernetes_asyncio``.

        Raises
        ------
        TypeError
            Raised if the event object is not of the expected type.
        """
        obj = event["object"]
        if not isinstance(obj, object_type):
            got = type(obj).__name__
            msg = f"Watch returned {got} instead of {object_type.__name__}"
            raise TypeError(msg)
        return cls(action=WatchEventType(event["type"]), object=obj)


class KubernetesWatcher[T: KubernetesModel]:
    """Stream changes to all objects of one kind until stopped.

    Each watch request is bounded by ``reconnect_timeout`` on the server
    side. When the server closes it, a new request resumes from the last
    resource version seen. If that version is too old (HTTP 410), the watch
    resumes from the current state instead, which Kubernetes replays as
    ``ADDED`` events for objects the caller may already know.

    Parameters
    ----------
    method
        Cluster-wide list method supporting ``watch``.
    object_type
        Model type the method returns. ``kubernetes_asyncio`` normally
        guesses this from the method docstring, which fails for mocks.
    kind
        Kind of object, used in errors.
    resource_version
        Version to start from, normally that of a preceding list.
    reconnect_timeout
        Lifetime of a single watch request.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        method: Callable[..., Awaitable[Any]],
        object_type: type[T],
        kind: str,
        resource_version: str | None = None,
        reconnect_timeout: timedelta,
        logger: BoundLogger,
    ) -> None:
        self._method = method
        self._type = object_type
        self._kind = kind
        self._logger = logger
        self._stopped = False
        self._timeout = int(reconnect_timeout.total_seconds())
        self._watch = Watch(return_type=object_type)
        self.resource_version = resource_version

    async def close(self) -> None:
        """Stop the watch and free its HTTP session."""
        self._watch.stop()
        await self._watch.close()

    def stop(self) -> None:
        """Make `watch` return after the current event."""
        self._stopped = True
        self._watch.stop()

    async def watch(self) -> AsyncIterator[WatchEvent[T]]:
        """Yield events until `stop` is called.

        Yields
        ------
        WatchEvent
            Next change.

        Raises
        ------
        KubernetesError
            Raised if the API server rejects the watch for any reason other
            than an expired resource version.
        """
        while not self._stopped:
            try:
                async for event in self._stream():
                    yield event
            except ApiException as e:
                if e.status != 410:
                    raise KubernetesError.from_exception(
                        "Error watching objects", e, kind=self._kind
                    ) from e
                self._logger.info(
                    "Watch expired, restarting",
                    kind=self._kind,
                    resource_version=self.resource_version,
                )
                self.resource_version = None
                continue
            if not self._stopped:
                self._logger.debug("Reconnecting watch", kind=self._kind)

    async def _stream(self) -> AsyncIterator[WatchEvent[T]]:
        args: dict[str, Any] = {
            "timeout_seconds": self._timeout,
            "_request_timeout": self._timeout + 10,
        }
        if self.resource_version:
            args["resource_version"] = self.resource_version
        async with self._watch.stream(self._method, **args) as stream:
            async for raw in stream:
                event = WatchEvent.from_event(raw, self._type)
                if version := event.object.metadata.resource_version:
                    self.resource_version = version
                yield event
