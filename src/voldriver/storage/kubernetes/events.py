"""Record Kubernetes events against objects."""

import time

from kubernetes_asyncio import client
from kubernetes_asyncio.client import (
    ApiClient,
    ApiException,
    CoreV1Event,
    V1EventSource,
    V1ObjectMeta,
    V1ObjectReference,
)
from safir.datetime import current_datetime
from structlog.stdlib import BoundLogger

from ...models.domain.kubernetes import EventType

__all__ = ["EventRecorder"]


class EventRecorder:
    """Create user-visible events attached to Kubernetes objects.

    Events are informational, so failures to record them are logged but
    otherwise ignored.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    component
        Name reported as the source of the events.
    logger
        Logger to use.
    """

    def __init__(
        self, api_client: ApiClient, component: str, logger: BoundLogger
    ) -> None:
        self._api = client.CoreV1Api(api_client)
        self._component = component
        self._logger = logger

    async def record(
        self,
        reference: V1ObjectReference,
        event_type: EventType,
        reason: str,
        message: str,
    ) -> None:
        """Record an event.

        Parameters
        ----------
        reference
            Object the event is about. Events for cluster-scoped objects are
            stored in the ``default`` namespace.
        event_type
            Severity of the event.
        reason
            Short machine-readable reason.
        message
            Human-readable message.
        """
        namespace = reference.namespace or "default"
        now = current_datetime()
        name = f"{reference.name}.{time.time_ns():x}"
        event = CoreV1Event(
            metadata=V1ObjectMeta(name=name, namespace=namespace),
            involved_object=reference,
            type=event_type.value,
            reason=reason,
            message=message,
            first_timestamp=now,
            last_timestamp=now,
            count=1,
            source=V1EventSource(component=self._component),
        )
        try:
            await self._api.create_namespaced_event(namespace, event)
        except ApiException as e:
            self._logger.warning(
                "Unable to record event",
                kind=reference.kind,
                name=reference.name,
                namespace=namespace,
                reason=reason,
                event_message=message,
                status=e.status,
            )
