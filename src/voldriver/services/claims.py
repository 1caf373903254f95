"""Watch claims and dispatch provisioning work."""

from collections.abc import Coroutine
from typing import Any

from aiojobs import Job, Scheduler
from kubernetes_asyncio.client import V1PersistentVolumeClaim
from safir.slack.blockkit import SlackException
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from ..constants import EVENT_REASON
from ..exceptions import InvalidObjectError
from ..models.domain.kubernetes import (
    Claim,
    ClaimPhase,
    EventType,
    claim_from_object,
)
from ..storage.kubernetes.events import EventRecorder
from ..storage.kubernetes.informer import EventHandler, KubernetesInformer
from ..storage.kubernetes.storageclass import StorageClassStorage
from .provisioner import VolumeProvisioner
from .resolver import get_claim_class_name
from .tracker import ClaimTracker

__all__ = ["ClaimController"]


class ClaimController:
    """Provision volumes for new claims of classes this instance serves.

    Every claim event is decoded and handed to a background job, so the
    watch is never blocked on provisioning. Jobs are fire-and-forget: a
    failure is logged and reported on the claim, and the claim is not
    retried.

    Parameters
    ----------
    prefix
        Provisioner name prefix. Only claims whose storage class names a
        provisioner starting with this prefix are handled.
    informer
        Informer over all claims in the cluster.
    storage_class_storage
        Used to look up the class of each claim.
    provisioner
        Does the work of provisioning a claim.
    tracker
        Table of claims being provisioned.
    event_recorder
        Used to report failures on the claim.
    slack_client
        If set, provisioning failures are also reported to Slack.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        prefix: str,
        informer: KubernetesInformer[V1PersistentVolumeClaim],
        storage_class_storage: StorageClassStorage,
        provisioner: VolumeProvisioner,
        tracker: ClaimTracker,
        event_recorder: EventRecorder,
        slack_client: SlackWebhookClient | None,
        logger: BoundLogger,
    ) -> None:
        self._prefix = prefix
        self._informer = informer
        self._classes = storage_class_storage
        self._provisioner = provisioner
        self._tracker = tracker
        self._events = event_recorder
        self._slack = slack_client
        self._logger = logger

        self._scheduler: Scheduler | None = None
        handler = EventHandler(on_add=self.on_add, on_update=self.on_update)
        self._informer.add_event_handler(handler)

    async def start(self) -> None:
        """Start the job scheduler and the claim informer.

        Raises
        ------
        KubernetesError
            Raised if the initial list of claims fails.
        """
        self._scheduler = Scheduler()
        await self._informer.start()
        self._logger.info("Watching claims", prefix=self._prefix)

    async def stop(self) -> None:
        """Stop watching claims and cancel any running jobs."""
        await self._informer.stop()
        if self._scheduler:
            await self._scheduler.close()
            self._scheduler = None

    async def on_add(self, obj: object) -> Job[None] | None:
        """Handle a newly seen claim.

        Returns
        -------
        aiojobs.Job or None
            The spawned provisioning job, or `None` if the object could not
            be decoded.
        """
        try:
            claim = claim_from_object(obj)
        except InvalidObjectError as e:
            self._logger.error("Ignoring claim event", error=str(e))
            return None
        self._logger.debug(
            "Claim added",
            claim=claim.name,
            namespace=claim.namespace,
            phase=claim.phase,
        )
        return await self._spawn(self.handle_claim(claim))

    async def on_update(self, old: object, new: object) -> Job[None] | None:
        """Handle a change to a claim.

        Returns
        -------
        aiojobs.Job or None
            The spawned job forwarding the claim to anyone waiting for it, or
            `None` if the object could not be decoded.
        """
        try:
            claim = claim_from_object(new)
        except InvalidObjectError as e:
            self._logger.error("Ignoring claim event", error=str(e))
            return None
        return await self._spawn(self._notify(claim))

    async def handle_claim(self, claim: Claim) -> None:
        """Provision a claim if it is pending and belongs to this instance.

        All errors are logged and reported rather than raised.
        """
        logger = self._logger.bind(
            claim=claim.name, namespace=claim.namespace, uid=claim.uid
        )
        if claim.phase != ClaimPhase.PENDING:
            logger.info("Skipping claim not pending", phase=claim.phase)
            return

        class_name = get_claim_class_name(claim)
        try:
            storage_class = await self._classes.read(class_name)
        except SlackException as e:
            logger.error(
                "Unable to get storage class",
                storage_class=class_name,
                error=str(e),
            )
            return
        if not storage_class.provisioner.startswith(self._prefix):
            logger.info(
                "Skipping claim for another provisioner",
                storage_class=class_name,
                provisioner=storage_class.provisioner,
            )
            return

        if not self._tracker.register(claim.uid):
            logger.info("Claim is already being provisioned")
            return
        try:
            await self._provisioner.provision(claim, storage_class)
        except Exception as e:
            logger.exception("Provisioning failed")
            msg = f"Failed to provision volume: {e!s}"
            await self._events.record(
                claim.to_reference(), EventType.WARNING, EVENT_REASON, msg
            )
            if self._slack:
                if isinstance(e, SlackException):
                    await self._slack.post_exception(e)
                else:
                    await self._slack.post_uncaught_exception(e)
        finally:
            self._tracker.release(claim.uid)

    async def _notify(self, claim: Claim) -> None:
        self._tracker.notify(claim)

    async def _spawn(self, coro: Coroutine[Any, Any, None]) -> Job[None]:
        if not self._scheduler:
            coro.close()
            raise RuntimeError("Claim controller not started")
        return await self._scheduler.spawn(coro)
