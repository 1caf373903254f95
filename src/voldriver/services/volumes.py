"""Delete the backing storage of released volumes."""

from collections.abc import Coroutine
from typing import Any

from aiojobs import Job, Scheduler
from kubernetes_asyncio.client import V1PersistentVolume
from safir.slack.blockkit import SlackException
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from ..constants import PROVISIONED_BY_ANNOTATION, VOLUME_NAME_ANNOTATION
from ..exceptions import InvalidObjectError, VolumeNotFoundError
from ..models.domain.kubernetes import (
    ReclaimPolicy,
    Volume,
    VolumePhase,
    volume_from_object,
)
from ..storage.kubernetes.informer import EventHandler, KubernetesInformer
from ..storage.kubernetes.volume import VolumeStorage
from ..storage.plugin import VolumePluginClient

__all__ = ["VolumeReclaimer"]


class VolumeReclaimer:
    """Delete released volumes that this instance provisioned.

    A persistent volume is reclaimed once its claim is gone (phase
    ``Released``) if its reclaim policy is ``Delete`` and it was provisioned
    by a provisioner matching the configured prefix. The plugin volume is
    deleted first, then the persistent volume.

    Parameters
    ----------
    prefix
        Provisioner name prefix.
    informer
        Informer over all persistent volumes.
    plugin
        Client for the volume plugin.
    volume_storage
        Storage layer for persistent volumes.
    slack_client
        If set, reclaim failures are also reported to Slack.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        prefix: str,
        informer: KubernetesInformer[V1PersistentVolume],
        plugin: VolumePluginClient,
        volume_storage: VolumeStorage,
        slack_client: SlackWebhookClient | None,
        logger: BoundLogger,
    ) -> None:
        self._prefix = prefix
        self._informer = informer
        self._plugin = plugin
        self._volumes = volume_storage
        self._slack = slack_client
        self._logger = logger

        self._in_progress: set[str] = set()
        self._scheduler: Scheduler | None = None
        handler = EventHandler(on_add=self.on_add, on_update=self.on_update)
        self._informer.add_event_handler(handler)

    async def start(self) -> None:
        """Start the job scheduler and the volume informer.

        Raises
        ------
        KubernetesError
            Raised if the initial list of volumes fails.
        """
        self._scheduler = Scheduler()
        await self._informer.start()
        self._logger.info("Watching persistent volumes")

    async def stop(self) -> None:
        """Stop watching volumes and cancel any running jobs."""
        await self._informer.stop()
        if self._scheduler:
            await self._scheduler.close()
            self._scheduler = None

    def should_reclaim(self, volume: Volume) -> bool:
        """Whether a volume is released and ours to delete."""
        provisioner = volume.annotations.get(PROVISIONED_BY_ANNOTATION, "")
        return (
            volume.phase == VolumePhase.RELEASED
            and volume.reclaim_policy == ReclaimPolicy.DELETE
            and provisioner.startswith(self._prefix)
        )

    async def on_add(self, obj: object) -> Job[None] | None:
        """Handle a newly seen volume.

        Returns
        -------
        aiojobs.Job or None
            The spawned reclaim job, or `None` if there is nothing to do.
        """
        try:
            volume = volume_from_object(obj)
        except InvalidObjectError as e:
            self._logger.error("Ignoring volume event", error=str(e))
            return None
        if not self.should_reclaim(volume):
            return None
        if volume.name in self._in_progress:
            self._logger.debug("Reclaim in progress", volume=volume.name)
            return None
        self._in_progress.add(volume.name)
        return await self._spawn(self.reclaim(volume))

    async def on_update(self, old: object, new: object) -> Job[None] | None:
        """Handle a change to a volume, such as its claim being deleted."""
        return await self.on_add(new)

    async def reclaim(self, volume: Volume) -> None:
        """Delete a released volume and its backing storage.

        All errors are logged and reported rather than raised. The volume is
        released from the in-progress set when this finishes, so a failed
        reclaim is retried on the next resync.
        """
        key = self._prefix + VOLUME_NAME_ANNOTATION
        plugin_name = volume.annotations.get(key, volume.name)
        logger = self._logger.bind(
            volume=volume.name, plugin_volume=plugin_name
        )
        try:
            try:
                await self._plugin.delete(plugin_name)
            except VolumeNotFoundError:
                logger.info("Plugin volume already gone")
            await self._volumes.delete(volume.name)
            logger.info("Reclaimed volume")
        except Exception as e:
            logger.exception("Unable to reclaim volume")
            if self._slack:
                if isinstance(e, SlackException):
                    await self._slack.post_exception(e)
                else:
                    await self._slack.post_uncaught_exception(e)
        finally:
            self._in_progress.discard(volume.name)

    async def _spawn(self, coro: Coroutine[Any, Any, None]) -> Job[None]:
        if not self._scheduler:
            coro.close()
            raise RuntimeError("Volume reclaimer not started")
        return await self._scheduler.spawn(coro)
