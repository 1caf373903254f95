"""Component factory and process-wide context."""

from dataclasses import dataclass
from typing import Self

import structlog
from kubernetes_asyncio import client
from kubernetes_asyncio.client import (
    ApiClient,
    V1PersistentVolume,
    V1PersistentVolumeClaim,
)
from safir.slack.webhook import SlackWebhookClient

from .config import Config
from .constants import ROOT_LOGGER
from .services.claims import ClaimController
from .services.provisioner import VolumeProvisioner
from .services.resolver import CloneSourceResolver
from .services.tracker import ClaimTracker
from .services.volumes import VolumeReclaimer
from .storage.kubernetes.events import EventRecorder
from .storage.kubernetes.informer import KubernetesInformer
from .storage.kubernetes.storageclass import StorageClassStorage
from .storage.kubernetes.volume import VolumeStorage
from .storage.plugin import VolumePluginClient

__all__ = ["ProcessContext"]


@dataclass(frozen=True, slots=True)
class ProcessContext:
    """Per-process global application state.

    This object holds all of the per-process singletons. Kubernetes
    configuration must already have been loaded, normally with
    `safir.kubernetes.initialize_kubernetes`, before it is created.
    """

    config: Config
    """Provisioner configuration."""

    kubernetes_client: ApiClient
    """Shared Kubernetes client."""

    plugin: VolumePluginClient
    """Client for the Docker volume plugin."""

    claim_controller: ClaimController
    """Provisions volumes for new claims."""

    volume_reclaimer: VolumeReclaimer
    """Deletes released volumes."""

    @classmethod
    async def from_config(cls, config: Config) -> Self:
        """Create a new process context from the provisioner configuration.

        If the plugin does not answer the initial capabilities check, a
        warning is logged and the context is created anyway, since the
        plugin may come up later.

        Parameters
        ----------
        config
            Provisioner configuration.

        Returns
        -------
        ProcessContext
            Shared context for a provisioner process.

        Raises
        ------
        PluginDisabledError
            Raised if the configured managed plugin is disabled.
        PluginNotFoundError
            Raised if the configured managed plugin does not exist.
        PluginTransportError
            Raised if the Docker engine could not be asked about the plugin.
        """
        logger = structlog.get_logger(ROOT_LOGGER)
        plugin, error = await VolumePluginClient.connect(config.plugin, logger)
        if error:
            logger.warning("Volume plugin check failed", error=str(error))

        slack_client = None
        if config.slack_webhook:
            slack_client = SlackWebhookClient(
                config.slack_webhook.get_secret_value(), "voldriver", logger
            )

        kubernetes_client = ApiClient()
        core_api = client.CoreV1Api(kubernetes_client)
        list_claims = core_api.list_persistent_volume_claim_for_all_namespaces
        claim_informer = KubernetesInformer(
            list_method=list_claims,
            object_type=V1PersistentVolumeClaim,
            kind="PersistentVolumeClaim",
            resync_period=config.resync_period,
            reconnect_timeout=config.reconnect_timeout,
            logger=logger,
            slack_client=slack_client,
        )
        volume_informer = KubernetesInformer(
            list_method=core_api.list_persistent_volume,
            object_type=V1PersistentVolume,
            kind="PersistentVolume",
            resync_period=config.resync_period,
            reconnect_timeout=config.reconnect_timeout,
            logger=logger,
            slack_client=slack_client,
        )
        event_recorder = EventRecorder(kubernetes_client, config.name, logger)
        volume_storage = VolumeStorage(kubernetes_client, logger)
        tracker = ClaimTracker()
        provisioner = VolumeProvisioner(
            prefix=config.name,
            size_options=config.size_options,
            bind_timeout=config.bind_timeout,
            plugin=plugin,
            volume_storage=volume_storage,
            resolver=CloneSourceResolver(
                claim_informer, event_recorder, config.clone_wait, logger
            ),
            tracker=tracker,
            event_recorder=event_recorder,
            logger=logger,
        )
        return cls(
            config=config,
            kubernetes_client=kubernetes_client,
            plugin=plugin,
            claim_controller=ClaimController(
                prefix=config.name,
                informer=claim_informer,
                storage_class_storage=StorageClassStorage(
                    kubernetes_client, logger
                ),
                provisioner=provisioner,
                tracker=tracker,
                event_recorder=event_recorder,
                slack_client=slack_client,
                logger=logger,
            ),
            volume_reclaimer=VolumeReclaimer(
                prefix=config.name,
                informer=volume_informer,
                plugin=plugin,
                volume_storage=volume_storage,
                slack_client=slack_client,
                logger=logger,
            ),
        )

    async def aclose(self) -> None:
        """Free allocated resources."""
        await self.plugin.aclose()
        await self.kubernetes_client.close()

    async def start(self) -> None:
        """Start watching claims and volumes.

        Raises
        ------
        KubernetesError
            Raised if the initial list of claims or volumes fails.
        """
        await self.claim_controller.start()
        await self.volume_reclaimer.start()

    async def stop(self) -> None:
        """Stop watching and cancel any in-flight work."""
        await self.volume_reclaimer.stop()
        await self.claim_controller.stop()
