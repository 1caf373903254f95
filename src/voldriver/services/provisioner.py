"""Provision a volume for a single claim."""

from datetime import timedelta
from typing import Any

from kubernetes_asyncio.client import (
    V1FlexPersistentVolumeSource,
    V1ObjectMeta,
    V1ObjectReference,
    V1PersistentVolume,
    V1PersistentVolumeSpec,
)
from structlog.stdlib import BoundLogger

from ..constants import (
    CLONE_OF_OPTION,
    CLONE_SOURCE_OPTION,
    EVENT_REASON,
    OVERRIDES_OPTION,
    PROVISIONED_BY_ANNOTATION,
    VOLUME_NAME_ANNOTATION,
)
from ..exceptions import KubernetesError, PluginError, PluginTransportError
from ..models.domain.kubernetes import Claim, EventType, StorageClass
from ..storage.kubernetes.events import EventRecorder
from ..storage.kubernetes.volume import VolumeStorage
from ..storage.plugin import VolumePluginClient
from ..units import storage_to_gib
from .resolver import (
    CloneSourceResolver,
    get_claim_match_labels,
    merge_override_options,
)
from .tracker import ClaimTracker

__all__ = ["VolumeProvisioner"]


class VolumeProvisioner:
    """Create the plugin volume and persistent volume for a claim.

    Parameters
    ----------
    prefix
        Provisioner name prefix, used for overrides and annotations.
    size_options
        Volume options that receive the requested size in GiB.
    bind_timeout
        How long to wait for the claim to become bound.
    plugin
        Client for the volume plugin.
    volume_storage
        Storage layer for persistent volumes.
    resolver
        Finds clone sources.
    tracker
        Table of claims being provisioned, used to wait for binding.
    event_recorder
        Used to report progress on the claim.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        prefix: str,
        size_options: list[str],
        bind_timeout: timedelta,
        plugin: VolumePluginClient,
        volume_storage: VolumeStorage,
        resolver: CloneSourceResolver,
        tracker: ClaimTracker,
        event_recorder: EventRecorder,
        logger: BoundLogger,
    ) -> None:
        self._prefix = prefix
        self._size_options = size_options
        self._bind_timeout = bind_timeout
        self._plugin = plugin
        self._volumes = volume_storage
        self._resolver = resolver
        self._tracker = tracker
        self._events = event_recorder
        self._logger = logger

    async def provision(
        self, claim: Claim, storage_class: StorageClass
    ) -> V1PersistentVolume:
        """Provision storage for a pending claim.

        Parameters
        ----------
        claim
            Claim to satisfy.
        storage_class
            Storage class requested by the claim.

        Returns
        -------
        V1PersistentVolume
            The persistent volume created for the claim.

        Raises
        ------
        ClaimNotFoundError
            Raised if the claim asked for a clone of a claim that never
            became available.
        KubernetesError
            Raised if the persistent volume could not be created.
        PluginError
            Raised if the plugin refused to create the volume.
        PluginTransportError
            Raised if the plugin could not be reached.
        ValueError
            Raised if the requested storage size could not be parsed.
        """
        name = f"{storage_class.name}-{claim.uid}"
        logger = self._logger.bind(
            claim=claim.name,
            namespace=claim.namespace,
            uid=claim.uid,
            volume=name,
        )
        options = await self.build_options(claim, storage_class, name)
        logger.info("Creating volume", options=options)
        volume_name = await self._plugin.create(name, options)

        pv = self.build_volume(claim, storage_class, volume_name)
        try:
            await self._volumes.create(pv)
        except KubernetesError:
            logger.exception("Unable to create persistent volume")
            try:
                await self._plugin.delete(volume_name)
            except (PluginError, PluginTransportError) as e:
                logger.warning("Unable to clean up volume", error=str(e))
            raise
        logger.info("Created persistent volume")

        msg = f"Successfully provisioned volume {volume_name}"
        reference = claim.to_reference()
        await self._events.record(
            reference, EventType.NORMAL, EVENT_REASON, msg
        )

        if claim.uid in self._tracker:
            try:
                await self._tracker.wait_for_bound(
                    claim.uid, self._bind_timeout
                )
            except TimeoutError:
                timeout = int(self._bind_timeout.total_seconds())
                logger.warning(f"Claim not bound after {timeout}s")
            else:
                logger.info("Claim bound")
        return pv

    async def build_options(
        self, claim: Claim, storage_class: StorageClass, volume_name: str
    ) -> dict[str, Any]:
        """Build the plugin options for a claim's volume.

        Options come from the class parameters, then the claim's selector
        labels, then any claim annotations the class allows to override
        options. The requested size is added, and a clone source claim is
        translated into the name of its volume.

        Parameters
        ----------
        claim
            Claim being provisioned.
        storage_class
            Storage class requested by the claim.
        volume_name
            Name of the volume being provisioned. A missing clone source is
            reported against this volume.

        Raises
        ------
        ClaimNotFoundError
            Raised if the clone source claim could not be found.
        ValueError
            Raised if the requested storage size could not be parsed.
        """
        options: dict[str, Any] = dict(storage_class.parameters)
        allowed = options.pop(OVERRIDES_OPTION, "")
        overrides = [o.strip() for o in allowed.split(",") if o.strip()]
        options.update(get_claim_match_labels(claim))
        options = merge_override_options(
            claim, overrides, options, self._prefix, self._logger
        )

        if claim.storage:
            size = str(storage_to_gib(claim.storage))
            for key in self._size_options:
                options[key] = size

        if source := options.pop(CLONE_SOURCE_OPTION, None):
            # The volume is cluster-wide, but the source is looked up in
            # the namespace of the claim.
            target = V1ObjectReference(
                api_version="v1",
                kind="PersistentVolume",
                name=volume_name,
                namespace=claim.namespace,
            )
            found = await self._resolver.find_bound_claim(target, source)
            options[CLONE_OF_OPTION] = found.volume_name
        return options

    def build_volume(
        self, claim: Claim, storage_class: StorageClass, volume_name: str
    ) -> V1PersistentVolume:
        """Build the persistent volume bound to a claim."""
        annotations = {
            PROVISIONED_BY_ANNOTATION: storage_class.provisioner,
            self._prefix + VOLUME_NAME_ANNOTATION: volume_name,
        }
        capacity = {"storage": claim.storage} if claim.storage else None
        return V1PersistentVolume(
            api_version="v1",
            kind="PersistentVolume",
            metadata=V1ObjectMeta(name=volume_name, annotations=annotations),
            spec=V1PersistentVolumeSpec(
                access_modes=claim.access_modes or ["ReadWriteOnce"],
                capacity=capacity,
                claim_ref=claim.to_reference(),
                flex_volume=V1FlexPersistentVolumeSource(
                    driver=storage_class.provisioner,
                    options={"name": volume_name},
                ),
                mount_options=storage_class.mount_options or None,
                persistent_volume_reclaim_policy=storage_class.reclaim_policy,
                storage_class_name=storage_class.name,
            ),
        )
