"""Storage layer for ``PersistentVolume`` objects."""

from kubernetes_asyncio import client
from kubernetes_asyncio.client import (
    ApiClient,
    ApiException,
    V1PersistentVolume,
)
from structlog.stdlib import BoundLogger

from ...exceptions import KubernetesError

__all__ = ["VolumeStorage"]


class VolumeStorage:
    """Create and delete ``PersistentVolume`` objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        self._api = client.CoreV1Api(api_client)
        self._logger = logger

    async def create(self, volume: V1PersistentVolume) -> None:
        """Create a persistent volume.

        Raises
        ------
        KubernetesError
            Raised if the volume could not be created.
        """
        name = volume.metadata.name
        try:
            await self._api.create_persistent_volume(volume)
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error creating object", e, kind="PersistentVolume", name=name
            ) from e
        self._logger.info("Created persistent volume", volume=name)

    async def delete(self, name: str) -> None:
        """Delete a persistent volume. A missing volume is not an error.

        Raises
        ------
        KubernetesError
            Raised if the volume could not be deleted.
        """
        try:
            await self._api.delete_persistent_volume(name)
        except ApiException as e:
            if e.status == 404:
                return
            raise KubernetesError.from_exception(
                "Error deleting object", e, kind="PersistentVolume", name=name
            ) from e
        self._logger.info("Deleted persistent volume", volume=name)
