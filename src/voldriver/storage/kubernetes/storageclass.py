"""Storage layer for ``StorageClass`` objects."""

from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient, ApiException
from structlog.stdlib import BoundLogger

from ...exceptions import KubernetesError, UnknownStorageClassError
from ...models.domain.kubernetes import StorageClass

__all__ = ["StorageClassStorage"]


class StorageClassStorage:
    """Read-only access to ``StorageClass`` objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        self._api = client.StorageV1Api(api_client)
        self._logger = logger

    async def read(self, name: str) -> StorageClass:
        """Read a storage class.

        Parameters
        ----------
        name
            Name of the class.

        Returns
        -------
        StorageClass
            The class.

        Raises
        ------
        UnknownStorageClassError
            Raised if the class does not exist or no name was given.
        KubernetesError
            Raised for any other Kubernetes API failure.
        """
        if not name:
            raise UnknownStorageClassError("No storage class requested")
        try:
            storage_class = await self._api.read_storage_class(name)
        except ApiException as e:
            if e.status == 404:
                msg = f"Storage class {name} not found"
                raise UnknownStorageClassError(msg) from e
            msg = "Error reading storage class"
            raise KubernetesError.from_exception(
                msg, e, kind="StorageClass", name=name
            ) from e
        return StorageClass.from_kubernetes(storage_class)
