"""Client for the Docker volume plugin protocol."""

from pathlib import Path
from typing import Any, Self

from pydantic import BaseModel
from structlog.stdlib import BoundLogger

from ..config import PluginConfig
from ..constants import DEFAULT_PLUGIN_SOCKET, KUBERNETES_OPTION_PREFIX
from ..exceptions import (
    InvalidRequestError,
    PluginError,
    PluginTransportError,
    VolumeNotFoundError,
)
from ..models.plugin import (
    ActivateResponse,
    CapabilitiesResponse,
    ErrorResponse,
    GetResponse,
    ListResponse,
    MountRequest,
    MountResponse,
    PluginCapabilities,
    PluginVolume,
    VolumeRequest,
)
from .discovery import PluginDiscovery
from .transport import PluginTransport

__all__ = [
    "ACTIVATE_URI",
    "CAPABILITIES_URI",
    "CREATE_URI",
    "GET_URI",
    "LIST_URI",
    "MOUNT_URI",
    "NOT_FOUND_PREFIX",
    "REMOVE_URI",
    "UNMOUNT_URI",
    "VolumePluginClient",
    "check_response",
]

ACTIVATE_URI = "/Plugin.Activate"
CREATE_URI = "/VolumeDriver.Create"
LIST_URI = "/VolumeDriver.List"
CAPABILITIES_URI = "/VolumeDriver.Capabilities"
REMOVE_URI = "/VolumeDriver.Remove"
MOUNT_URI = "/VolumeDriver.Mount"
UNMOUNT_URI = "/VolumeDriver.Unmount"
GET_URI = "/VolumeDriver.Get"

NOT_FOUND_PREFIX = "Unable to find"
"""Start of the error text plugins return for a missing volume."""


def check_response(response: ErrorResponse, path: str | None = None) -> None:
    """Raise an exception if a plugin response carries an error.

    A non-empty ``Err`` field always means failure, no matter what else the
    response contains.

    Parameters
    ----------
    response
        Decoded plugin response.
    path
        Protocol path of the call, for error reporting.

    Raises
    ------
    VolumeNotFoundError
        Raised if the error text starts with the plugin's not-found marker.
    PluginError
        Raised for any other non-empty error text.
    """
    if not response.err:
        return
    if response.err.startswith(NOT_FOUND_PREFIX):
        raise VolumeNotFoundError(response.err, path)
    raise PluginError(response.err, path)


class VolumePluginClient:
    """Client to a specific Docker volume plugin.

    Use `connect` to build a client from configuration.

    Parameters
    ----------
    transport
        Transport to the plugin socket.
    strip_kubernetes_options
        Whether to remove Kubernetes bookkeeping options before creating a
        volume.
    logger
        Logger to use.
    """

    def __init__(
        self,
        transport: PluginTransport,
        *,
        strip_kubernetes_options: bool,
        logger: BoundLogger,
    ) -> None:
        self._transport = transport
        self._strip = strip_kubernetes_options
        self._logger = logger.bind(socket=str(transport.socket_path))

    @property
    def socket_path(self) -> Path:
        """Path to the plugin socket."""
        return self._transport.socket_path

    @classmethod
    async def connect(
        cls, config: PluginConfig, logger: BoundLogger
    ) -> tuple[Self, PluginError | PluginTransportError | None]:
        """Build a client and check the plugin.

        If the configured socket is not an absolute path, it is the name of
        a managed plugin and its socket is found through the Docker engine.

        Parameters
        ----------
        config
            Plugin configuration.
        logger
            Logger to use.

        Returns
        -------
        tuple
            The client and the error from the capabilities check, or `None`
            if the check succeeded. The client is returned even if the check
            failed so that the caller can decide whether to carry on.

        Raises
        ------
        PluginDisabledError
            Raised if the named plugin is disabled.
        PluginNotFoundError
            Raised if no plugin by that name exists.
        PluginTransportError
            Raised if the Docker engine could not be queried.
        """
        if not config.socket:
            socket_path = DEFAULT_PLUGIN_SOCKET
        elif config.socket.startswith("/"):
            socket_path = Path(config.socket)
        else:
            discovery = PluginDiscovery(
                config.docker_socket, config.timeout, logger
            )
            try:
                socket_path = await discovery.find_socket(config.socket)
            finally:
                await discovery.aclose()

        transport = PluginTransport(socket_path, config.timeout)
        client = cls(
            transport,
            strip_kubernetes_options=config.strip_kubernetes_options,
            logger=logger,
        )
        try:
            await client.capabilities()
        except (PluginError, PluginTransportError) as e:
            return client, e
        return client, None

    async def aclose(self) -> None:
        """Close the connection to the plugin."""
        await self._transport.aclose()

    async def activate(self) -> list[str]:
        """Perform the plugin handshake.

        Returns
        -------
        list of str
            Subsystems implemented by the plugin.
        """
        res = await self._run(ACTIVATE_URI, None, ActivateResponse)
        return res.implements

    async def capabilities(self) -> PluginCapabilities:
        """Get the capabilities of the plugin.

        Raises
        ------
        PluginError
            Raised if the plugin returned an error.
        PluginTransportError
            Raised if the plugin could not be reached.
        """
        res = await self._run(CAPABILITIES_URI, None, CapabilitiesResponse)
        self._logger.debug("Got plugin capabilities", scope=res.capabilities)
        return res.capabilities

    async def get(self, name: str) -> PluginVolume:
        """Get a volume by name.

        Raises
        ------
        VolumeNotFoundError
            Raised if the volume does not exist.
        PluginError
            Raised if the plugin returned some other error.
        PluginTransportError
            Raised if the plugin could not be reached.
        """
        request = VolumeRequest(name=name)
        res = await self._run(GET_URI, request, GetResponse)
        return res.volume or PluginVolume(name=name)

    async def list(self) -> list[PluginVolume]:
        """List all volumes known to the plugin."""
        res = await self._run(LIST_URI, VolumeRequest(), ListResponse)
        return res.volumes or []

    def build_create_request(
        self, name: str, options: dict[str, Any]
    ) -> VolumeRequest:
        """Build the request body for creating a volume.

        The ``name`` option and, if configured, any Kubernetes bookkeeping
        options are dropped. The provided options are not modified.

        Raises
        ------
        InvalidRequestError
            Raised if the name is empty.
        """
        if not name:
            raise InvalidRequestError("name is required")
        opts = {
            k: v
            for k, v in options.items()
            if k != "name"
            and not (self._strip and k.startswith(KUBERNETES_OPTION_PREFIX))
        }
        return VolumeRequest(name=name, opts=opts or None)

    async def create(self, name: str, options: dict[str, Any]) -> str:
        """Create a volume.

        Parameters
        ----------
        name
            Name of the volume.
        options
            Plugin-specific creation options.

        Returns
        -------
        str
            Name of the created volume as reported by the plugin.

        Raises
        ------
        InvalidRequestError
            Raised if the name is empty.
        PluginError
            Raised if the plugin returned an error.
        PluginTransportError
            Raised if the plugin could not be reached.
        """
        request = self.build_create_request(name, options)
        logger = self._logger.bind(volume=name)
        try:
            res = await self._run(CREATE_URI, request, GetResponse)
        except (PluginError, PluginTransportError) as e:
            logger.error(
                "Unable to create volume", options=request.opts, error=str(e)
            )
            raise
        logger.info("Created volume", options=request.opts)
        if res.volume and res.volume.name:
            return res.volume.name
        return name

    async def mount(self, name: str, mount_id: str) -> str:
        """Mount a volume and return its mount point."""
        return await self._mounter(name, mount_id, MOUNT_URI)

    async def unmount(self, name: str, mount_id: str) -> None:
        """Unmount a volume."""
        await self._mounter(name, mount_id, UNMOUNT_URI)

    async def delete(self, name: str) -> None:
        """Delete a volume.

        Raises
        ------
        InvalidRequestError
            Raised if the name is empty.
        VolumeNotFoundError
            Raised if the volume does not exist.
        PluginError
            Raised if the plugin returned some other error.
        PluginTransportError
            Raised if the plugin could not be reached.
        """
        if not name:
            raise InvalidRequestError("name is required")
        request = VolumeRequest(name=name)
        try:
            await self._run(REMOVE_URI, request, GetResponse)
        except (PluginError, PluginTransportError) as e:
            self._logger.error(
                "Unable to delete volume", volume=name, error=str(e)
            )
            raise
        self._logger.info("Deleted volume", volume=name)

    async def _mounter(self, name: str, mount_id: str, path: str) -> str:
        if not name:
            raise InvalidRequestError("name is required")
        request = MountRequest(name=name, id=mount_id or None)
        try:
            res = await self._run(path, request, MountResponse)
        except (PluginError, PluginTransportError) as e:
            self._logger.error(
                f"{path} failed", volume=name, mount_id=mount_id, error=str(e)
            )
            raise
        return res.mountpoint

    async def _run[T: BaseModel](
        self, path: str, request: BaseModel | None, response_type: type[T]
    ) -> T:
        """Make one protocol call and apply the error convention."""
        res = await self._transport.post(path, request, response_type)
        check_response(res, path)
        return res
