"""Discovery of managed Docker plugin sockets."""

from datetime import timedelta
from pathlib import Path

from pydantic import RootModel
from structlog.stdlib import BoundLogger

from ..constants import PLUGIN_RUNTIME_DIR
from ..exceptions import PluginDisabledError, PluginNotFoundError
from ..models.plugin import DockerPlugin
from .transport import PluginTransport

__all__ = ["PluginDiscovery", "plugin_socket_path"]


class _PluginList(RootModel[list[DockerPlugin]]):
    """Reply to the Docker engine's plugin list request."""


def plugin_socket_path(plugin: DockerPlugin) -> Path:
    """Determine where a managed plugin listens.

    Parameters
    ----------
    plugin
        Plugin as reported by the Docker engine.

    Returns
    -------
    Path
        Path to the plugin's socket.
    """
    return PLUGIN_RUNTIME_DIR / plugin.id / plugin.config.interface.socket


class PluginDiscovery:
    """Find the socket of a managed (v2) Docker plugin by name.

    Parameters
    ----------
    docker_socket
        Path to the Docker engine socket.
    timeout
        Timeout for requests to the Docker engine.
    logger
        Logger to use.
    """

    def __init__(
        self, docker_socket: Path, timeout: timedelta, logger: BoundLogger
    ) -> None:
        self._transport = PluginTransport(docker_socket, timeout)
        self._logger = logger

    async def aclose(self) -> None:
        """Close the connection to the Docker engine."""
        await self._transport.aclose()

    async def list_plugins(self) -> list[DockerPlugin]:
        """List all managed plugins known to the Docker engine.

        Raises
        ------
        PluginTransportError
            Raised if the Docker engine could not be queried.
        """
        plugins = await self._transport.get("/plugins", _PluginList)
        return plugins.root

    async def find_socket(self, name: str) -> Path:
        """Find the socket of the named plugin.

        The plugin may be named with or without its ``latest`` tag.

        Parameters
        ----------
        name
            Name of the plugin.

        Returns
        -------
        Path
            Path to the plugin socket.

        Raises
        ------
        PluginDisabledError
            Raised if the plugin exists but is disabled. The exception
            carries the socket path the plugin would use.
        PluginNotFoundError
            Raised if no plugin by that name exists.
        PluginTransportError
            Raised if the Docker engine could not be queried.
        """
        # Either side may omit the default tag.
        candidates = {name, f"{name}:latest"}
        for plugin in await self.list_plugins():
            names = {plugin.name, f"{plugin.name}:latest"}
            if not names & candidates:
                continue
            path = plugin_socket_path(plugin)
            if not plugin.enabled:
                raise PluginDisabledError(name, path)
            self._logger.debug(
                "Found managed plugin", plugin=plugin.name, socket=str(path)
            )
            return path
        raise PluginNotFoundError(f"Unable to find managed plugin {name}")
