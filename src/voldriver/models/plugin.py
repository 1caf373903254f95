"""Models for the Docker volume plugin protocol.

Field names on the wire use the Go-style capitalization of the Docker plugin
API, so all models use Pascal-case aliases. Every response carries an ``Err``
field, which is empty on success.
"""

from typing import Annotated, Any, Protocol

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_pascal

__all__ = [
    "ActivateResponse",
    "CapabilitiesResponse",
    "DockerPlugin",
    "DockerPluginConfig",
    "DockerPluginInterface",
    "ErrorResponse",
    "GetResponse",
    "ListResponse",
    "MountRequest",
    "MountResponse",
    "PluginCapabilities",
    "PluginVolume",
    "VolumeRequest",
]


class PluginModel(BaseModel):
    """Base class for models exchanged with a Docker plugin."""

    model_config = ConfigDict(
        alias_generator=to_pascal, populate_by_name=True, extra="ignore"
    )


class ErrorResponse(Protocol):
    """Any plugin response, all of which carry an error string."""

    err: str


class VolumeRequest(PluginModel):
    """Request naming a volume, optionally with creation options."""

    name: Annotated[str | None, Field(title="Volume name")] = None

    opts: Annotated[
        dict[str, Any] | None, Field(title="Volume creation options")
    ] = None


class MountRequest(PluginModel):
    """Request to mount or unmount a volume."""

    name: Annotated[str, Field(title="Volume name")]

    id: Annotated[
        str | None,
        Field(
            alias="ID",
            title="Mount ID",
            description="Opaque ID of the mount caller",
        ),
    ] = None


class PluginVolume(PluginModel):
    """A volume as described by the plugin."""

    name: Annotated[str, Field(title="Volume name")] = ""

    mountpoint: Annotated[
        str | None, Field(title="Mount point on the host")
    ] = None

    status: Annotated[
        dict[str, Any] | None, Field(title="Free-form plugin status")
    ] = None


class GetResponse(PluginModel):
    """Response to a get, create, or remove request."""

    volume: Annotated[PluginVolume | None, Field(title="Volume")] = None

    err: Annotated[str, Field(title="Error message")] = ""


class ListResponse(PluginModel):
    """Response to a list request."""

    volumes: Annotated[
        list[PluginVolume] | None, Field(title="Known volumes")
    ] = None

    err: Annotated[str, Field(title="Error message")] = ""


class MountResponse(PluginModel):
    """Response to a mount or unmount request."""

    mountpoint: Annotated[str, Field(title="Mount point on the host")] = ""

    err: Annotated[str, Field(title="Error message")] = ""


class PluginCapabilities(PluginModel):
    """Capabilities advertised by the plugin."""

    scope: Annotated[
        str,
        Field(title="Scope", description="Either ``local`` or ``global``"),
    ] = ""


class CapabilitiesResponse(PluginModel):
    """Response to a capabilities request."""

    capabilities: Annotated[
        PluginCapabilities, Field(title="Capabilities")
    ] = PluginCapabilities()

    err: Annotated[str, Field(title="Error message")] = ""


class ActivateResponse(PluginModel):
    """Response to the plugin handshake."""

    implements: Annotated[
        list[str], Field(title="Implemented subsystems")
    ] = []

    err: Annotated[str, Field(title="Error message")] = ""


class DockerPluginInterface(PluginModel):
    """Interface section of a managed plugin's configuration."""

    socket: Annotated[str, Field(title="Socket file name")] = ""


class DockerPluginConfig(PluginModel):
    """Configuration of a managed plugin."""

    interface: Annotated[
        DockerPluginInterface, Field(title="Plugin interface")
    ] = DockerPluginInterface()


class DockerPlugin(PluginModel):
    """A managed (v2) plugin as reported by the Docker engine."""

    id: Annotated[str, Field(title="Plugin ID")]

    name: Annotated[str, Field(title="Plugin name")]

    enabled: Annotated[bool, Field(title="Whether the plugin is enabled")]

    config: Annotated[
        DockerPluginConfig, Field(title="Plugin configuration")
    ] = DockerPluginConfig()
