"""Application configuration for the volume provisioner."""

from datetime import timedelta
from pathlib import Path
from typing import Annotated, Self

import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, SecretStr
from pydantic.alias_generators import to_camel
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)
from safir.logging import LogLevel, Profile, configure_logging
from safir.pydantic import HumanTimedelta

from .constants import DEFAULT_DOCKER_SOCKET, ENV_PREFIX, ROOT_LOGGER

__all__ = [
    "Config",
    "PluginConfig",
]


class PluginConfig(BaseModel):
    """Configuration for talking to the Docker volume plugin."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    socket: Annotated[
        str,
        Field(
            title="Plugin socket or name",
            description=(
                "Absolute path to the plugin socket, or the name of a"
                " managed Docker plugin whose socket should be discovered."
                " If empty, the default nimble plugin socket is used."
            ),
        ),
    ] = ""

    docker_socket: Annotated[
        Path,
        Field(
            title="Docker engine socket",
            description="Socket used to look up managed Docker plugins",
        ),
    ] = DEFAULT_DOCKER_SOCKET

    strip_kubernetes_options: Annotated[
        bool,
        Field(
            title="Strip Kubernetes options",
            description=(
                "Whether to remove options with a kubernetes.io prefix"
                " before creating a volume"
            ),
        ),
    ] = True

    timeout: Annotated[
        HumanTimedelta,
        Field(
            title="Plugin request timeout",
            description="How long to wait for any single plugin call",
        ),
    ] = timedelta(minutes=2)


class EnvFirstSettings(BaseSettings):
    """Base class for Pydantic settings with environment overrides.

    Classes that inherit from this base class will prioritize environment
    variables over arguments to the class constructor.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_nested_delimiter="__",
        extra="forbid",
        validate_by_name=True,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Override the sources of settings.

        Deactivate :file:`.env` and secret file support. Allow environment
        variables to override init parameters, since init parameters come
        from the YAML configuration file and we want environment variables to
        take precedence.
        """
        return (env_settings, init_settings)


class Config(EnvFirstSettings):
    """Configuration for the volume provisioner."""

    name: Annotated[
        str,
        Field(
            title="Provisioner name prefix",
            description=(
                "Storage classes whose provisioner starts with this prefix"
                " are handled by this instance. Claim annotations starting"
                " with this prefix may override volume options."
            ),
            validation_alias=AliasChoices(ENV_PREFIX + "NAME", "name"),
        ),
    ] = "hpe.com/"

    plugin: Annotated[
        PluginConfig,
        Field(
            title="Volume plugin configuration",
            validation_alias=AliasChoices(ENV_PREFIX + "PLUGIN", "plugin"),
        ),
    ] = PluginConfig()

    resync_period: Annotated[
        HumanTimedelta,
        Field(
            title="Resync period",
            description=(
                "How often to redeliver every cached claim and volume as an"
                " update, to recover from missed watch events"
            ),
            validation_alias=AliasChoices(
                ENV_PREFIX + "RESYNC_PERIOD", "resyncPeriod"
            ),
        ),
    ] = timedelta(minutes=1)

    reconnect_timeout: Annotated[
        HumanTimedelta,
        Field(
            title="Watch reconnect timeout",
            description=(
                "How long a single Kubernetes watch may run before it is"
                " explicitly restarted"
            ),
            validation_alias=AliasChoices(
                ENV_PREFIX + "RECONNECT_TIMEOUT", "reconnectTimeout"
            ),
        ),
    ] = timedelta(minutes=5)

    clone_wait: Annotated[
        int,
        Field(
            title="Clone source wait",
            description=(
                "Maximum number of seconds to wait for a claim named as a"
                " clone source to show up as Bound"
            ),
            ge=0,
            validation_alias=AliasChoices(
                ENV_PREFIX + "CLONE_WAIT", "cloneWait"
            ),
        ),
    ] = 60

    bind_timeout: Annotated[
        HumanTimedelta,
        Field(
            title="Bind timeout",
            description=(
                "How long to wait for a provisioned claim to become Bound"
            ),
            validation_alias=AliasChoices(
                ENV_PREFIX + "BIND_TIMEOUT", "bindTimeout"
            ),
        ),
    ] = timedelta(minutes=5)

    size_options: Annotated[
        list[str],
        Field(
            title="Size options",
            description=(
                "Volume options that receive the requested claim size in"
                " GiB"
            ),
            validation_alias=AliasChoices(
                ENV_PREFIX + "SIZE_OPTIONS", "sizeOptions"
            ),
        ),
    ] = ["sizeInGiB"]

    debug: Annotated[
        bool,
        Field(
            title="Show debug output and log style",
            description=(
                "If True, then log level will be set to debug and will"
                " non-structured, human-readable output."
            ),
        ),
    ] = False

    log_profile: Annotated[
        Profile,
        Field(
            title="Logging profile",
            validation_alias=AliasChoices(
                ENV_PREFIX + "LOG_PROFILE", "logProfile"
            ),
        ),
    ] = Profile.production

    log_level: Annotated[
        LogLevel,
        Field(
            title="Log level",
            validation_alias=AliasChoices(
                ENV_PREFIX + "LOG_LEVEL", "logLevel"
            ),
        ),
    ] = LogLevel.INFO

    add_timestamp: Annotated[
        bool,
        Field(
            title="Add timestamp to log lines",
            validation_alias=AliasChoices(
                ENV_PREFIX + "ADD_TIMESTAMP", "addTimestamp"
            ),
        ),
    ] = False

    slack_webhook: Annotated[
        SecretStr | None,
        Field(
            title="Slack webhook URL used for sending alerts",
            description=(
                "An https URL, which should be considered secret."
                " If not set or set to `None`, this feature will be disabled."
            ),
            validation_alias=AliasChoices(
                ENV_PREFIX + "ALERT_HOOK", "slackWebhook"
            ),
        ),
    ] = None

    @classmethod
    def from_file(cls, path: Path) -> Self:
        """Construct the configuration from a YAML file.

        Parameters
        ----------
        path
            Path to the configuration file in YAML.

        Returns
        -------
        Config
            The corresponding configuration.
        """
        with path.open("r") as f:
            return cls.model_validate(yaml.safe_load(f) or {})

    def configure_logging(self) -> None:
        """Configure logging based on the provisioner configuration."""
        if self.debug:
            log_level = LogLevel.DEBUG
            log_profile = Profile.development
        else:
            log_level = self.log_level
            log_profile = self.log_profile

        configure_logging(
            profile=log_profile,
            log_level=log_level,
            add_timestamp=self.add_timestamp,
            name=ROOT_LOGGER,
        )
