"""Constants for the volume provisioner.  Overrideable for testing."""

from pathlib import Path

__all__ = [
    "ALERT_HOOK_ENV_VAR",
    "BETA_STORAGE_CLASS_ANNOTATION",
    "CLONE_OF_OPTION",
    "CLONE_SOURCE_OPTION",
    "CONFIG_FILE",
    "CONFIG_FILE_ENV_VAR",
    "DEFAULT_DOCKER_SOCKET",
    "DEFAULT_PLUGIN_SOCKET",
    "ENV_PREFIX",
    "EVENT_REASON",
    "KUBERNETES_OPTION_PREFIX",
    "OVERRIDES_OPTION",
    "PLUGIN_RUNTIME_DIR",
    "PROVISIONED_BY_ANNOTATION",
    "ROOT_LOGGER",
    "VOLUME_NAME_ANNOTATION",
]

ENV_PREFIX = "VOLDRIVER_"
"""Prefix for environment variables governing provisioner behavior."""

ALERT_HOOK_ENV_VAR = f"{ENV_PREFIX}ALERT_HOOK"
"""Name of environment variable specifying Slack alert webhook."""

CONFIG_FILE = Path("/etc/voldriver/config.yaml")
"""Default location of the configuration file."""

CONFIG_FILE_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
"""Name of environment variable overriding the configuration file path."""

ROOT_LOGGER = "voldriver"
"""Root logger name."""

DEFAULT_PLUGIN_SOCKET = Path("/run/docker/plugins/nimble.sock")
"""Plugin socket used when no socket or plugin name is configured."""

DEFAULT_DOCKER_SOCKET = Path("/var/run/docker.sock")
"""Docker engine socket used to discover managed (v2) plugins."""

PLUGIN_RUNTIME_DIR = Path("/run/docker/plugins")
"""Directory under which Docker places the sockets of managed plugins."""

KUBERNETES_OPTION_PREFIX = "kubernetes.io"
"""Prefix of bookkeeping options injected by Kubernetes."""

BETA_STORAGE_CLASS_ANNOTATION = "volume.beta.kubernetes.io/storage-class"
"""Legacy claim annotation naming the storage class."""

PROVISIONED_BY_ANNOTATION = "pv.kubernetes.io/provisioned-by"
"""Annotation recording which provisioner created a persistent volume."""

VOLUME_NAME_ANNOTATION = "docker-volume-name"
"""Suffix, after the provisioner prefix, of the plugin volume annotation."""

OVERRIDES_OPTION = "allowOverrides"
"""Class parameter listing options that claim annotations may override."""

CLONE_SOURCE_OPTION = "cloneOfPVC"
"""Option naming a claim in the same namespace whose volume to clone."""

CLONE_OF_OPTION = "cloneOf"
"""Plugin option naming the volume to clone."""

EVENT_REASON = "ProvisionStorage"
"""Reason attached to all Kubernetes events recorded by the provisioner."""
