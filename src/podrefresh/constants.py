"""Constants for podrefresh.  Overrideable for testing."""

from datetime import timedelta
from pathlib import Path

__all__ = [
    "ALERT_HOOK_ENV_VAR",
    "CONFIG_FILE",
    "CONFIG_FILE_ENV_VAR",
    "DEFAULT_OWNER_KINDS",
    "DOCKER_CONFIG_KEY",
    "DOCKER_CONFIG_SECRET_TYPE",
    "DOCKER_HUB_ALIASES",
    "DOCKER_HUB_API_HOST",
    "DOCKER_HUB_REGISTRY",
    "ENV_PREFIX",
    "KUBERNETES_REQUEST_TIMEOUT",
    "MANIFEST_INDEX_MEDIA_TYPES",
    "MANIFEST_MEDIA_TYPES",
    "REGISTRY_REQUEST_TIMEOUT",
    "ROOT_LOGGER",
]

CONFIG_FILE = Path("/etc/podrefresh/config.yaml")
ENV_PREFIX = "PODREFRESH_"
ALERT_HOOK_ENV_VAR = f"{ENV_PREFIX}ALERT_HOOK"
CONFIG_FILE_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
ROOT_LOGGER = "podrefresh"

DEFAULT_OWNER_KINDS = frozenset({"ReplicaSet", "DaemonSet", "StatefulSet"})
"""Owner kinds whose controllers recreate a pod after it is deleted.

Bare pods and pods owned by a ``Job`` are never recreated, so deleting them
would remove them permanently.
"""

DOCKER_CONFIG_KEY = ".dockerconfigjson"
"""Key in a pull secret's data holding the Docker configuration."""

DOCKER_CONFIG_SECRET_TYPE = "kubernetes.io/dockerconfigjson"
"""Expected type of a pull secret. Only advisory."""

DOCKER_HUB_REGISTRY = "docker.io"
"""Registry assumed for image references without a registry host."""

DOCKER_HUB_API_HOST = "registry-1.docker.io"
"""Host serving the Docker Registry API for Docker Hub."""

DOCKER_HUB_ALIASES = frozenset(
    {"docker.io", "index.docker.io", "registry-1.docker.io"}
)
"""Host names under which Docker Hub credentials may be stored."""

KUBERNETES_REQUEST_TIMEOUT = timedelta(seconds=30)
"""Default timeout for a single Kubernetes API call."""

REGISTRY_REQUEST_TIMEOUT = timedelta(seconds=30)
"""Default timeout for a single Docker registry HTTP request."""

MANIFEST_INDEX_MEDIA_TYPES = frozenset(
    {
        "application/vnd.docker.distribution.manifest.list.v2+json",
        "application/vnd.oci.image.index.v1+json",
    }
)
"""Media types of multi-platform manifest lists."""

MANIFEST_MEDIA_TYPES = (
    "application/vnd.docker.distribution.manifest.v2+json",
    "application/vnd.docker.distribution.manifest.list.v2+json",
    "application/vnd.oci.image.manifest.v1+json",
    "application/vnd.oci.image.index.v1+json",
)
"""Media types accepted when requesting an image manifest."""
