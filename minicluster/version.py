"""Kubernetes version parsing and version-gated behavior thresholds."""

import functools
import re
from dataclasses import dataclass

from minicluster.constants import DEFAULT_KUBERNETES_VERSION, OLDEST_KUBERNETES_VERSION
from minicluster.exceptions import ConfigurationError
from minicluster.logging_config import get_logger

logger = get_logger(__name__)

VERSION_PREFIX = "v"

_VERSION_PATTERN = re.compile(
    r"^v?(?P<major>0|[1-9]\d*)\.(?P<minor>0|[1-9]\d*)\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<pre>[0-9A-Za-z.-]+))?(?:\+(?P<build>[0-9A-Za-z.-]+))?$"
)


@functools.total_ordering
@dataclass(frozen=True)
class KubernetesVersion:
    """A parsed semantic version, compared by semver precedence."""

    major: int
    minor: int
    patch: int
    prerelease: str = ""

    def _key(self) -> tuple:
        if not self.prerelease:
            return (self.major, self.minor, self.patch, 1, ())
        parts = []
        for part in self.prerelease.split("."):
            parts.append((0, int(part), "") if part.isdigit() else (1, 0, part))
        return (self.major, self.minor, self.patch, 0, tuple(parts))

    def __lt__(self, other: "KubernetesVersion") -> bool:
        if not isinstance(other, KubernetesVersion):
            return NotImplemented
        return self._key() < other._key()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, KubernetesVersion):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def __str__(self) -> str:
        base = f"{self.major}.{self.minor}.{self.patch}"
        return f"{base}-{self.prerelease}" if self.prerelease else base

    @property
    def tag(self) -> str:
        """Version string with the ``v`` prefix, as used in release paths."""
        return f"{VERSION_PREFIX}{self}"


def parse_kubernetes_version(version: str) -> KubernetesVersion:
    """Parse a Kubernetes version string such as ``v1.16.1``.

    Args:
        version: Version string, ``v`` prefix optional

    Returns:
        Parsed version

    Raises:
        ConfigurationError: If the string is not a semantic version
    """
    match = _VERSION_PATTERN.match((version or "").strip())
    if not match:
        raise ConfigurationError(
            f"Unable to parse Kubernetes version '{version}'",
            "Versions must follow semantic versioning, e.g. v1.17.3",
        )
    return KubernetesVersion(
        major=int(match.group("major")),
        minor=int(match.group("minor")),
        patch=int(match.group("patch")),
        prerelease=match.group("pre") or "",
    )


# kubeadm gained `reset --force` and `config images pull`
KUBEADM_RESET_FORCE = parse_kubernetes_version("1.11.0")
KUBEADM_IMAGES_PULL = parse_kubernetes_version("1.11.0")
# kubeadm moved phases from `alpha phase` to `init phase` and renamed controlplane
KUBEADM_INIT_PHASES = parse_kubernetes_version("1.13.0")
# kubeadm split MasterConfiguration into InitConfiguration and ClusterConfiguration
KUBEADM_V1ALPHA3 = parse_kubernetes_version("1.12.0")
KUBEADM_V1BETA1 = parse_kubernetes_version("1.13.0")
KUBEADM_V1BETA2 = parse_kubernetes_version("1.15.0")


def resolve_kubernetes_version(requested: str = "", existing: str = "") -> str:
    """Decide which Kubernetes version a start should use.

    An empty request reuses the existing cluster's version, falling back to
    the default. Requests older than the oldest supported version or older
    than the existing cluster's version are refused.

    Args:
        requested: Version asked for by the user, may be empty
        existing: Version recorded in an existing profile, may be empty

    Returns:
        Normalized version string with ``v`` prefix

    Raises:
        ConfigurationError: On unparseable, unsupported or downgraded versions
    """
    candidate = requested or existing or DEFAULT_KUBERNETES_VERSION
    new = parse_kubernetes_version(candidate)

    oldest = parse_kubernetes_version(OLDEST_KUBERNETES_VERSION)
    if new < oldest:
        raise ConfigurationError(
            f"Kubernetes {new.tag} is not supported",
            f"The oldest supported version is {OLDEST_KUBERNETES_VERSION}",
        )

    if not existing:
        return new.tag

    try:
        old = parse_kubernetes_version(existing)
    except ConfigurationError as e:
        logger.error(f"Error parsing existing version {existing!r}: {e.message}")
        return new.tag

    if new < old:
        raise ConfigurationError(
            f"You have selected Kubernetes {new.tag}, but the existing cluster "
            f"is running Kubernetes {old.tag}",
            "Non-destructive downgrades are not supported. Delete the cluster and "
            f"recreate it with {new.tag}, or start it again with {old.tag}",
        )

    default = parse_kubernetes_version(DEFAULT_KUBERNETES_VERSION)
    if default > new:
        logger.info(f"Kubernetes {default.tag} is available, cluster is running {new.tag}")
    return new.tag
