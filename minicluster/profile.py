"""Profile store: one JSON cluster configuration per named cluster.

Profiles live under ``<home>/profiles/<name>/config.json``; ``<home>`` is
resolved by :func:`minicluster.constants.get_home` unless given explicitly.
"""

import shutil
from pathlib import Path

from pydantic import ValidationError

from minicluster.constants import get_home
from minicluster.exceptions import ConfigurationError
from minicluster.logging_config import get_logger
from minicluster.models.cluster import ClusterConfig

logger = get_logger(__name__)

CONFIG_FILE = "config.json"


class ProfileStore:
    """Reads and writes cluster profiles."""

    def __init__(self, home: str | Path | None = None):
        """Initialize the store.

        Args:
            home: State directory, defaults to the resolved minicluster home
        """
        self.home = Path(home) if home else get_home()

    @property
    def profiles_dir(self) -> Path:
        return self.home / "profiles"

    def path(self, name: str) -> Path:
        """Return the config file path of a profile."""
        return self.profiles_dir / name / CONFIG_FILE

    def exists(self, name: str) -> bool:
        return self.path(name).is_file()

    def load(self, name: str) -> ClusterConfig:
        """Load a profile.

        Raises:
            ConfigurationError: If the profile is missing or cannot be parsed
        """
        path = self.path(name)
        logger.debug(f"Loading profile {name} from {path}")
        if not path.is_file():
            raise ConfigurationError(
                f"Profile '{name}' not found",
                f"Expected location: {path}\nRun 'minicluster start -p {name}' to create it",
            )
        try:
            return ClusterConfig.load(path)
        except (OSError, ValidationError, ValueError) as e:
            logger.error(f"Failed to load profile {name}: {e}")
            raise ConfigurationError(f"Profile '{name}' is corrupt", str(e))

    def load_optional(self, name: str) -> ClusterConfig | None:
        """Load a profile, returning None when it does not exist."""
        if not self.exists(name):
            return None
        return self.load(name)

    def save(self, cc: ClusterConfig) -> Path:
        """Write a profile, creating its directory as needed.

        Returns:
            Path written
        """
        path = self.path(cc.name)
        try:
            cc.save(path)
        except OSError as e:
            raise ConfigurationError(f"Unable to save profile '{cc.name}'", str(e))
        logger.info(f"Saved profile {cc.name} to {path}")
        return path

    def delete(self, name: str) -> bool:
        """Remove a profile directory.

        Returns:
            True if a profile was removed, False if there was none
        """
        profile_dir = self.profiles_dir / name
        if not profile_dir.exists():
            logger.debug(f"Profile {name} does not exist, nothing to delete")
            return False
        shutil.rmtree(profile_dir)
        logger.info(f"Deleted profile {name}")
        return True

    def list_profiles(self) -> list[str]:
        """Return the names of every stored profile, sorted."""
        if not self.profiles_dir.is_dir():
            return []
        return sorted(p.parent.name for p in self.profiles_dir.glob(f"*/{CONFIG_FILE}"))

    def cert_dir(self, name: str) -> Path:
        """Return the local certificate directory of a profile."""
        return self.profiles_dir / name / "certs"
