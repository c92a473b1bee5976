"""Driver registry: definitions, health states and default selection."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

from minicluster.exceptions import (
    ConfigurationError,
    DriverNotFoundError,
    DriverUnavailableError,
    DuplicateDriverError,
)
from minicluster.logging_config import get_logger

logger = get_logger(__name__)


class Priority(IntEnum):
    """Preference tier used when no driver is requested."""

    UNKNOWN = 0
    DISCOURAGED = 1
    DEPRECATED = 2
    FALLBACK = 3
    USABLE = 4
    PREFERRED = 5
    STRONGLY_PREFERRED = 6


@dataclass(frozen=True)
class State:
    """Installation and health status of a driver on this host."""

    installed: bool = False
    healthy: bool = False
    error: str = ""
    fix: str = ""
    doc: str = ""


StatusChecker = Callable[[], State]
Configurator = Callable[..., dict[str, Any]]


@dataclass
class DriverDef:
    """How to configure and check one host driver."""

    name: str
    config: Configurator | None
    status: StatusChecker | None
    priority: Priority = Priority.UNKNOWN
    init: Callable[[], Any] | None = None

    def __str__(self) -> str:
        return f"{{name: {self.name}, builtin: {self.init is not None}}}"


@dataclass(frozen=True)
class DriverState:
    """A driver with its priority and freshly computed status."""

    name: str
    priority: Priority
    state: State = field(default_factory=State)

    @property
    def usable(self) -> bool:
        return self.state.installed and self.state.healthy


class Registry:
    """The set of drivers known to this process."""

    def __init__(self):
        self._drivers: dict[str, DriverDef] = {}

    def register(self, definition: DriverDef) -> None:
        """Add a driver definition.

        Raises:
            DuplicateDriverError: If a driver with the same name is registered
        """
        if definition.name in self._drivers:
            raise DuplicateDriverError(f"Driver '{definition.name}' is already registered")
        logger.debug(f"Registering driver {definition.name} ({definition.priority.name})")
        self._drivers[definition.name] = definition

    def list(self) -> list[DriverDef]:
        """Return every definition in registration order."""
        return list(self._drivers.values())

    def driver(self, name: str) -> DriverDef:
        """Return the definition of a driver.

        Raises:
            DriverNotFoundError: If the name is not registered
        """
        try:
            return self._drivers[name]
        except KeyError:
            raise DriverNotFoundError(
                f"Driver '{name}' is not supported",
                f"Supported drivers: {', '.join(self._drivers) or 'none'}",
            )

    def status(self, name: str) -> DriverState:
        """Run a driver's health check.

        Raises:
            DriverNotFoundError: If the name is not registered
        """
        definition = self.driver(name)
        return DriverState(definition.name, definition.priority, _check(definition))

    def installed(self) -> list[DriverState]:
        """Return the states of every driver whose check reports it installed."""
        states = []
        for definition in self.list():
            if definition.status is None:
                logger.error(f"{definition.name} does not provide a status check")
                continue
            state = _check(definition)
            if state.installed:
                states.append(DriverState(definition.name, definition.priority, state))
        return states

    def choices(self) -> list[DriverState]:
        """Return installed drivers, highest priority first."""
        return sorted(self.installed(), key=lambda ds: ds.priority, reverse=True)

    @staticmethod
    def choose(
        requested: str, candidates: list[DriverState]
    ) -> tuple[DriverState | None, list[DriverState]]:
        """Pick a driver from candidate states.

        A requested driver present among the candidates is picked regardless
        of its health. Otherwise the installed, healthy candidate with the
        highest priority above DISCOURAGED wins, the earliest one on ties.

        Returns:
            Tuple of (pick or None, alternates). Alternates are every other
            installed and healthy candidate, highest priority first.
        """
        logger.info(f"requested driver: {requested!r}")
        pick: DriverState | None = None
        for ds in candidates:
            if requested and ds.name == requested:
                logger.info(f"choosing {ds.name!r} because it was requested")
                pick = ds
                break
        else:
            for ds in candidates:
                if not ds.state.installed:
                    continue
                if not ds.state.healthy:
                    logger.info(f"not recommending {ds.name!r} due to health: {ds.state.error}")
                    continue
                if ds.priority <= Priority.DISCOURAGED:
                    logger.info(f"not recommending {ds.name!r} due to priority: {ds.priority.name}")
                    continue
                if pick is None or ds.priority > pick.priority:
                    pick = ds

        alternates = [ds for ds in candidates if ds is not pick and ds.usable]
        # sorted() is stable, so equal priorities keep first-seen order
        alternates = sorted(alternates, key=lambda ds: ds.priority, reverse=True)
        logger.info(f"picked: {pick.name if pick else None}")
        logger.info(f"alternatives: {[ds.name for ds in alternates]}")
        return pick, alternates

    @staticmethod
    def validate(ds: DriverState, existing_driver: str | None = None, force: bool = False) -> None:
        """Check that a chosen driver can be used for this profile.

        Raises:
            DriverUnavailableError: If the driver reports an error and is not
                installed, unless forced
            ConfigurationError: If the profile was created with another driver
        """
        if existing_driver and existing_driver != ds.name:
            raise ConfigurationError(
                f"The existing cluster was created with the '{existing_driver}' driver, "
                f"which is incompatible with the requested '{ds.name}' driver",
                "Delete the existing cluster or start it again with "
                f"--driver={existing_driver}",
            )

        st = ds.state
        if not st.error:
            return
        if not st.installed:
            if force:
                logger.warning(f"{ds.name} does not appear to be installed, continuing (forced)")
                return
            raise DriverUnavailableError(
                f"The '{ds.name}' driver is not installed: {st.error}",
                "\n".join(p for p in (st.fix, st.doc) if p) or None,
                fix=st.fix,
                doc=st.doc,
            )
        logger.warning(f"'{ds.name}' driver reported an issue: {st.error}")


def _check(definition: DriverDef) -> State:
    if definition.status is None:
        return State(error=f"{definition.name} does not provide a status check")
    try:
        return definition.status()
    except Exception as e:
        logger.warning(f"status check for {definition.name} failed: {e}")
        return State(installed=False, healthy=False, error=str(e))
