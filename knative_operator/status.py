"""Status conditions for a component.

Both component kinds track the same three conditions. The `Ready` condition
is derived from them and is True only when all three are True.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum

from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig

__all__ = [
    "ConditionType",
    "ConditionStatus",
    "Condition",
    "ComponentStatus",
]


class ConditionType(StrEnum):
    """Condition kinds tracked for a component."""

    READY = "Ready"
    INSTALL_SUCCEEDED = "InstallSucceeded"
    DEPLOYMENTS_AVAILABLE = "DeploymentsAvailable"
    DEPENDENCIES_INSTALLED = "DependenciesInstalled"


class ConditionStatus(StrEnum):
    """Tri-state value of a condition."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


# Conditions contributing to Ready, in the order they are reported.
DEPENDENT_CONDITIONS = (
    ConditionType.DEPENDENCIES_INSTALLED,
    ConditionType.DEPLOYMENTS_AVAILABLE,
    ConditionType.INSTALL_SUCCEEDED,
)


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass
class Condition(DataClassDictMixin):
    """A named tri-state health signal."""

    type: ConditionType
    """The kind of condition."""

    status: ConditionStatus = ConditionStatus.UNKNOWN
    """The current value of the condition."""

    reason: str | None = None
    """A short machine readable reason for the value."""

    message: str | None = None
    """A human readable explanation of the value."""

    last_transition_time: str | None = field(
        metadata=field_options(alias="lastTransitionTime"), default=None
    )
    """When the status last changed."""

    @property
    def is_true(self) -> bool:
        return self.status == ConditionStatus.TRUE

    @property
    def is_false(self) -> bool:
        return self.status == ConditionStatus.FALSE

    @property
    def is_unknown(self) -> bool:
        return self.status == ConditionStatus.UNKNOWN

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True


@dataclass
class ComponentStatus(DataClassDictMixin):
    """The observed state of a component."""

    observed_generation: int | None = field(
        metadata=field_options(alias="observedGeneration"), default=None
    )
    """The generation of the spec last seen by the reconciler."""

    version: str | None = None
    """The version of the last successfully installed release."""

    conditions: list[Condition] = field(default_factory=list)
    """The conditions of the component."""

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True

    def get_condition(self, condition_type: ConditionType) -> Condition | None:
        """Return the condition of the type, if present."""
        for condition in self.conditions:
            if condition.type == condition_type:
                return condition
        return None

    def _set(
        self,
        condition_type: ConditionType,
        status: ConditionStatus,
        reason: str | None = None,
        message: str | None = None,
    ) -> None:
        if (condition := self.get_condition(condition_type)) is None:
            condition = Condition(type=condition_type)
            self.conditions.append(condition)
            self.conditions.sort(key=lambda c: c.type)
        if condition.status != status or condition.last_transition_time is None:
            condition.last_transition_time = _now()
        condition.status = status
        condition.reason = reason
        condition.message = message

    def _mark(
        self,
        condition_type: ConditionType,
        status: ConditionStatus,
        reason: str | None = None,
        message: str | None = None,
    ) -> None:
        self._set(condition_type, status, reason, message)
        self._update_ready()

    def _update_ready(self) -> None:
        """Recompute Ready from the dependent conditions."""
        for condition_type in DEPENDENT_CONDITIONS:
            condition = self.get_condition(condition_type)
            if condition is None or condition.is_unknown:
                reason = condition.reason if condition else None
                message = condition.message if condition else None
                self._set(ConditionType.READY, ConditionStatus.UNKNOWN, reason, message)
                return
            if condition.is_false:
                self._set(
                    ConditionType.READY,
                    ConditionStatus.FALSE,
                    condition.reason,
                    condition.message,
                )
                return
        self._set(ConditionType.READY, ConditionStatus.TRUE)

    def initialize_conditions(self) -> None:
        """Set every absent condition to Unknown.

        Existing values are left alone so repeated calls never regress a
        condition to Unknown.
        """
        for condition_type in DEPENDENT_CONDITIONS:
            if self.get_condition(condition_type) is None:
                self._set(condition_type, ConditionStatus.UNKNOWN)
        self._update_ready()

    def is_ready(self) -> bool:
        """Return True when all tracked conditions are True."""
        for condition_type in DEPENDENT_CONDITIONS:
            condition = self.get_condition(condition_type)
            if condition is None or not condition.is_true:
                return False
        return True

    def set_version(self, version: str) -> None:
        self.version = version

    def mark_install_succeeded(self) -> None:
        """Mark InstallSucceeded True.

        DependenciesInstalled is assumed healthy if nothing has reported on
        it yet.
        """
        self._mark(ConditionType.INSTALL_SUCCEEDED, ConditionStatus.TRUE)
        dependencies = self.get_condition(ConditionType.DEPENDENCIES_INSTALLED)
        if dependencies is None or dependencies.is_unknown:
            self.mark_dependencies_installed()

    def mark_install_failed(self, msg: str) -> None:
        self._mark(
            ConditionType.INSTALL_SUCCEEDED,
            ConditionStatus.FALSE,
            "Error",
            f"Install failed with message: {msg}",
        )

    def mark_deployments_available(self) -> None:
        self._mark(ConditionType.DEPLOYMENTS_AVAILABLE, ConditionStatus.TRUE)

    def mark_deployments_not_ready(self) -> None:
        """Mark DeploymentsAvailable False while waiting on deployments."""
        self._mark(
            ConditionType.DEPLOYMENTS_AVAILABLE,
            ConditionStatus.FALSE,
            "NotReady",
            "Waiting on deployments",
        )

    def mark_dependencies_installed(self) -> None:
        self._mark(ConditionType.DEPENDENCIES_INSTALLED, ConditionStatus.TRUE)

    def mark_dependency_installing(self, msg: str) -> None:
        self._mark(
            ConditionType.DEPENDENCIES_INSTALLED,
            ConditionStatus.FALSE,
            "Installing",
            f"Dependency installing: {msg}",
        )

    def mark_dependency_missing(self, msg: str) -> None:
        self._mark(
            ConditionType.DEPENDENCIES_INSTALLED,
            ConditionStatus.FALSE,
            "Error",
            f"Dependency missing: {msg}",
        )
