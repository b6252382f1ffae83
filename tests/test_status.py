"""Tests for the status conditions."""

from knative_operator.status import (
    ComponentStatus,
    ConditionStatus,
    ConditionType,
)


def condition_status(status: ComponentStatus, condition_type: ConditionType) -> str:
    condition = status.get_condition(condition_type)
    assert condition
    return condition.status


def test_initialize_conditions() -> None:
    """Test all conditions start Unknown."""
    status = ComponentStatus()
    status.initialize_conditions()
    assert [c.type for c in status.conditions] == [
        ConditionType.DEPENDENCIES_INSTALLED,
        ConditionType.DEPLOYMENTS_AVAILABLE,
        ConditionType.INSTALL_SUCCEEDED,
        ConditionType.READY,
    ]
    assert all(c.status == ConditionStatus.UNKNOWN for c in status.conditions)
    assert not status.is_ready()


def test_initialize_is_idempotent() -> None:
    """Test initializing again never regresses a condition."""
    status = ComponentStatus()
    status.initialize_conditions()
    status.mark_install_succeeded()
    status.initialize_conditions()
    assert condition_status(status, ConditionType.INSTALL_SUCCEEDED) == "True"


def test_ready_when_all_true() -> None:
    """Test Ready is the conjunction of the other conditions."""
    status = ComponentStatus()
    status.initialize_conditions()

    status.mark_install_succeeded()
    assert condition_status(status, ConditionType.DEPENDENCIES_INSTALLED) == "True"
    assert condition_status(status, ConditionType.READY) == "Unknown"
    assert not status.is_ready()

    status.mark_deployments_available()
    assert condition_status(status, ConditionType.READY) == "True"
    assert status.is_ready()


def test_ready_mirrors_failure() -> None:
    """Test Ready carries the reason of a False condition."""
    status = ComponentStatus()
    status.initialize_conditions()
    status.mark_install_succeeded()
    status.mark_deployments_not_ready()

    ready = status.get_condition(ConditionType.READY)
    assert ready
    assert ready.status == ConditionStatus.FALSE
    assert ready.reason == "NotReady"
    assert ready.message == "Waiting on deployments"


def test_install_failed() -> None:
    """Test the install failure message embeds the error."""
    status = ComponentStatus()
    status.initialize_conditions()
    status.mark_install_failed("boom")

    condition = status.get_condition(ConditionType.INSTALL_SUCCEEDED)
    assert condition
    assert condition.is_false
    assert condition.reason == "Error"
    assert condition.message == "Install failed with message: boom"
    assert not status.is_ready()


def test_dependencies() -> None:
    """Test the dependency conditions."""
    status = ComponentStatus()
    status.initialize_conditions()
    status.mark_dependency_installing("istio")
    condition = status.get_condition(ConditionType.DEPENDENCIES_INSTALLED)
    assert condition
    assert condition.reason == "Installing"

    # Install does not override a dependency that reported itself
    status.mark_install_succeeded()
    status.mark_deployments_available()
    assert not status.is_ready()

    status.mark_dependency_missing("istio")
    condition = status.get_condition(ConditionType.DEPENDENCIES_INSTALLED)
    assert condition
    assert condition.reason == "Error"

    status.mark_dependencies_installed()
    assert status.is_ready()


def test_transition_time_only_changes_with_status() -> None:
    """Test lastTransitionTime is kept when the value does not change."""
    status = ComponentStatus()
    status.initialize_conditions()
    status.mark_deployments_not_ready()
    condition = status.get_condition(ConditionType.DEPLOYMENTS_AVAILABLE)
    assert condition
    condition.last_transition_time = "2020-01-01T00:00:00Z"

    status.mark_deployments_not_ready()
    assert condition.last_transition_time == "2020-01-01T00:00:00Z"

    status.mark_deployments_available()
    assert condition.last_transition_time != "2020-01-01T00:00:00Z"


def test_serialization() -> None:
    """Test the status round trips through its wire format."""
    status = ComponentStatus(observed_generation=2)
    status.initialize_conditions()
    status.mark_install_failed("boom")
    status.set_version("0.16.0")

    doc = status.to_dict()
    assert doc["observedGeneration"] == 2
    assert doc["version"] == "0.16.0"
    install = next(c for c in doc["conditions"] if c["type"] == "InstallSucceeded")
    assert install["status"] == "False"
    assert "lastTransitionTime" in install

    assert ComponentStatus.from_dict(doc) == status
