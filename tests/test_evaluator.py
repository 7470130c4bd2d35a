from types import SimpleNamespace

import pytest

from spotcheck.evaluator import ActionSet, evaluate
from spotcheck.schedule import ActiveWindow, ScheduleVerdict

IN_WINDOW = ScheduleVerdict(True, True, ActiveWindow("22:00", "07:00", "Europe/Paris"), "mon", 1410)
OUT_OF_WINDOW = ScheduleVerdict(True, False, ActiveWindow("22:00", "07:00", "Europe/Paris"), "mon", 720)
NO_SCHEDULE = ScheduleVerdict(False, True, None, "tue", 720)

EXTRA_TIME = SimpleNamespace(id="req-1", starts_at=0, ends_at=10)


@pytest.mark.parametrize(
    "actions,wants",
    [
        (ActionSet(), True),
        (ActionSet(hotspot_off=False), False),
        (ActionSet(lock_apps=True, hotspot_off=False, rotate_password=True), False),
        (ActionSet(hotspot_off=False, wifi_off=True), True),
        (ActionSet(lock_apps=False, hotspot_off=False, mobile_data_off=True), True),
    ],
)
def test_only_network_toggles_gate_enforcement(actions, wants):
    assert actions.wants_enforcement is wants
    assert evaluate(actions, IN_WINDOW, None).enforce is wants


def test_outside_window_does_not_enforce():
    result = evaluate(ActionSet(), OUT_OF_WINDOW, None)
    assert result.enforce is False
    assert result.is_quiet_hours is False
    assert result.wants_enforcement is True


def test_toggles_alone_mean_always_on():
    result = evaluate(ActionSet(), NO_SCHEDULE, None)
    assert result.enforce is True
    assert result.is_quiet_hours is True


def test_active_extra_time_suspends_enforcement():
    assert evaluate(ActionSet(), IN_WINDOW, EXTRA_TIME).enforce is False
    assert evaluate(ActionSet(), NO_SCHEDULE, EXTRA_TIME).enforce is False


def test_action_payload_uses_wire_names():
    assert ActionSet().as_payload() == {
        "activateProtection": True,
        "setHotspotOff": True,
        "setWifiOff": False,
        "setMobileDataOff": False,
        "rotatePassword": True,
    }


def test_missing_policy_gets_default_actions():
    assert ActionSet.from_policy(None) == ActionSet()
