from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from spotcheck.schedule import ScheduleVerdict


@dataclass(frozen=True)
class ActionSet:
    lock_apps: bool = True
    hotspot_off: bool = True
    wifi_off: bool = False
    mobile_data_off: bool = False
    rotate_password: bool = True

    @classmethod
    def from_policy(cls, policy) -> "ActionSet":
        if policy is None:
            return cls()
        return cls(
            lock_apps=bool(policy.lock_apps),
            hotspot_off=bool(policy.hotspot_off),
            wifi_off=bool(policy.wifi_off),
            mobile_data_off=bool(policy.mobile_data_off),
            rotate_password=bool(policy.rotate_password),
        )

    @property
    def wants_enforcement(self) -> bool:
        # lock_apps and rotate_password say what to do while enforcing, not whether to.
        return self.hotspot_off or self.wifi_off or self.mobile_data_off

    def as_payload(self) -> Dict[str, bool]:
        return {
            "activateProtection": self.lock_apps,
            "setHotspotOff": self.hotspot_off,
            "setWifiOff": self.wifi_off,
            "setMobileDataOff": self.mobile_data_off,
            "rotatePassword": self.rotate_password,
        }


@dataclass(frozen=True)
class Evaluation:
    enforce: bool
    actions: ActionSet
    is_quiet_hours: bool
    wants_enforcement: bool


def evaluate(actions: ActionSet, verdict: ScheduleVerdict, active_extra_time: Optional[Any]) -> Evaluation:
    in_window = verdict.in_window if verdict.has_schedule else True
    enforce = actions.wants_enforcement and in_window and active_extra_time is None
    return Evaluation(
        enforce=enforce,
        actions=actions,
        is_quiet_hours=in_window,
        wants_enforcement=actions.wants_enforcement,
    )
