from __future__ import annotations

from typing import Any, Optional

from spotcheck.clock import format_hhmm
from spotcheck.evaluator import ActionSet, Evaluation
from spotcheck.schedule import ScheduleVerdict, parse_hhmm

PENDING_SUFFIX = "Extra time request is pending parent approval."


def describe_protections(actions: ActionSet) -> str:
    labels = []
    if actions.lock_apps:
        labels.append("Apps")
    if actions.hotspot_off:
        labels.append("Hotspot")
    if actions.wifi_off:
        labels.append("Wi-Fi")
    if actions.mobile_data_off:
        labels.append("Mobile Data")

    if not labels:
        return "No protections are configured."
    if len(labels) == 1:
        verb = "are" if labels[0] == "Apps" else "is"
        return f"{labels[0]} {verb} protected."
    if len(labels) == 2:
        return f"{labels[0]} and {labels[1]} are protected."
    return f"{', '.join(labels[:-1])}, and {labels[-1]} are protected."


def _start_phrase(verdict: ScheduleVerdict) -> str:
    window = verdict.active_window
    start_min, end_min = parse_hhmm(window.start), parse_hhmm(window.end)
    if start_min is not None and end_min is not None and start_min < end_min and verdict.minute_of_day >= end_min:
        return f"at {window.start} tomorrow"
    return f"at {window.start}"


def _state_sentence(verdict: ScheduleVerdict, evaluation: Evaluation) -> str:
    if not evaluation.wants_enforcement:
        return "Protection is currently off."
    if evaluation.enforce:
        if verdict.has_schedule:
            return f"Protection is currently on and scheduled to end at {verdict.active_window.end}."
        return "Protection is currently on."
    if verdict.has_schedule:
        return f"Protection is currently off and scheduled to start {_start_phrase(verdict)}."
    return "Protection is currently off."


def build_status_message(
    verdict: ScheduleVerdict,
    evaluation: Evaluation,
    active_extra_time: Optional[Any],
    pending_extra_time: Optional[Any],
    tz: Optional[str],
) -> str:
    """One sentence the child app shows verbatim; must stay deterministic."""
    details = describe_protections(evaluation.actions)

    if active_extra_time is not None and active_extra_time.ends_at is not None:
        resume = format_hhmm(int(active_extra_time.ends_at), tz)
        return f"Protection is currently off for approved extra time and scheduled to resume at {resume}. {details}"

    state = _state_sentence(verdict, evaluation)
    if pending_extra_time is not None:
        return f"{state} {PENDING_SUFFIX} {details}"
    return f"{state} {details}"
