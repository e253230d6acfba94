"""Naming conventions shared by flows, steps and callback payloads.

These literals are the wire format: any client talking to a telechain bot
must build callback payloads and step names exactly this way.

    full_name("greet", "pick")                 # "greet/pick"
    callback_payload("greet/pick", "red")      # "greet/pick|red"
    callback_value("greet/pick|red")           # Some("red")
"""

from __future__ import annotations

from kungfu import Nothing, Option, Some

PATH_DELIMITER = "/"
DATA_DELIMITER = "|"

SUSPENDED_STEP_MARKER = f"{PATH_DELIMITER}suspended{PATH_DELIMITER}"
TEXT_SUSPENDED_STEP_MARKER = f"{SUSPENDED_STEP_MARKER}text"
CALLBACK_SUSPENDED_STEP_MARKER = f"{SUSPENDED_STEP_MARKER}callback"
PRE_CHECKOUT_SUSPENDED_STEP_MARKER = f"{SUSPENDED_STEP_MARKER}pre_checkout"
SUCCESSFUL_PAYMENT_SUSPENDED_STEP_MARKER = f"{SUSPENDED_STEP_MARKER}successful_payment"
EVENT_SUSPENDED_STEP_MARKER = f"{SUSPENDED_STEP_MARKER}event"

RUNNER_NAME_KEY = "__telechain_runner_name__"


def full_name(flow_id: str, step_name: str) -> str:
    return f"{flow_id}{PATH_DELIMITER}{step_name}"


def base_step_name(step_name: str) -> str:
    """Name of the step that declared a suspension (text before the marker)."""
    return step_name.split(SUSPENDED_STEP_MARKER, 1)[0]


def suspended_step_name(step_name: str, marker: str) -> str:
    return f"{base_step_name(step_name)}{marker}"


def callback_payload(step_full_name: str, value: object) -> str:
    return f"{step_full_name}{DATA_DELIMITER}{value}"


def callback_value(data: str) -> Option[str]:
    """Extract the value part of ``"<fullName>|<value>"``."""
    _, sep, value = data.partition(DATA_DELIMITER)
    if not sep:
        return Nothing()
    return Some(value)


def callback_target(data: str) -> str:
    """Step path part of a callback payload (text before the first ``|``)."""
    return data.partition(DATA_DELIMITER)[0]


def event_type_id(event_type: type) -> str:
    """Fully-qualified identifier used in event suspension markers."""
    return f"{event_type.__module__}.{event_type.__qualname__}"


def event_marker(event_type: type) -> str:
    return f"{EVENT_SUSPENDED_STEP_MARKER}{DATA_DELIMITER}{event_type_id(event_type)}"


__all__ = (
    "CALLBACK_SUSPENDED_STEP_MARKER",
    "DATA_DELIMITER",
    "EVENT_SUSPENDED_STEP_MARKER",
    "PATH_DELIMITER",
    "PRE_CHECKOUT_SUSPENDED_STEP_MARKER",
    "RUNNER_NAME_KEY",
    "SUCCESSFUL_PAYMENT_SUSPENDED_STEP_MARKER",
    "SUSPENDED_STEP_MARKER",
    "TEXT_SUSPENDED_STEP_MARKER",
    "base_step_name",
    "callback_payload",
    "callback_target",
    "callback_value",
    "event_marker",
    "event_type_id",
    "full_name",
    "suspended_step_name",
)
