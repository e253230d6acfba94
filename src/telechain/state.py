"""Chat state model — the per-chat cursor the engine mutates in place.

A ``ChatState`` is fetched (or lazily created) once per inbound interaction,
handed to every step context, mutated as flows and steps transition, and
persisted by store listeners after each lifecycle event.

    state = ChatState(chat_id=42)
    state.flow_info = ChatFlowInfo(name="greet")
    state.flow_info.data.add("ask", ServerMessageId(101))
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from telechain.naming import RUNNER_NAME_KEY


def utcnow() -> datetime:
    return datetime.now(UTC)


# ═══════════════════════════════════════════════════════════════════════════════
# States
# ═══════════════════════════════════════════════════════════════════════════════


class FlowState(Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    TERMINATED = "terminated"


class StepState(Enum):
    """Lifecycle of a single step invocation.

    SUSPENDED means the step is parked awaiting a matching inbound interaction.
    TERMINATED means a control signal ended it; FAILED means the action raised.
    """

    STARTED = "started"
    SUSPENDED = "suspended"
    COMPLETED = "completed"
    TERMINATED = "terminated"
    FAILED = "failed"


# ═══════════════════════════════════════════════════════════════════════════════
# Message ids
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class ServerMessageId:
    """Message sent by the bot."""

    value: int

    def __str__(self) -> str:
        return f"S:{self.value}"


@dataclass(frozen=True, slots=True)
class UserMessageId:
    """Message sent by the user."""

    value: int

    def __str__(self) -> str:
        return f"U:{self.value}"


type MessageId = ServerMessageId | UserMessageId


# ═══════════════════════════════════════════════════════════════════════════════
# Flow data
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(slots=True)
class FlowData:
    """Flow-scoped bag: step name -> message ids recorded for later cleanup."""

    step_message_ids: dict[str, list[MessageId]] = field(default_factory=dict)

    def add(self, step_name: str, message_id: MessageId) -> None:
        self.step_message_ids.setdefault(step_name, []).append(message_id)

    def messages(self, step_name: str) -> list[MessageId]:
        return list(self.step_message_ids.get(step_name, ()))

    def all_messages(self) -> list[MessageId]:
        return [mid for ids in self.step_message_ids.values() for mid in ids]

    def discard(self, step_name: str) -> list[MessageId]:
        """Forget the step's ids and return them."""
        return self.step_message_ids.pop(step_name, [])

    def clear(self) -> None:
        self.step_message_ids.clear()


# ═══════════════════════════════════════════════════════════════════════════════
# Cursor
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(slots=True)
class ChatFlowInfo:
    name: str
    state: FlowState = FlowState.ACTIVE
    data: FlowData = field(default_factory=FlowData)
    started: datetime = field(default_factory=utcnow)
    finished: datetime | None = None


@dataclass(slots=True)
class ChatStepInfo:
    name: str
    state: StepState
    started: datetime = field(default_factory=utcnow)
    finished: datetime | None = None
    error_message: str | None = None


@dataclass(slots=True)
class ChatState:
    """Persisted per-chat cursor.

    ``flow_info`` and ``step_info`` are ``None`` when no flow is running.
    The engine never deletes a state, it only clears the cursor once a
    flow completes or terminates.
    """

    chat_id: int
    language: str = "en"
    labels: list[str] = field(default_factory=list)
    metadata: dict[str, str] = field(default_factory=dict)
    flow_info: ChatFlowInfo | None = None
    step_info: ChatStepInfo | None = None
    last_update: datetime | None = None

    @property
    def flow_name(self) -> str | None:
        return self.flow_info.name if self.flow_info else None

    @property
    def step_name(self) -> str | None:
        return self.step_info.name if self.step_info else None

    @property
    def runner_name(self) -> str | None:
        return self.metadata.get(RUNNER_NAME_KEY)

    def touch(self) -> None:
        self.last_update = utcnow()


__all__ = (
    "ChatFlowInfo",
    "ChatState",
    "ChatStepInfo",
    "FlowData",
    "FlowState",
    "MessageId",
    "ServerMessageId",
    "StepState",
    "UserMessageId",
    "utcnow",
)
