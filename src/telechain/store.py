"""Chat state store contract and an in-memory implementation.

The store owns persisted ``ChatState``. The runner extracts a working copy
per inbound interaction; store listeners write it back after every lifecycle
event.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog

from telechain.naming import RUNNER_NAME_KEY
from telechain.state import ChatState

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ExtractionContext:
    """What the dispatch layer knows when it asks for a chat's state."""

    runner_name: str
    update: Any = None


class ChatStateStore(Protocol):
    async def extract(self, chat_id: int, context: ExtractionContext) -> ChatState | None: ...

    async def store(self, state: ChatState) -> None: ...


@dataclass(slots=True)
class InMemoryChatStateStore:
    """Keeps states keyed by ``(chat_id, runner_name)``.

    ``extract`` materializes a default state on first use. Both directions
    copy, so a stored state is never mutated by an in-flight execution.
    """

    _states: dict[tuple[int, str], ChatState] = field(default_factory=dict)

    async def extract(self, chat_id: int, context: ExtractionContext) -> ChatState:
        key = (chat_id, context.runner_name)
        state = self._states.get(key)
        if state is None:
            state = ChatState(chat_id=chat_id, metadata={RUNNER_NAME_KEY: context.runner_name})
            self._states[key] = state
            logger.debug("Chat state created", chat_id=chat_id, runner=context.runner_name)
        return copy.deepcopy(state)

    async def store(self, state: ChatState) -> None:
        runner_name = state.runner_name or ""
        snapshot = copy.deepcopy(state)
        snapshot.touch()
        self._states[(state.chat_id, runner_name)] = snapshot

    def get(self, chat_id: int, runner_name: str) -> ChatState | None:
        """Stored state without copying; for inspection."""
        return self._states.get((chat_id, runner_name))

    def __len__(self) -> int:
        return len(self._states)


__all__ = (
    "ChatStateStore",
    "ExtractionContext",
    "InMemoryChatStateStore",
)
