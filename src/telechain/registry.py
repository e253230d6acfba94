"""Flow command registry.

A flow id doubles as its command, so two flows may not share an id. The
runner registers every flow up front and builds the bot menu from here.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from kungfu import Nothing, Option, Some

from telechain.graph import Flow, Menu


@dataclass(frozen=True, slots=True)
class CommandEntry:
    """Registered command with its menu entry, if the flow has one."""

    command: str
    flow: Flow
    menu: Menu | None = None


class CommandCollision(ValueError):
    """Raised when two flows claim the same command."""


@dataclass
class FlowRegistry:
    """Registry of flows by command.

    Validates uniqueness eagerly: a collision is an immediate error.
    """

    _commands: dict[str, CommandEntry] = field(default_factory=lambda: dict[str, CommandEntry]())

    @classmethod
    def of(cls, flows: Iterable[Flow]) -> FlowRegistry:
        registry = cls()
        for flow in flows:
            registry.register(flow)
        return registry

    def register(self, flow: Flow) -> None:
        """Register a flow under its id. Raises CommandCollision on duplicate."""
        if flow.id in self._commands:
            raise CommandCollision(f"Command /{flow.id} already registered by another flow")
        self._commands[flow.id] = CommandEntry(command=flow.id, flow=flow, menu=flow.menu)

    def get(self, command: str) -> Option[Flow]:
        entry = self._commands.get(command)
        return Some(entry.flow) if entry is not None else Nothing()

    @property
    def flows(self) -> dict[str, Flow]:
        return {command: entry.flow for command, entry in self._commands.items()}

    @property
    def menus(self) -> Sequence[Menu]:
        """Menu entries sorted by (order, command); flows without a menu are skipped."""
        return sorted(
            (entry.menu for entry in self._commands.values() if entry.menu is not None),
            key=lambda m: (m.order, m.command),
        )

    def __contains__(self, command: object) -> bool:
        return command in self._commands

    def __len__(self) -> int:
        return len(self._commands)


__all__ = (
    "CommandCollision",
    "CommandEntry",
    "FlowRegistry",
)
