"""Step graph model — flows as an arena of attached steps.

Building is two-phase. A builder collects detached ``StepSpec`` descriptors;
constructing ``Flow`` attaches all of them at once, producing frozen ``Step``
objects that know their owning flow and their position in it. Neighbors are
resolved through the flow by index, so there are no mutable links.

    flow = Flow("greet", [StepSpec("ask", ask), StepSpec("ask/suspended/text", echo, suspendable=True)])
    flow.first_step.next.name   # "ask/suspended/text"
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING

import structlog
from kungfu import Nothing, Option, Some

from telechain.naming import full_name

if TYPE_CHECKING:
    from telechain.context import StepContext
    from telechain.signals import ControlSignal

logger = structlog.get_logger(__name__)

type StepAction = Callable[[StepContext], Awaitable[ControlSignal | None]]


# ═══════════════════════════════════════════════════════════════════════════════
# Menu
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Menu:
    """Bot menu entry for a flow command."""

    command: str
    description: str = ""
    order: int = 0

    def __post_init__(self) -> None:
        if not self.description:
            object.__setattr__(self, "description", self.command)


# ═══════════════════════════════════════════════════════════════════════════════
# Steps
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class StepSpec:
    """Detached step descriptor, produced by the builder before a flow exists."""

    name: str
    action: StepAction
    suspendable: bool = False

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("Chat step name cannot be blank.")

    @property
    def full_name(self) -> str:
        return self.name


@dataclass(frozen=True, slots=True, eq=False)
class Step:
    """A step attached to its flow. Immutable: the owner never changes."""

    spec: StepSpec
    flow: Flow = field(repr=False)
    index: int

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def suspendable(self) -> bool:
        return self.spec.suspendable

    @property
    def action(self) -> StepAction:
        return self.spec.action

    @property
    def full_name(self) -> str:
        return full_name(self.flow.id, self.name)

    @property
    def is_first(self) -> bool:
        return self.index == 0

    @property
    def is_last(self) -> bool:
        return self.index == len(self.flow.steps) - 1

    @property
    def previous(self) -> Step | None:
        return self.flow.steps[self.index - 1] if self.index > 0 else None

    @property
    def next(self) -> Step | None:
        return None if self.is_last else self.flow.steps[self.index + 1]

    def __repr__(self) -> str:
        prev_step, next_step = self.previous, self.next
        return (
            f"Step(name={self.name!r}, flow={self.flow.id!r}, "
            f"suspendable={self.suspendable}, "
            f"previous={prev_step.name if prev_step else None!r}, "
            f"next={next_step.name if next_step else None!r})"
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Flow
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True, eq=False)
class Flow:
    """Named, statically declared ordered sequence of steps.

    The id doubles as the command that starts the flow, so it must be
    non-blank and free of whitespace. Step names must be unique.
    """

    id: str
    specs: Sequence[StepSpec] = field(default=(), repr=False)
    menu: Menu | None = None
    steps: tuple[Step, ...] = field(init=False, repr=False)
    step_map: Mapping[str, Step] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if not self.id or not self.id.strip():
            raise ValueError("Chat flow ID cannot be blank.")
        if any(ch.isspace() for ch in self.id):
            raise ValueError(f"Chat flow ID cannot have whitespaces: {self.id!r}")

        specs = tuple(self.specs)
        steps = tuple(Step(spec=spec, flow=self, index=i) for i, spec in enumerate(specs))
        step_map: dict[str, Step] = {}
        for step in steps:
            if step.name in step_map:
                raise ValueError(f"Step [{step.name}] is declared twice in flow [{self.id}].")
            step_map[step.name] = step

        # Attach every step at once; the flow is frozen from here on.
        object.__setattr__(self, "specs", specs)
        object.__setattr__(self, "steps", steps)
        object.__setattr__(self, "step_map", MappingProxyType(step_map))

        if not steps:
            logger.warning("No steps for chat flow", flow=self.id)

    @property
    def first_step(self) -> Step | None:
        return self.steps[0] if self.steps else None

    @property
    def last_step(self) -> Step | None:
        return self.steps[-1] if self.steps else None

    def find_step(self, name: str) -> Option[Step]:
        step = self.step_map.get(name)
        return Some(step) if step is not None else Nothing()

    def __repr__(self) -> str:
        return f"Flow(id={self.id!r}, steps={[s.name for s in self.steps]})"


__all__ = (
    "Flow",
    "Menu",
    "Step",
    "StepAction",
    "StepSpec",
)
