"""Flow executor — step invocation, suspension routing and the chain loop.

One inbound ``ChatContext`` drives one ``execute`` call:

1. Pick the entry step. A command starts the flow named by the command at
   its first step; every other context kind resumes the step recorded in the
   chat's cursor, provided that step accepts this kind of context.
2. Invoke steps one after another (``invoke``) until a result names no next
   step, collecting an ``ExecutionSnapshot`` per invocation.
3. Publish ``ExecutionStarted`` before the loop and ``ExecutionCompleted``
   with the history after it.

Each transition mutates ``context.state`` in place and publishes the matching
lifecycle event; publication is awaited, so listeners observe every transition
before the next one is computed.

Errors fall in two classes. Anything an action raises becomes a ``Failed``
result and a ``StepFailed`` event. A jump that cannot be resolved (``Goto`` to
an unknown step, ``GoNext``/``GoPrevious`` with no eligible neighbor) is a
``FlowConfigurationError`` and propagates out of ``execute``.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass

import structlog
from kungfu import Nothing, Option, Some

from telechain.bus import EventBus
from telechain.context import (
    CallbackContext,
    ChatContext,
    CommandContext,
    ContinuationContext,
    EventContext,
    PaymentContext,
    PreCheckoutContext,
    StepContext,
    TextContext,
)
from telechain.events import (
    ExecutionCompleted,
    ExecutionStarted,
    FlowCompleted,
    FlowNotFound,
    FlowStarted,
    FlowTerminated,
    StepCompleted,
    StepFailed,
    StepNotFound,
    StepStarted,
    StepSuspended,
    StepTerminated,
)
from telechain.graph import Flow, Step
from telechain.naming import (
    CALLBACK_SUSPENDED_STEP_MARKER,
    PRE_CHECKOUT_SUSPENDED_STEP_MARKER,
    SUCCESSFUL_PAYMENT_SUSPENDED_STEP_MARKER,
    TEXT_SUSPENDED_STEP_MARKER,
    base_step_name,
    callback_target,
    event_marker,
    full_name,
)
from telechain.result import (
    Completed,
    ExecutionResult,
    ExecutionSnapshot,
    Failed,
    FlowJump,
    FlowStopped,
    StepJump,
    Suspended,
)
from telechain.signals import ControlSignal, GoNext, GoPrevious, Goto, IgnoreEvent, StartFlow, StopFlow
from telechain.state import ChatFlowInfo, ChatStepInfo, FlowState, StepState, utcnow

logger = structlog.get_logger(__name__)


class FlowConfigurationError(ValueError):
    """A jump points at a step that does not exist or cannot be reached."""


def new_span_id() -> str:
    return uuid.uuid4().hex[:16]


# ═══════════════════════════════════════════════════════════════════════════════
# Acceptability
# ═══════════════════════════════════════════════════════════════════════════════


def acceptable(step: Step, context: ChatContext) -> bool:
    """Whether ``step`` is the right target for ``context``.

    Commands only enter non-suspendable steps. Every other kind resumes a
    suspendable step whose name ends with the marker for that kind. A callback
    payload must also name the step before its ``|``: either the suspended
    step's full name or the full name of the step that declared it.
    """
    match context:
        case CommandContext():
            return not step.suspendable
        case TextContext():
            return step.suspendable and step.name.endswith(TEXT_SUSPENDED_STEP_MARKER)
        case CallbackContext(data=data):
            return (
                step.suspendable
                and step.name.endswith(CALLBACK_SUSPENDED_STEP_MARKER)
                and callback_target(data) in (step.full_name, full_name(step.flow.id, base_step_name(step.name)))
            )
        case PreCheckoutContext():
            return step.suspendable and step.name.endswith(PRE_CHECKOUT_SUSPENDED_STEP_MARKER)
        case PaymentContext():
            return step.suspendable and step.name.endswith(SUCCESSFUL_PAYMENT_SUSPENDED_STEP_MARKER)
        case EventContext(event=event):
            return step.suspendable and step.name.endswith(event_marker(type(event)))
        case _:
            return False


def _walk(start: Step | None, advance: Callable[[Step], Step | None]) -> Step | None:
    step = start
    while step is not None and step.suspendable:
        step = advance(step)
    return step


# ═══════════════════════════════════════════════════════════════════════════════
# Executor
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(slots=True, init=False)
class FlowExecutor:
    flows: dict[str, Flow]
    bus: EventBus

    def __init__(self, flows: Iterable[Flow] | Mapping[str, Flow], bus: EventBus) -> None:
        if isinstance(flows, Mapping):
            self.flows = dict(flows)
        else:
            self.flows = {flow.id: flow for flow in flows}
        self.bus = bus

    def find_flow(self, name: str) -> Option[Flow]:
        flow = self.flows.get(name)
        return Some(flow) if flow is not None else Nothing()

    # --- entry selection ---

    async def execute(self, context: ChatContext) -> list[ExecutionSnapshot]:
        """Route ``context`` to its entry step and run the chain.

        Returns the execution history; empty when nothing ran.
        """
        if isinstance(context, CommandContext):
            return await self._start(context)
        return await self._resume(context)

    async def _start(self, context: CommandContext) -> list[ExecutionSnapshot]:
        match self.find_flow(context.command):
            case Some(flow) if flow.first_step is not None:
                return await self.run_chain(flow.first_step, context)
            case Some(flow):
                logger.debug("Flow has no steps", flow=flow.id)
                return []
            case _:
                await self._flow_not_found(context.command, context)
                return []

    async def _resume(self, context: ChatContext) -> list[ExecutionSnapshot]:
        flow_name, step_name = context.state.flow_name, context.state.step_name
        if flow_name is None or step_name is None:
            logger.debug("No active flow to resume", chat_id=context.chat_id)
            return []
        match self.find_flow(flow_name):
            case Some(flow):
                return await self._resume_step(flow, step_name, context)
            case _:
                await self._flow_not_found(flow_name, context)
                return []

    async def _resume_step(self, flow: Flow, step_name: str, context: ChatContext) -> list[ExecutionSnapshot]:
        match flow.find_step(step_name):
            case Some(step) if acceptable(step, context):
                return await self.run_chain(step, context)
            case Some(step):
                logger.debug(
                    "Step does not accept context",
                    step=step.full_name,
                    context=type(context).__name__,
                )
                return []
            case _:
                logger.debug("Unknown step", flow=flow.id, step=step_name)
                await self.bus.publish(StepNotFound(flow=flow, step_name=step_name, context=context))
                return []

    async def _flow_not_found(self, flow_name: str, context: ChatContext) -> None:
        logger.debug("Unknown flow", flow=flow_name)
        await self.bus.publish(FlowNotFound(flow_name=flow_name, context=context))

    # --- chain driver ---

    async def run_chain(self, entry: Step, context: ChatContext) -> list[ExecutionSnapshot]:
        history: list[ExecutionSnapshot] = []
        step_context = context.to_step_context(entry)
        step: Step | None = entry

        await self.bus.publish(ExecutionStarted(context=step_context))
        while step is not None:
            result = await self.invoke(step, step_context)
            history.append(ExecutionSnapshot(step=step, context=step_context, result=result))
            step = self.next_step(step, result)
            if step is not None:
                step_context = ContinuationContext.following(step_context, step)
        await self.bus.publish(ExecutionCompleted(context=context, history=tuple(history)))
        return history

    def next_step(self, step: Step, result: ExecutionResult) -> Step | None:
        match result:
            case Completed(termination=False):
                return step.next
            case StepJump(target=target):
                return target
            case FlowJump(flow_name=flow_name):
                match self.find_flow(flow_name):
                    case Some(flow):
                        return flow.first_step
                    case _:
                        logger.debug("Jump to unknown flow ends execution", flow=flow_name)
                        return None
            case _:
                return None

    # --- step invocation ---

    async def invoke(self, step: Step, context: StepContext) -> ExecutionResult:
        with structlog.contextvars.bound_contextvars(span_id=new_span_id()):
            log = logger.bind(step=step.full_name, chat_id=context.chat_id)
            if step.is_first:
                log.debug("Flow started")
                await self._flow_started(step, context)
            if step.suspendable and not context.resumable:
                log.debug("Step suspended")
                await self._step_suspended(step, context)
                return Suspended()

            log.debug("Step invoke started")
            await self._step_started(step, context)
            try:
                signal = await step.action(context)
            except Exception as exc:
                log.debug("Step failed", error=str(exc))
                await self._step_failed(step, context, exc)
                return Failed(exc)
            return await self._interpret(step, context, signal)

    async def _interpret(self, step: Step, context: StepContext, signal: ControlSignal | None) -> ExecutionResult:
        log = logger.bind(step=step.full_name, chat_id=context.chat_id)
        match signal:
            case None:
                await self._step_completed(step, context)
                log.debug("Step invoke completed")
                if step.is_last:
                    log.debug("Flow finished")
                    await self._flow_completed(context)
                return Completed()

            case Goto(step_name=name):
                target = step.flow.find_step(name).unwrap_or_none()
                if target is None:
                    raise FlowConfigurationError(f"Step [{name}] does not exist in flow [{step.flow.id}].")
                log.debug("Moving to step", target=name)
                await self._step_terminated(step, context)
                return StepJump(target)

            case GoNext():
                target = _walk(step.next, lambda s: s.next)
                if target is None:
                    raise FlowConfigurationError(f"No next step found for step [{step.name}].")
                log.debug("Moving to next step", target=target.name)
                await self._step_terminated(step, context)
                return StepJump(target)

            case GoPrevious():
                target = _walk(step.previous, lambda s: s.previous)
                if target is None:
                    raise FlowConfigurationError(f"No previous step found for step [{step.name}].")
                log.debug("Moving to previous step", target=target.name)
                await self._step_terminated(step, context)
                return StepJump(target)

            case StartFlow(flow_name=flow_name):
                log.debug("Starting new flow", target=flow_name)
                await self._step_terminated(step, context)
                if step.is_last:
                    await self._flow_completed(context)
                else:
                    await self._flow_terminated(context)
                return FlowJump(flow_name)

            case StopFlow():
                log.debug("Terminating flow")
                await self._step_terminated(step, context)
                await self._flow_terminated(context)
                return FlowStopped()

            case IgnoreEvent():
                log.debug("Event ignored, step stays suspended")
                await self._step_suspended(step, context)
                return Suspended(ignored=True)

            case _:
                error = TypeError(f"Step [{step.name}] returned {signal!r} instead of a control signal.")
                log.debug("Step failed", error=str(error))
                await self._step_failed(step, context, error)
                return Failed(error)

    # --- transitions ---

    async def _flow_started(self, step: Step, context: StepContext) -> None:
        context.state.flow_info = ChatFlowInfo(name=step.flow.id)
        context.state.step_info = None
        await self.bus.publish(FlowStarted(context=context))

    async def _flow_completed(self, context: StepContext) -> None:
        await self._finish_flow(context, FlowState.COMPLETED, FlowCompleted(context=context))

    async def _flow_terminated(self, context: StepContext) -> None:
        await self._finish_flow(context, FlowState.TERMINATED, FlowTerminated(context=context))

    async def _finish_flow(
        self,
        context: StepContext,
        flow_state: FlowState,
        event: FlowCompleted | FlowTerminated,
    ) -> None:
        state = context.state
        if state.flow_info is not None:
            state.flow_info.state = flow_state
            state.flow_info.finished = utcnow()
        state.step_info = None
        await self.bus.publish(event)
        # Listeners have seen the finished flow; the cursor is cleared afterwards.
        state.flow_info = None

    async def _step_started(self, step: Step, context: StepContext) -> None:
        context.state.step_info = ChatStepInfo(name=step.name, state=StepState.STARTED)
        await self.bus.publish(StepStarted(context=context))

    async def _step_suspended(self, step: Step, context: StepContext) -> None:
        context.state.step_info = ChatStepInfo(name=step.name, state=StepState.SUSPENDED)
        await self.bus.publish(StepSuspended(context=context))

    async def _step_completed(self, step: Step, context: StepContext) -> None:
        self._close_step(step, context, StepState.COMPLETED)
        await self.bus.publish(StepCompleted(context=context))

    async def _step_terminated(self, step: Step, context: StepContext) -> None:
        self._close_step(step, context, StepState.TERMINATED)
        await self.bus.publish(StepTerminated(context=context))

    async def _step_failed(self, step: Step, context: StepContext, error: Exception) -> None:
        self._close_step(step, context, StepState.FAILED, error_message=str(error))
        await self.bus.publish(StepFailed(context=context, error=error))

    @staticmethod
    def _close_step(
        step: Step,
        context: StepContext,
        step_state: StepState,
        *,
        error_message: str | None = None,
    ) -> None:
        started = context.state.step_info.started if context.state.step_info else utcnow()
        context.state.step_info = ChatStepInfo(
            name=step.name,
            state=step_state,
            started=started,
            finished=utcnow(),
            error_message=error_message,
        )


__all__ = (
    "FlowConfigurationError",
    "FlowExecutor",
    "acceptable",
    "new_span_id",
)
