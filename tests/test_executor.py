"""Tests for the flow executor — invocation, routing and the chain loop."""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass
from unittest.mock import AsyncMock

import pytest

from telechain.builder import FlowBuilder
from telechain.bus import EventBus, FunctionListener
from telechain.context import (
    CallbackContext,
    CallbackStepContext,
    ChatContext,
    CommandContext,
    ContinuationContext,
    EventContext,
    PaymentContext,
    PreCheckoutContext,
    TextContext,
    TextStepContext,
)
from telechain.events import (
    ChatEvent,
    ExecutionCompleted,
    ExecutionStarted,
    FlowCompleted,
    FlowNotFound,
    FlowTerminated,
    StepCompleted,
    StepFailed,
    StepNotFound,
    StepStarted,
    StepSuspended,
    StepTerminated,
)
from telechain.executor import FlowConfigurationError, FlowExecutor, acceptable
from telechain.graph import Flow, StepSpec
from telechain.result import Completed, Failed, FlowJump, FlowStopped, StepJump, Suspended
from telechain.signals import GoNext, GoPrevious, Goto, IgnoreEvent, StartFlow, StopFlow
from telechain.state import ChatFlowInfo, ChatState, ChatStepInfo, FlowState, StepState


# ═══════════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class Shipped:
    parcel: str


@dataclass(frozen=True)
class Returned:
    parcel: str


def _client() -> AsyncMock:
    client = AsyncMock()
    client.send_message.side_effect = itertools.count(100)
    return client


async def _noop(ctx: object) -> None:
    return None


def _returning(signal: object):
    async def action(ctx: object) -> object:
        return signal

    return action


def _spec(name: str, action=_noop, *, suspendable: bool = False) -> StepSpec:
    return StepSpec(name, action, suspendable=suspendable)


@dataclass
class Recorded:
    name: str
    step: str | None
    step_state: StepState | None
    flow_state: FlowState | None


class Harness:
    """Executor over the given flows with every published event recorded."""

    def __init__(self, *flows: Flow) -> None:
        self.bus = EventBus()
        self.executor = FlowExecutor(flows, self.bus)
        self.client = _client()
        self.state = ChatState(chat_id=1)
        self.events: list[ChatEvent] = []
        self.trace: list[Recorded] = []
        self.bus.register(FunctionListener(ChatEvent, self._record))

    async def _record(self, event: ChatEvent) -> None:
        self.events.append(event)
        state = self.state
        self.trace.append(
            Recorded(
                name=type(event).__name__,
                step=state.step_name,
                step_state=state.step_info.state if state.step_info else None,
                flow_state=state.flow_info.state if state.flow_info else None,
            )
        )

    def run(self, context: ChatContext) -> list:
        return asyncio.run(self.executor.execute(context))

    def command(self, command: str) -> list:
        return self.run(CommandContext(state=self.state, client=self.client, command=command))

    def text(self, text: str) -> list:
        return self.run(TextContext(state=self.state, client=self.client, text=text))

    def callback(self, data: str) -> list:
        return self.run(CallbackContext(state=self.state, client=self.client, data=data))

    def names(self) -> list[str]:
        return [r.name for r in self.trace]

    def recorded(self, name: str) -> list[Recorded]:
        return [r for r in self.trace if r.name == name]


def _outline(history: list) -> list[tuple[str, type]]:
    return [(snap.step.name, type(snap.result)) for snap in history]


_STEP_EVENT_STATES = {
    StepStarted: StepState.STARTED,
    StepSuspended: StepState.SUSPENDED,
    StepCompleted: StepState.COMPLETED,
    StepTerminated: StepState.TERMINATED,
    StepFailed: StepState.FAILED,
}


# ═══════════════════════════════════════════════════════════════════════════════
# Scenarios
# ═══════════════════════════════════════════════════════════════════════════════


class TestGreetScenario:
    def _flow(self, replies: list[str]) -> Flow:
        greet = FlowBuilder("greet")

        @greet.step("ask")
        async def ask(ctx: object) -> None:
            return None

        @greet.await_text()
        async def echo(ctx: TextStepContext) -> None:
            replies.append(ctx.text)

        return greet.build()

    def test_command_suspends_on_text_step(self) -> None:
        h = Harness(self._flow([]))
        history = h.command("greet")

        assert _outline(history) == [("ask", Completed), ("ask/suspended/text", Suspended)]
        assert h.state.flow_info is not None
        assert h.state.flow_info.state == FlowState.ACTIVE
        assert h.state.step_info is not None
        assert h.state.step_info.name == "ask/suspended/text"
        assert h.state.step_info.state == StepState.SUSPENDED
        completed = h.recorded("StepCompleted")
        assert [(r.step, r.step_state) for r in completed] == [("ask", StepState.COMPLETED)]

    def test_text_resumes_and_completes_flow(self) -> None:
        replies: list[str] = []
        h = Harness(self._flow(replies))
        h.command("greet")
        history = h.text("hi")

        assert replies == ["hi"]
        assert _outline(history) == [("ask/suspended/text", Completed)]
        (completed,) = h.recorded("FlowCompleted")
        assert completed.flow_state == FlowState.COMPLETED
        assert completed.step is None
        # Cursor is cleared once the flow is done.
        assert h.state.flow_info is None
        assert h.state.step_info is None

    def test_event_order(self) -> None:
        h = Harness(self._flow([]))
        h.command("greet")
        assert h.names() == [
            "ExecutionStarted",
            "FlowStarted",
            "StepStarted",
            "StepCompleted",
            "StepSuspended",
            "ExecutionCompleted",
        ]

    def test_text_after_completion_is_dropped(self) -> None:
        replies: list[str] = []
        h = Harness(self._flow(replies))
        h.command("greet")
        h.text("hi")
        assert h.text("again") == []
        assert replies == ["hi"]


class TestCallbackScenario:
    def _harness(self, values: list[str]) -> Harness:
        greet = FlowBuilder("greet")
        greet.step("pick", _noop)

        @greet.await_callback()
        async def picked(ctx: CallbackStepContext) -> None:
            values.append(ctx.value)

        h = Harness(greet.build())
        h.command("greet")
        return h

    def test_declaring_step_payload(self) -> None:
        values: list[str] = []
        h = self._harness(values)
        history = h.callback("greet/pick|red")
        assert values == ["red"]
        assert _outline(history) == [("pick/suspended/callback", Completed)]

    def test_suspended_step_payload(self) -> None:
        values: list[str] = []
        h = self._harness(values)
        h.callback("greet/pick/suspended/callback|blue")
        assert values == ["blue"]

    def test_foreign_payload_is_dropped(self) -> None:
        values: list[str] = []
        h = self._harness(values)
        assert h.callback("shop/pick|red") == []
        assert values == []
        assert h.state.step_name == "pick/suspended/callback"

    def test_text_is_not_accepted(self) -> None:
        values: list[str] = []
        h = self._harness(values)
        assert h.text("red") == []


class TestFallbackScenario:
    def test_error_reprompts_declaring_step(self) -> None:
        prompts: list[str] = []
        ages: list[int] = []
        flow = FlowBuilder("age")

        @flow.step("ask")
        async def ask(ctx: object) -> None:
            prompts.append("How old are you?")

        @flow.await_text()
        async def parse(ctx: TextStepContext) -> None:
            ages.append(int(ctx.text))

        h = Harness(flow.build())
        h.command("age")
        history = h.text("abc")

        assert prompts == ["How old are you?", "How old are you?"]
        assert _outline(history) == [
            ("ask/suspended/text", StepJump),
            ("ask", Completed),
            ("ask/suspended/text", Suspended),
        ]
        assert h.state.step_name == "ask/suspended/text"

        h.text("42")
        assert ages == [42]


# ═══════════════════════════════════════════════════════════════════════════════
# Invocation
# ═══════════════════════════════════════════════════════════════════════════════


class TestSequentialFlow:
    def test_visits_all_steps_in_order(self) -> None:
        visited: list[str] = []

        def visit(name: str):
            async def action(ctx: object) -> None:
                visited.append(name)

            return action

        flow = Flow("seq", [_spec(name, visit(name)) for name in ("s1", "s2", "s3", "s4")])
        h = Harness(flow)
        history = h.command("seq")

        assert visited == ["s1", "s2", "s3", "s4"]
        assert all(isinstance(snap.result, Completed) for snap in history)
        (completed,) = h.recorded("FlowCompleted")
        assert completed.flow_state == FlowState.COMPLETED

    def test_unknown_command_publishes_flow_not_found(self) -> None:
        h = Harness(Flow("seq", [_spec("a")]))
        assert h.command("nope") == []
        (event,) = h.events
        assert isinstance(event, FlowNotFound)
        assert event.flow_name == "nope"

    def test_empty_flow_does_nothing(self) -> None:
        h = Harness(Flow("empty"))
        assert h.command("empty") == []
        assert h.events == []


class TestSuspension:
    def test_first_pass_never_runs_body(self) -> None:
        body = AsyncMock(return_value=None)
        flow = Flow("f", [_spec("a"), _spec("a/suspended/text", body, suspendable=True)])
        h = Harness(flow)
        history = h.command("f")
        assert isinstance(history[-1].result, Suspended)
        body.assert_not_awaited()

    def test_continuation_context_suspends(self) -> None:
        body = AsyncMock(return_value=None)
        flow = Flow("f", [_spec("a"), _spec("a/suspended/text", body, suspendable=True)])
        h = Harness(flow)
        step = flow.steps[1]
        ctx = ContinuationContext(state=h.state, client=h.client, step=step)
        assert asyncio.run(h.executor.invoke(step, ctx)) == Suspended()
        body.assert_not_awaited()

    def test_resume_without_cursor_does_nothing(self) -> None:
        h = Harness(Flow("f", [_spec("a")]))
        assert h.text("hello") == []
        assert h.events == []

    def test_resume_unknown_flow(self) -> None:
        h = Harness(Flow("f", [_spec("a")]))
        h.state.flow_info = ChatFlowInfo(name="gone")
        h.state.step_info = ChatStepInfo(name="a", state=StepState.SUSPENDED)
        assert h.text("hello") == []
        assert isinstance(h.events[0], FlowNotFound)

    def test_resume_unknown_step(self) -> None:
        h = Harness(Flow("f", [_spec("a")]))
        h.state.flow_info = ChatFlowInfo(name="f")
        h.state.step_info = ChatStepInfo(name="gone/suspended/text", state=StepState.SUSPENDED)
        assert h.text("hello") == []
        (event,) = h.events
        assert isinstance(event, StepNotFound)
        assert event.step_name == "gone/suspended/text"


class TestActionFailure:
    def test_error_becomes_failed(self) -> None:
        async def boom(ctx: object) -> None:
            raise RuntimeError("kaput")

        flow = Flow("f", [_spec("a", boom), _spec("b")])
        h = Harness(flow)
        history = h.command("f")

        assert _outline(history) == [("a", Failed)]
        assert str(history[0].result.error) == "kaput"
        (failed,) = h.recorded("StepFailed")
        assert failed.step_state == StepState.FAILED
        assert h.state.step_info is not None
        assert h.state.step_info.error_message == "kaput"

    def test_non_signal_return_fails(self) -> None:
        flow = Flow("f", [_spec("a", _returning("not a signal"))])
        h = Harness(flow)
        (snap,) = h.command("f")
        assert isinstance(snap.result, Failed)
        assert isinstance(snap.result.error, TypeError)


# ═══════════════════════════════════════════════════════════════════════════════
# Control signals
# ═══════════════════════════════════════════════════════════════════════════════


class TestGoto:
    def test_jump_to_existing_step(self) -> None:
        flow = Flow("f", [_spec("a"), _spec("b", _returning(Goto("d"))), _spec("c"), _spec("d")])
        h = Harness(flow)
        history = h.command("f")
        assert _outline(history) == [("a", Completed), ("b", StepJump), ("d", Completed)]
        assert history[1].result.target is flow.steps[3]
        (terminated,) = h.recorded("StepTerminated")
        assert terminated.step == "b"

    def test_jump_to_every_step(self) -> None:
        names = ("a", "b", "c")
        for source in names:
            for target in names:
                flow = Flow("f", [_spec(n, _returning(Goto(target)) if n == source else _noop) for n in names])
                h = Harness(flow)
                step = flow.steps[names.index(source)]
                ctx = ContinuationContext(state=h.state, client=h.client, step=step)
                result = asyncio.run(h.executor.invoke(step, ctx))
                assert result == StepJump(flow.steps[names.index(target)])

    def test_unknown_target_is_configuration_error(self) -> None:
        flow = Flow("f", [_spec("a", _returning(Goto("missing")))])
        h = Harness(flow)
        with pytest.raises(FlowConfigurationError, match="missing"):
            h.command("f")
        assert "StepTerminated" not in h.names()


class TestGoNextGoPrevious:
    @staticmethod
    def _suspended(count: int) -> list[StepSpec]:
        return [_spec(f"a/suspended/s{i}", suspendable=True) for i in range(count)]

    def _next_target(self, count: int) -> str:
        flow = Flow("f", [_spec("a", _returning(GoNext())), *self._suspended(count), _spec("b")])
        h = Harness(flow)
        step = flow.steps[0]
        result = asyncio.run(h.executor.invoke(step, ContinuationContext(state=h.state, client=h.client, step=step)))
        assert isinstance(result, StepJump)
        return result.target.name

    def _previous_target(self, count: int) -> str:
        flow = Flow("f", [_spec("a"), *self._suspended(count), _spec("b", _returning(GoPrevious()))])
        h = Harness(flow)
        step = flow.steps[-1]
        result = asyncio.run(h.executor.invoke(step, ContinuationContext(state=h.state, client=h.client, step=step)))
        assert isinstance(result, StepJump)
        return result.target.name

    def test_next_skips_zero_suspended(self) -> None:
        assert self._next_target(0) == "b"

    def test_next_skips_one_suspended(self) -> None:
        assert self._next_target(1) == "b"

    def test_next_skips_three_suspended(self) -> None:
        assert self._next_target(3) == "b"

    def test_previous_skips_zero_suspended(self) -> None:
        assert self._previous_target(0) == "a"

    def test_previous_skips_one_suspended(self) -> None:
        assert self._previous_target(1) == "a"

    def test_previous_skips_three_suspended(self) -> None:
        assert self._previous_target(3) == "a"

    def test_next_without_target_fails(self) -> None:
        flow = Flow("f", [_spec("a", _returning(GoNext())), *self._suspended(2)])
        h = Harness(flow)
        with pytest.raises(FlowConfigurationError, match="No next step"):
            h.command("f")

    def test_previous_without_target_fails(self) -> None:
        flow = Flow("f", [_spec("a", _returning(GoPrevious()))])
        h = Harness(flow)
        with pytest.raises(FlowConfigurationError, match="No previous step"):
            h.command("f")


class TestStopFlow:
    def test_stop_at_every_position(self) -> None:
        for position in range(3):
            specs = [_spec(f"s{i}", _returning(StopFlow()) if i == position else _noop) for i in range(3)]
            h = Harness(Flow("f", specs))
            history = h.command("f")

            assert len(history) == position + 1
            assert isinstance(history[-1].result, FlowStopped)
            (terminated,) = h.recorded("FlowTerminated")
            assert terminated.flow_state == FlowState.TERMINATED
            assert h.recorded("FlowCompleted") == []
            assert h.state.flow_info is None


class TestStartFlow:
    def test_jumps_into_other_flow(self) -> None:
        first = Flow("first", [_spec("a", _returning(StartFlow("second"))), _spec("b")])
        second = Flow("second", [_spec("x")])
        h = Harness(first, second)
        history = h.command("first")

        assert _outline(history) == [("a", FlowJump), ("x", Completed)]
        assert h.names().count("FlowStarted") == 2
        (terminated,) = h.recorded("FlowTerminated")
        assert terminated.flow_state == FlowState.TERMINATED

    def test_from_last_step_completes_current_flow(self) -> None:
        first = Flow("first", [_spec("a", _returning(StartFlow("second")))])
        second = Flow("second", [_spec("x")])
        h = Harness(first, second)
        h.command("first")
        assert h.recorded("FlowTerminated") == []
        assert len(h.recorded("FlowCompleted")) == 2

    def test_unknown_flow_ends_execution(self) -> None:
        first = Flow("first", [_spec("a", _returning(StartFlow("nowhere"))), _spec("b")])
        h = Harness(first)
        history = h.command("first")
        assert _outline(history) == [("a", FlowJump)]
        assert isinstance(h.events[-1], ExecutionCompleted)


class TestIgnoreEvent:
    def test_step_stays_suspended(self) -> None:
        track = FlowBuilder("track")
        track.step("wait", _noop)
        track.await_event(Shipped, _noop)
        h = Harness(track.build())
        h.command("track")

        history = h.run(EventContext(state=h.state, client=h.client, event=Returned("p-1")))
        assert history == []

        step = h.executor.flows["track"].steps[1]
        ctx = EventContext(state=h.state, client=h.client, event=Returned("p-1")).to_step_context(step)
        result = asyncio.run(h.executor.invoke(step, ctx))
        assert result == Suspended(ignored=True)
        assert h.state.step_info is not None
        assert h.state.step_info.state == StepState.SUSPENDED
        assert h.state.flow_info is not None

    def test_matching_event_resumes(self) -> None:
        seen: list[object] = []

        async def shipped(ctx: object) -> None:
            seen.append(ctx.event)  # type: ignore[attr-defined]

        track = FlowBuilder("track")
        track.step("wait", _noop)
        track.await_event(Shipped, shipped)
        h = Harness(track.build())
        h.command("track")
        event = Shipped("p-1")
        history = h.run(EventContext(state=h.state, client=h.client, event=event))
        assert seen == [event]
        assert _outline(history)[-1][1] is Completed

    def test_action_returning_ignore_event(self) -> None:
        flow = Flow("f", [_spec("a"), _spec("a/suspended/text", _returning(IgnoreEvent()), suspendable=True)])
        h = Harness(flow)
        h.command("f")
        history = h.text("x")
        assert _outline(history) == [("a/suspended/text", Suspended)]
        assert h.state.step_name == "a/suspended/text"


# ═══════════════════════════════════════════════════════════════════════════════
# History
# ═══════════════════════════════════════════════════════════════════════════════


class TestHistory:
    def test_replay_matches_published_transitions(self) -> None:
        flow = FlowBuilder("mix")
        flow.step("a", _noop)
        flow.step("b", _returning(Goto("d")))
        flow.step("c", _noop)

        @flow.step("d")
        async def d(ctx: object) -> None:
            return None

        flow.await_text(_returning(StopFlow()), fallback=False)
        h = Harness(flow.build())
        history = h.command("mix")
        history += h.text("stop")

        published = [_STEP_EVENT_STATES[type(e)] for e in h.events if type(e) in _STEP_EVENT_STATES]
        replayed = [state for snap in history for state in snap.step_states]
        assert replayed == published

    def test_execution_events_wrap_history(self) -> None:
        h = Harness(Flow("f", [_spec("a"), _spec("b")]))
        history = h.command("f")
        started, completed = h.events[0], h.events[-1]
        assert isinstance(started, ExecutionStarted)
        assert started.context.step.name == "a"
        assert isinstance(completed, ExecutionCompleted)
        assert list(completed.history) == history


# ═══════════════════════════════════════════════════════════════════════════════
# Acceptability
# ═══════════════════════════════════════════════════════════════════════════════


class TestAcceptable:
    def _flow(self) -> Flow:
        return Flow(
            "shop",
            [
                _spec("pick"),
                _spec("pick/suspended/text", suspendable=True),
                _spec("pick/suspended/callback", suspendable=True),
                _spec("pick/suspended/pre_checkout", suspendable=True),
                _spec("pick/suspended/successful_payment", suspendable=True),
            ],
        )

    def test_command_only_enters_plain_steps(self) -> None:
        pick, text, *_ = self._flow().steps
        ctx = CommandContext(state=ChatState(1), client=_client(), command="shop")
        assert acceptable(pick, ctx)
        assert not acceptable(text, ctx)

    def test_text(self) -> None:
        pick, text, callback, *_ = self._flow().steps
        ctx = TextContext(state=ChatState(1), client=_client(), text="x")
        assert acceptable(text, ctx)
        assert not acceptable(pick, ctx)
        assert not acceptable(callback, ctx)

    def test_callback_needs_matching_target(self) -> None:
        callback = self._flow().steps[2]
        state, client = ChatState(1), _client()
        assert acceptable(callback, CallbackContext(state=state, client=client, data="shop/pick|1"))
        assert acceptable(
            callback,
            CallbackContext(state=state, client=client, data="shop/pick/suspended/callback|1"),
        )
        assert not acceptable(callback, CallbackContext(state=state, client=client, data="shop/other|1"))
        assert not acceptable(callback, CallbackContext(state=state, client=client, data="shop/pickle|1"))

    def test_payments(self) -> None:
        steps = self._flow().steps
        state, client = ChatState(1), _client()
        pre = PreCheckoutContext(state=state, client=client, query_id="q")
        paid = PaymentContext(state=state, client=client, payload="p", currency="EUR", total_amount=500)
        assert acceptable(steps[3], pre) and not acceptable(steps[4], pre)
        assert acceptable(steps[4], paid) and not acceptable(steps[3], paid)

    def test_event_type_must_match(self) -> None:
        track = FlowBuilder("track")
        track.step("wait", _noop)
        track.await_event(Shipped, _noop)
        step = track.build().steps[1]
        state, client = ChatState(1), _client()
        assert acceptable(step, EventContext(state=state, client=client, event=Shipped("p")))
        assert not acceptable(step, EventContext(state=state, client=client, event=Returned("p")))


class TestFlowTerminatedEvent:
    def test_published_with_step_context(self) -> None:
        h = Harness(Flow("f", [_spec("a", _returning(StopFlow()))]))
        h.command("f")
        terminated = [e for e in h.events if isinstance(e, FlowTerminated)]
        assert len(terminated) == 1
        assert terminated[0].context.step.name == "a"
        assert not [e for e in h.events if isinstance(e, FlowCompleted)]
