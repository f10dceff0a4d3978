"""Step sequencer: a strictly ordered state machine with compensating rollback.

Each :class:`Step` moves the machine from its ``source`` state to the next
state in :data:`ORDER`.  The first failure moves it to ``FAILED``; the failed
step's own compensation runs, then the registry unwinds everything acquired
so far, newest first.  Nothing is rolled back after a fully successful pass.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from .errors import PrerequisiteError, StepFailed
from .executil import error, trace
from .model import RecoveryContext, Resource
from .registry import ResourceRegistry


class State(str, Enum):
    INIT = "Init"
    POOLS_SELECTED = "PoolsSelected"
    POOLS_IMPORTED = "PoolsImported"
    UNLOCKED = "Unlocked"
    DATASETS_IDENTIFIED = "DatasetsIdentified"
    MOUNTED = "Mounted"
    REPAIRED = "Repaired"
    CLEANED_UP = "CleanedUp"
    FAILED = "Failed"


ORDER = [
    State.INIT,
    State.POOLS_SELECTED,
    State.POOLS_IMPORTED,
    State.UNLOCKED,
    State.DATASETS_IDENTIFIED,
    State.MOUNTED,
    State.REPAIRED,
    State.CLEANED_UP,
]


# valid --stop-after targets
STOP_STATES = ORDER[1:-1]


def parse_state(name: str) -> State:
    """Resolve a ``--stop-after`` argument by state value or enum name."""

    for state in State:
        if name.lower() in (state.value.lower(), state.name.lower()):
            if state not in STOP_STATES:
                choices = ", ".join(s.value for s in STOP_STATES)
                raise ValueError(f"cannot stop after {state.value}; choose one of {choices}")
            return state
    raise ValueError(f"unknown state {name!r}")


@dataclass
class Step:
    name: str
    source: State
    target: State
    action: Callable[[RecoveryContext], RecoveryContext]
    # returns a reason string when the context is not ready for this step
    precondition: Optional[Callable[[RecoveryContext], Optional[str]]] = None
    compensation: Optional[Callable[[RecoveryContext], None]] = None


@dataclass
class Transition:
    step: str
    source: State
    target: State
    detail: str = ""


@dataclass
class Outcome:
    state: State
    context: RecoveryContext
    history: List[Transition] = field(default_factory=list)
    error: Optional[BaseException] = None
    compensated: List[Resource] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state != State.FAILED


def validate_chain(steps: List[Step]) -> None:
    expected = State.INIT
    for step in steps:
        if step.source != expected:
            raise ValueError(f"step {step.name!r} starts at {step.source.value}, expected {expected.value}")
        idx = ORDER.index(step.source)
        if idx + 1 >= len(ORDER) or step.target != ORDER[idx + 1]:
            raise ValueError(f"step {step.name!r} must move {step.source.value} to the next state")
        expected = step.target


class Sequencer:
    def __init__(self, steps: List[Step], registry: ResourceRegistry):
        validate_chain(steps)
        self.steps = list(steps)
        self.registry = registry
        self.state = State.INIT
        self.history: List[Transition] = []

    def _move(self, step: str, target: State, detail: str = "") -> None:
        self.history.append(Transition(step, self.state, target, detail))
        trace("sequencer.transition", step=step, source=self.state.value, target=target.value, detail=detail)
        self.state = target

    def _fail(self, step: Optional[Step], ctx: RecoveryContext, exc: BaseException) -> Outcome:
        name = step.name if step else "<none>"
        self._move(name, State.FAILED, detail=str(exc))
        error("sequencer.failed", step=name, error=str(exc), kind=type(exc).__name__)
        if step is not None and step.compensation is not None:
            try:
                step.compensation(ctx)
            except Exception as comp_exc:  # noqa: BLE001 - rollback must still run
                error("sequencer.step_compensation_failed", step=name, error=str(comp_exc))
        compensated = self.registry.rollback_all()
        wrapped = exc if isinstance(exc, (StepFailed, PrerequisiteError)) else StepFailed(name, exc)
        return Outcome(self.state, ctx, list(self.history), wrapped, compensated)

    def run(self, ctx: RecoveryContext, until: Optional[State] = None) -> Outcome:
        """Drive the steps forward from ``INIT``.

        ``until`` stops after that state is reached without rolling back;
        acquired resources are left in place for the caller.
        """

        if self.state != State.INIT:
            raise RuntimeError(f"sequencer already ran (state {self.state.value})")
        current: Optional[Step] = None
        try:
            for step in self.steps:
                current = step
                if step.precondition is not None:
                    reason = step.precondition(ctx)
                    if reason:
                        raise PrerequisiteError(f"{step.name}: {reason}")
                trace("sequencer.step_start", step=step.name, state=self.state.value)
                ctx = step.action(ctx)
                self._move(step.name, step.target)
                current = None
                if until is not None and self.state == until:
                    break
        except Exception as exc:  # noqa: BLE001 - every failure unwinds
            return self._fail(current, ctx, exc)
        except BaseException as exc:
            # interrupts still unwind, then propagate
            self._fail(current, ctx, exc)
            raise
        return Outcome(self.state, ctx, list(self.history))
