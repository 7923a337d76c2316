"""Dataclasses for component automata, minimal automata and their collections.

Each component owns a ComponentLTS arena. States and transitions live in the
arena and are addressed by integer handles; edge lists on a State hold
handles, never object references.
"""
from __future__ import annotations
import copy
from dataclasses import dataclass, field
from enum import Enum


FINAL_SCENARIO = "Final"
ERROR_SCENARIO = "Error"


# --- Errors ---

class ArchrelError(Exception):
    """Base class for all archrel errors."""
    pass


class SynchronizationError(ArchrelError):
    """A message transition has no partner or no error alternative."""

    def __init__(self, key: tuple, message: str):
        self.key = key
        scenario_id, seq_id, sender, receiver = key
        super().__init__(
            f"{message} (scenario={scenario_id}, seq={seq_id}, "
            f"sender={sender}, receiver={receiver})"
        )


class DegenerateProbabilityError(ArchrelError):
    """Outgoing probabilities of a state sum to zero during normalization."""

    def __init__(self, state: object, total: float):
        self.state = state
        self.total = total
        super().__init__(f"Outgoing probabilities of {state} sum to {total}")


class StructuralMismatchError(ArchrelError):
    """Automata do not line up with the component structure of the system."""
    pass


class LtsSyntaxError(ArchrelError):
    """Raised when an automaton bundle text cannot be parsed."""

    def __init__(self, message: str, line: int = -1):
        self.line = line
        super().__init__(message)

    def __str__(self) -> str:
        if self.line >= 0:
            return f"{super().__str__()} at line {self.line}"
        return super().__str__()


# --- States and transitions ---

class StateType(Enum):
    INITIAL = "initial"
    INTERMEDIATE = "intermediate"
    END = "end"
    FINAL = "final"
    ERROR = "error"


@dataclass(eq=False)
class State:
    handle: int
    local_id: object
    type: StateType
    component_index: int
    scenario_id: str
    messages_in: list[int] = field(default_factory=list)
    messages_out: list[int] = field(default_factory=list)
    silent_in: list[int] = field(default_factory=list)
    silent_out: list[int] = field(default_factory=list)

    def __repr__(self) -> str:
        return (f"State({self.scenario_id}.{self.local_id}, {self.type.value}, "
                f"component={self.component_index})")


@dataclass(eq=False)
class MessageTransition:
    """One side of a message exchange, owned by `component_index`."""
    handle: int
    seq_id: int          # disambiguates repeated sends sender -> receiver
    probability: float
    scenario_id: str
    component_index: int
    sender_index: int
    receiver_index: int
    source: int
    destination: int

    @property
    def sync_key(self) -> tuple:
        return (self.scenario_id, self.seq_id, self.sender_index, self.receiver_index)

    @property
    def is_send(self) -> bool:
        return self.component_index == self.sender_index


@dataclass(eq=False)
class SilentTransition:
    """Glue edge between scenario automata of the same component."""
    handle: int
    probability: float
    component_index: int
    source: int
    destination: int
    source_scenario: str = ""
    destination_scenario: str = ""


@dataclass
class Scenario:
    """One scenario sub-automaton: a view over states of the arena."""
    scenario_id: str
    state_handles: list[int]
    initial_state: int | None
    end_state: int | None
    error_state: int | None = None
    is_initial: bool = False
    is_final: bool = False


def _check_probability(probability: float) -> float:
    probability = float(probability)
    if not 0.0 <= probability <= 1.0:
        raise ValueError(f"Probability {probability} outside [0, 1]")
    return probability


class ComponentLTS:
    """Arena holding every state, transition and scenario of one component."""

    def __init__(self, component_index: int):
        self.component_index = component_index
        self.states: dict[int, State] = {}
        self.messages: dict[int, MessageTransition] = {}
        self.silents: dict[int, SilentTransition] = {}
        self.scenarios: list[Scenario] = []
        self._next_handle = 0

    def __repr__(self) -> str:
        return (f"ComponentLTS({self.component_index}, states={len(self.states)}, "
                f"messages={len(self.messages)}, silent={len(self.silents)})")

    # ---- Construction ----

    def add_state(self, state_type: StateType, scenario_id: str,
                  local_id: object = None) -> State:
        handle = self._new_handle()
        state = State(
            handle=handle,
            local_id=handle if local_id is None else local_id,
            type=state_type,
            component_index=self.component_index,
            scenario_id=scenario_id,
        )
        self.states[handle] = state
        return state

    def add_scenario(self, scenario_id: str, states: list[State],
                     initial_state: State | None = None,
                     end_state: State | None = None,
                     error_state: State | None = None,
                     is_initial: bool = False,
                     is_final: bool = False) -> Scenario:
        """Register a scenario over already-added states.

        Unset designated states are inferred from state types. A scenario
        with fewer than two states ends at its sole state.
        """
        for s in states:
            self._own(s)
        if initial_state is None:
            initial_state = next((s for s in states if s.type is StateType.INITIAL), None)
        if end_state is None:
            if len(states) < 2:
                end_state = states[0] if states else None
            else:
                end_state = next((s for s in states if s.type is StateType.END), None)
        if error_state is None:
            error_state = next((s for s in states if s.type is StateType.ERROR), None)
        scenario = Scenario(
            scenario_id=scenario_id,
            state_handles=[s.handle for s in states],
            initial_state=None if initial_state is None else initial_state.handle,
            end_state=None if end_state is None else end_state.handle,
            error_state=None if error_state is None else error_state.handle,
            is_initial=is_initial,
            is_final=is_final,
        )
        self.scenarios.append(scenario)
        return scenario

    def add_message(self, source: State, destination: State, probability: float,
                    scenario_id: str, seq_id: int,
                    sender_index: int, receiver_index: int) -> MessageTransition:
        self._own(source)
        self._own(destination)
        t = MessageTransition(
            handle=self._new_handle(),
            seq_id=seq_id,
            probability=_check_probability(probability),
            scenario_id=scenario_id,
            component_index=self.component_index,
            sender_index=sender_index,
            receiver_index=receiver_index,
            source=source.handle,
            destination=destination.handle,
        )
        self.messages[t.handle] = t
        source.messages_out.append(t.handle)
        destination.messages_in.append(t.handle)
        return t

    def add_silent(self, source: State, destination: State,
                   probability: float = 1.0) -> SilentTransition:
        self._own(source)
        self._own(destination)
        if StateType.ERROR in (source.type, destination.type):
            raise StructuralMismatchError(
                f"Silent transition may not touch an error state: "
                f"{source!r} -> {destination!r}"
            )
        t = SilentTransition(
            handle=self._new_handle(),
            probability=_check_probability(probability),
            component_index=self.component_index,
            source=source.handle,
            destination=destination.handle,
            source_scenario=source.scenario_id,
            destination_scenario=destination.scenario_id,
        )
        self.silents[t.handle] = t
        source.silent_out.append(t.handle)
        destination.silent_in.append(t.handle)
        return t

    def _new_handle(self) -> int:
        handle = self._next_handle
        self._next_handle += 1
        return handle

    def _own(self, state: State):
        if self.states.get(state.handle) is not state:
            raise StructuralMismatchError(
                f"{state!r} does not belong to component {self.component_index}"
            )

    # ---- Removal and re-pointing ----

    def remove_message(self, t: MessageTransition):
        del self.messages[t.handle]
        self.states[t.source].messages_out.remove(t.handle)
        self.states[t.destination].messages_in.remove(t.handle)

    def remove_silent(self, t: SilentTransition):
        del self.silents[t.handle]
        self.states[t.source].silent_out.remove(t.handle)
        self.states[t.destination].silent_in.remove(t.handle)

    def remove_state(self, state: State):
        """Remove a state together with every edge touching it."""
        for t in self.incoming(state) + self.outgoing(state):
            if t.handle in self.messages:
                self.remove_message(t)
        for t in self.silent_in(state) + self.silent_out(state):
            if t.handle in self.silents:
                self.remove_silent(t)
        del self.states[state.handle]

    def redirect_destination(self, t: MessageTransition, destination: State):
        self._own(destination)
        self.states[t.destination].messages_in.remove(t.handle)
        t.destination = destination.handle
        destination.messages_in.append(t.handle)

    # ---- Accessors ----

    def state(self, handle: int) -> State:
        return self.states[handle]

    def outgoing(self, state: State) -> list[MessageTransition]:
        return [self.messages[h] for h in state.messages_out]

    def incoming(self, state: State) -> list[MessageTransition]:
        return [self.messages[h] for h in state.messages_in]

    def silent_out(self, state: State) -> list[SilentTransition]:
        return [self.silents[h] for h in state.silent_out]

    def silent_in(self, state: State) -> list[SilentTransition]:
        return [self.silents[h] for h in state.silent_in]

    def destination(self, t) -> State:
        return self.states[t.destination]

    def source(self, t) -> State:
        return self.states[t.source]

    def message_transitions(self) -> list[MessageTransition]:
        return list(self.messages.values())

    def silent_transitions(self) -> list[SilentTransition]:
        return list(self.silents.values())

    def initial_scenario(self) -> Scenario:
        return self._flagged("is_initial")

    def final_scenario(self) -> Scenario:
        return self._flagged("is_final")

    def _flagged(self, flag: str) -> Scenario:
        found = [sc for sc in self.scenarios if getattr(sc, flag)]
        if len(found) != 1:
            raise StructuralMismatchError(
                f"Component {self.component_index} needs exactly one scenario "
                f"with {flag}, found {len(found)}"
            )
        return found[0]

    def copy(self) -> ComponentLTS:
        """Independent deep copy; handles stay valid in the copy."""
        return copy.deepcopy(self)


# --- Minimal automata ---

@dataclass
class MinimalLTS:
    """Minimized automaton of one component.

    `state_handles` lists the surviving states with the initial state first.
    `error_state` is None when no transition of the component can fail.
    """
    component_index: int
    lts: ComponentLTS
    state_handles: list[int]
    initial_state: State
    final_state: State
    error_state: State | None = None

    @property
    def states(self) -> list[State]:
        return [self.lts.states[h] for h in self.state_handles]

    def outgoing(self, state: State) -> list[MessageTransition]:
        return self.lts.outgoing(state)

    def destination(self, t: MessageTransition) -> State:
        return self.lts.destination(t)

    def transitions(self) -> list[MessageTransition]:
        return [t for s in self.states for t in self.lts.outgoing(s)]

    def as_component(self) -> ComponentLTS:
        """Wrap this automaton into a fresh single-scenario ComponentLTS."""
        clts = ComponentLTS(self.component_index)
        mapping: dict[int, State] = {}
        for s in self.states:
            mapping[s.handle] = clts.add_state(s.type, s.scenario_id, s.local_id)
        for t in self.transitions():
            clts.add_message(
                mapping[t.source], mapping[t.destination], t.probability,
                t.scenario_id, t.seq_id, t.sender_index, t.receiver_index,
            )
        clts.add_scenario(
            "minimal", list(mapping.values()),
            initial_state=mapping[self.initial_state.handle],
            end_state=mapping[self.final_state.handle],
            error_state=None if self.error_state is None else mapping[self.error_state.handle],
            is_initial=True,
            is_final=True,
        )
        return clts


# --- Collections ---

@dataclass
class CLTSCollection:
    """All component automata of one system, ordered by component index."""
    components: list[ComponentLTS] = field(default_factory=list)

    def __iter__(self):
        return iter(self.components)

    def __len__(self) -> int:
        return len(self.components)

    def __getitem__(self, index: int) -> ComponentLTS:
        return self.components[index]


@dataclass
class MinimalLTSCollection:
    """All minimized automata of one system, ordered by component index."""
    ltss: list[MinimalLTS] = field(default_factory=list)

    def __iter__(self):
        return iter(self.ltss)

    def __len__(self) -> int:
        return len(self.ltss)

    def __getitem__(self, index: int) -> MinimalLTS:
        return self.ltss[index]

    def validate(self, expected_components: int | None = None):
        """Check the collection lines up with the system's component indexing."""
        if not self.ltss:
            raise StructuralMismatchError("No minimal automata to compose")
        if expected_components is not None and len(self.ltss) != expected_components:
            raise StructuralMismatchError(
                f"Expected {expected_components} components, got {len(self.ltss)}"
            )
        for position, m in enumerate(self.ltss):
            if m.component_index != position:
                raise StructuralMismatchError(
                    f"Automaton at position {position} has component index "
                    f"{m.component_index}"
                )
            if m.initial_state is None or m.final_state is None:
                raise StructuralMismatchError(
                    f"Component {position} lacks an initial or final state"
                )
            for s in (m.initial_state, m.final_state):
                if m.lts.states.get(s.handle) is not s:
                    raise StructuralMismatchError(
                        f"{s!r} is not a state of component {position}"
                    )
