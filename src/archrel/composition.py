"""Synchronized product of minimal component automata.

Breadth-first exploration over tuples of member states, one per component.
Two message transitions synchronize when they share the key
(scenario id, sequence id, sender index, receiver index) and come from the
sending and the receiving component. Every synchronized step also emits an
error-flagged transition (no target) weighted by the sender's failure
alternative.
"""
from __future__ import annotations
import logging
import math
from collections import deque
from dataclasses import dataclass
from enum import Enum
from archrel.lts_model import (
    MinimalLTS, MinimalLTSCollection, MessageTransition, State, StateType,
    DegenerateProbabilityError, SynchronizationError,
)
from archrel.minimizer import EPSILON

log = logging.getLogger("archrel.composition")


class FinalPolicy(Enum):
    """When a composite state jumps to the global final state.

    ANY_COMPONENT: some member moves to its final state with probability 1.
    ALL_COMPONENTS: every member can move to its final state.
    """
    ANY_COMPONENT = "any"
    ALL_COMPONENTS = "all"


class CompositeState:
    """Node of the product automaton: one member state per component."""

    def __init__(self, members):
        self.members: tuple[State, ...] = tuple(members)
        self.transitions_out: list[CompositeTransition] = []

    @property
    def key(self) -> frozenset:
        return frozenset((s.component_index, s.handle) for s in self.members)

    @property
    def is_final(self) -> bool:
        return any(s.type is StateType.FINAL for s in self.members)

    def __eq__(self, other) -> bool:
        if not isinstance(other, CompositeState):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)

    def __repr__(self) -> str:
        inner = ", ".join(f"{s.scenario_id}.{s.local_id}" for s in self.members)
        return f"CompositeState({inner})"


@dataclass(eq=False)
class CompositeTransition:
    source: CompositeState
    target: CompositeState | None  # None for error transitions
    probability: float
    is_error: bool = False


@dataclass
class CompositeAutomaton:
    """Result of composition."""
    states: list[CompositeState]           # BFS order
    initial: CompositeState
    final: CompositeState | None           # global final, if reached
    bfs_layers: list[list[CompositeState]]
    total_states: int                      # size of the cross-product space
    policy: FinalPolicy = FinalPolicy.ANY_COMPONENT

    def transitions(self) -> list[CompositeTransition]:
        return [t for cs in self.states for t in cs.transitions_out]

    def error_transitions(self) -> list[CompositeTransition]:
        return [t for t in self.transitions() if t.is_error]


def compose(mins: MinimalLTSCollection,
            policy: FinalPolicy = FinalPolicy.ANY_COMPONENT,
            expected_components: int | None = None,
            strict_matching: bool = True,
            require_error_alternatives: bool = True) -> CompositeAutomaton:
    """Build the composite automaton of all components.

    Args:
        mins: minimal automata, one per component, ordered by index.
        policy: convergence rule for reaching the global final state.
        expected_components: component count of the architecture model;
            checked before exploration when given.
        strict_matching: when False, a message transition without a partner
            is left for a later composite state (its component waits)
            instead of raising SynchronizationError.
        require_error_alternatives: when False, a synchronized step whose
            sender has no failure alternative emits no error transition
            instead of raising SynchronizationError.
    """
    mins.validate(expected_components)
    ltss = list(mins)
    total = 1
    for m in ltss:
        total *= len(m.state_handles)

    initial = CompositeState(m.initial_state for m in ltss)
    explored: dict[frozenset, CompositeState] = {initial.key: initial}
    states: list[CompositeState] = []
    bfs_layers: list[list[CompositeState]] = []
    queue = deque([initial])

    while queue:
        layer = []
        for _ in range(len(queue)):
            node = queue.popleft()
            states.append(node)
            layer.append(node)
            if node.is_final:
                continue
            for t in _successors(ltss, node, policy, strict_matching,
                                 require_error_alternatives):
                node.transitions_out.append(t)
                if t.is_error:
                    continue
                existing = explored.get(t.target.key)
                if existing is None:
                    explored[t.target.key] = t.target
                    queue.append(t.target)
                else:
                    t.target = existing
        bfs_layers.append(layer)

    final = explored.get(CompositeState(m.final_state for m in ltss).key)
    log.info("Explored %d of %d composite states", len(states), total)

    normalize(states)
    kept = _collapse_final_routes(states, final)
    if len(kept) != len(states):
        dropped = set(map(id, states)) - set(map(id, kept))
        bfs_layers = [[cs for cs in layer if id(cs) not in dropped] for layer in bfs_layers]
        log.debug("Collapsed %d duplicate routes to the final state", len(dropped))

    return CompositeAutomaton(
        states=kept,
        initial=initial,
        final=final,
        bfs_layers=bfs_layers,
        total_states=total,
        policy=policy,
    )


def normalize(states: list[CompositeState]):
    """Scale outgoing probabilities of each composite state to sum to 1."""
    for cs in states:
        if not cs.transitions_out:
            continue
        total = math.fsum(t.probability for t in cs.transitions_out)
        if total == 0.0:
            raise DegenerateProbabilityError(cs, total)
        for t in cs.transitions_out:
            t.probability = t.probability / total


def _is_final_bound(m: MinimalLTS, t: MessageTransition) -> bool:
    return m.destination(t).type is StateType.FINAL


def _converges(ltss: list[MinimalLTS], node: CompositeState,
               policy: FinalPolicy) -> bool:
    if policy is FinalPolicy.ANY_COMPONENT:
        return any(
            _is_final_bound(m, t) and math.isclose(t.probability, 1.0, abs_tol=EPSILON)
            for m, s in zip(ltss, node.members)
            for t in m.outgoing(s)
        )
    return all(
        any(_is_final_bound(m, t) for t in m.outgoing(s))
        for m, s in zip(ltss, node.members)
    )


def _successors(ltss: list[MinimalLTS], node: CompositeState,
                policy: FinalPolicy,
                strict_matching: bool,
                require_error_alternatives: bool) -> list[CompositeTransition]:
    if _converges(ltss, node, policy):
        final = CompositeState(m.final_state for m in ltss)
        return [CompositeTransition(node, final, 1.0)]

    # key -> ([sending side], [receiving side])
    pairs: dict[tuple, tuple[list, list]] = {}
    failures: dict[tuple, MessageTransition] = {}
    for m, s in zip(ltss, node.members):
        for t in m.outgoing(s):
            dest_type = m.destination(t).type
            if dest_type is StateType.ERROR:
                if t.is_send:
                    failures.setdefault(t.sync_key, t)
                continue
            if dest_type is StateType.FINAL:
                continue
            if (t.sender_index == t.receiver_index
                    or t.component_index not in (t.sender_index, t.receiver_index)):
                raise SynchronizationError(
                    t.sync_key,
                    f"Component {t.component_index} cannot take part in message",
                )
            sides = pairs.setdefault(t.sync_key, ([], []))
            sides[0 if t.is_send else 1].append(t)

    result: list[CompositeTransition] = []
    for key, (sends, receives) in pairs.items():
        if not sends or not receives:
            if strict_matching:
                raise SynchronizationError(key, "Unmatched message transition")
            log.debug("No partner for %s in %r, component waits", key, node)
            continue
        failure = failures.get(key)
        if failure is None and require_error_alternatives:
            raise SynchronizationError(key, "Sender has no error alternative")
        for send in sends:
            for receive in receives:
                members = list(node.members)
                members[send.component_index] = ltss[send.component_index].destination(send)
                members[receive.component_index] = ltss[receive.component_index].destination(receive)
                result.append(CompositeTransition(
                    node, CompositeState(members), send.probability * receive.probability,
                ))
                if failure is not None:
                    result.append(CompositeTransition(
                        node, None, send.probability * failure.probability, is_error=True,
                    ))
    return result


def _collapse_final_routes(states: list[CompositeState],
                           final: CompositeState | None) -> list[CompositeState]:
    """Keep one composite state among those whose sole step is to `final`."""
    if final is None:
        return states
    routes = [
        cs for cs in states
        if len(cs.transitions_out) == 1 and cs.transitions_out[0].target is final
    ]
    if len(routes) < 2:
        return states
    keep = routes[0]
    duplicates = {id(cs) for cs in routes[1:]}
    for cs in states:
        for t in cs.transitions_out:
            if t.target is not None and id(t.target) in duplicates:
                t.target = keep
    return [cs for cs in states if id(cs) not in duplicates]
