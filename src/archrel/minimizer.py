"""Minimization of a component automaton bundle into a single MinimalLTS.

Steps, in order:
1. Collect the non-error states of every scenario.
2. Redirect error-bound transitions to one synthetic error sink.
3. Attach a synthetic final state to the designated end state.
4. Drop silent self-loops.
5. Fold glue states: splice each incoming silent edge with every outgoing
   edge of the folded state, multiplying probabilities. The overall initial
   state is protected: only its incoming silent edges are discarded.
   Silent edges into states that also receive messages are discarded.
6. Drop states left without edges.
7. Normalize outgoing probabilities of every state to 1.
8. Merge states with identical (destination, probability) outgoing sets.
9. Merge parallel transitions (error-bound ones grouped by message identity).

Steps 8 and 9 repeat until neither changes anything.
"""
from __future__ import annotations
import logging
import math
from archrel.lts_model import (
    ComponentLTS, CLTSCollection, MinimalLTS, MinimalLTSCollection,
    MessageTransition, State, StateType,
    DegenerateProbabilityError, StructuralMismatchError,
    FINAL_SCENARIO, ERROR_SCENARIO,
)

log = logging.getLogger("archrel.minimizer")

EPSILON = 1e-9

_TERMINAL = (StateType.FINAL, StateType.ERROR)


def minimize(clts: ComponentLTS) -> MinimalLTS:
    """Reduce one component's raw bundle to its minimal automaton.

    The input bundle is left untouched; all work happens on a copy.
    """
    lts = clts.copy()
    ci = lts.component_index
    init_state, end_state = _designated_states(lts)

    # Steps 1-2: single error sink
    stale_errors = [s for s in lts.states.values() if s.type is StateType.ERROR]
    error_state = lts.add_state(StateType.ERROR, ERROR_SCENARIO, local_id="error")
    for t in lts.message_transitions():
        if lts.destination(t).type is StateType.ERROR and t.destination != error_state.handle:
            lts.redirect_destination(t, error_state)
    for s in stale_errors:
        lts.remove_state(s)

    # Step 3: single success sink
    if end_state.type is StateType.FINAL:
        final_state = end_state
    else:
        final_state = lts.add_state(StateType.FINAL, FINAL_SCENARIO, local_id="final")
        lts.add_message(end_state, final_state, 1.0, FINAL_SCENARIO, 0, ci, ci)

    # Steps 4-5
    _remove_self_loops(lts)
    _fold(lts, init_state, protected=True)
    entry_points = [s for s in lts.states.values()
                    if s is not init_state and s.type is StateType.INITIAL]
    for s in entry_points:
        _remove_self_loops(lts)
        _fold(lts, s, protected=False)
    _remove_self_loops(lts)
    while True:
        glue = next((s for s in lts.states.values() if _is_glue(s, init_state)), None)
        if glue is None:
            break
        _fold(lts, glue, protected=False)
        _remove_self_loops(lts)
    # Left: edges into the initial state or into message-reached states
    for t in lts.silent_transitions():
        lts.remove_silent(t)

    # Step 6
    keep = (init_state, final_state)
    for s in list(lts.states.values()):
        if s not in keep and not s.messages_in and not s.messages_out:
            lts.remove_state(s)

    # Step 7
    normalize(lts, list(lts.states.values()))

    # Steps 8-9, initial state first so it is never discarded
    states = [init_state] + [s for s in lts.states.values() if s is not init_state]
    while True:
        before = len(states)
        states = _merge_identical_states(lts, states)
        collapsed = _merge_parallel_transitions(lts, states)
        if len(states) == before and collapsed == 0:
            break

    if error_state.handle not in lts.states:
        error_state = None

    log.info(
        "Minimized component %d: %d states, %d transitions",
        ci, len(states), sum(len(s.messages_out) for s in states),
    )
    return MinimalLTS(
        component_index=ci,
        lts=lts,
        state_handles=[s.handle for s in states],
        initial_state=init_state,
        final_state=final_state,
        error_state=error_state,
    )


def minimize_all(collection: CLTSCollection) -> MinimalLTSCollection:
    """Minimize every component of a system, keeping component order."""
    return MinimalLTSCollection([minimize(clts) for clts in collection])


def normalize(lts: ComponentLTS, states: list[State]):
    """Scale outgoing message probabilities of each state to sum to 1."""
    for s in states:
        out = lts.outgoing(s)
        if not out:
            continue
        total = math.fsum(t.probability for t in out)
        if total == 0.0:
            raise DegenerateProbabilityError(s, total)
        for t in out:
            t.probability = t.probability / total


def _designated_states(lts: ComponentLTS) -> tuple[State, State]:
    init_scenario = lts.initial_scenario()
    final_scenario = lts.final_scenario()
    if init_scenario.initial_state is None:
        raise StructuralMismatchError(
            f"Initial scenario {init_scenario.scenario_id} of component "
            f"{lts.component_index} has no initial state"
        )
    if final_scenario.end_state is None:
        raise StructuralMismatchError(
            f"Final scenario {final_scenario.scenario_id} of component "
            f"{lts.component_index} has no end state"
        )
    init_state = lts.state(init_scenario.initial_state)
    end_state = lts.state(final_scenario.end_state)
    if end_state.type is StateType.ERROR:
        raise StructuralMismatchError(f"End state {end_state!r} is an error state")
    return init_state, end_state


def _remove_self_loops(lts: ComponentLTS):
    for t in lts.silent_transitions():
        if t.source == t.destination:
            lts.remove_silent(t)


def _is_glue(s: State, init_state: State) -> bool:
    """Reached only through silent transitions."""
    return s is not init_state and bool(s.silent_in) and not s.messages_in


def _fold(lts: ComponentLTS, s: State, protected: bool):
    """Splice silent edges through `s`, then drop it.

    A protected state is kept and its incoming silent edges are discarded
    without splicing.
    """
    incoming = lts.silent_in(s)
    if protected:
        for e_in in incoming:
            lts.remove_silent(e_in)
        return
    silent_out = lts.silent_out(s)
    messages_out = lts.outgoing(s)
    for e_in in incoming:
        src = lts.source(e_in)
        log.debug("Splicing %s -> %s through %r",
                  e_in.source_scenario, e_in.destination_scenario, s)
        for e_out in silent_out:
            lts.add_silent(src, lts.destination(e_out),
                           e_in.probability * e_out.probability)
        for e_out in messages_out:
            lts.add_message(
                src, lts.destination(e_out), e_in.probability * e_out.probability,
                e_out.scenario_id, e_out.seq_id,
                e_out.sender_index, e_out.receiver_index,
            )
    log.debug("Folded %r through %d silent edges", s, len(incoming))
    lts.remove_state(s)


def _is_identical(lts: ComponentLTS, a: State, b: State) -> bool:
    """True if a and b leave by the same (destination, probability) pairs."""
    if a.type in _TERMINAL or b.type in _TERMINAL:
        return False
    out_a = lts.outgoing(a)
    unmatched = lts.outgoing(b)
    if len(out_a) != len(unmatched):
        return False
    for t in out_a:
        match = next(
            (u for u in unmatched
             if u.destination == t.destination
             and abs(u.probability - t.probability) < EPSILON),
            None,
        )
        if match is None:
            return False
        unmatched.remove(match)
    return True


def _merge_identical_states(lts: ComponentLTS, states: list[State]) -> list[State]:
    kept: list[State] = []
    for s in states:
        twin = next((k for k in kept if _is_identical(lts, k, s)), None)
        if twin is None:
            kept.append(s)
            continue
        for t in lts.outgoing(s):
            lts.remove_message(t)
        for t in lts.incoming(s):
            lts.redirect_destination(t, twin)
        lts.remove_state(s)
        log.debug("Merged %r into %r", s, twin)
    return kept


def _parallel_group(lts: ComponentLTS, t: MessageTransition) -> tuple:
    if lts.destination(t).type is StateType.ERROR:
        return ("error", t.sender_index, t.receiver_index, t.scenario_id, t.seq_id)
    return ("state", t.destination)


def _merge_parallel_transitions(lts: ComponentLTS, states: list[State]) -> int:
    """Sum parallel transitions into one; return how many were removed."""
    removed = 0
    for s in states:
        groups: dict[tuple, list[MessageTransition]] = {}
        for t in lts.outgoing(s):
            groups.setdefault(_parallel_group(lts, t), []).append(t)
        for group in groups.values():
            if len(group) < 2:
                continue
            group[0].probability = math.fsum(t.probability for t in group)
            for t in group[1:]:
                lts.remove_message(t)
            removed += len(group) - 1
    return removed
