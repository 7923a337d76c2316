"""Parser for the textual automaton bundle format, using Lark.

Example:

    component 0 {
      scenario request initial final {
        state a initial
        state b end
        state x error
        msg a -> b p=0.9 seq=0 from 0 to 1
        msg a -> x p=0.1 seq=0 from 0 to 1
      }
    }

Message transitions are owned by the enclosing component.
"""
from __future__ import annotations
import os
from lark import Lark, Transformer
from lark.exceptions import UnexpectedInput
from archrel.lts_model import (
    CLTSCollection, ComponentLTS, State, StateType,
    LtsSyntaxError, StructuralMismatchError,
)

_GRAMMAR_PATH = os.path.join(os.path.dirname(__file__), "lts_grammar.lark")

_parser = None

def _get_parser():
    global _parser
    if _parser is None:
        with open(_GRAMMAR_PATH, "r") as f:
            grammar_text = f.read()
        _parser = Lark(grammar_text, parser="lalr")
    return _parser


class LtsTransformer(Transformer):
    """Turns the parse tree into plain tuples; names are resolved later."""

    def NAME(self, token):
        return str(token)

    def INT(self, token):
        return int(token)

    def NUMBER(self, token):
        return float(token)

    def initial_flag(self, args):
        return "initial"

    def final_flag(self, args):
        return "final"

    def kind_initial(self, args):
        return StateType.INITIAL

    def kind_intermediate(self, args):
        return StateType.INTERMEDIATE

    def kind_end(self, args):
        return StateType.END

    def kind_error(self, args):
        return StateType.ERROR

    def state_decl(self, args):
        kind = args[1] if len(args) > 1 else StateType.INTERMEDIATE
        return ("state", args[0], kind)

    def message(self, args):
        src, dst, prob, seq, sender, receiver = args
        return ("msg", src, dst, prob, seq, sender, receiver)

    def scenario(self, args):
        name = args[0]
        flags = {a for a in args[1:] if isinstance(a, str)}
        items = [a for a in args[1:] if isinstance(a, tuple)]
        return ("scenario", name, flags, items)

    def silent(self, args):
        prob = args[4] if len(args) > 4 else 1.0
        return ("silent", (args[0], args[1]), (args[2], args[3]), prob)

    def component(self, args):
        return (args[0], list(args[1:]))

    def start(self, args):
        return list(args)


_transformer = LtsTransformer()


def _build_component(index: int, items: list) -> ComponentLTS:
    clts = ComponentLTS(index)
    named: dict[tuple[str, str], State] = {}

    def lookup(scenario_id: str, name: str) -> State:
        try:
            return named[(scenario_id, name)]
        except KeyError:
            raise StructuralMismatchError(
                f"Unknown state {scenario_id}.{name} in component {index}"
            ) from None

    for item in items:
        if item[0] != "scenario":
            continue
        _, scenario_id, flags, body = item
        members = []
        for decl in body:
            if decl[0] != "state":
                continue
            _, name, kind = decl
            if (scenario_id, name) in named:
                raise StructuralMismatchError(
                    f"Duplicate state {scenario_id}.{name} in component {index}"
                )
            state = clts.add_state(kind, scenario_id, local_id=name)
            named[(scenario_id, name)] = state
            members.append(state)
        for decl in body:
            if decl[0] != "msg":
                continue
            _, src, dst, prob, seq, sender, receiver = decl
            clts.add_message(lookup(scenario_id, src), lookup(scenario_id, dst),
                             prob, scenario_id, seq, sender, receiver)
        clts.add_scenario(
            scenario_id, members,
            is_initial="initial" in flags,
            is_final="final" in flags,
        )

    for item in items:
        if item[0] == "silent":
            _, src, dst, prob = item
            clts.add_silent(lookup(*src), lookup(*dst), prob)
    return clts


def parse_lts(text: str) -> CLTSCollection:
    """Parse bundle text into a CLTSCollection ordered by component index."""
    parser = _get_parser()
    try:
        tree = parser.parse(text)
    except UnexpectedInput as e:
        raise LtsSyntaxError(f"Invalid automaton bundle: {e}", getattr(e, "line", -1)) from e
    components = _transformer.transform(tree)

    indices = [index for index, _ in components]
    if len(set(indices)) != len(indices):
        raise StructuralMismatchError(f"Duplicate component indices: {indices}")
    return CLTSCollection([
        _build_component(index, items) for index, items in sorted(components, key=lambda c: c[0])
    ])


def parse_lts_file(filepath: str) -> CLTSCollection:
    """Parse a bundle file and return a CLTSCollection."""
    with open(filepath, "r") as f:
        text = f.read()
    return parse_lts(text)
